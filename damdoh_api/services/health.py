"""
Dependency health for /api/healthz.

MongoDB is required. Redis and the AMQP broker are optional: when one is
down the API keeps serving, so it reports ``degraded`` rather than
``unhealthy``. A dependency that is not configured reports ``unavailable``
and does not count against the overall status.
"""

import os
import time
import psutil
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional
from opentelemetry import trace

from .mongodb import MongoDBService
from .redis import RedisService
from .amqp import AMQPService, PUSH_EXCHANGE

tracer = trace.get_tracer(__name__)

SERVICE_NAME = "damdoh-api"
SERVICE_VERSION = "1.0.0"

MB = 1024 * 1024
GB = MB * 1024


def _now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class HealthCheckService:
    """Aggregates dependency checks and host metrics."""

    def __init__(self, mongodb_service: MongoDBService, redis_service: RedisService,
                 amqp_service: Optional[AMQPService]):
        self.mongodb_service = mongodb_service
        self.redis_service = redis_service
        self.amqp_service = amqp_service

    def _check(self, name: str, check: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        with tracer.start_as_current_span(f"health.{name}") as span:
            started = time.perf_counter()
            result = check()
            result.setdefault("response_time_ms", _elapsed_ms(started))
            result["last_check"] = _now_iso()
            span.set_attribute(f"{name}.status", result.get("status", "unknown"))
            return result

    def _amqp_health(self) -> Dict[str, Any]:
        if self.amqp_service is None:
            return {"status": "unavailable", "message": "AMQP not configured"}
        reachable = self.amqp_service.health_check()
        return {"status": "healthy" if reachable else "unhealthy", "exchange": PUSH_EXCHANGE}

    def get_comprehensive_health(self) -> Dict[str, Any]:
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            started = time.perf_counter()

            dependencies = {
                "mongodb": self._check("mongodb", self.mongodb_service.health_check),
                "redis": self._check("redis", self.redis_service.health_check),
                "amqp": self._check("amqp", self._amqp_health),
            }
            status = self.determine_overall_status(
                dependencies["mongodb"]["status"],
                [dependencies["redis"]["status"], dependencies["amqp"]["status"]]
            )
            span.set_attribute("health.overall_status", status)

            return {
                "status": status,
                "service": SERVICE_NAME,
                "version": SERVICE_VERSION,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": _now_iso(),
                "response_time_ms": _elapsed_ms(started),
                "dependencies": dependencies,
                "system_metrics": self._system_metrics()
            }

    def _system_metrics(self) -> Dict[str, Any]:
        try:
            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')
            cpu_percent = psutil.cpu_percent(interval=0.1)
        except (OSError, psutil.Error) as e:
            return {"error": f"Failed to collect system metrics: {e}"}

        return {
            "cpu_percent": cpu_percent,
            "memory": {
                "used_mb": round(memory.used / MB, 2),
                "total_mb": round(memory.total / MB, 2),
                "percent": memory.percent
            },
            "disk": {
                "used_gb": round(disk.used / GB, 2),
                "total_gb": round(disk.total / GB, 2),
                "percent": round(disk.used / disk.total * 100, 2)
            },
            "load_average": list(os.getloadavg()) if hasattr(os, 'getloadavg') else None
        }

    @staticmethod
    def determine_overall_status(required_status: str, optional_statuses: List[str]) -> str:
        if required_status != "healthy":
            return "unhealthy"
        if any(status not in ("healthy", "unavailable") for status in optional_statuses):
            return "degraded"
        return "healthy"
