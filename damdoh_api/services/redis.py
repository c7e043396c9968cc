# SPDX-License-Identifier: Apache-2.0

"""
Redis service for the JWT blocklist and the dashboard cache.

Uses the Upstash HTTP client so it works from serverless workers. Redis is
optional: without it no token can be revoked and every dashboard read is a
cache miss.
"""

import os
import json
import time
from contextlib import contextmanager
from typing import Optional, Dict, Any, Iterable, Iterator
from upstash_redis import Redis
from opentelemetry import trace
from opentelemetry.trace import Span
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

BLOCKLIST_PREFIX = "jwt:blocked:"

DASHBOARD_NAMES = (
    "farmer", "buyer", "financial-institution", "input-supplier", "logistics",
    "processing-unit", "warehouse", "insurance-provider", "engagement", "trust-score"
)


class RedisConnectionError(Exception):
    """Raised when Redis connection fails."""
    pass


def _connect(redis_url: Optional[str], redis_token: Optional[str]) -> Optional[Redis]:
    if not redis_url:
        logger.warning("No REDIS_URL configured, token revocation and dashboard caching are disabled")
        return None

    try:
        client = Redis(url=redis_url, token=redis_token) if redis_token else Redis.from_env()
        reply = client.ping()
        if reply != "PONG":
            raise RedisConnectionError(f"Unexpected PING reply: {reply}")
    except Exception as e:
        # upstash-redis surfaces HTTP and auth failures as different exception types
        logger.error("Redis unavailable, continuing without it", extra={"error": str(e)})
        return None

    logger.info("Redis connected", extra={"redis_url": redis_url})
    return client


class RedisService:
    """
    Token blocklist and dashboard cache on Upstash Redis.

    Cache operations never raise: an error is logged and reported as a miss,
    so callers fall back to MongoDB.
    """

    def __init__(self, redis_url: Optional[str] = None, redis_token: Optional[str] = None):
        self.redis_url = redis_url or os.getenv("REDIS_URL")
        self.client = _connect(self.redis_url, redis_token or os.getenv("REDIS_TOKEN"))

    def is_available(self) -> bool:
        return self.client is not None

    @contextmanager
    def _span(self, operation: str, **attributes) -> Iterator[Span]:
        with tracer.start_as_current_span(
            f"redis.{operation}", attributes={"redis.operation": operation, **attributes}
        ) as span:
            yield span

    def _setex(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._span("setex", **{"redis.key": key, "redis.ttl": ttl_seconds}) as span:
            try:
                stored = self.client.setex(key, ttl_seconds, value) == "OK"
            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error("Redis SETEX failed", extra={"key": key, "error": str(e)})
                return False
            span.set_attribute("redis.result", "success" if stored else "failed")
            return stored

    def _get(self, key: str) -> Optional[str]:
        with self._span("get", **{"redis.key": key}) as span:
            try:
                value = self.client.get(key)
            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error("Redis GET failed", extra={"key": key, "error": str(e)})
                return None
            span.set_attribute("redis.result", "hit" if value is not None else "miss")
            return value

    def _delete(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        if not keys:
            return False
        with self._span("delete", **{"redis.keys": len(keys)}):
            try:
                return self.client.delete(*keys) > 0
            except Exception as e:
                logger.error("Redis DELETE failed", extra={"keys": len(keys), "error": str(e)})
                return False

    # JWT blocklist

    def is_token_blocked(self, token_id: str) -> bool:
        """
        Check the blocklist for a token id (jti).

        Without Redis nothing can be blocked. A failed lookup on a configured
        Redis counts as blocked.
        """
        if not self.is_available():
            return False

        with self._span("is_token_blocked", **{"auth.token_id": token_id}) as span:
            try:
                blocked = self.client.exists(f"{BLOCKLIST_PREFIX}{token_id}") > 0
            except Exception as e:
                logger.error("Token blocklist lookup failed, rejecting token",
                             extra={"token_id": token_id, "error": str(e)})
                blocked = True
            span.set_attribute("auth.token_blocked", blocked)
            return blocked

    def block_token(self, token_id: str, ttl_seconds: int) -> bool:
        """Block a token for the rest of its lifetime."""
        if not self.is_available():
            logger.error("Redis unavailable, cannot block token", extra={"token_id": token_id})
            return False

        if ttl_seconds <= 0:
            # Already expired
            return True

        blocked = self._setex(f"{BLOCKLIST_PREFIX}{token_id}", "1", ttl_seconds)
        if blocked:
            logger.info("Token blocked", extra={"token_id": token_id, "ttl_seconds": ttl_seconds})
        return blocked

    # Dashboard cache

    @staticmethod
    def _dashboard_key(user_id: str, name: str) -> str:
        return f"dashboard:{name}:{user_id}"

    def cache_dashboard(self, user_id: str, name: str, data: Dict[str, Any], ttl_seconds: int = 300) -> bool:
        if not self.is_available():
            return False
        return self._setex(self._dashboard_key(user_id, name), json.dumps(data, default=str), ttl_seconds)

    def get_cached_dashboard(self, user_id: str, name: str) -> Optional[Dict[str, Any]]:
        """Cached dashboard, or None on a miss or an unreadable entry."""
        if not self.is_available():
            return None

        key = self._dashboard_key(user_id, name)
        value = self._get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable dashboard cache entry", extra={"key": key})
            return None

    def invalidate_dashboards(self, user_ids: Iterable[str]) -> bool:
        """Drop every cached dashboard of the given users."""
        if not self.is_available():
            return False

        return self._delete(
            self._dashboard_key(user_id, name)
            for user_id in dict.fromkeys(u for u in user_ids if u)
            for name in DASHBOARD_NAMES
        )

    # Health

    def ping(self) -> bool:
        if not self.is_available():
            return False
        try:
            return self.client.ping() == "PONG"
        except Exception as e:
            logger.error("Redis ping failed", extra={"error": str(e)})
            return False

    def health_check(self) -> Dict[str, Any]:
        """Round-trip a short-lived key and report the latency."""
        if not self.is_available():
            return {"status": "unavailable", "message": "Redis not configured", "timestamp": time.time()}

        start_time = time.time()
        key = f"health:check:{int(start_time)}"
        try:
            self.client.setex(key, 10, "ok")
            value = self.client.get(key)
            self.client.delete(key)
        except Exception as e:
            return {"status": "unhealthy", "error": str(e), "timestamp": time.time()}

        return {
            "status": "healthy" if value == "ok" else "degraded",
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
            "timestamp": time.time()
        }
