"""
Tracing and logging setup for the DamDoh API.

Production and staging export sampled spans over OTLP; development prints
every span to the console. Tests run without a tracer provider.
"""

import os
import logging
from typing import List, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

SERVICE_NAME = 'damdoh-api'
DEPLOYED_ENVIRONMENTS = ('production', 'staging')

SAMPLING_RATIOS = {
    'production': 0.1,
    'staging': 0.5,
}

LOG_LEVELS = {
    'production': logging.WARNING,
    'staging': logging.INFO,
    'development': logging.DEBUG,
    'test': logging.WARNING
}

# Driver loggers that drown application logs
QUIET_LOGGERS = {
    'pymongo': logging.WARNING,
    'urllib3': logging.WARNING,
    'pika': logging.ERROR,
}

_configured = False


def sampling_ratio(environment: str) -> float:
    return SAMPLING_RATIOS.get(environment, 1.0)


def tracing_enabled(environment: str) -> bool:
    """Off in tests and whenever OTEL_ENABLED is false."""
    return environment != 'test' and os.getenv('OTEL_ENABLED', 'true').lower() == 'true'


def _span_exporters(environment: str) -> List[SpanExporter]:
    endpoint = os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT')

    if environment not in DEPLOYED_ENVIRONMENTS:
        exporters: List[SpanExporter] = [ConsoleSpanExporter()]
        if endpoint:
            exporters.append(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        return exporters

    if not endpoint:
        logging.getLogger(__name__).warning(
            "OTEL_EXPORTER_OTLP_ENDPOINT not set, spans will not be exported",
            extra={"environment": environment}
        )
        return []

    api_key = os.getenv('OTEL_API_KEY')
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
    return [OTLPSpanExporter(endpoint=endpoint, headers=headers)]


def setup_observability(environment: Optional[str] = None) -> bool:
    """
    Configure logging and, when enabled, install the global tracer provider.

    Returns:
        True when a tracer provider was installed by this call
    """
    global _configured

    environment = environment or os.getenv('ENVIRONMENT', 'development')
    setup_structured_logging(environment)

    if _configured or not tracing_enabled(environment):
        return False

    provider = TracerProvider(
        sampler=TraceIdRatioBased(sampling_ratio(environment)),
        resource=Resource.create({
            "service.name": SERVICE_NAME,
            "service.version": os.getenv('SERVICE_VERSION', '1.0.0'),
            "deployment.environment": environment
        })
    )
    for exporter in _span_exporters(environment):
        provider.add_span_processor(BatchSpanProcessor(exporter, max_export_batch_size=512))

    trace.set_tracer_provider(provider)
    _configured = True
    return True


def setup_structured_logging(environment: str):
    logging.basicConfig(
        level=LOG_LEVELS.get(environment, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s %(message)s',
        handlers=[logging.StreamHandler()]
    )

    if environment in DEPLOYED_ENVIRONMENTS:
        for name, level in QUIET_LOGGERS.items():
            logging.getLogger(name).setLevel(level)
    elif environment == 'development':
        logging.getLogger('pika').setLevel(logging.WARNING)
