"""
Request instrumentation.

Every request gets a server span from the Flask instrumentor, an
``X-Request-ID`` (echoed from the client or generated) and one access log
line carrying the caller's user id once authentication has run.
"""

import time
import uuid
import logging
from flask import Flask, Response, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

logger = logging.getLogger(__name__)


def _begin_request():
    g.request_started = time.perf_counter()
    g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex

    span = trace.get_current_span()
    g.trace_id = None
    if span.is_recording():
        g.trace_id = format(span.get_span_context().trace_id, "032x")
        span.set_attributes({
            "http.request_id": g.request_id,
            "http.client_ip": request.remote_addr or ""
        })


def _finish_request(response: Response) -> Response:
    duration_ms = round((time.perf_counter() - g.get('request_started', time.perf_counter())) * 1000, 2)
    user_context = g.get('user_context')

    span = trace.get_current_span()
    if span.is_recording() and user_context:
        span.set_attribute("user.id", user_context.user_id)

    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.path} {response.status_code}", extra={
        "status_code": response.status_code,
        "duration_ms": duration_ms,
        "request_id": g.get('request_id'),
        "trace_id": g.get('trace_id'),
        "user_id": user_context.user_id if user_context else None
    })

    response.headers['X-Request-ID'] = g.get('request_id', '')
    if g.get('trace_id'):
        response.headers['X-Trace-Id'] = g.trace_id
    return response


def add_observability_middleware(app: Flask, instrument: bool = True):
    """Attach request logging, and the OpenTelemetry Flask instrumentor when ``instrument`` is set."""
    if instrument:
        FlaskInstrumentor().instrument_app(app)

    app.before_request(_begin_request)
    app.after_request(_finish_request)
