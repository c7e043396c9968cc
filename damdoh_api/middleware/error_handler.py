# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware.

Every error leaves the API as an RFC 7807 problem document
(``application/problem+json``) with HAL help links. Application code raises
the CustomException subclasses below; HTTP errors raised by Flask and
unexpected exceptions are mapped here too.
"""

from flask import Flask, Response, request, jsonify
from werkzeug.exceptions import HTTPException
from pymongo.errors import ConnectionFailure
from typing import Dict, Any, List, Optional
from opentelemetry import trace
import logging

from ..services.hal import HalFormatter

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

PROBLEM_CONTENT_TYPE = "application/problem+json"

# Problem type and title for HTTP errors raised outside application code
HTTP_PROBLEMS = {
    400: ("bad-request", "Bad Request"),
    401: ("authentication-required", "Authentication Required"),
    403: ("insufficient-permissions", "Insufficient Permissions"),
    404: ("resource-not-found", "Resource Not Found"),
    405: ("method-not-allowed", "Method Not Allowed"),
    409: ("resource-conflict", "Resource Conflict"),
    413: ("payload-too-large", "Payload Too Large"),
    415: ("unsupported-media-type", "Unsupported Media Type"),
    422: ("validation-error", "Validation Error"),
    500: ("internal-server-error", "Internal Server Error"),
    502: ("bad-gateway", "Bad Gateway"),
    503: ("service-unavailable", "Service Unavailable"),
    504: ("gateway-timeout", "Gateway Timeout"),
}


def problem_response(body: Dict[str, Any], status: int) -> Response:
    """Serialize an RFC 7807 problem document."""
    response = jsonify(body)
    response.status_code = status
    response.mimetype = PROBLEM_CONTENT_TYPE
    return response


def _request_fields() -> Dict[str, Any]:
    return {
        "path": request.path,
        "method": request.method,
        "user_agent": request.headers.get('User-Agent'),
        "ip_address": request.remote_addr
    }


class CustomException(Exception):
    """Base class for errors raised deliberately by application code."""

    status_code = 500
    error_type = "application-error"
    title = "Application Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def errors(self) -> Optional[List[Dict[str, Any]]]:
        return None


class ValidationException(CustomException):
    """Malformed request; carries one entry per invalid field."""

    status_code = 400
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(self, message: str, validation_errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.validation_errors = validation_errors or []

    @property
    def errors(self) -> Optional[List[Dict[str, Any]]]:
        return self.validation_errors


AUTHENTICATION_TITLES = {
    "authentication-required": "Authentication Required",
    "token-revoked": "Token Revoked",
    "invalid-token": "Invalid Token",
    "invalid-credentials": "Invalid Credentials",
    "account-inactive": "Account Inactive",
}


class AuthenticationException(CustomException):
    """Missing, invalid or revoked credentials."""

    status_code = 401

    def __init__(self, message: str, error_type: str = "authentication-required"):
        super().__init__(message)
        self.error_type = error_type
        self.title = AUTHENTICATION_TITLES.get(error_type, "Authentication Required")


class AuthorizationException(CustomException):
    status_code = 403
    error_type = "insufficient-permissions"
    title = "Insufficient Permissions"


class NotFoundException(CustomException):
    status_code = 404
    error_type = "resource-not-found"
    title = "Resource Not Found"


class ConflictException(CustomException):
    """Duplicate resource or a concurrent update that lost the race."""

    status_code = 409
    error_type = "resource-conflict"
    title = "Resource Conflict"


class BusinessRuleException(CustomException):
    """Well-formed request that violates a business rule."""

    status_code = 422
    error_type = "business-rule-violation"
    title = "Business Rule Violation"


class ServiceUnavailableException(CustomException):
    """A required backing service cannot be reached."""

    status_code = 503
    error_type = "service-unavailable"
    title = "Service Unavailable"


class ErrorHandlerMiddleware:
    """Maps HTTP errors and unexpected exceptions to problem documents."""

    def __init__(self, app: Flask, hal_formatter: HalFormatter):
        self.app = app
        self.hal_formatter = hal_formatter
        app.register_error_handler(HTTPException, self.handle_http_error)
        app.register_error_handler(Exception, self.handle_unexpected_error)

    def _hide_details(self) -> bool:
        return self.app.config.get('ENVIRONMENT') == 'production'

    def handle_http_error(self, error: HTTPException) -> Response:
        status = error.code or 500
        error_type, title = HTTP_PROBLEMS.get(status, ("http-error", error.name))

        with tracer.start_as_current_span("error_handler.http_error", attributes={
            "error.type": error_type, "error.status": status, "http.path": request.path
        }):
            detail = str(error.description or title)
            if status >= 500:
                logger.error(f"Server error: {title}", extra={"status_code": status, **_request_fields()})
                if self._hide_details():
                    detail = "An internal server error occurred"
            else:
                logger.warning(f"Client error: {title}",
                               extra={"status_code": status, "detail": detail, **_request_fields()})

            return problem_response(
                self.hal_formatter.builder.build_error_response(error_type, title, status, detail, request.path),
                status
            )

    def handle_unexpected_error(self, error: Exception) -> Response:
        with tracer.start_as_current_span("error_handler.unexpected_error", attributes={
            "error.class": error.__class__.__name__, "http.path": request.path
        }) as span:
            span.record_exception(error)
            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={"error_message": str(error), **_request_fields()},
                exc_info=True
            )

            detail = "An unexpected error occurred"
            if not self._hide_details():
                detail = f"{error.__class__.__name__}: {error}"

            return problem_response(
                self.hal_formatter.builder.build_error_response(
                    "internal-server-error", "Internal Server Error", 500, detail, request.path
                ),
                500
            )


def register_custom_error_handlers(app: Flask, hal_formatter: HalFormatter):
    """Register the handler for CustomException and its subclasses."""

    @app.errorhandler(CustomException)
    def handle_custom_exception(error: CustomException):
        with tracer.start_as_current_span("error_handler.custom_exception", attributes={
            "error.type": error.error_type, "error.status": error.status_code, "http.path": request.path
        }):
            logger.warning(
                f"Request failed: {error.error_type}",
                extra={"status_code": error.status_code, "error_message": error.message,
                       "path": request.path, "method": request.method}
            )

            body = hal_formatter.builder.build_error_response(
                error.error_type, error.title, error.status_code, error.message, request.path, error.errors
            )
            return problem_response(body, error.status_code)

    @app.errorhandler(ConnectionFailure)
    def handle_database_unavailable(error: ConnectionFailure):
        logger.error("Database unreachable", extra={"error_message": str(error), **_request_fields()})
        return handle_custom_exception(ServiceUnavailableException("The database is temporarily unavailable"))
