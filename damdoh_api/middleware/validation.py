# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request validation middleware using Pydantic models.

Handlers decorated with ``validated_body`` receive the parsed JSON body as
``payload``; handlers decorated with ``validated_query`` receive the parsed
query string as ``params``. Failures become 400 problem documents listing
every invalid field by its camelCase name.
"""

from functools import wraps
from flask import request, current_app
from typing import Type, Callable, Dict, Any, List
from pydantic import BaseModel, ValidationError
from opentelemetry import trace
import logging

from .error_handler import ValidationException

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


def _is_json_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _query_data() -> Dict[str, Any]:
    """Query string as a dict; repeated parameters become lists."""
    return {
        key: values if len(values) > 1 else values[0]
        for key, values in request.args.lists()
    }


class ValidationMiddleware:
    """Validates request bodies and query strings against Pydantic models."""

    def format_validation_errors(self, validation_error: ValidationError) -> List[Dict[str, Any]]:
        """One entry per failed field; non-scalar inputs are not echoed back."""
        return [
            {
                "field": ".".join(str(loc) for loc in error["loc"]) or "body",
                "message": error["msg"],
                "type": error["type"],
                "input": error.get("input") if _is_json_scalar(error.get("input")) else None
            }
            for error in validation_error.errors()
        ]

    def _validate(self, model_class: Type[BaseModel], data: Dict[str, Any], source: str) -> BaseModel:
        with tracer.start_as_current_span(f"validation.{source}", attributes={
            "validation.model": model_class.__name__, "http.path": request.path
        }) as span:
            try:
                validated = model_class.model_validate(data)
            except ValidationError as e:
                errors = self.format_validation_errors(e)
                span.set_attribute("validation.result", "invalid")
                logger.warning(
                    f"Invalid request {source}",
                    extra={"model": model_class.__name__, "path": request.path,
                           "method": request.method, "errors": errors}
                )
                raise ValidationException(f"Request {source} validation failed for {model_class.__name__}", errors)

            span.set_attribute("validation.result", "success")
            return validated

    def parse_json_body(self, model_class: Type[BaseModel]) -> BaseModel:
        """
        Validate the current request's JSON body.

        Raises:
            ValidationException: If the body is not a JSON object or fails validation
        """
        if not request.is_json:
            raise ValidationException(
                "Request must have Content-Type: application/json",
                [{"field": "content-type", "message": "Expected application/json",
                  "type": "content_type_error", "input": request.content_type}]
            )

        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ValidationException(
                "Invalid JSON in request body",
                [{"field": "body", "message": "Request body must be a JSON object",
                  "type": "json_error", "input": None}]
            )

        return self._validate(model_class, body, "body")

    def parse_query_params(self, model_class: Type[BaseModel]) -> BaseModel:
        return self._validate(model_class, _query_data(), "query")

    def validate_json_body(self, model_class: Type[BaseModel]) -> Callable:
        def decorator(f: Callable) -> Callable:
            @wraps(f)
            def decorated_function(*args, **kwargs):
                return f(*args, payload=self.parse_json_body(model_class), **kwargs)
            return decorated_function
        return decorator

    def validate_query_params(self, model_class: Type[BaseModel]) -> Callable:
        def decorator(f: Callable) -> Callable:
            @wraps(f)
            def decorated_function(*args, **kwargs):
                return f(*args, params=self.parse_query_params(model_class), **kwargs)
            return decorated_function
        return decorator


def validated_body(model_class: Type[BaseModel]) -> Callable:
    """Validate the JSON body with the middleware configured on the current app."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            payload = current_app.validation_middleware.parse_json_body(model_class)
            return f(*args, payload=payload, **kwargs)
        return decorated_function
    return decorator


def validated_query(model_class: Type[BaseModel]) -> Callable:
    """Validate the query string with the middleware configured on the current app."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            params = current_app.validation_middleware.parse_query_params(model_class)
            return f(*args, params=params, **kwargs)
        return decorated_function
    return decorator
