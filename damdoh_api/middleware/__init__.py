# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

This package contains middleware components for authentication, role checks,
request validation, CORS and error formatting in the DamDoh API.
"""

from .auth import AuthMiddleware, require_auth, require_jwt, require_roles, require_permission
from .validation import ValidationMiddleware, validated_body, validated_query
from .cors import CORSMiddleware, configure_cors
from .error_handler import (
    ErrorHandlerMiddleware,
    register_custom_error_handlers,
    CustomException,
    ValidationException,
    AuthenticationException,
    AuthorizationException,
    NotFoundException,
    ConflictException,
    BusinessRuleException,
    ServiceUnavailableException,
)

__all__ = [
    "AuthMiddleware",
    "require_auth",
    "require_jwt",
    "require_roles",
    "require_permission",
    "ValidationMiddleware",
    "validated_body",
    "validated_query",
    "CORSMiddleware",
    "configure_cors",
    "ErrorHandlerMiddleware",
    "register_custom_error_handlers",
    "CustomException",
    "ValidationException",
    "AuthenticationException",
    "AuthorizationException",
    "NotFoundException",
    "ConflictException",
    "BusinessRuleException",
    "ServiceUnavailableException",
]
