# SPDX-License-Identifier: Apache-2.0

"""
JWT authentication and stakeholder authorization for routes.

Route modules stack ``require_jwt`` above ``require_roles`` or
``require_permission``. The handler receives the caller's UserContext as
its first argument; ``require_jwt`` finds the middleware on ``current_app``
when the request arrives, so blueprints can be imported before the app
exists.
"""

from functools import wraps
from flask import request, g, current_app, has_request_context
from typing import Optional, Callable
from opentelemetry import trace
import logging

from ..models.entities import UserContext
from ..models.enums import StakeholderRole
from ..services.auth import TokenValidationError
from .error_handler import AuthenticationException, AuthorizationException

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """Turns the Authorization header into a UserContext."""

    def __init__(self, auth_service, redis_service):
        self.auth_service = auth_service
        self.redis_service = redis_service

    def extract_token_from_request(self) -> Optional[str]:
        """Bearer token from the Authorization header; a bare token is accepted too."""
        header = request.headers.get('Authorization', '').strip()
        scheme, _, credentials = header.partition(' ')
        if scheme == 'Bearer':
            return credentials.strip() or None
        return header or None

    def _is_revoked(self, token: str) -> bool:
        try:
            token_id = self.auth_service.extract_token_id(token)
        except TokenValidationError:
            # Left for signature validation to reject
            return False
        return self.redis_service.is_token_blocked(token_id)

    def authenticate(self) -> UserContext:
        """
        Authenticate the current request and store the context on ``g``.

        Raises:
            AuthenticationException: authentication-required, token-revoked or invalid-token
        """
        with tracer.start_as_current_span("auth.authenticate", attributes={"http.path": request.path}) as span:
            token = self.extract_token_from_request()
            if not token:
                span.set_attribute("auth.result", "missing_token")
                raise AuthenticationException("Missing authorization token")

            if self._is_revoked(token):
                span.set_attribute("auth.result", "revoked")
                logger.warning("Rejected revoked token", extra={"path": request.path})
                raise AuthenticationException("Token has been revoked", "token-revoked")

            try:
                claims = self.auth_service.validate_token(token, "access")
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid")
                raise AuthenticationException(str(e), "invalid-token")

            g.user_context = UserContext(
                user_id=claims["sub"],
                email=claims.get("email"),
                display_name=claims.get("name"),
                role=claims.get("role"),
                permissions=claims.get("permissions", []),
                token_payload=claims,
                ip_address=request.remote_addr,
                user_agent=request.headers.get('User-Agent', ''),
                session_id=request.headers.get('X-Session-ID')
            )
            span.set_attributes({"auth.result": "success", "user.id": g.user_context.user_id})
            return g.user_context


def require_auth(auth_middleware: AuthMiddleware) -> Callable:
    """Authenticate with a specific middleware instance."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            return f(auth_middleware.authenticate(), *args, **kwargs)
        return decorated_function
    return decorator


def require_jwt(f: Callable) -> Callable:
    @wraps(f)
    def decorated_function(*args, **kwargs):
        return f(current_app.auth_middleware.authenticate(), *args, **kwargs)
    return decorated_function


def _guard(check: Callable[[UserContext], bool], requirement: str, message: str) -> Callable:
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(user_context: UserContext, *args, **kwargs):
            if not check(user_context):
                logger.warning(
                    "Access denied",
                    extra={"user_id": user_context.user_id, "role": user_context.role,
                           "requirement": requirement, "path": request.path if has_request_context() else None}
                )
                raise AuthorizationException(message)
            return f(user_context, *args, **kwargs)
        return decorated_function
    return decorator


def require_roles(*roles: StakeholderRole) -> Callable:
    """Only the given stakeholder roles may call the route."""
    allowed = ", ".join(sorted(StakeholderRole(r).value for r in roles))
    return _guard(
        lambda ctx: ctx.has_role(*roles),
        f"roles:{allowed}",
        f"This action requires one of the roles: {allowed}"
    )


def require_permission(permission: str) -> Callable:
    """Only callers whose role grants ``permission`` may call the route."""
    return _guard(
        lambda ctx: ctx.has_permission(permission),
        permission,
        f"Missing required permission: {permission}"
    )
