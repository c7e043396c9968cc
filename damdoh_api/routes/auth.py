# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Authentication endpoints for registration, login, logout, and token refresh.
"""

from flask import request, jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from datetime import datetime
from typing import Dict, Any, List

from ..domain.authorization import permissions_for_role
from ..middleware.auth import require_jwt
from ..middleware.error_handler import AuthenticationException, ConflictException
from ..middleware.validation import validated_body
from ..models.entities import User, UserProfile, UserContext
from ..models.requests import RegisterRequest, LoginRequest, RefreshTokenRequest
from ..models.responses import LoginResponse, RefreshTokenResponse, AuthUserResponse, HalLink
from ..services.auth import TokenValidationError
from ..services.mongodb import DuplicateDocumentError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

auth_tag = Tag(name="Authentication", description="User registration, authentication and token management")
auth_bp = APIBlueprint(
    'auth',
    __name__,
    url_prefix='/api/auth',
    abp_tags=[auth_tag]
)

USERS = "users"
PROFILES = "profiles"


def _token_links() -> Dict[str, HalLink]:
    builder = current_app.hal_formatter.builder.link_builder
    return {
        'self': builder.build_link("/api/auth/me", title="Current user"),
        'refresh': builder.build_link(
            "/api/auth/refresh", method="POST", content_type="application/json", title="Refresh token"
        ),
        'logout': builder.build_link("/api/auth/logout", method="POST", title="Logout"),
        'profile': builder.build_link("/api/profiles/me", title="My profile"),
        'dashboard': builder.build_link("/api/dashboards/me", title="My dashboard"),
    }


def _login_response(user: User, permissions: List[str]) -> Dict[str, Any]:
    tokens = current_app.auth_service.generate_tokens(user, permissions)
    response = LoginResponse(
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        token_type=tokens["token_type"],
        expires_in=tokens["expires_in"],
        user=AuthUserResponse(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            primary_role=user.primary_role,
            permissions=permissions
        ),
        links=_token_links()
    )
    return response.model_dump(by_alias=True, exclude_none=True)


@auth_bp.post('/register')
@validated_body(RegisterRequest)
def register(payload: RegisterRequest):
    """
    Register a new stakeholder account.

    Creates the user and an initial profile, then returns a token pair.
    """
    with tracer.start_as_current_span(
        "auth.register",
        attributes={"operation": "register", "user.role": payload.primary_role}
    ) as span:
        mongodb_service = current_app.mongodb_service

        if mongodb_service.find_one_by(USERS, {"email": payload.email}) is not None:
            span.set_status(Status(StatusCode.ERROR, "Email already registered"))
            logger.warning("Registration with existing email", extra={"ip_address": request.remote_addr})
            raise ConflictException("An account with this email already exists")

        user = User(
            email=payload.email,
            display_name=payload.display_name,
            password_hash=current_app.auth_service.hash_password(payload.password),
            primary_role=payload.primary_role
        )
        user.created_by = user.id
        user.updated_by = user.id

        profile = UserProfile(
            id=user.id,
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            primary_role=user.primary_role,
            created_by=user.id,
            updated_by=user.id
        )

        try:
            mongodb_service.create(USERS, user.to_document(), user.id)
        except DuplicateDocumentError:
            span.set_status(Status(StatusCode.ERROR, "Email already registered"))
            raise ConflictException("An account with this email already exists")

        mongodb_service.create(PROFILES, profile.to_document(), user.id)

        permissions = permissions_for_role(user.primary_role)
        span.set_attributes({"user.id": user.id})
        span.set_status(Status(StatusCode.OK))

        logger.info(
            "User registered",
            extra={"user_id": user.id, "role": user.primary_role, "ip_address": request.remote_addr}
        )

        return jsonify(_login_response(user, permissions)), 201


@auth_bp.post('/login')
@validated_body(LoginRequest)
def login(payload: LoginRequest):
    """
    Authenticate user and return JWT tokens.

    Unknown emails and wrong passwords get the same 401 response.
    """
    with tracer.start_as_current_span(
        "auth.login",
        attributes={"operation": "login", "ip_address": request.remote_addr or ""}
    ) as span:
        mongodb_service = current_app.mongodb_service
        auth_service = current_app.auth_service

        user_doc = mongodb_service.find_one_by(USERS, {"email": payload.email})
        if user_doc is None:
            span.set_status(Status(StatusCode.ERROR, "User not found"))
            logger.warning("Login attempt with unknown email", extra={"ip_address": request.remote_addr})
            raise AuthenticationException("Invalid email or password", "invalid-credentials")

        user = User.from_document(user_doc)

        if not auth_service.verify_password(payload.password, user.password_hash):
            span.set_status(Status(StatusCode.ERROR, "Invalid password"))
            mongodb_service.increment(USERS, user.id, {"failedLoginAttempts": 1})
            logger.warning(
                "Login attempt with invalid password",
                extra={"user_id": user.id, "ip_address": request.remote_addr}
            )
            raise AuthenticationException("Invalid email or password", "invalid-credentials")

        if not user.is_active():
            span.set_status(Status(StatusCode.ERROR, "Inactive account"))
            raise AuthenticationException("This account is not active", "account-inactive")

        mongodb_service.update(
            USERS, user.id, {"lastLogin": datetime.utcnow(), "failedLoginAttempts": 0}, user.id
        )

        permissions = permissions_for_role(user.primary_role)
        span.set_attributes({"user.id": user.id, "user.role": user.primary_role})
        span.set_status(Status(StatusCode.OK))

        logger.info("User logged in", extra={"user_id": user.id, "ip_address": request.remote_addr})

        return jsonify(_login_response(user, permissions)), 200


@auth_bp.post('/refresh')
@validated_body(RefreshTokenRequest)
def refresh_token(payload: RefreshTokenRequest):
    """
    Exchange a refresh token for a new access token.

    Permissions are recomputed from the user's current role.
    """
    with tracer.start_as_current_span("auth.refresh", attributes={"operation": "refresh"}) as span:
        auth_service = current_app.auth_service

        try:
            refresh_payload = auth_service.validate_token(payload.refresh_token, "refresh")
        except TokenValidationError as e:
            span.set_status(Status(StatusCode.ERROR, "Invalid refresh token"))
            raise AuthenticationException(str(e), "invalid-token")

        if current_app.redis_service.is_token_blocked(refresh_payload["jti"]):
            span.set_status(Status(StatusCode.ERROR, "Refresh token revoked"))
            raise AuthenticationException("Token has been revoked", "token-revoked")

        user_doc = current_app.mongodb_service.find_one(USERS, refresh_payload["sub"])
        if user_doc is None or user_doc.get("status") != "active":
            span.set_status(Status(StatusCode.ERROR, "User unavailable"))
            raise AuthenticationException("User no longer exists or is inactive", "invalid-token")

        permissions = permissions_for_role(user_doc.get("primaryRole"))
        tokens = auth_service.refresh_access_token(payload.refresh_token, permissions)

        response = RefreshTokenResponse(
            access_token=tokens["access_token"],
            token_type=tokens["token_type"],
            expires_in=tokens["expires_in"],
            links=_token_links()
        )

        span.set_attribute("user.id", refresh_payload["sub"])
        span.set_status(Status(StatusCode.OK))

        return jsonify(response.model_dump(by_alias=True, exclude_none=True)), 200


@auth_bp.post('/logout')
@require_jwt
def logout(user_context: UserContext):
    """
    Revoke the current access token.

    The token id is blocklisted for the rest of the token's lifetime.
    """
    with tracer.start_as_current_span(
        "auth.logout",
        attributes={"operation": "logout", "user.id": user_context.user_id}
    ) as span:
        token_payload = user_context.token_payload or {}
        ttl = current_app.auth_service.remaining_lifetime(token_payload)
        revoked = current_app.redis_service.block_token(token_payload.get("jti"), ttl)

        if not revoked:
            logger.warning(
                "Logout without token revocation",
                extra={"user_id": user_context.user_id}
            )

        span.set_attribute("auth.token_revoked", revoked)
        span.set_status(Status(StatusCode.OK))

        logger.info("User logged out", extra={"user_id": user_context.user_id})

        return jsonify({"message": "Logged out successfully", "tokenRevoked": revoked}), 200


@auth_bp.get('/me')
@require_jwt
def current_user(user_context: UserContext):
    """Return the authenticated user's context."""
    data = {
        "id": user_context.user_id,
        "email": user_context.email,
        "displayName": user_context.display_name,
        "primaryRole": user_context.role,
        "permissions": user_context.permissions,
    }
    return jsonify(current_app.hal_formatter.builder.build_resource_response(
        data, links=_token_links()
    )), 200
