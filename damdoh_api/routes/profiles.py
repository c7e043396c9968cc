# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Stakeholder profile endpoints.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from typing import Dict, Any

from ..domain.authorization import PROFILE_READ, PROFILE_WRITE
from ..middleware.auth import require_jwt, require_permission
from ..middleware.error_handler import NotFoundException
from ..middleware.validation import validated_body, validated_query
from ..models.entities import UserContext, UserProfile
from ..models.requests import UpsertProfileRequest, ProfileListParams, UserPath
from ..utils.documents import present, present_all

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

profiles_tag = Tag(name="Profiles", description="Stakeholder profiles")
profiles_bp = APIBlueprint(
    'profiles',
    __name__,
    url_prefix='/api/profiles',
    abp_tags=[profiles_tag]
)

PROFILES = "profiles"
USERS = "users"


def _format_profile(profile: Dict[str, Any], is_owner: bool) -> Dict[str, Any]:
    data = present(profile)
    if not is_owner:
        data.pop("email", None)

    builder = current_app.hal_formatter.builder.link_builder
    links = {'self': builder.build_self_link(f"/api/profiles/{profile['id']}")}
    if is_owner:
        links['edit'] = builder.build_link(
            "/api/profiles/me", method="PUT", content_type="application/json", title="Edit profile"
        )
    return current_app.hal_formatter.builder.build_resource_response(data, links=links)


@profiles_bp.get('/me')
@require_jwt
@require_permission(PROFILE_READ)
def get_my_profile(user_context: UserContext):
    """Get the caller's own profile."""
    with tracer.start_as_current_span("profiles.get_me", attributes={"user.id": user_context.user_id}):
        profile = current_app.mongodb_service.find_one(PROFILES, user_context.user_id)
        if profile is None:
            raise NotFoundException("Profile not found")

        return jsonify(_format_profile(profile, is_owner=True)), 200


@profiles_bp.put('/me')
@require_jwt
@require_permission(PROFILE_WRITE)
@validated_body(UpsertProfileRequest)
def upsert_my_profile(user_context: UserContext, payload: UpsertProfileRequest):
    """
    Create or update the caller's stakeholder profile.

    A change of primary role is mirrored on the user account.
    """
    with tracer.start_as_current_span(
        "profiles.upsert",
        attributes={"user.id": user_context.user_id, "user.role": payload.primary_role}
    ) as span:
        mongodb_service = current_app.mongodb_service
        existing = mongodb_service.find_one(PROFILES, user_context.user_id)

        if existing is None:
            profile = UserProfile(
                id=user_context.user_id,
                user_id=user_context.user_id,
                email=user_context.email,
                **payload.model_dump(exclude_none=True)
            )
            if profile.display_name is None:
                profile.display_name = user_context.display_name
            mongodb_service.create(PROFILES, profile.to_document(), user_context.user_id)
            document = profile.to_api()
            previous_role = user_context.role
            status_code = 201
        else:
            updates = payload.model_dump(by_alias=True, exclude_none=True)
            mongodb_service.update(PROFILES, user_context.user_id, updates, user_context.user_id)
            document = mongodb_service.find_one(PROFILES, user_context.user_id) or {**existing, **updates}
            previous_role = existing.get("primaryRole")
            status_code = 200

        if previous_role != payload.primary_role:
            mongodb_service.update(
                USERS, user_context.user_id, {"primaryRole": payload.primary_role}, user_context.user_id
            )
            span.set_attribute("profile.role_changed", True)
            logger.info(
                "Stakeholder role changed",
                extra={"user_id": user_context.user_id, "from_role": previous_role, "to_role": payload.primary_role}
            )

        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_status(Status(StatusCode.OK))

        return jsonify(_format_profile(document, is_owner=True)), status_code


@profiles_bp.delete('/me')
@require_jwt
@require_permission(PROFILE_WRITE)
def delete_my_account(user_context: UserContext):
    """
    Delete the caller's profile and account.

    Both documents are soft deleted and the current token is revoked.
    """
    with tracer.start_as_current_span(
        "profiles.delete_account", attributes={"user.id": user_context.user_id}
    ) as span:
        mongodb_service = current_app.mongodb_service

        mongodb_service.soft_delete(PROFILES, user_context.user_id, user_context.user_id)
        if not mongodb_service.soft_delete(USERS, user_context.user_id, user_context.user_id):
            raise NotFoundException("Account not found")

        token_payload = user_context.token_payload or {}
        current_app.redis_service.block_token(
            token_payload.get("jti"),
            current_app.auth_service.remaining_lifetime(token_payload)
        )
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_status(Status(StatusCode.OK))
        logger.info("Account deleted", extra={"user_id": user_context.user_id})

        return jsonify({"message": "Account deleted successfully"}), 200


@profiles_bp.get('')
@require_jwt
@require_permission(PROFILE_READ)
@validated_query(ProfileListParams)
def list_profiles(user_context: UserContext, params: ProfileListParams):
    """Browse stakeholder profiles, optionally filtered by role."""
    with tracer.start_as_current_span("profiles.list", attributes={"filter.role": params.role or ""}):
        filters = {"primaryRole": params.role} if params.role else {}
        result = current_app.mongodb_service.paginate(
            PROFILES, params.page, params.page_size, filters, sort_by="displayName", sort_order=1
        )

        items = []
        for profile in result.items:
            data = present(profile)
            data.pop("email", None)
            items.append(current_app.hal_formatter.format_resource(data, f"/api/profiles/{profile['id']}"))

        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/profiles",
            {"role": params.role}
        )), 200


@profiles_bp.get('/<user_id>')
@require_jwt
@require_permission(PROFILE_READ)
def get_profile(user_context: UserContext, path: UserPath):
    """Get a stakeholder's public profile."""
    with tracer.start_as_current_span("profiles.get", attributes={"profile.id": path.user_id}):
        profile = current_app.mongodb_service.find_one(PROFILES, path.user_id)
        if profile is None:
            raise NotFoundException("Profile not found")

        return jsonify(_format_profile(profile, is_owner=path.user_id == user_context.user_id)), 200
