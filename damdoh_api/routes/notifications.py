# SPDX-License-Identifier: Apache-2.0

"""
In-app notification endpoints.

Notifications are created by the other modules through
``services.notifications.create_notification``; these endpoints let the
recipient read them and manage delivery preferences.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from bson import ObjectId
import logging
from datetime import datetime

from ..domain.authorization import NOTIFICATION_READ
from ..domain.notifications import load_preferences
from ..middleware.auth import require_jwt, require_permission
from ..middleware.validation import validated_body, validated_query
from ..models.entities import UserContext
from ..models.enums import NotificationStatus
from ..models.requests import (
    MarkNotificationsReadRequest, UpdatePreferencesRequest, NotificationListParams, NotificationPath
)
from ..utils.documents import present, get_or_404, require_owner

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

notifications_tag = Tag(name="Notifications", description="In-app notifications and delivery preferences")
notifications_bp = APIBlueprint(
    'notifications',
    __name__,
    url_prefix='/api/notifications',
    abp_tags=[notifications_tag]
)

NOTIFICATIONS = "notifications"
PREFERENCES = "notification_preferences"


@notifications_bp.get('')
@require_jwt
@require_permission(NOTIFICATION_READ)
@validated_query(NotificationListParams)
def list_notifications(user_context: UserContext, params: NotificationListParams):
    """List the caller's notifications, newest first."""
    with tracer.start_as_current_span(
        "notifications.list",
        attributes={"user.id": user_context.user_id, "filter.status": params.status or ""}
    ) as span:
        filters = {"userId": user_context.user_id}
        if params.status:
            filters["status"] = params.status

        result = current_app.mongodb_service.paginate(
            NOTIFICATIONS, params.page, params.page_size, filters
        )
        span.set_attribute("notifications.total", result.total)

        items = [current_app.hal_formatter.format_notification(present(n)) for n in result.items]
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/notifications",
            {"status": params.status}
        )), 200


@notifications_bp.get('/unread-count')
@require_jwt
@require_permission(NOTIFICATION_READ)
def unread_count(user_context: UserContext):
    with tracer.start_as_current_span("notifications.unread_count", attributes={"user.id": user_context.user_id}):
        count = current_app.mongodb_service.count(
            NOTIFICATIONS, {"userId": user_context.user_id, "status": NotificationStatus.UNREAD.value}
        )
        return jsonify(current_app.hal_formatter.format_resource(
            {"unreadCount": count}, "/api/notifications/unread-count"
        )), 200


@notifications_bp.patch('/<notification_id>/read')
@require_jwt
@require_permission(NOTIFICATION_READ)
def mark_read(user_context: UserContext, path: NotificationPath):
    """Mark one of the caller's notifications read."""
    with tracer.start_as_current_span(
        "notifications.mark_read", attributes={"notification.id": path.notification_id}
    ) as span:
        mongodb_service = current_app.mongodb_service
        notification = get_or_404(mongodb_service, NOTIFICATIONS, path.notification_id, "Notification")
        require_owner(user_context, notification, "userId", "Notification")

        if notification.get("status") == NotificationStatus.UNREAD.value:
            mongodb_service.update(
                NOTIFICATIONS, path.notification_id,
                {"status": NotificationStatus.READ.value, "readAt": datetime.utcnow()},
                user_context.user_id
            )
            notification = mongodb_service.find_one(NOTIFICATIONS, path.notification_id)

        span.set_status(Status(StatusCode.OK))
        return jsonify(current_app.hal_formatter.format_notification(present(notification))), 200


@notifications_bp.post('/read')
@require_jwt
@require_permission(NOTIFICATION_READ)
@validated_body(MarkNotificationsReadRequest)
def mark_many_read(user_context: UserContext, payload: MarkNotificationsReadRequest):
    """
    Mark several notifications read.

    Ids that do not belong to the caller are ignored.
    """
    with tracer.start_as_current_span(
        "notifications.mark_many_read", attributes={"notifications.requested": len(payload.notification_ids)}
    ) as span:
        object_ids = [ObjectId(i) for i in payload.notification_ids if ObjectId.is_valid(i)]

        updated = current_app.mongodb_service.update_many(
            NOTIFICATIONS,
            {
                "_id": {"$in": object_ids},
                "userId": user_context.user_id,
                "status": NotificationStatus.UNREAD.value,
            },
            {"status": NotificationStatus.READ.value, "readAt": datetime.utcnow()},
            user_context.user_id
        ) if object_ids else 0

        span.set_attribute("notifications.updated", updated)
        span.set_status(Status(StatusCode.OK))
        logger.info("Notifications marked read", extra={"user_id": user_context.user_id, "count": updated})

        return jsonify({"updated": updated}), 200


@notifications_bp.get('/preferences')
@require_jwt
@require_permission(NOTIFICATION_READ)
def get_preferences(user_context: UserContext):
    """The caller's delivery preferences, with defaults when none are stored."""
    with tracer.start_as_current_span("notifications.get_preferences"):
        document = current_app.mongodb_service.find_one(PREFERENCES, user_context.user_id)
        preferences = load_preferences(document)

        return jsonify(current_app.hal_formatter.format_resource(
            preferences.model_dump(mode="json", by_alias=True), "/api/notifications/preferences"
        )), 200


@notifications_bp.put('/preferences')
@require_jwt
@require_permission(NOTIFICATION_READ)
@validated_body(UpdatePreferencesRequest)
def update_preferences(user_context: UserContext, payload: UpdatePreferencesRequest):
    """Replace the caller's delivery preferences."""
    with tracer.start_as_current_span("notifications.update_preferences") as span:
        data = payload.model_dump(mode="json", by_alias=True)
        created = current_app.mongodb_service.upsert(PREFERENCES, user_context.user_id, data, user_context.user_id)

        span.set_attribute("preferences.created", created)
        span.set_status(Status(StatusCode.OK))
        logger.info("Notification preferences updated", extra={"user_id": user_context.user_id})

        return jsonify(current_app.hal_formatter.format_resource(data, "/api/notifications/preferences")), 200
