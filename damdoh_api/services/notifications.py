# SPDX-License-Identifier: Apache-2.0

"""
Notification dispatch used by the other modules.

Stores in-app notifications in MongoDB and fans push messages out through
the AMQP service, honouring each recipient's preferences and quiet hours.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from opentelemetry import trace
from pymongo.errors import PyMongoError

from ..domain.notifications import decide_delivery, load_preferences
from ..models.entities import LinkedEntity, Notification
from .amqp import AMQPService
from .mongodb import MongoDBService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

NOTIFICATIONS = "notifications"
PREFERENCES = "notification_preferences"


def create_notification(
    mongodb_service: MongoDBService,
    amqp_service: Optional[AMQPService],
    user_id: str,
    notification_type: str,
    title: str,
    body: str,
    actor_id: Optional[str] = None,
    linked_entity: Optional[LinkedEntity] = None,
    data: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Create an in-app notification and publish a push message for it.

    Storage errors are logged and never propagate to the request that caused
    the notification.

    Returns:
        The stored notification for the API, or None when nothing was stored
    """
    with tracer.start_as_current_span("notifications.create") as span:
        span.set_attributes({
            "notification.type": notification_type,
            "notification.recipient": user_id
        })

        try:
            preferences = load_preferences(mongodb_service.find_one(PREFERENCES, user_id))
            decision = decide_delivery(user_id, actor_id, notification_type, preferences, now)
            span.set_attributes({
                "notification.store": decision.store,
                "notification.push": decision.push
            })

            if not decision.store:
                logger.debug(
                    "Notification skipped",
                    extra={"user_id": user_id, "type": notification_type, "reason": decision.reason}
                )
                return None

            notification = Notification(
                user_id=user_id,
                type=notification_type,
                title=title,
                body=body,
                actor_id=actor_id,
                linked_entity=linked_entity,
                data=data or {},
                created_by=actor_id,
                updated_by=actor_id
            )
            mongodb_service.create(NOTIFICATIONS, notification.to_document(), actor_id)

        except PyMongoError as e:
            span.record_exception(e)
            logger.error(
                "Failed to store notification",
                extra={"user_id": user_id, "type": notification_type, "error": str(e)},
                exc_info=True
            )
            return None

        if decision.push and amqp_service is not None:
            result = amqp_service.publish_push_notification(notification)
            span.set_attribute("notification.published", result.success)

        logger.info(
            "Notification created",
            extra={"notification_id": notification.id, "user_id": user_id, "type": notification_type}
        )
        return notification.to_api()
