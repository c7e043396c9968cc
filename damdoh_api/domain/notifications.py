# SPDX-License-Identifier: Apache-2.0

"""
Notification domain logic for delivery decisions.

This module contains pure functions that apply a user's notification
preferences and quiet hours to decide whether a notification is stored
in-app and whether a push message is sent.
"""

from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..models.entities import ChannelPreference, NotificationPreferences, QuietHours


@dataclass
class DeliveryDecision:
    """Where a notification should be delivered."""
    store: bool
    push: bool
    reason: Optional[str] = None


def default_preferences() -> NotificationPreferences:
    """All channels enabled for every type, quiet hours off (22:00-08:00 UTC)."""
    return NotificationPreferences()


def load_preferences(document: Optional[Dict[str, Any]]) -> NotificationPreferences:
    """Build preferences from a stored document, falling back to defaults."""
    if not document:
        return default_preferences()

    data = {k: v for k, v in document.items() if k in ("email", "push", "inApp", "quietHours")}
    return NotificationPreferences.model_validate(data)


def channel_allows(channel: ChannelPreference, notification_type: str) -> bool:
    """Whether a channel is enabled and subscribed to the notification type."""
    return channel.enabled and notification_type in channel.types


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(quiet_hours: QuietHours, now: Optional[datetime] = None) -> bool:
    """
    Whether ``now`` falls inside the quiet hours window.

    The window is evaluated in the user's time zone. A window whose start is
    after its end wraps midnight. Unknown time zones are treated as UTC.
    """
    if not quiet_hours.enabled:
        return False

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    try:
        zone = ZoneInfo(quiet_hours.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        zone = timezone.utc

    local = now.astimezone(zone).time().replace(second=0, microsecond=0)
    start = _parse_hhmm(quiet_hours.start)
    end = _parse_hhmm(quiet_hours.end)

    if start == end:
        return False
    if start < end:
        return start <= local < end
    # Overnight window, e.g. 22:00-08:00
    return local >= start or local < end


def decide_delivery(recipient_id: str, actor_id: Optional[str], notification_type: str,
                    preferences: NotificationPreferences,
                    now: Optional[datetime] = None) -> DeliveryDecision:
    """
    Decide how to deliver a notification.

    Args:
        recipient_id: User receiving the notification
        actor_id: User whose action caused it, if any
        notification_type: NotificationType value
        preferences: Recipient preferences
        now: Current time, defaults to UTC now

    Returns:
        DeliveryDecision; nothing is delivered for self-actions
    """
    if actor_id and actor_id == recipient_id:
        return DeliveryDecision(store=False, push=False, reason="self-action")

    if not channel_allows(preferences.in_app, notification_type):
        return DeliveryDecision(store=False, push=False, reason="in-app disabled")

    if not channel_allows(preferences.push, notification_type):
        return DeliveryDecision(store=True, push=False, reason="push disabled")

    if in_quiet_hours(preferences.quiet_hours, now):
        return DeliveryDecision(store=True, push=False, reason="quiet hours")

    return DeliveryDecision(store=True, push=True)
