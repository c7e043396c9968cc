# SPDX-License-Identifier: Apache-2.0

"""
Authorization domain logic for role-based access control.

This module contains pure functions that derive permissions from a
stakeholder role and check ownership of documents.
"""

from typing import List, Dict, Set, Optional
from dataclasses import dataclass

from ..models.entities import UserContext
from ..models.enums import StakeholderRole


# Permission strings carried in the access token
PROFILE_READ = "profile:read"
PROFILE_WRITE = "profile:write"
FARM_MANAGE = "farm:manage"
MARKETPLACE_READ = "marketplace:read"
MARKETPLACE_SELL = "marketplace:sell"
MARKETPLACE_ORDER = "marketplace:order"
FORUM_PARTICIPATE = "forum:participate"
FINANCE_TRACK = "finance:track"
FINANCE_APPLY = "finance:apply"
FINANCE_REVIEW = "finance:review"
INSURANCE_APPLY = "insurance:apply"
INSURANCE_UNDERWRITE = "insurance:underwrite"
TRACEABILITY_READ = "traceability:read"
TRACEABILITY_WRITE = "traceability:write"
TRACEABILITY_FARM_EVENTS = "traceability:farm-events"
NOTIFICATION_READ = "notification:read"
WEATHER_INGEST = "weather:ingest"
DASHBOARD_READ = "dashboard:read"

BASE_PERMISSIONS: Set[str] = {
    PROFILE_READ,
    PROFILE_WRITE,
    MARKETPLACE_READ,
    MARKETPLACE_SELL,
    MARKETPLACE_ORDER,
    FORUM_PARTICIPATE,
    FINANCE_TRACK,
    FINANCE_APPLY,
    INSURANCE_APPLY,
    TRACEABILITY_READ,
    TRACEABILITY_WRITE,
    NOTIFICATION_READ,
    DASHBOARD_READ,
}

ROLE_PERMISSIONS: Dict[StakeholderRole, Set[str]] = {
    StakeholderRole.FARMER: {FARM_MANAGE, TRACEABILITY_FARM_EVENTS},
    StakeholderRole.COOPERATIVE: {FARM_MANAGE},
    StakeholderRole.FIELD_AGENT: {FARM_MANAGE},
    StakeholderRole.FINANCIAL_INSTITUTION: {FINANCE_REVIEW},
    StakeholderRole.INSURANCE_PROVIDER: {INSURANCE_UNDERWRITE, WEATHER_INGEST},
    StakeholderRole.SYSTEM: {WEATHER_INGEST},
}

ALL_PERMISSIONS: Set[str] = BASE_PERMISSIONS.union(*ROLE_PERMISSIONS.values())


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None


def permissions_for_role(role: Optional[str]) -> List[str]:
    """
    Derive the effective permission list of a stakeholder role.

    Admins get every permission. Unknown roles get nothing.

    Args:
        role: Stakeholder role value

    Returns:
        Sorted list of permission strings
    """
    try:
        stakeholder_role = StakeholderRole(role)
    except ValueError:
        return []

    if stakeholder_role == StakeholderRole.ADMIN:
        return sorted(ALL_PERMISSIONS)

    return sorted(BASE_PERMISSIONS | ROLE_PERMISSIONS.get(stakeholder_role, set()))


def check_ownership(user_context: UserContext, owner_id: Optional[str], resource: str) -> AuthorizationResult:
    """
    Check that the caller owns a document.

    Args:
        user_context: Caller context
        owner_id: Owner id stored on the document
        resource: Human readable resource name for the denial reason

    Returns:
        AuthorizationResult indicating if access is granted
    """
    if owner_id and owner_id == user_context.user_id:
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"You do not have access to this {resource}"
    )


def check_participant(user_context: UserContext, participant_ids: List[Optional[str]],
                      resource: str) -> AuthorizationResult:
    """Check that the caller is one of the parties of a document (buyer/seller, applicant/reviewer)."""
    if user_context.user_id in [p for p in participant_ids if p]:
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Only the parties of this {resource} can access it"
    )
