# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Document utilities shared by the route modules.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId

from ..middleware.error_handler import AuthorizationException, NotFoundException
from ..domain.authorization import check_ownership
from ..models.entities import UserContext

# Stored fields never returned to API clients
HIDDEN_FIELDS = {"deletedAt", "schemaVersion", "passwordHash", "failedLoginAttempts"}


def to_json_ready(value: Any) -> Any:
    """Convert datetimes to ISO-8601 strings and ObjectIds to strings, recursively."""
    if isinstance(value, datetime):
        return value.isoformat() + ("Z" if value.tzinfo is None else "")
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: to_json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_ready(v) for v in value]
    return value


def present(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Shape a stored document for an API response."""
    if document is None:
        return None
    return to_json_ready({k: v for k, v in document.items() if k not in HIDDEN_FIELDS})


def present_all(documents: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [present(doc) for doc in documents]


def get_or_404(mongodb_service, collection: str, doc_id: str, label: str) -> Dict[str, Any]:
    """
    Fetch a document by id.

    Raises:
        NotFoundException: If the document does not exist or is soft deleted
    """
    document = mongodb_service.find_one(collection, doc_id)
    if document is None:
        raise NotFoundException(f"{label} not found")
    return document


def find_by_or_404(mongodb_service, collection: str, filters: Dict[str, Any], label: str) -> Dict[str, Any]:
    document = mongodb_service.find_one_by(collection, filters)
    if document is None:
        raise NotFoundException(f"{label} not found")
    return document


def require_owner(user_context: UserContext, document: Dict[str, Any], owner_field: str, label: str) -> None:
    """
    Raises:
        AuthorizationException: If the caller does not own the document
    """
    result = check_ownership(user_context, document.get(owner_field), label.lower())
    if not result.allowed:
        raise AuthorizationException(result.reason)
