# SPDX-License-Identifier: Apache-2.0

"""
Traceability domain logic for Verifiable Traceability Ids (VTIs).
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.base import to_naive_utc

FARM_BATCH = "farm_batch"
CARBON_FOOTPRINT_KEY = "carbon_footprint_kgCO2e"
UNKNOWN_ACTOR = {"name": "Unknown Actor", "role": "System"}


def new_vti_id() -> str:
    return str(uuid.uuid4())


def vti_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy VTI metadata, defaulting the carbon footprint to 0."""
    result = dict(metadata or {})
    result.setdefault(CARBON_FOOTPRINT_KEY, 0)
    return result


def _sort_key(event: Dict[str, Any]):
    return to_naive_utc(event.get("timestamp")) or datetime.min


def pre_harvest_field_id(vti: Dict[str, Any]) -> Optional[str]:
    """Farm field whose pre-harvest events belong in a farm batch's history."""
    if vti.get("type") != FARM_BATCH:
        return None
    return (vti.get("metadata") or {}).get("farmFieldId")


def build_history(vti_events: List[Dict[str, Any]], field_events: List[Dict[str, Any]],
                  actors: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Merge a VTI's own events with its farm field's pre-harvest events.

    Field events already attached to a VTI are skipped. Each event gets an
    ``actor`` entry with the actor profile's display name and role.

    Args:
        vti_events: Events logged against the VTI
        field_events: Events logged against the farm field
        actors: Profiles keyed by id

    Returns:
        Events in chronological order
    """
    events = list(vti_events) + [e for e in field_events if not e.get("vtiId")]

    history = []
    for event in sorted(events, key=_sort_key):
        profile = actors.get(event.get("actorRef"))
        actor = dict(UNKNOWN_ACTOR)
        if profile:
            actor = {
                "name": profile.get("displayName") or UNKNOWN_ACTOR["name"],
                "role": profile.get("primaryRole") or UNKNOWN_ACTOR["role"],
            }
        history.append({**event, "actor": actor})

    return history
