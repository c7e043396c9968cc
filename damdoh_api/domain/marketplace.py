# SPDX-License-Identifier: Apache-2.0

"""
Marketplace domain logic.

Pure functions for listing search filters, geographic distance and the order
lifecycle state machine.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..models.enums import OrderStatus
from ..models.requests import ListingSearchParams

EARTH_RADIUS_KM = 6371.0

ORDER_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.PENDING.value: [OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value],
    OrderStatus.CONFIRMED.value: [OrderStatus.PAID.value, OrderStatus.CANCELLED.value],
    OrderStatus.PAID.value: [OrderStatus.SHIPPED.value],
    OrderStatus.SHIPPED.value: [OrderStatus.DELIVERED.value],
    OrderStatus.DELIVERED.value: [],
    OrderStatus.CANCELLED.value: [],
}

SELLER_ACTIONS = {OrderStatus.CONFIRMED.value, OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value}
BUYER_ACTIONS = {OrderStatus.PAID.value, OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}

OPEN_ORDER_STATUSES = [
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PAID.value,
    OrderStatus.SHIPPED.value,
]


@dataclass
class TransitionResult:
    """Outcome of an order status change request."""
    allowed: bool
    reason: Optional[str] = None
    # True when the transition exists but the caller is the wrong party
    wrong_party: bool = False


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def build_listing_filters(params: ListingSearchParams) -> Dict[str, Any]:
    """
    Translate search parameters into a MongoDB filter.

    The text query matches name or description case-insensitively. The
    geographic radius is applied afterwards with ``filter_by_radius``.
    """
    filters: Dict[str, Any] = {}

    if params.status:
        filters["status"] = params.status
    if params.category:
        filters["category"] = params.category
    if params.seller_id:
        filters["sellerId"] = params.seller_id

    price: Dict[str, float] = {}
    if params.min_price is not None:
        price["$gte"] = params.min_price
    if params.max_price is not None:
        price["$lte"] = params.max_price
    if price:
        filters["price"] = price

    if params.q and params.q.strip():
        pattern = re.escape(params.q.strip())
        filters["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]

    return filters


def filter_by_radius(listings: List[Dict[str, Any]], lat: float, lng: float,
                     radius_km: float) -> List[Dict[str, Any]]:
    """
    Keep listings within ``radius_km`` of a point, nearest first.

    Listings without coordinates are dropped. Each kept listing gets a
    ``distanceKm`` field rounded to two decimals.
    """
    results = []
    for listing in listings:
        location = listing.get("location") or {}
        if location.get("lat") is None or location.get("lng") is None:
            continue

        distance = haversine_km(lat, lng, location["lat"], location["lng"])
        if distance <= radius_km:
            results.append({**listing, "distanceKm": round(distance, 2)})

    results.sort(key=lambda item: item["distanceKm"])
    return results


def order_total(unit_price: float, quantity: int) -> float:
    """Total price of an order, rounded to cents."""
    return round(unit_price * quantity, 2)


def validate_order_transition(order: Dict[str, Any], new_status: str, user_id: str) -> TransitionResult:
    """
    Validate an order status change by one of its parties.

    The seller may confirm, ship or cancel. The buyer may mark paid, mark
    delivered or cancel.

    Args:
        order: Stored order document
        new_status: Requested status
        user_id: Caller id

    Returns:
        TransitionResult describing whether the change may proceed
    """
    current = order.get("status")
    if new_status not in ORDER_TRANSITIONS.get(current, []):
        return TransitionResult(
            allowed=False,
            reason=f"Invalid status transition from {current} to {new_status}"
        )

    if user_id == order.get("sellerId") and new_status in SELLER_ACTIONS:
        return TransitionResult(allowed=True)
    if user_id == order.get("buyerId") and new_status in BUYER_ACTIONS:
        return TransitionResult(allowed=True)

    return TransitionResult(
        allowed=False,
        reason=f"You cannot move this order to {new_status}",
        wrong_party=True
    )


def allowed_transitions(order: Dict[str, Any], user_id: str) -> List[str]:
    """Statuses the caller may move the order to next."""
    return [
        status for status in ORDER_TRANSITIONS.get(order.get("status"), [])
        if validate_order_transition(order, status, user_id).allowed
    ]


def counterparty_id(order: Dict[str, Any], user_id: str) -> str:
    """The other party of an order."""
    return order["buyerId"] if user_id == order.get("sellerId") else order["sellerId"]
