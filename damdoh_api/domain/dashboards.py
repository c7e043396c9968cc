# SPDX-License-Identifier: Apache-2.0

"""
Dashboard domain logic.

Pure aggregation helpers used by the per-role dashboards. Every figure is
computed from stored documents.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..models.base import to_naive_utc
from ..models.enums import KnfBatchStatus

KNF_ALERT_DAYS = 2
WAREHOUSE_REORDER_LEVEL = 20
PACKAGING_REORDER_LEVEL = 100
PACKAGING_CATEGORY = "packaging-solutions"

TRUST_SCORE_MIN = 300
TRUST_SCORE_MAX = 850


def order_value_summary(orders: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Count and total value of a set of orders."""
    orders = list(orders)
    return {
        "count": len(orders),
        "value": round(sum(float(o.get("totalPrice") or 0) for o in orders), 2),
    }


def farmer_alerts(knf_batches: List[Dict[str, Any]], pending_orders: List[Dict[str, Any]],
                  now: Optional[datetime] = None, days: int = KNF_ALERT_DAYS) -> List[Dict[str, Any]]:
    """
    Alerts for a farmer: KNF batches whose next step is due soon and orders awaiting confirmation.
    """
    now = to_naive_utc(now) if now else datetime.utcnow()
    horizon = now + timedelta(days=days)
    alerts = []

    for batch in knf_batches:
        due = to_naive_utc(batch.get("nextStepDate"))
        if batch.get("status") in (KnfBatchStatus.FERMENTING.value, KnfBatchStatus.READY.value) \
                and due is not None and due <= horizon:
            alerts.append({
                "id": f"knf-{batch['id']}",
                "type": "knf",
                "message": f"{batch.get('typeName', 'KNF batch')}: {batch.get('nextStep') or 'next step'} is due",
                "dueDate": due.isoformat() + "Z",
                "link": "/farm-management/knf-inputs",
            })

    for order in pending_orders:
        alerts.append({
            "id": f"order-{order['id']}",
            "type": "order",
            "message": f"New order for {order.get('listingName', 'your listing')} awaits confirmation",
            "link": f"/api/marketplace/orders/{order['id']}",
        })

    return alerts


def items_below_reorder_level(listings: List[Dict[str, Any]], default_level: int) -> List[Dict[str, Any]]:
    """Listings whose available stock is below their reorder level."""
    low = []
    for listing in listings:
        level = listing.get("reorderLevel")
        level = default_level if level is None else level
        if (listing.get("availableQuantity") or 0) < level:
            low.append(listing)
    return low


def warehouse_inventory(listings: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "totalItems": sum(int(item.get("availableQuantity") or 0) for item in listings),
        "itemsNeedingAttention": len(items_below_reorder_level(listings, WAREHOUSE_REORDER_LEVEL)),
    }


def packaging_inventory(listings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "id": item["id"],
            "packagingType": item.get("name"),
            "unitsInStock": item.get("availableQuantity", 0),
            "reorderLevel": item.get("reorderLevel")
            if item.get("reorderLevel") is not None else PACKAGING_REORDER_LEVEL,
        }
        for item in listings
    ]


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def trust_score(*, completed_orders: int, total_orders: int, net_flow: float, total_income: float,
                farm_count: int, asset_count: int, approved_applications: int) -> Dict[str, Any]:
    """
    Credit-style trust score built from the five Cs.

    Each factor is scored 0-100; the total maps the factor average onto 300-850.
    A user without order history gets a neutral character score of 50.
    """
    character = 50.0 if total_orders == 0 else completed_orders / total_orders * 100
    capacity = _clamp(50 + net_flow / 200)
    capital = _clamp(total_income / 500)
    collateral = _clamp((farm_count + asset_count) * 20)
    conditions = _clamp(approved_applications * 25)

    breakdown = {
        "character": round(character, 1),
        "capacity": round(capacity, 1),
        "capital": round(capital, 1),
        "collateral": round(collateral, 1),
        "conditions": round(conditions, 1),
    }
    average = sum(breakdown.values()) / len(breakdown)
    score = TRUST_SCORE_MIN + round(average / 100 * (TRUST_SCORE_MAX - TRUST_SCORE_MIN))

    return {"score": int(score), "breakdown": breakdown}
