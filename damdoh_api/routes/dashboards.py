# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Per-role dashboard endpoints.

Each dashboard is one aggregate JSON object computed from stored documents
and cached per user in Redis for DASHBOARD_CACHE_TTL seconds.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from datetime import datetime
from typing import Any, Callable, Dict

from ..domain.authorization import DASHBOARD_READ
from ..domain.dashboards import (
    PACKAGING_CATEGORY, order_value_summary, farmer_alerts,
    warehouse_inventory, packaging_inventory, trust_score
)
from ..domain.finance import SUMMARY_WINDOW, summarize_transactions, portfolio_totals
from ..domain.marketplace import OPEN_ORDER_STATUSES
from ..middleware.auth import require_jwt, require_permission
from ..models.entities import UserContext
from ..models.enums import (
    ApplicationStatus, ClaimStatus, KnfBatchStatus, ListingStatus, OrderStatus,
    PolicyStatus, StakeholderRole
)
from ..utils.documents import to_json_ready, present_all

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

dashboards_tag = Tag(name="Dashboards", description="Aggregated dashboards per stakeholder role")
dashboards_bp = APIBlueprint(
    'dashboards',
    __name__,
    url_prefix='/api/dashboards',
    abp_tags=[dashboards_tag]
)

PROFILES = "profiles"
FARMS = "farms"
CROPS = "crops"
KNF_BATCHES = "knf_batches"
LISTINGS = "marketplace_listings"
ORDERS = "marketplace_orders"
POSTS = "forum_posts"
REPLIES = "forum_replies"
TRANSACTIONS = "financial_transactions"
APPLICATIONS = "financial_applications"
PRODUCTS = "financial_products"
POLICIES = "insurance_policies"
CLAIMS = "insurance_claims"

RECENT_ITEMS = 5


# Dashboard computations

def _financial_summary(mongo, user_id: str) -> Dict[str, Any]:
    transactions = mongo.find_many(
        TRANSACTIONS, {"userId": user_id}, sort=[("timestamp", -1)], limit=SUMMARY_WINDOW
    )
    return summarize_transactions(present_all(transactions))


def farmer_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    recent_crops = mongo.find_many(CROPS, {"ownerId": user_id}, sort=[("createdAt", -1)], limit=RECENT_ITEMS)
    knf_batches = mongo.find_many(
        KNF_BATCHES,
        {"userId": user_id, "status": {"$in": [KnfBatchStatus.FERMENTING.value, KnfBatchStatus.READY.value]}},
        sort=[("nextStepDate", 1)],
        limit=RECENT_ITEMS
    )
    pending_orders = mongo.find_many(
        ORDERS, {"sellerId": user_id, "status": OrderStatus.PENDING.value}, sort=[("createdAt", -1)]
    )

    return {
        "farmCount": mongo.count(FARMS, {"ownerId": user_id}),
        "cropCount": mongo.count(CROPS, {"ownerId": user_id}),
        "recentCrops": [
            {"id": c["id"], "cropType": c.get("cropType"), "plantingDate": c.get("plantingDate"),
             "farmId": c.get("farmId")}
            for c in recent_crops
        ],
        "knfBatches": [
            {"id": b["id"], "typeName": b.get("typeName"), "status": b.get("status"),
             "nextStep": b.get("nextStep"), "nextStepDate": b.get("nextStepDate")}
            for b in knf_batches
        ],
        "financialSummary": _financial_summary(mongo, user_id),
        "alerts": farmer_alerts(knf_batches, pending_orders),
    }


def buyer_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    listings = mongo.find_many(
        LISTINGS, {"status": ListingStatus.ACTIVE.value, "sellerId": {"$ne": user_id}},
        sort=[("createdAt", -1)], limit=50
    )
    sellers = mongo.find_by_ids(PROFILES, [l.get("sellerId") for l in listings])

    recommendations = []
    seen = set()
    for listing in listings:
        seller = sellers.get(listing.get("sellerId"))
        if seller is None or seller["id"] in seen or seller.get("primaryRole") != StakeholderRole.FARMER.value:
            continue
        seen.add(seller["id"])
        recommendations.append({
            "id": seller["id"],
            "name": seller.get("displayName"),
            "location": seller.get("location"),
            "product": listing.get("name"),
            "listingId": listing["id"],
            "vtiVerified": bool(listing.get("relatedTraceabilityId")),
        })
        if len(recommendations) == 3:
            break

    active_orders = mongo.find_many(ORDERS, {"buyerId": user_id, "status": {"$in": OPEN_ORDER_STATUSES}})
    recent_orders = mongo.find_many(ORDERS, {"buyerId": user_id}, sort=[("createdAt", -1)], limit=RECENT_ITEMS)

    return {
        "sourcingRecommendations": recommendations,
        "activeOrders": order_value_summary(active_orders),
        "recentOrders": [
            {"id": o["id"], "listingName": o.get("listingName"), "status": o.get("status"),
             "totalPrice": o.get("totalPrice"), "createdAt": o.get("createdAt")}
            for o in recent_orders
        ],
    }


def financial_institution_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    pending = mongo.find_many(
        APPLICATIONS,
        {"fiId": user_id, "status": {"$in": [
            ApplicationStatus.PENDING.value, ApplicationStatus.MORE_INFO_REQUIRED.value
        ]}},
        sort=[("submittedAt", -1)],
        limit=10
    )
    applicants = mongo.find_by_ids(PROFILES, [a.get("applicantId") for a in pending])

    return {
        "pendingApplications": [
            {
                "id": a["id"],
                "applicantId": a.get("applicantId"),
                "applicantName": (applicants.get(a.get("applicantId")) or {}).get("displayName")
                or a.get("applicantName") or "Unknown applicant",
                "type": a.get("type"),
                "amount": a.get("amount"),
                "currency": a.get("currency"),
                "status": a.get("status"),
                "submittedAt": a.get("submittedAt"),
            }
            for a in pending
        ],
        "portfolio": portfolio_totals(mongo.find_many(APPLICATIONS, {"fiId": user_id})),
        "productsCount": mongo.count(PRODUCTS, {"fiId": user_id}),
    }


def input_supplier_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    active_orders = mongo.find_many(ORDERS, {
        "sellerId": user_id,
        "status": {"$in": [OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value]},
    })
    return {
        "activeOrders": order_value_summary(active_orders),
        "listingsCount": mongo.count(LISTINGS, {"sellerId": user_id}),
    }


def logistics_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    """
    Shared job board of shipments across the platform.

    Orders carry no carrier, so every logistics user sees the same SHIPPED
    and CONFIRMED orders. Order writes do not invalidate these entries; the
    board refreshes when the cache TTL expires.
    """
    shipped = mongo.find_many(
        ORDERS, {"status": OrderStatus.SHIPPED.value}, sort=[("updatedAt", -1)], limit=RECENT_ITEMS
    )
    confirmed = mongo.find_many(
        ORDERS, {"status": OrderStatus.CONFIRMED.value}, sort=[("updatedAt", -1)], limit=RECENT_ITEMS
    )
    listings = mongo.find_by_ids(LISTINGS, [o.get("listingId") for o in shipped])
    sellers = mongo.find_by_ids(PROFILES, [o.get("sellerId") for o in confirmed])

    def vti_link(order):
        vti_id = (listings.get(order.get("listingId")) or {}).get("relatedTraceabilityId")
        return f"/api/traceability/vtis/{vti_id}" if vti_id else None

    return {
        "activeShipments": [
            {"id": o["id"], "listingName": o.get("listingName"), "status": o.get("status"),
             "vtiLink": vti_link(o)}
            for o in shipped
        ],
        "incomingJobs": [
            {"id": o["id"], "listingName": o.get("listingName"),
             "from": (sellers.get(o.get("sellerId")) or {}).get("location"),
             "to": o.get("buyerLocation")}
            for o in confirmed
        ],
    }


def processing_unit_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    orders = mongo.find_many(ORDERS, {"buyerId": user_id}, sort=[("createdAt", -1)], limit=RECENT_ITEMS)
    suppliers = mongo.find_by_ids(PROFILES, [o.get("sellerId") for o in orders])
    packaging = mongo.find_many(LISTINGS, {"sellerId": user_id, "category": PACKAGING_CATEGORY})

    return {
        "packagingOrders": [
            {"id": o["id"], "listingName": o.get("listingName"), "quantity": o.get("quantity"),
             "status": o.get("status"),
             "supplierName": (suppliers.get(o.get("sellerId")) or {}).get("displayName") or "Unknown supplier"}
            for o in orders
        ],
        "packagingInventory": packaging_inventory(packaging),
    }


def warehouse_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    listings = mongo.find_many(LISTINGS, {"sellerId": user_id})
    return {"inventoryLevels": warehouse_inventory(listings)}


def insurance_provider_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    payouts = mongo.aggregate(CLAIMS, [
        {"$match": {"insurerId": user_id, "status": ClaimStatus.APPROVED.value}},
        {"$group": {"_id": None, "total": {"$sum": "$payoutAmount"}}},
    ])
    return {
        "policiesUnderwritten": mongo.count(POLICIES, {"insurerId": user_id}),
        "activePolicies": mongo.count(POLICIES, {"insurerId": user_id, "status": PolicyStatus.ACTIVE.value}),
        "pendingClaims": mongo.count(CLAIMS, {"insurerId": user_id, "status": ClaimStatus.PENDING.value}),
        "totalPayouts": round(float(payouts[0]["total"]), 2) if payouts else 0.0,
    }


def engagement_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    return {
        "postCount": mongo.count(POSTS, {"authorRef": user_id}),
        "replyCount": mongo.count(REPLIES, {"authorRef": user_id}),
        "listingCount": mongo.count(LISTINGS, {"sellerId": user_id}),
        "ordersReceived": mongo.count(ORDERS, {"sellerId": user_id}),
    }


def trust_score_dashboard(mongo, user_id: str) -> Dict[str, Any]:
    party = {"$or": [{"buyerId": user_id}, {"sellerId": user_id}]}
    summary = _financial_summary(mongo, user_id)
    policies = mongo.find_many(POLICIES, {"policyholderId": user_id})

    return trust_score(
        completed_orders=mongo.count(ORDERS, {**party, "status": OrderStatus.DELIVERED.value}),
        total_orders=mongo.count(ORDERS, party),
        net_flow=summary["netFlow"],
        total_income=summary["totalIncome"],
        farm_count=mongo.count(FARMS, {"ownerId": user_id}),
        asset_count=sum(len(p.get("insuredAssets") or []) for p in policies),
        approved_applications=mongo.count(
            APPLICATIONS, {"applicantId": user_id, "status": ApplicationStatus.APPROVED.value}
        ),
    )


DASHBOARDS: Dict[str, Callable[[Any, str], Dict[str, Any]]] = {
    "farmer": farmer_dashboard,
    "buyer": buyer_dashboard,
    "financial-institution": financial_institution_dashboard,
    "input-supplier": input_supplier_dashboard,
    "logistics": logistics_dashboard,
    "processing-unit": processing_unit_dashboard,
    "warehouse": warehouse_dashboard,
    "insurance-provider": insurance_provider_dashboard,
    "engagement": engagement_dashboard,
    "trust-score": trust_score_dashboard,
}

ROLE_DASHBOARDS = {
    StakeholderRole.FARMER.value: "farmer",
    StakeholderRole.COOPERATIVE.value: "farmer",
    StakeholderRole.BUYER.value: "buyer",
    StakeholderRole.FINANCIAL_INSTITUTION.value: "financial-institution",
    StakeholderRole.INPUT_SUPPLIER.value: "input-supplier",
    StakeholderRole.EQUIPMENT_SUPPLIER.value: "input-supplier",
    StakeholderRole.LOGISTICS_PARTNER.value: "logistics",
    StakeholderRole.OPERATIONS_TEAM.value: "logistics",
    StakeholderRole.PROCESSING_UNIT.value: "processing-unit",
    StakeholderRole.WAREHOUSE.value: "warehouse",
    StakeholderRole.INSURANCE_PROVIDER.value: "insurance-provider",
}


def dashboard_for_role(role: str) -> str:
    """Dashboard shown on /me; roles without their own get the engagement dashboard."""
    return ROLE_DASHBOARDS.get(role, "engagement")


def _render(name: str, user_context: UserContext):
    with tracer.start_as_current_span(
        f"dashboards.{name}", attributes={"user.id": user_context.user_id, "dashboard.name": name}
    ) as span:
        redis_service = current_app.redis_service

        data = redis_service.get_cached_dashboard(user_context.user_id, name)
        span.set_attribute("dashboard.cache_hit", data is not None)

        if data is None:
            data = to_json_ready(DASHBOARDS[name](current_app.mongodb_service, user_context.user_id))
            data["dashboard"] = name
            data["generatedAt"] = datetime.utcnow().isoformat() + "Z"
            redis_service.cache_dashboard(
                user_context.user_id, name, data, current_app.config.get('DASHBOARD_CACHE_TTL', 300)
            )
            logger.debug("Dashboard computed", extra={"user_id": user_context.user_id, "dashboard": name})

        span.set_status(Status(StatusCode.OK))
        return jsonify(current_app.hal_formatter.format_resource(data, f"/api/dashboards/{name}")), 200


@dashboards_bp.get('/me')
@require_jwt
@require_permission(DASHBOARD_READ)
def my_dashboard(user_context: UserContext):
    """The dashboard matching the caller's stakeholder role."""
    return _render(dashboard_for_role(user_context.role), user_context)


@dashboards_bp.get('/farmer')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_farmer_dashboard(user_context: UserContext):
    return _render("farmer", user_context)


@dashboards_bp.get('/buyer')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_buyer_dashboard(user_context: UserContext):
    return _render("buyer", user_context)


@dashboards_bp.get('/financial-institution')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_financial_institution_dashboard(user_context: UserContext):
    return _render("financial-institution", user_context)


@dashboards_bp.get('/input-supplier')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_input_supplier_dashboard(user_context: UserContext):
    return _render("input-supplier", user_context)


@dashboards_bp.get('/logistics')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_logistics_dashboard(user_context: UserContext):
    return _render("logistics", user_context)


@dashboards_bp.get('/processing-unit')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_processing_unit_dashboard(user_context: UserContext):
    return _render("processing-unit", user_context)


@dashboards_bp.get('/warehouse')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_warehouse_dashboard(user_context: UserContext):
    return _render("warehouse", user_context)


@dashboards_bp.get('/insurance-provider')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_insurance_provider_dashboard(user_context: UserContext):
    return _render("insurance-provider", user_context)


@dashboards_bp.get('/engagement')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_engagement_dashboard(user_context: UserContext):
    return _render("engagement", user_context)


@dashboards_bp.get('/trust-score')
@require_jwt
@require_permission(DASHBOARD_READ)
def get_trust_score(user_context: UserContext):
    """Credit-style trust score built from the five Cs."""
    return _render("trust-score", user_context)
