# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Marketplace endpoints: listings, orders and digital shopfronts.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from datetime import datetime
from typing import Dict, Any
from pymongo.errors import PyMongoError

from ..domain.authorization import MARKETPLACE_ORDER, MARKETPLACE_READ, MARKETPLACE_SELL, check_participant
from ..domain.marketplace import (
    build_listing_filters, filter_by_radius, order_total,
    validate_order_transition, allowed_transitions, counterparty_id
)
from ..middleware.auth import require_jwt, require_permission
from ..middleware.error_handler import (
    AuthorizationException, BusinessRuleException, ConflictException
)
from ..middleware.validation import validated_body, validated_query
from ..models.entities import UserContext, MarketplaceListing, MarketplaceOrder, Shop, LinkedEntity
from ..models.enums import ListingStatus, OrderStatus, NotificationType
from ..models.requests import (
    CreateListingRequest, ListingSearchParams, CreateOrderRequest, UpdateOrderStatusRequest,
    CreateShopRequest, OrderListParams, ListingPath, OrderPath, ShopPath
)
from ..services.mongodb import DuplicateDocumentError
from ..services.notifications import create_notification
from ..utils.documents import present, get_or_404

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

marketplace_tag = Tag(name="Marketplace", description="Listings, orders and shopfronts")
marketplace_bp = APIBlueprint(
    'marketplace',
    __name__,
    url_prefix='/api/marketplace',
    abp_tags=[marketplace_tag]
)

LISTINGS = "marketplace_listings"
ORDERS = "marketplace_orders"
SHOPS = "shops"


def _format_order(order: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    return current_app.hal_formatter.format_order(order, allowed_transitions(order, user_id))


def _require_order_party(user_context: UserContext, order: Dict[str, Any]) -> None:
    result = check_participant(user_context, [order.get("buyerId"), order.get("sellerId")], "order")
    if not result.allowed:
        raise AuthorizationException(result.reason)


# Listings

@marketplace_bp.post('/listings')
@require_jwt
@require_permission(MARKETPLACE_SELL)
@validated_body(CreateListingRequest)
def create_listing(user_context: UserContext, payload: CreateListingRequest):
    """
    List a product or service.

    The whole quantity starts available and the listing starts ACTIVE.
    """
    with tracer.start_as_current_span(
        "marketplace.create_listing",
        attributes={"user.id": user_context.user_id, "listing.category": payload.category}
    ) as span:
        listing = MarketplaceListing(
            seller_id=user_context.user_id,
            available_quantity=payload.quantity,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **payload.model_dump(exclude_none=True)
        )
        current_app.mongodb_service.create(LISTINGS, listing.to_document(), user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_attribute("listing.id", listing.id)
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Listing created",
            extra={"listing_id": listing.id, "seller_id": user_context.user_id, "category": listing.category}
        )

        return jsonify(current_app.hal_formatter.format_listing(listing.to_api(), user_context.user_id)), 201


@marketplace_bp.get('/listings')
@require_jwt
@require_permission(MARKETPLACE_READ)
@validated_query(ListingSearchParams)
def search_listings(user_context: UserContext, params: ListingSearchParams):
    """
    Search listings.

    With lat, lng and radiusKm the matching listings are narrowed to the
    radius, ordered by distance and paged in memory.
    """
    with tracer.start_as_current_span("marketplace.search_listings") as span:
        mongodb_service = current_app.mongodb_service
        filters = build_listing_filters(params)
        query_params = params.model_dump(by_alias=True, exclude_none=True, exclude={"page", "page_size"})

        if params.radius_km is not None:
            candidates = mongodb_service.find_many(LISTINGS, filters, sort=[("createdAt", -1)])
            nearby = filter_by_radius(candidates, params.lat, params.lng, params.radius_km)
            start = (params.page - 1) * params.page_size
            listings = nearby[start:start + params.page_size]
            total = len(nearby)
            span.set_attribute("search.radius_km", params.radius_km)
        else:
            result = mongodb_service.paginate(LISTINGS, params.page, params.page_size, filters)
            listings, total = result.items, result.total

        span.set_attribute("search.total", total)

        items = [current_app.hal_formatter.format_listing(present(listing), user_context.user_id)
                 for listing in listings]
        return jsonify(current_app.hal_formatter.format_collection(
            items, total, params.page, params.page_size, "/api/marketplace/listings", query_params
        )), 200


@marketplace_bp.get('/listings/<listing_id>')
@require_jwt
@require_permission(MARKETPLACE_READ)
def get_listing(user_context: UserContext, path: ListingPath):
    with tracer.start_as_current_span("marketplace.get_listing", attributes={"listing.id": path.listing_id}):
        listing = get_or_404(current_app.mongodb_service, LISTINGS, path.listing_id, "Listing")
        return jsonify(current_app.hal_formatter.format_listing(present(listing), user_context.user_id)), 200


# Orders

@marketplace_bp.post('/orders')
@require_jwt
@require_permission(MARKETPLACE_ORDER)
@validated_body(CreateOrderRequest)
def create_order(user_context: UserContext, payload: CreateOrderRequest):
    """
    Order from a listing.

    Stock is reserved with a conditional decrement so two buyers can never
    take the same units. A listing with no stock left becomes SOLD.
    """
    with tracer.start_as_current_span(
        "marketplace.create_order",
        attributes={"listing.id": payload.listing_id, "order.quantity": payload.quantity}
    ) as span:
        mongodb_service = current_app.mongodb_service
        listing = get_or_404(mongodb_service, LISTINGS, payload.listing_id, "Listing")

        if listing.get("status") != ListingStatus.ACTIVE.value:
            span.set_status(Status(StatusCode.ERROR, "Listing not active"))
            raise BusinessRuleException("This listing is not available for ordering")
        if listing.get("sellerId") == user_context.user_id:
            span.set_status(Status(StatusCode.ERROR, "Own listing"))
            raise BusinessRuleException("You cannot order your own listing")
        if payload.quantity > listing.get("availableQuantity", 0):
            span.set_status(Status(StatusCode.ERROR, "Insufficient quantity"))
            raise BusinessRuleException(
                f"Only {listing.get('availableQuantity', 0)} units are available"
            )

        reserved = mongodb_service.decrement_if_available(
            LISTINGS, payload.listing_id, "availableQuantity", payload.quantity,
            user_context.user_id, filters={"status": ListingStatus.ACTIVE.value}
        )
        if reserved is None:
            span.set_status(Status(StatusCode.ERROR, "Stock reservation failed"))
            raise BusinessRuleException("The requested quantity is no longer available")

        sold_out = reserved.get("availableQuantity", 0) == 0
        if sold_out:
            mongodb_service.update(
                LISTINGS, payload.listing_id, {"status": ListingStatus.SOLD.value}, user_context.user_id
            )

        now = datetime.utcnow()
        order = MarketplaceOrder(
            listing_id=listing["id"],
            listing_name=listing["name"],
            buyer_id=user_context.user_id,
            seller_id=listing["sellerId"],
            quantity=payload.quantity,
            unit_price=listing["price"],
            total_price=order_total(listing["price"], payload.quantity),
            currency=listing.get("currency", "USD"),
            buyer_notes=payload.buyer_notes,
            buyer_location=payload.buyer_location,
            status_history=[{
                "status": OrderStatus.PENDING.value,
                "changedBy": user_context.user_id,
                "changedAt": now
            }],
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        try:
            mongodb_service.create(ORDERS, order.to_document(), user_context.user_id)
        except (PyMongoError, DuplicateDocumentError):
            # Give the reserved units back
            mongodb_service.increment(
                LISTINGS, payload.listing_id, {"availableQuantity": payload.quantity},
                {"status": ListingStatus.ACTIVE.value} if sold_out else None
            )
            span.set_status(Status(StatusCode.ERROR, "Order insert failed"))
            logger.error(
                "Order insert failed, stock released",
                extra={"listing_id": payload.listing_id, "quantity": payload.quantity}
            )
            raise

        create_notification(
            mongodb_service,
            current_app.amqp_service,
            order.seller_id,
            NotificationType.NEW_ORDER.value,
            "New order received",
            f"{user_context.display_name or 'A buyer'} ordered {order.quantity} x {order.listing_name}",
            actor_id=user_context.user_id,
            linked_entity=LinkedEntity(collection=ORDERS, document_id=order.id),
            data={"orderId": order.id, "listingId": order.listing_id}
        )
        current_app.redis_service.invalidate_dashboards([order.buyer_id, order.seller_id])

        span.set_attributes({"order.id": order.id, "order.total": order.total_price})
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Order placed",
            extra={"order_id": order.id, "listing_id": order.listing_id, "buyer_id": order.buyer_id}
        )

        return jsonify(_format_order(order.to_api(), user_context.user_id)), 201


@marketplace_bp.get('/orders')
@require_jwt
@require_permission(MARKETPLACE_READ)
@validated_query(OrderListParams)
def list_orders(user_context: UserContext, params: OrderListParams):
    """List the caller's orders as buyer (default) or as seller, newest first."""
    with tracer.start_as_current_span("marketplace.list_orders", attributes={"orders.role": params.role}):
        party_field = "sellerId" if params.role == "seller" else "buyerId"
        result = current_app.mongodb_service.paginate(
            ORDERS, params.page, params.page_size, {party_field: user_context.user_id}
        )

        items = [_format_order(present(order), user_context.user_id) for order in result.items]
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/marketplace/orders",
            {"role": params.role}
        )), 200


@marketplace_bp.get('/orders/<order_id>')
@require_jwt
@require_permission(MARKETPLACE_READ)
def get_order(user_context: UserContext, path: OrderPath):
    with tracer.start_as_current_span("marketplace.get_order", attributes={"order.id": path.order_id}):
        order = get_or_404(current_app.mongodb_service, ORDERS, path.order_id, "Order")
        _require_order_party(user_context, order)

        return jsonify(_format_order(present(order), user_context.user_id)), 200


@marketplace_bp.patch('/orders/<order_id>/status')
@require_jwt
@validated_body(UpdateOrderStatusRequest)
def update_order_status(user_context: UserContext, path: OrderPath, payload: UpdateOrderStatusRequest):
    """
    Move an order through its lifecycle.

    Cancelling returns the ordered quantity to the listing.
    """
    with tracer.start_as_current_span(
        "marketplace.update_order_status",
        attributes={"order.id": path.order_id, "order.new_status": payload.status}
    ) as span:
        mongodb_service = current_app.mongodb_service
        order = get_or_404(mongodb_service, ORDERS, path.order_id, "Order")
        _require_order_party(user_context, order)

        transition = validate_order_transition(order, payload.status, user_context.user_id)
        if not transition.allowed:
            span.set_status(Status(StatusCode.ERROR, transition.reason))
            if transition.wrong_party:
                raise AuthorizationException(transition.reason)
            raise BusinessRuleException(transition.reason)

        history = list(order.get("statusHistory") or [])
        history.append({
            "status": payload.status,
            "changedBy": user_context.user_id,
            "changedAt": datetime.utcnow()
        })

        # Conditional on the status read above
        updated = mongodb_service.update(
            ORDERS, path.order_id,
            {"status": payload.status, "statusHistory": history},
            user_context.user_id,
            filters={"status": order["status"]}
        )
        if not updated:
            span.set_status(Status(StatusCode.ERROR, "Concurrent status change"))
            raise ConflictException("The order status changed while processing this request")

        if payload.status == OrderStatus.CANCELLED.value:
            listing = mongodb_service.find_one(LISTINGS, order["listingId"])
            if listing is not None:
                reopen = {"status": ListingStatus.ACTIVE.value} \
                    if listing.get("status") == ListingStatus.SOLD.value else None
                mongodb_service.increment(
                    LISTINGS, order["listingId"], {"availableQuantity": order["quantity"]}, reopen
                )

        other_party = counterparty_id(order, user_context.user_id)
        create_notification(
            mongodb_service,
            current_app.amqp_service,
            other_party,
            NotificationType.ORDER_STATUS.value,
            "Order status updated",
            f"Your order for {order.get('listingName', 'a listing')} is now {payload.status}",
            actor_id=user_context.user_id,
            linked_entity=LinkedEntity(collection=ORDERS, document_id=path.order_id),
            data={"orderId": path.order_id, "status": payload.status}
        )
        current_app.redis_service.invalidate_dashboards([order["buyerId"], order["sellerId"]])

        order = mongodb_service.find_one(ORDERS, path.order_id)
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Order status changed",
            extra={"order_id": path.order_id, "status": payload.status, "user_id": user_context.user_id}
        )

        return jsonify(_format_order(present(order), user_context.user_id)), 200


# Shops

@marketplace_bp.post('/shops')
@require_jwt
@require_permission(MARKETPLACE_SELL)
@validated_body(CreateShopRequest)
def create_shop(user_context: UserContext, payload: CreateShopRequest):
    """Open a digital shopfront for the caller."""
    with tracer.start_as_current_span("marketplace.create_shop") as span:
        shop = Shop(
            owner_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **payload.model_dump(exclude_none=True)
        )
        current_app.mongodb_service.create(SHOPS, shop.to_document(), user_context.user_id)

        span.set_attribute("shop.id", shop.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Shop created", extra={"shop_id": shop.id, "owner_id": user_context.user_id})

        return jsonify({
            "success": True,
            "shopId": shop.id,
            "message": "Digital Shopfront created successfully."
        }), 201


@marketplace_bp.get('/shops/<shop_id>')
@require_jwt
@require_permission(MARKETPLACE_READ)
def get_shop(user_context: UserContext, path: ShopPath):
    """Get a shopfront together with its owner's active listings."""
    with tracer.start_as_current_span("marketplace.get_shop", attributes={"shop.id": path.shop_id}):
        mongodb_service = current_app.mongodb_service
        shop = get_or_404(mongodb_service, SHOPS, path.shop_id, "Shop")

        listings = mongodb_service.find_many(
            LISTINGS,
            {"sellerId": shop["ownerId"], "status": ListingStatus.ACTIVE.value},
            sort=[("createdAt", -1)]
        )

        data = present(shop)
        data["listings"] = [
            current_app.hal_formatter.format_listing(present(listing), user_context.user_id)
            for listing in listings
        ]
        builder = current_app.hal_formatter.builder.link_builder
        return jsonify(current_app.hal_formatter.builder.build_resource_response(data, links={
            'self': builder.build_self_link(f"/api/marketplace/shops/{path.shop_id}"),
            'owner': builder.build_link(f"/api/profiles/{shop['ownerId']}", title="Shop owner"),
        })), 200
