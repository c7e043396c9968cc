# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for marketplace endpoints: listings, orders and shops.
"""

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect, OperationFailure

from damdoh_api.models.enums import StakeholderRole
from damdoh_api.services.mongodb import PaginationResult

from conftest import created_collections, created_documents

LISTINGS = "marketplace_listings"
ORDERS = "marketplace_orders"


@pytest.fixture
def listing(store_document, farmer_id):
    return store_document(LISTINGS, {
        "sellerId": farmer_id,
        "name": "White maize",
        "description": "Sun dried, 90kg bags",
        "price": 32.5,
        "currency": "USD",
        "quantity": 10,
        "availableQuantity": 10,
        "category": "grains",
        "status": "ACTIVE",
    })


@pytest.fixture
def order(store_document, farmer_id, buyer_id, listing):
    return store_document(ORDERS, {
        "listingId": listing["id"],
        "listingName": listing["name"],
        "buyerId": buyer_id,
        "sellerId": farmer_id,
        "quantity": 4,
        "unitPrice": 32.5,
        "totalPrice": 130.0,
        "status": "PENDING",
        "statusHistory": [{"status": "PENDING", "changedBy": buyer_id}],
    })


class TestListings:
    """Test listing creation and search."""

    def test_create_listing(self, client, token_for, mongodb_service, farmer_id):
        response = client.post('/api/marketplace/listings', json={
            "name": "White maize",
            "description": "Sun dried, 90kg bags",
            "price": 32.5,
            "quantity": 10,
            "category": "grains",
            "location": {"lat": -0.3031, "lng": 36.08}
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        data = response.get_json()
        assert data["availableQuantity"] == 10
        assert data["status"] == "ACTIVE"
        assert data["sellerId"] == farmer_id
        # Sellers are not offered their own listing
        assert "order" not in data["_links"]

        document = created_documents(mongodb_service, LISTINGS)[0]
        assert document["availableQuantity"] == 10

    def test_create_listing_invalid_price(self, client, token_for):
        response = client.post('/api/marketplace/listings', json={
            "name": "White maize",
            "description": "Sun dried",
            "price": 0,
            "quantity": 10,
            "category": "grains"
        }, headers=token_for())

        assert response.status_code == 400
        assert response.get_json()["errors"][0]["field"] == "price"

    def test_search_uses_filters(self, client, token_for, mongodb_service):
        response = client.get(
            '/api/marketplace/listings',
            query_string={"q": "maize", "category": "grains", "minPrice": 10, "maxPrice": 50},
            headers=token_for()
        )

        assert response.status_code == 200
        filters = mongodb_service.paginate.call_args.args[3]
        assert filters["status"] == "ACTIVE"
        assert filters["category"] == "grains"
        assert filters["price"] == {"$gte": 10, "$lte": 50}
        assert filters["$or"][0]["name"]["$options"] == "i"

    def test_search_by_radius(self, client, token_for, mongodb_service):
        """Test that radius search keeps nearby listings ordered by distance."""
        near = {"id": str(ObjectId()), "sellerId": "s1", "status": "ACTIVE", "availableQuantity": 1,
                "location": {"lat": -1.2921, "lng": 36.8219}}
        far = {"id": str(ObjectId()), "sellerId": "s2", "status": "ACTIVE", "availableQuantity": 1,
               "location": {"lat": 0.5143, "lng": 35.2698}}
        unplaced = {"id": str(ObjectId()), "sellerId": "s3", "status": "ACTIVE", "availableQuantity": 1}
        mongodb_service.find_many.return_value = [far, unplaced, near]

        response = client.get(
            '/api/marketplace/listings',
            query_string={"lat": -1.28, "lng": 36.82, "radiusKm": 50},
            headers=token_for()
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["total"] == 1
        item = data["_embedded"]["items"][0]
        assert item["id"] == near["id"]
        assert item["distanceKm"] < 5
        assert not mongodb_service.paginate.called

    def test_get_listing_offers_order_link(self, client, token_for, listing, buyer_id):
        response = client.get(f"/api/marketplace/listings/{listing['id']}", headers=token_for(buyer_id))

        assert response.status_code == 200
        assert response.get_json()["_links"]["order"]["method"] == "POST"

    def test_get_missing_listing(self, client, token_for):
        assert client.get(f"/api/marketplace/listings/{ObjectId()}", headers=token_for()).status_code == 404


class TestCreateOrder:
    """Test ordering and stock reservation."""

    def test_create_order(self, client, token_for, mongodb_service, listing, farmer_id, buyer_id):
        mongodb_service.decrement_if_available.return_value = {**listing, "availableQuantity": 6}

        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"],
            "quantity": 4,
            "buyerNotes": "Deliver to Gilgil depot"
        }, headers=token_for(buyer_id, role=StakeholderRole.BUYER, name="Mama Mboga Ltd"))

        assert response.status_code == 201
        data = response.get_json()
        assert data["totalPrice"] == 130.0
        assert data["status"] == "PENDING"
        assert data["sellerId"] == farmer_id
        assert "cancel" in data["_links"]
        assert "confirm" not in data["_links"]

        args = mongodb_service.decrement_if_available.call_args
        assert args.args[:4] == (LISTINGS, listing["id"], "availableQuantity", 4)
        assert args.kwargs["filters"] == {"status": "ACTIVE"}
        # Stock remains, listing stays active
        assert not mongodb_service.update.called

        assert created_collections(mongodb_service) == [ORDERS, "notifications"]
        notification = created_documents(mongodb_service, "notifications")[0]
        assert notification["userId"] == farmer_id
        assert notification["type"] == "NEW_ORDER"
        assert "Mama Mboga Ltd" in notification["body"]

    def test_last_units_mark_listing_sold(self, client, token_for, mongodb_service, listing, buyer_id):
        mongodb_service.decrement_if_available.return_value = {**listing, "availableQuantity": 0}

        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"], "quantity": 10
        }, headers=token_for(buyer_id))

        assert response.status_code == 201
        collection, doc_id, updates = mongodb_service.update.call_args.args[:3]
        assert (collection, doc_id) == (LISTINGS, listing["id"])
        assert updates == {"status": "SOLD"}

    def test_order_more_than_available(self, client, token_for, mongodb_service, listing, buyer_id):
        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"], "quantity": 11
        }, headers=token_for(buyer_id))

        assert response.status_code == 422
        assert not mongodb_service.decrement_if_available.called

    def test_concurrent_reservation_lost(self, client, token_for, mongodb_service, listing, buyer_id):
        """Test that a lost race on the stock decrement creates no order."""
        mongodb_service.decrement_if_available.return_value = None

        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"], "quantity": 4
        }, headers=token_for(buyer_id))

        assert response.status_code == 422
        assert not mongodb_service.create.called

    def test_failed_insert_releases_stock(self, client, token_for, mongodb_service, listing, buyer_id):
        mongodb_service.decrement_if_available.return_value = {**listing, "availableQuantity": 6}
        mongodb_service.create.side_effect = OperationFailure("write concern timeout")

        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"], "quantity": 4
        }, headers=token_for(buyer_id))

        assert response.status_code == 500
        mongodb_service.increment.assert_called_once_with(
            LISTINGS, listing["id"], {"availableQuantity": 4}, None
        )

    def test_failed_insert_reopens_sold_out_listing(self, client, token_for, mongodb_service, listing, buyer_id):
        mongodb_service.decrement_if_available.return_value = {**listing, "availableQuantity": 0}
        mongodb_service.create.side_effect = AutoReconnect("primary stepped down")

        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"], "quantity": 10
        }, headers=token_for(buyer_id))

        assert response.status_code == 503
        mongodb_service.increment.assert_called_once_with(
            LISTINGS, listing["id"], {"availableQuantity": 10}, {"status": "ACTIVE"}
        )

    def test_order_own_listing(self, client, token_for, listing, farmer_id):
        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"], "quantity": 1
        }, headers=token_for(farmer_id))

        assert response.status_code == 422

    def test_order_sold_listing(self, client, token_for, listing, buyer_id):
        listing["status"] = "SOLD"

        response = client.post('/api/marketplace/orders', json={
            "listingId": listing["id"], "quantity": 1
        }, headers=token_for(buyer_id))

        assert response.status_code == 422


class TestOrderLifecycle:
    """Test order status transitions."""

    def test_seller_confirms(self, client, token_for, mongodb_service, order, farmer_id, buyer_id):
        response = client.patch(
            f"/api/marketplace/orders/{order['id']}/status", json={"status": "CONFIRMED"},
            headers=token_for(farmer_id)
        )

        assert response.status_code == 200
        call = mongodb_service.update.call_args
        assert call.args[2]["status"] == "CONFIRMED"
        assert call.args[2]["statusHistory"][-1]["changedBy"] == farmer_id
        assert call.kwargs["filters"] == {"status": "PENDING"}

        notification = created_documents(mongodb_service, "notifications")[0]
        assert notification["userId"] == buyer_id
        assert notification["type"] == "ORDER_STATUS"

    def test_buyer_cannot_confirm(self, client, token_for, mongodb_service, order, buyer_id):
        response = client.patch(
            f"/api/marketplace/orders/{order['id']}/status", json={"status": "CONFIRMED"},
            headers=token_for(buyer_id)
        )

        assert response.status_code == 403
        assert not mongodb_service.update.called

    def test_invalid_transition(self, client, token_for, order, buyer_id):
        response = client.patch(
            f"/api/marketplace/orders/{order['id']}/status", json={"status": "DELIVERED"},
            headers=token_for(buyer_id)
        )

        assert response.status_code == 422

    def test_outsider_cannot_change_status(self, client, token_for, order):
        response = client.patch(
            f"/api/marketplace/orders/{order['id']}/status", json={"status": "CANCELLED"},
            headers=token_for()
        )

        assert response.status_code == 403

    def test_concurrent_status_change(self, client, token_for, mongodb_service, order, farmer_id):
        mongodb_service.update.return_value = False

        response = client.patch(
            f"/api/marketplace/orders/{order['id']}/status", json={"status": "CONFIRMED"},
            headers=token_for(farmer_id)
        )

        assert response.status_code == 409
        assert not mongodb_service.create.called

    def test_cancel_restocks_sold_listing(self, client, token_for, mongodb_service, order, listing, buyer_id):
        """Test that cancelling returns stock and reopens a sold out listing."""
        listing["status"] = "SOLD"
        listing["availableQuantity"] = 0

        response = client.patch(
            f"/api/marketplace/orders/{order['id']}/status", json={"status": "CANCELLED"},
            headers=token_for(buyer_id)
        )

        assert response.status_code == 200
        mongodb_service.increment.assert_called_once_with(
            LISTINGS, listing["id"], {"availableQuantity": 4}, {"status": "ACTIVE"}
        )

    def test_cancel_keeps_inactive_listing_closed(self, client, token_for, mongodb_service, order, listing,
                                                  farmer_id):
        listing["status"] = "INACTIVE"

        client.patch(
            f"/api/marketplace/orders/{order['id']}/status", json={"status": "CANCELLED"},
            headers=token_for(farmer_id)
        )

        mongodb_service.increment.assert_called_once_with(
            LISTINGS, listing["id"], {"availableQuantity": 4}, None
        )


class TestOrderQueries:
    def test_list_orders_as_seller(self, client, token_for, mongodb_service, farmer_id):
        response = client.get('/api/marketplace/orders?role=seller', headers=token_for(farmer_id))

        assert response.status_code == 200
        assert mongodb_service.paginate.call_args.args[3] == {"sellerId": farmer_id}

    def test_list_orders_default_buyer(self, client, token_for, mongodb_service, buyer_id, order):
        mongodb_service.paginate.side_effect = None
        mongodb_service.paginate.return_value = PaginationResult([order], 1, 1, 20)

        response = client.get('/api/marketplace/orders', headers=token_for(buyer_id))

        data = response.get_json()
        assert mongodb_service.paginate.call_args.args[3] == {"buyerId": buyer_id}
        assert "mark-paid" not in data["_embedded"]["items"][0]["_links"]
        assert "cancel" in data["_embedded"]["items"][0]["_links"]

    def test_get_order_as_outsider(self, client, token_for, order):
        assert client.get(f"/api/marketplace/orders/{order['id']}", headers=token_for()).status_code == 403


class TestShops:
    def test_create_shop(self, client, token_for, mongodb_service, farmer_id):
        response = client.post('/api/marketplace/shops', json={
            "name": "Green Acres Produce",
            "description": "Fresh vegetables from Nakuru",
            "stakeholderType": StakeholderRole.FARMER.value
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        data = response.get_json()
        assert data["success"] is True
        assert created_documents(mongodb_service, "shops")[0]["ownerId"] == farmer_id

    def test_get_shop_with_listings(self, client, token_for, mongodb_service, store_document, listing, farmer_id):
        shop = store_document("shops", {
            "ownerId": farmer_id, "name": "Green Acres Produce", "description": "Fresh vegetables"
        })
        mongodb_service.find_many.return_value = [listing]

        response = client.get(f"/api/marketplace/shops/{shop['id']}", headers=token_for())

        assert response.status_code == 200
        data = response.get_json()
        assert data["listings"][0]["id"] == listing["id"]
        assert mongodb_service.find_many.call_args.args[1] == {"sellerId": farmer_id, "status": "ACTIVE"}
