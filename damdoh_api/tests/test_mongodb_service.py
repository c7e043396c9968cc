# SPDX-License-Identifier: Apache-2.0

"""
Tests for the MongoDB service layer.

The pymongo database is replaced by a mock so queries and updates can be
inspected without a running server.
"""

import pytest
from datetime import datetime
from unittest.mock import MagicMock
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, ConnectionFailure

from damdoh_api.services.mongodb import MongoDBService, PaginationResult, DuplicateDocumentError


@pytest.fixture
def service():
    mongodb = MongoDBService("mongodb://localhost:27017/test", "damdoh_test")
    mongodb._database = MagicMock()
    return mongodb


@pytest.fixture
def collection(service):
    return service._database.__getitem__.return_value


class TestPaginationResult:
    def test_page_flags(self):
        result = PaginationResult([], 45, 2, 20)

        assert result.total_pages == 3
        assert result.has_next is True
        assert result.has_prev is True

    def test_empty(self):
        result = PaginationResult([], 0, 1, 20)

        assert result.total_pages == 0
        assert result.has_next is False
        assert result.has_prev is False


class TestCreate:
    def test_create_adds_audit_fields(self, service, collection):
        collection.insert_one.return_value.inserted_id = ObjectId()

        doc_id = service.create("farms", {"name": "Green Acres"}, "user-1")

        inserted = collection.insert_one.call_args.args[0]
        assert doc_id == str(collection.insert_one.return_value.inserted_id)
        assert inserted["createdBy"] == "user-1"
        assert inserted["updatedBy"] == "user-1"
        assert isinstance(inserted["createdAt"], datetime)
        assert inserted["deletedAt"] is None
        assert isinstance(inserted["_id"], ObjectId)

    def test_create_keeps_given_id(self, service, collection):
        collection.insert_one.return_value.inserted_id = "vti-uuid"

        doc_id = service.create("vti_registry", {"_id": "vti-uuid", "type": "farm_batch"}, "user-1")

        assert doc_id == "vti-uuid"
        assert collection.insert_one.call_args.args[0]["_id"] == "vti-uuid"

    def test_duplicate_key(self, service, collection):
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

        with pytest.raises(DuplicateDocumentError):
            service.create("forum_topics", {"nameLower": "soil health"}, "user-1")


class TestQueries:
    """Test read operations and soft-delete filtering."""

    def test_find_one_excludes_deleted(self, service, collection):
        oid = ObjectId()
        collection.find_one.return_value = {"_id": oid, "name": "Green Acres"}

        document = service.find_one("farms", str(oid))

        assert document == {"id": str(oid), "name": "Green Acres"}
        assert collection.find_one.call_args.args[0] == {"deletedAt": None, "_id": oid}

    def test_find_one_with_uuid(self, service, collection):
        collection.find_one.return_value = None

        assert service.find_one("vti_registry", "3f2b-not-an-object-id") is None
        assert collection.find_one.call_args.args[0]["_id"] == "3f2b-not-an-object-id"

    def test_find_one_including_deleted(self, service, collection):
        collection.find_one.return_value = None
        oid = ObjectId()

        service.find_one("farms", str(oid), include_deleted=True)

        assert collection.find_one.call_args.args[0] == {"_id": oid}

    def test_find_many_with_sort_and_limit(self, service, collection):
        cursor = collection.find.return_value
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.__iter__.return_value = iter([{"_id": ObjectId(), "status": "ACTIVE"}])

        documents = service.find_many(
            "marketplace_listings", {"status": "ACTIVE"}, sort=[("createdAt", DESCENDING)], limit=5
        )

        assert len(documents) == 1
        assert "id" in documents[0]
        cursor.sort.assert_called_once_with([("createdAt", DESCENDING)])
        cursor.limit.assert_called_once_with(5)

    def test_find_by_ids(self, service, collection):
        first, second = ObjectId(), ObjectId()
        collection.find.return_value = [{"_id": first, "displayName": "A"}, {"_id": second, "displayName": "B"}]

        result = service.find_by_ids("profiles", [str(first), str(second), str(first), None])

        query = collection.find.call_args.args[0]
        assert query["_id"]["$in"] == [first, second]
        assert result[str(second)]["displayName"] == "B"

    def test_find_by_ids_without_ids(self, service, collection):
        assert service.find_by_ids("profiles", [None]) == {}
        assert not collection.find.called

    def test_count(self, service, collection):
        collection.count_documents.return_value = 7

        assert service.count("notifications", {"userId": "u1"}) == 7
        assert collection.count_documents.call_args.args[0] == {"deletedAt": None, "userId": "u1"}

    def test_aggregate_skips_deleted(self, service, collection):
        collection.aggregate.return_value = iter([{"_id": "ACTIVE", "count": 3}])

        results = service.aggregate("marketplace_listings", [{"$group": {"_id": "$status"}}])

        assert results == [{"_id": "ACTIVE", "count": 3}]
        assert collection.aggregate.call_args.args[0][0] == {"$match": {"deletedAt": None}}


class TestUpdates:
    """Test write operations."""

    def test_conditional_update(self, service, collection):
        collection.update_one.return_value.matched_count = 0
        oid = ObjectId()

        updated = service.update(
            "marketplace_orders", str(oid), {"status": "CONFIRMED"}, "seller", filters={"status": "PENDING"}
        )

        assert updated is False
        query, operation = collection.update_one.call_args.args
        assert query == {"deletedAt": None, "_id": oid, "status": "PENDING"}
        assert operation["$set"]["status"] == "CONFIRMED"
        assert operation["$set"]["updatedBy"] == "seller"

    def test_upsert_reports_creation(self, service, collection):
        collection.update_one.return_value.upserted_id = "u1"

        created = service.upsert("notification_preferences", "u1", {"push": {"enabled": False}}, "u1")

        assert created is True
        _, operation = collection.update_one.call_args.args
        assert collection.update_one.call_args.kwargs["upsert"] is True
        assert operation["$set"]["push"] == {"enabled": False}
        assert "createdAt" in operation["$setOnInsert"]

    def test_update_many(self, service, collection):
        collection.update_many.return_value.modified_count = 3

        assert service.update_many("notifications", {"userId": "u1"}, {"status": "READ"}, "u1") == 3

    def test_increment(self, service, collection):
        collection.update_one.return_value.matched_count = 1
        oid = ObjectId()

        assert service.increment("forum_topics", str(oid), {"postCount": 1}, {"lastActivityAt": "now"})

        _, operation = collection.update_one.call_args.args
        assert operation["$inc"] == {"postCount": 1}
        assert operation["$set"]["lastActivityAt"] == "now"

    def test_decrement_if_available(self, service, collection):
        oid = ObjectId()
        collection.find_one_and_update.return_value = {"_id": oid, "availableQuantity": 2}

        document = service.decrement_if_available(
            "marketplace_listings", str(oid), "availableQuantity", 3, "buyer", {"status": "ACTIVE"}
        )

        assert document == {"id": str(oid), "availableQuantity": 2}
        call = collection.find_one_and_update.call_args
        query, operation = call.args
        assert query["availableQuantity"] == {"$gte": 3}
        assert query["status"] == "ACTIVE"
        assert operation["$inc"] == {"availableQuantity": -3}
        assert call.kwargs["return_document"] == ReturnDocument.AFTER

    def test_decrement_not_applied(self, service, collection):
        collection.find_one_and_update.return_value = None

        assert service.decrement_if_available(
            "marketplace_listings", str(ObjectId()), "availableQuantity", 3, "buyer"
        ) is None

    def test_soft_delete(self, service, collection):
        collection.update_one.return_value.modified_count = 1

        assert service.soft_delete("farms", str(ObjectId()), "owner") is True

        _, operation = collection.update_one.call_args.args
        assert isinstance(operation["$set"]["deletedAt"], datetime)


class TestPagination:
    def test_paginate(self, service, collection):
        collection.count_documents.return_value = 25
        cursor = collection.find.return_value
        cursor.sort.return_value = cursor
        cursor.skip.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.__iter__.return_value = iter([{"_id": ObjectId()} for _ in range(5)])

        result = service.paginate("profiles", page=2, page_size=20, filters={"primaryRole": "Farmer"})

        assert result.total == 25
        assert len(result.items) == 5
        cursor.sort.assert_called_once_with("createdAt", DESCENDING)
        cursor.skip.assert_called_once_with(20)
        cursor.limit.assert_called_once_with(20)

    def test_find_after_cursor_next_page(self, service, collection):
        cursor = collection.find.return_value
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        ids = [ObjectId() for _ in range(3)]
        cursor.__iter__.return_value = iter([{"_id": i} for i in ids])

        documents, next_cursor = service.find_after_cursor("forum_posts", {"topicId": "t1"}, limit=2)

        assert [d["id"] for d in documents] == [str(ids[0]), str(ids[1])]
        assert next_cursor == str(ids[1])
        cursor.limit.assert_called_once_with(3)

    def test_find_after_cursor_uses_anchor(self, service, collection):
        anchor_id = ObjectId()
        created = datetime(2025, 1, 1)
        collection.find_one.return_value = {"_id": anchor_id, "createdAt": created}
        cursor = collection.find.return_value
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.__iter__.return_value = iter([])

        documents, next_cursor = service.find_after_cursor(
            "forum_replies", {"postId": "p1"}, after=str(anchor_id), limit=15, sort_order=ASCENDING
        )

        assert documents == []
        assert next_cursor is None
        query = collection.find.call_args.args[0]
        assert query["$or"] == [
            {"createdAt": {"$gt": created}},
            {"createdAt": created, "_id": {"$gt": anchor_id}},
        ]


class TestHealthCheck:
    def test_unhealthy_when_unreachable(self, service):
        service._client = MagicMock()
        service._client.admin.command.side_effect = ConnectionFailure("no server")

        result = service.health_check()

        assert result["status"] == "unhealthy"
        assert result["database"] == "damdoh_test"

    def test_healthy(self, service):
        service._client = MagicMock()
        service._client.admin.command.return_value = {"ok": 1}
        service._client.server_info.return_value = {"version": "7.0.2"}

        result = service.health_check()

        assert result["status"] == "healthy"
        assert result["ping"] is True
        assert result["version"] == "7.0.2"


class TestIndexes:
    def test_create_indexes(self, service, collection):
        count = service.create_indexes()

        assert count == collection.create_index.call_count
        collection.create_index.assert_any_call("email", unique=True)
        collection.create_index.assert_any_call("claimId", unique=True)
        collection.create_index.assert_any_call(
            [("vtiId", ASCENDING), ("timestamp", ASCENDING)]
        )
