# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB persistence for the DamDoh API.

Every document carries createdAt/createdBy/updatedAt/updatedBy audit fields
and a ``deletedAt`` marker; reads skip soft-deleted documents unless asked
not to. Documents leave this layer with a string ``id`` in place of
``_id``. Ids that are valid ObjectIds are queried as ObjectIds, anything
else (VTI UUIDs, user ids used as profile keys) as plain strings.
"""

import os
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Dict, Optional, Any, Iterable, Iterator, Tuple, Union
from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError, DuplicateKeyError
from bson import ObjectId
from opentelemetry import trace

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

# collection -> [(keys, options)]
INDEXES = {
    "users": [
        ("email", {"unique": True}),
        ([("primaryRole", ASCENDING), ("deletedAt", ASCENDING)], {}),
    ],
    "profiles": [
        ([("primaryRole", ASCENDING), ("deletedAt", ASCENDING)], {}),
    ],
    "farms": [
        ([("ownerId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "crops": [
        ([("farmId", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("ownerId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "knf_batches": [
        ([("userId", ASCENDING), ("status", ASCENDING)], {}),
    ],
    "marketplace_listings": [
        ([("status", ASCENDING), ("category", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("sellerId", ASCENDING), ("status", ASCENDING)], {}),
    ],
    "marketplace_orders": [
        ([("buyerId", ASCENDING), ("status", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("sellerId", ASCENDING), ("status", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "forum_topics": [
        ("nameLower", {"unique": True}),
        ([("lastActivityAt", DESCENDING)], {}),
    ],
    "forum_posts": [
        ([("topicId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "forum_replies": [
        ([("postId", ASCENDING), ("createdAt", ASCENDING)], {}),
    ],
    "financial_transactions": [
        ([("userId", ASCENDING), ("timestamp", DESCENDING)], {}),
    ],
    "financial_applications": [
        ([("fiId", ASCENDING), ("status", ASCENDING), ("submittedAt", DESCENDING)], {}),
        ([("applicantId", ASCENDING), ("submittedAt", DESCENDING)], {}),
    ],
    "insurance_policies": [
        ("policyId", {"unique": True}),
        ([("policyholderId", ASCENDING), ("status", ASCENDING)], {}),
        ([("insurerId", ASCENDING), ("status", ASCENDING)], {}),
    ],
    "insurance_claims": [
        ("claimId", {"unique": True}),
        ([("insurerId", ASCENDING), ("status", ASCENDING)], {}),
        ([("policyholderId", ASCENDING), ("status", ASCENDING)], {}),
    ],
    "traceability_events": [
        ([("vtiId", ASCENDING), ("timestamp", ASCENDING)], {}),
        ([("farmFieldId", ASCENDING), ("timestamp", ASCENDING)], {}),
    ],
    "vti_registry": [
        ([("type", ASCENDING), ("isPublicTraceable", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "notifications": [
        ([("userId", ASCENDING), ("status", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
}


class DuplicateDocumentError(ValueError):
    """Raised when an insert violates a unique index."""


class PaginationResult:
    """One page of a page-numbered query."""

    def __init__(self, items: List[Dict], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = -(-total // page_size) if page_size > 0 else 0
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


def _pool_options() -> Dict[str, Any]:
    return {
        "maxPoolSize": int(os.getenv('MONGODB_MAX_POOL_SIZE', '10')),
        "minPoolSize": int(os.getenv('MONGODB_MIN_POOL_SIZE', '1')),
        "maxIdleTimeMS": int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000')),
        "serverSelectionTimeoutMS": int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000')),
    }


class MongoDBService:
    """Soft-delete aware document store shared by all routes."""

    def __init__(self, connection_string: str = None, database_name: str = None):
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI', 'mongodb://localhost:27017/damdoh_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'damdoh_dev')
        self.pool_options = _pool_options()
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

    @property
    def client(self) -> MongoClient:
        """Connect lazily; serverless workers may never touch the database."""
        if self._client is None:
            client = MongoClient(self.connection_string, retryWrites=True, retryReads=True, **self.pool_options)
            try:
                client.admin.command('ping')
            except PyMongoError as e:
                logger.error("MongoDB unreachable", extra={"database": self.database_name, "error": str(e)})
                client.close()
                raise
            logger.info("Connected to MongoDB", extra={"database": self.database_name})
            self._client = client
        return self._client

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        return self.database[collection_name]

    def close_connection(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._database = None

    def health_check(self) -> Dict[str, Any]:
        try:
            ping = self.client.admin.command('ping')
            version = self.client.server_info().get('version')
        except PyMongoError as e:
            logger.error("MongoDB health check failed", extra={"error": str(e)})
            return {'status': 'unhealthy', 'error': str(e), 'database': self.database_name}

        return {
            'status': 'healthy',
            'ping': ping.get('ok') == 1,
            'version': version,
            'database': self.database_name,
            'connection_pool_size': self.pool_options['maxPoolSize']
        }

    # Helpers

    @contextmanager
    def _operation(self, name: str, collection: str) -> Iterator[None]:
        """Trace a driver call and log failures before they propagate."""
        with tracer.start_as_current_span(f"mongodb.{name}", attributes={
            "db.system": "mongodb", "db.name": self.database_name, "db.collection": collection
        }):
            try:
                yield
            except PyMongoError as e:
                logger.error(f"MongoDB {name} failed", extra={"collection": collection, "error": str(e)})
                raise

    @staticmethod
    def _to_id(doc_id: Union[str, ObjectId]) -> Union[str, ObjectId]:
        if isinstance(doc_id, ObjectId):
            return doc_id
        return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id

    @staticmethod
    def _build_query(filters: Dict = None, include_deleted: bool = False) -> Dict:
        query = {} if include_deleted else {"deletedAt": None}
        query.update(filters or {})
        return query

    def _by_id(self, doc_id: str, filters: Dict = None, include_deleted: bool = False) -> Dict:
        return self._build_query({"_id": self._to_id(doc_id), **(filters or {})}, include_deleted)

    @staticmethod
    def _serialize(document: Optional[Dict]) -> Optional[Dict]:
        if document is not None and "_id" in document:
            document["id"] = str(document.pop("_id"))
        return document

    @staticmethod
    def _touch(fields: Dict, user_id: Optional[str]) -> Dict:
        return {**fields, "updatedAt": datetime.utcnow(), "updatedBy": user_id}

    # Reads

    def find_one(self, collection: str, doc_id: str, include_deleted: bool = False) -> Optional[Dict]:
        with self._operation("find_one", collection):
            return self._serialize(self.get_collection(collection).find_one(self._by_id(doc_id, None, include_deleted)))

    def find_one_by(self, collection: str, filters: Dict, include_deleted: bool = False) -> Optional[Dict]:
        with self._operation("find_one", collection):
            return self._serialize(self.get_collection(collection).find_one(self._build_query(filters, include_deleted)))

    def find_many(self, collection: str, filters: Dict = None,
                  sort: Optional[List[Tuple[str, int]]] = None, limit: int = 0,
                  include_deleted: bool = False) -> List[Dict]:
        with self._operation("find", collection):
            cursor = self.get_collection(collection).find(self._build_query(filters, include_deleted))
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return [self._serialize(doc) for doc in cursor]

    def find_by_ids(self, collection: str, doc_ids: Iterable[str],
                    include_deleted: bool = False) -> Dict[str, Dict]:
        """Join helper: one $in query, results keyed by id. Missing ids are simply absent."""
        unique_ids = list(dict.fromkeys(i for i in doc_ids if i))
        if not unique_ids:
            return {}

        with self._operation("find_by_ids", collection):
            query = self._build_query({"_id": {"$in": [self._to_id(i) for i in unique_ids]}}, include_deleted)
            documents = [self._serialize(doc) for doc in self.get_collection(collection).find(query)]
        return {doc["id"]: doc for doc in documents}

    def count(self, collection: str, filters: Dict = None, include_deleted: bool = False) -> int:
        with self._operation("count", collection):
            return self.get_collection(collection).count_documents(self._build_query(filters, include_deleted))

    def aggregate(self, collection: str, pipeline: List[Dict]) -> List[Dict]:
        """Run a pipeline over the documents that are not soft deleted."""
        with self._operation("aggregate", collection):
            return list(self.get_collection(collection).aggregate([{"$match": {"deletedAt": None}}, *pipeline]))

    def paginate(self, collection: str, page: int = 1, page_size: int = 20,
                 filters: Dict = None, sort_by: str = "createdAt", sort_order: int = DESCENDING,
                 include_deleted: bool = False) -> PaginationResult:
        query = self._build_query(filters, include_deleted)
        with self._operation("paginate", collection):
            source = self.get_collection(collection)
            total = source.count_documents(query)
            cursor = source.find(query).sort(sort_by, sort_order).skip((page - 1) * page_size).limit(page_size)
            documents = [self._serialize(doc) for doc in cursor]
        return PaginationResult(documents, total, page, page_size)

    def find_after_cursor(self, collection: str, filters: Dict = None, after: Optional[str] = None,
                          limit: int = 10, sort_order: int = DESCENDING) -> Tuple[List[Dict], Optional[str]]:
        """
        Cursor pagination over createdAt, with _id as tie-breaker.

        ``after`` is the id of the last document of the previous page; an
        unknown id restarts from the beginning. Returns the page and the
        cursor for the next one, None on the last page.
        """
        query = self._build_query(filters)
        with self._operation("find_after_cursor", collection):
            source = self.get_collection(collection)

            anchor = source.find_one({"_id": self._to_id(after)}) if after else None
            if anchor is not None:
                op = "$lt" if sort_order == DESCENDING else "$gt"
                query["$or"] = [
                    {"createdAt": {op: anchor["createdAt"]}},
                    {"createdAt": anchor["createdAt"], "_id": {op: anchor["_id"]}}
                ]

            cursor = source.find(query).sort([("createdAt", sort_order), ("_id", sort_order)]).limit(limit + 1)
            documents = [self._serialize(doc) for doc in cursor]

        if len(documents) <= limit:
            return documents, None
        documents = documents[:limit]
        return documents, documents[-1]["id"]

    # Writes

    def create(self, collection: str, document: Dict, user_id: Optional[str]) -> str:
        """Insert a document and return its id; a caller-supplied ``_id`` is kept."""
        now = datetime.utcnow()
        document = {
            "_id": ObjectId(),
            "deletedAt": None,
            **document,
            "createdAt": document.get("createdAt") or now,
            "createdBy": user_id,
            "updatedAt": now,
            "updatedBy": user_id,
        }

        with self._operation("insert", collection):
            try:
                inserted_id = self.get_collection(collection).insert_one(document).inserted_id
            except DuplicateKeyError as e:
                logger.warning("Duplicate document rejected", extra={"collection": collection, "error": str(e)})
                raise DuplicateDocumentError("Document with this identifier already exists")

        logger.debug("Document created", extra={"collection": collection, "id": str(inserted_id)})
        return str(inserted_id)

    def update(self, collection: str, doc_id: str, updates: Dict, user_id: Optional[str],
               filters: Dict = None) -> bool:
        """
        Set fields on a document.

        Extra ``filters`` make the update conditional (compare-and-set on a
        status, for example); False means nothing matched.
        """
        with self._operation("update", collection):
            result = self.get_collection(collection).update_one(
                self._by_id(doc_id, filters), {"$set": self._touch(updates, user_id)}
            )
        return result.matched_count > 0

    def upsert(self, collection: str, doc_id: str, document: Dict, user_id: Optional[str]) -> bool:
        """Write a document keyed by ``doc_id``; True when it was created."""
        now = datetime.utcnow()
        with self._operation("upsert", collection):
            result = self.get_collection(collection).update_one(
                {"_id": self._to_id(doc_id)},
                {
                    "$set": {**self._touch(document, user_id), "deletedAt": None},
                    "$setOnInsert": {"createdAt": now, "createdBy": user_id}
                },
                upsert=True
            )
        return result.upserted_id is not None

    def update_many(self, collection: str, filters: Dict, updates: Dict, user_id: Optional[str]) -> int:
        with self._operation("update_many", collection):
            result = self.get_collection(collection).update_many(
                self._build_query(filters), {"$set": self._touch(updates, user_id)}
            )
        return result.modified_count

    def increment(self, collection: str, doc_id: str, counters: Dict[str, int],
                  updates: Dict = None) -> bool:
        """Atomically bump counters, optionally setting fields in the same write."""
        with self._operation("increment", collection):
            result = self.get_collection(collection).update_one(
                self._by_id(doc_id),
                {"$inc": counters, "$set": {**(updates or {}), "updatedAt": datetime.utcnow()}}
            )
        return result.matched_count > 0

    def decrement_if_available(self, collection: str, doc_id: str, field: str, amount: int,
                               user_id: Optional[str], filters: Dict = None) -> Optional[Dict]:
        """
        Atomically subtract ``amount`` from ``field`` when it holds at least that much.

        Returns the updated document, or None when the document is missing,
        fails ``filters`` or holds too little.
        """
        with self._operation("decrement", collection):
            document = self.get_collection(collection).find_one_and_update(
                self._by_id(doc_id, {field: {"$gte": amount}, **(filters or {})}),
                {"$inc": {field: -amount}, "$set": self._touch({}, user_id)},
                return_document=ReturnDocument.AFTER
            )
        return self._serialize(document)

    def soft_delete(self, collection: str, doc_id: str, user_id: Optional[str]) -> bool:
        with self._operation("soft_delete", collection):
            result = self.get_collection(collection).update_one(
                self._by_id(doc_id), {"$set": self._touch({"deletedAt": datetime.utcnow()}, user_id)}
            )
        return result.modified_count > 0

    # Indexes

    def create_indexes(self) -> int:
        """Create every index in INDEXES; returns how many were requested."""
        created = 0
        for collection, indexes in INDEXES.items():
            with self._operation("create_index", collection):
                target = self.get_collection(collection)
                for keys, options in indexes:
                    target.create_index(keys, **options)
                    created += 1
            logger.info("Indexes ensured", extra={"collection": collection, "count": len(indexes)})
        return created
