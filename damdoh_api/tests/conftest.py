# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

Endpoint tests run against the real application with MongoDB, Redis and the
health service replaced by mocks. Tokens are minted by a real AuthService so
the authentication middleware is exercised end to end.
"""

import os
import pytest
from typing import Dict, Any
from unittest.mock import MagicMock
from bson import ObjectId

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'

from damdoh_api.app import create_app  # noqa: E402
from damdoh_api.domain.authorization import permissions_for_role  # noqa: E402
from damdoh_api.models.entities import User  # noqa: E402
from damdoh_api.models.enums import StakeholderRole  # noqa: E402
from damdoh_api.services.auth import AuthService  # noqa: E402
from damdoh_api.services.mongodb import PaginationResult  # noqa: E402


@pytest.fixture(scope="session")
def auth_service():
    """Auth service with a generated development key pair."""
    return AuthService()


@pytest.fixture
def stored_documents() -> Dict[tuple, Dict[str, Any]]:
    """Documents returned by the mocked ``find_one``, keyed by (collection, id)."""
    return {}


@pytest.fixture
def store_document(stored_documents):
    """Store a serialized document so ``find_one`` can return it."""
    def store(collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        document.setdefault("id", str(ObjectId()))
        stored_documents[(collection, document["id"])] = document
        return document
    return store


@pytest.fixture
def mongodb_service(stored_documents):
    """MongoDB service mock with empty-database defaults."""
    service = MagicMock()

    def find_one(collection, doc_id, include_deleted=False):
        document = stored_documents.get((collection, doc_id))
        return dict(document) if document is not None else None

    service.find_one.side_effect = find_one
    service.find_one_by.return_value = None
    service.find_many.return_value = []
    service.find_by_ids.return_value = {}
    service.count.return_value = 0
    service.aggregate.return_value = []
    service.update.return_value = True
    service.upsert.return_value = True
    service.update_many.return_value = 0
    service.increment.return_value = True
    service.soft_delete.return_value = True
    service.decrement_if_available.return_value = None
    service.create.side_effect = lambda collection, document, user_id: str(document["_id"])
    service.paginate.side_effect = lambda collection, page=1, page_size=20, filters=None, **kwargs: \
        PaginationResult([], 0, page, page_size)
    service.find_after_cursor.return_value = ([], None)
    return service


@pytest.fixture
def redis_service():
    """Redis service mock: nothing blocked, nothing cached."""
    service = MagicMock()
    service.is_token_blocked.return_value = False
    service.get_cached_dashboard.return_value = None
    service.cache_dashboard.return_value = True
    service.block_token.return_value = True
    service.invalidate_dashboards.return_value = True
    return service


@pytest.fixture
def health_service():
    return MagicMock()


@pytest.fixture
def app(mongodb_service, redis_service, auth_service, health_service):
    """Application wired to the mocked services."""
    application = create_app(
        {
            'TESTING': True,
            'ENVIRONMENT': 'test',
            'OTEL_ENABLED': False,
            'BASE_URL': 'http://localhost:5000',
        },
        mongodb_service=mongodb_service,
        redis_service=redis_service,
        auth_service=auth_service,
        amqp_service=None,
        health_service=health_service
    )
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def token_for(auth_service):
    """Build an Authorization header for a user with a given role."""
    def make(user_id: str = None, role: StakeholderRole = StakeholderRole.FARMER,
             name: str = "Test User") -> Dict[str, str]:
        user = User(
            id=user_id or str(ObjectId()),
            email=f"user{ObjectId()}@example.com",
            display_name=name,
            password_hash="not-a-real-hash",
            primary_role=role
        )
        tokens = auth_service.generate_tokens(user, permissions_for_role(user.primary_role))
        return {"Authorization": f"Bearer {tokens['access_token']}"}
    return make


@pytest.fixture
def farmer_id():
    return str(ObjectId())


@pytest.fixture
def buyer_id():
    return str(ObjectId())


def created_collections(mongodb_service):
    """Collections written with ``create``, in call order."""
    return [c.args[0] for c in mongodb_service.create.call_args_list]


def created_documents(mongodb_service, collection: str):
    """Documents written to a collection with ``create``."""
    return [c.args[1] for c in mongodb_service.create.call_args_list if c.args[0] == collection]
