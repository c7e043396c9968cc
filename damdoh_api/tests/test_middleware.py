# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for middleware functionality.
"""

import pytest
from unittest.mock import Mock, MagicMock
from flask import Flask
from pydantic import BaseModel
from pymongo.errors import ServerSelectionTimeoutError

from damdoh_api.middleware.auth import AuthMiddleware, require_auth, require_roles, require_permission
from damdoh_api.middleware.validation import ValidationMiddleware
from damdoh_api.middleware.error_handler import (
    ErrorHandlerMiddleware, ValidationException, AuthenticationException, AuthorizationException,
    NotFoundException, BusinessRuleException, ServiceUnavailableException, register_custom_error_handlers
)
from damdoh_api.middleware.cors import CORSMiddleware, default_allowed_origins
from damdoh_api.models.entities import UserContext
from damdoh_api.models.enums import StakeholderRole
from damdoh_api.services.auth import TokenValidationError
from damdoh_api.services.hal import HalFormatter


class TestValidationMiddleware:
    """Test validation middleware functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)
        self.validation_middleware = ValidationMiddleware()

    def test_format_validation_errors(self):
        """Test formatting Pydantic validation errors."""
        errors = [
            {"loc": ("name",), "msg": "Field required", "type": "missing", "input": {"a": 1}},
            {"loc": ("location", "lat"), "msg": "Input should be less than or equal to 90",
             "type": "less_than_equal", "input": 95},
        ]
        validation_error = Mock()
        validation_error.errors.return_value = errors

        result = self.validation_middleware.format_validation_errors(validation_error)

        assert result[0]["field"] == "name"
        assert result[0]["input"] is None
        assert result[1]["field"] == "location.lat"
        assert result[1]["input"] == 95

    def test_validate_json_body_success(self):
        class FarmModel(BaseModel):
            name: str
            size: int

        with self.app.test_request_context('/test', method='POST', json={"name": "Green Acres", "size": 4}):
            @self.validation_middleware.validate_json_body(FarmModel)
            def create_farm(payload):
                return payload

            result = create_farm()

        assert result.name == "Green Acres"
        assert result.size == 4

    def test_validate_json_body_invalid_content_type(self):
        class FarmModel(BaseModel):
            name: str

        with self.app.test_request_context('/test', method='POST', data="name=x", content_type='text/plain'):
            @self.validation_middleware.validate_json_body(FarmModel)
            def create_farm(payload):
                return payload

            with pytest.raises(ValidationException) as exc_info:
                create_farm()

        assert exc_info.value.validation_errors[0]["field"] == "content-type"

    def test_validate_json_body_not_an_object(self):
        class FarmModel(BaseModel):
            name: str

        with self.app.test_request_context('/test', method='POST', json=["a", "b"]):
            @self.validation_middleware.validate_json_body(FarmModel)
            def create_farm(payload):
                return payload

            with pytest.raises(ValidationException) as exc_info:
                create_farm()

        assert exc_info.value.validation_errors[0]["type"] == "json_error"

    def test_validate_json_body_validation_error(self):
        class FarmModel(BaseModel):
            name: str
            size: int

        with self.app.test_request_context('/test', method='POST', json={"size": "big"}):
            @self.validation_middleware.validate_json_body(FarmModel)
            def create_farm(payload):
                return payload

            with pytest.raises(ValidationException) as exc_info:
                create_farm()

        fields = {e["field"] for e in exc_info.value.validation_errors}
        assert fields == {"name", "size"}
        assert exc_info.value.status_code == 400

    def test_validate_query_params(self):
        class SearchParams(BaseModel):
            page: int = 1
            tags: list = []

        with self.app.test_request_context('/test?page=3&tags=a&tags=b'):
            @self.validation_middleware.validate_query_params(SearchParams)
            def search(params):
                return params

            result = search()

        assert result.page == 3
        assert result.tags == ["a", "b"]

    def test_validate_query_params_error(self):
        class SearchParams(BaseModel):
            page: int = 1

        with self.app.test_request_context('/test?page=first'):
            @self.validation_middleware.validate_query_params(SearchParams)
            def search(params):
                return params

            with pytest.raises(ValidationException):
                search()


class TestAuthMiddleware:
    """Test token extraction and request authentication."""

    def setup_method(self):
        self.app = Flask(__name__)
        self.auth_service = Mock()
        self.redis_service = Mock()
        self.redis_service.is_token_blocked.return_value = False
        self.middleware = AuthMiddleware(self.auth_service, self.redis_service)

    def test_extract_bearer_token(self):
        with self.app.test_request_context('/', headers={'Authorization': 'Bearer abc.def.ghi'}):
            assert self.middleware.extract_token_from_request() == "abc.def.ghi"

    def test_extract_raw_token(self):
        with self.app.test_request_context('/', headers={'Authorization': 'abc.def.ghi'}):
            assert self.middleware.extract_token_from_request() == "abc.def.ghi"

    def test_extract_missing_token(self):
        with self.app.test_request_context('/'):
            assert self.middleware.extract_token_from_request() is None

        with self.app.test_request_context('/', headers={'Authorization': 'Bearer '}):
            assert self.middleware.extract_token_from_request() is None

    def test_authenticate_success(self):
        self.auth_service.extract_token_id.return_value = "jti-1"
        self.auth_service.validate_token.return_value = {
            "sub": "u1",
            "email": "u1@example.com",
            "name": "Amina",
            "role": StakeholderRole.FARMER.value,
            "permissions": ["farm:manage"],
        }

        with self.app.test_request_context('/', headers={'Authorization': 'Bearer token'}):
            context = self.middleware.authenticate()

        assert context.user_id == "u1"
        assert context.role == StakeholderRole.FARMER.value
        assert context.has_permission("farm:manage")
        self.redis_service.is_token_blocked.assert_called_once_with("jti-1")

    def test_authenticate_missing_token(self):
        with self.app.test_request_context('/'):
            with pytest.raises(AuthenticationException) as exc_info:
                self.middleware.authenticate()

        assert exc_info.value.error_type == "authentication-required"

    def test_authenticate_revoked_token(self):
        self.auth_service.extract_token_id.return_value = "jti-1"
        self.redis_service.is_token_blocked.return_value = True

        with self.app.test_request_context('/', headers={'Authorization': 'Bearer token'}):
            with pytest.raises(AuthenticationException) as exc_info:
                self.middleware.authenticate()

        assert exc_info.value.error_type == "token-revoked"

    def test_authenticate_invalid_token(self):
        self.auth_service.extract_token_id.side_effect = TokenValidationError("bad")
        self.auth_service.validate_token.side_effect = TokenValidationError("Invalid token: bad")

        with self.app.test_request_context('/', headers={'Authorization': 'Bearer garbage'}):
            with pytest.raises(AuthenticationException) as exc_info:
                self.middleware.authenticate()

        assert exc_info.value.error_type == "invalid-token"
        assert not self.redis_service.is_token_blocked.called

    def test_require_auth_passes_context(self):
        self.auth_service.extract_token_id.return_value = "jti-1"
        self.auth_service.validate_token.return_value = {"sub": "u1", "permissions": []}

        @require_auth(self.middleware)
        def handler(user_context, value):
            return user_context.user_id, value

        with self.app.test_request_context('/', headers={'Authorization': 'Bearer token'}):
            assert handler(value=5) == ("u1", 5)


class TestRoleAndPermissionChecks:
    """Test role and permission decorators."""

    def setup_method(self):
        self.app = Flask(__name__)
        self.fi = UserContext(
            user_id="fi-1", role=StakeholderRole.FINANCIAL_INSTITUTION, permissions=["finance:review"]
        )
        self.farmer = UserContext(user_id="f-1", role=StakeholderRole.FARMER, permissions=["farm:manage"])

    def test_require_roles(self):
        @require_roles(StakeholderRole.FINANCIAL_INSTITUTION)
        def review(user_context):
            return "reviewed"

        assert review(self.fi) == "reviewed"

        with pytest.raises(AuthorizationException):
            review(self.farmer)

    def test_require_permission(self):
        @require_permission("farm:manage")
        def manage(user_context):
            return "managed"

        assert manage(self.farmer) == "managed"

        with pytest.raises(AuthorizationException) as exc_info:
            manage(self.fi)

        assert "farm:manage" in exc_info.value.message


class TestErrorHandlerMiddleware:
    """Test problem+json error responses."""

    def setup_method(self):
        self.app = Flask(__name__)
        self.app.config['ENVIRONMENT'] = 'test'
        formatter = HalFormatter("https://api.damdoh.org")
        ErrorHandlerMiddleware(self.app, formatter)
        register_custom_error_handlers(self.app, formatter)

        @self.app.route('/validation')
        def validation():
            raise ValidationException("Bad input", [{"field": "name", "message": "required"}])

        @self.app.route('/authentication')
        def authentication():
            raise AuthenticationException("Token has been revoked", "token-revoked")

        @self.app.route('/authorization')
        def authorization():
            raise AuthorizationException("Only the farm owner can do this")

        @self.app.route('/missing')
        def missing():
            raise NotFoundException("Farm not found")

        @self.app.route('/business-rule')
        def business_rule():
            raise BusinessRuleException("Insufficient quantity available")

        @self.app.route('/unavailable')
        def unavailable():
            raise ServiceUnavailableException("Weather feed is down")

        @self.app.route('/database-down')
        def database_down():
            raise ServerSelectionTimeoutError("No servers found yet")

        @self.app.route('/boom')
        def boom():
            raise RuntimeError("kaboom")

        self.client = self.app.test_client()

    def test_validation_exception(self):
        response = self.client.get('/validation')

        assert response.status_code == 400
        assert response.mimetype == "application/problem+json"
        data = response.get_json(force=True)
        assert data["type"] == "https://api.damdoh.org/problems/validation-error"
        assert data["errors"] == [{"field": "name", "message": "required"}]
        assert data["instance"] == "/validation"

    def test_authentication_exception(self):
        data = self.client.get('/authentication').get_json(force=True)

        assert data["status"] == 401
        assert data["type"].endswith("/token-revoked")
        assert data["title"] == "Token Revoked"

    def test_authorization_exception(self):
        response = self.client.get('/authorization')

        assert response.status_code == 403
        assert response.get_json(force=True)["detail"] == "Only the farm owner can do this"

    def test_not_found_exception(self):
        assert self.client.get('/missing').status_code == 404

    def test_business_rule_exception(self):
        response = self.client.get('/business-rule')

        assert response.status_code == 422
        assert response.get_json(force=True)["type"].endswith("/business-rule-violation")

    def test_service_unavailable_exception(self):
        response = self.client.get('/unavailable')

        assert response.status_code == 503
        assert response.get_json(force=True)["type"].endswith("/service-unavailable")

    def test_database_outage_is_503(self):
        response = self.client.get('/database-down')

        assert response.status_code == 503
        data = response.get_json(force=True)
        assert data["title"] == "Service Unavailable"
        assert "No servers" not in data["detail"]

    def test_unknown_route(self):
        response = self.client.get('/nowhere')

        assert response.status_code == 404
        assert response.get_json(force=True)["type"].endswith("/resource-not-found")

    def test_unexpected_error(self):
        response = self.client.get('/boom')

        assert response.status_code == 500
        assert "kaboom" in response.get_json(force=True)["detail"]

    def test_unexpected_error_hidden_in_production(self):
        self.app.config['ENVIRONMENT'] = 'production'

        response = self.client.get('/boom')

        assert "kaboom" not in response.get_json(force=True)["detail"]


class TestCORSMiddleware:
    """Test CORS middleware functionality."""

    def setup_method(self):
        self.app = Flask(__name__)

        @self.app.route('/api/ping', methods=['GET'])
        def ping():
            return {"ok": True}

    def test_default_origins(self):
        origins = default_allowed_origins('development', 'https://app.damdoh.org/', 'https://*.damdoh.org*, ')

        assert 'http://localhost:3000' in origins
        assert 'https://app.damdoh.org' in origins
        assert 'https://*.damdoh.org*' in origins

        assert default_allowed_origins('production', None, None) == []

    def test_is_origin_allowed(self):
        cors = CORSMiddleware(self.app, allowed_origins=['https://app.damdoh.org', 'https://preview-*'])

        assert cors.is_origin_allowed('https://app.damdoh.org')
        assert cors.is_origin_allowed('https://preview-123.vercel.app')
        assert not cors.is_origin_allowed('https://evil.example.com')
        assert not cors.is_origin_allowed(None)

    def test_preflight_request_handling(self):
        CORSMiddleware(self.app, allowed_origins=['https://app.damdoh.org'], max_age=600)
        client = self.app.test_client()

        response = client.options('/api/ping', headers={'Origin': 'https://app.damdoh.org'})

        assert response.status_code == 200
        assert response.headers['Access-Control-Allow-Origin'] == 'https://app.damdoh.org'
        assert response.headers['Access-Control-Allow-Credentials'] == 'true'
        assert response.headers['Access-Control-Max-Age'] == '600'
        assert 'PATCH' in response.headers['Access-Control-Allow-Methods']

    def test_preflight_rejected(self):
        CORSMiddleware(self.app, allowed_origins=['https://app.damdoh.org'])
        client = self.app.test_client()

        response = client.options('/api/ping', headers={'Origin': 'https://evil.example.com'})

        assert response.status_code == 403

    def test_simple_request_headers(self):
        CORSMiddleware(self.app, allowed_origins=['https://app.damdoh.org'], allow_credentials=False)
        client = self.app.test_client()

        allowed = client.get('/api/ping', headers={'Origin': 'https://app.damdoh.org'})
        rejected = client.get('/api/ping', headers={'Origin': 'https://evil.example.com'})

        assert allowed.headers['Access-Control-Allow-Origin'] == 'https://app.damdoh.org'
        assert 'Access-Control-Allow-Credentials' not in allowed.headers
        assert 'Access-Control-Allow-Origin' not in rejected.headers
        assert rejected.status_code == 200


class TestApplicationValidation:
    """Test request validation through the full application."""

    def test_invalid_json_body(self, client, token_for):
        response = client.post(
            '/api/farms', data="{not json", content_type='application/json', headers=token_for()
        )

        assert response.status_code == 400
        assert response.get_json(force=True)["type"].endswith("/validation-error")

    def test_missing_fields(self, client, token_for):
        response = client.post('/api/farms', json={"name": "Green Acres"}, headers=token_for())

        assert response.status_code == 400
        fields = {e["field"] for e in response.get_json(force=True)["errors"]}
        assert {"location", "size", "farmType"} <= fields

    def test_revoked_token_is_rejected(self, client, token_for, redis_service):
        redis_service.is_token_blocked.return_value = True

        response = client.get('/api/profiles/me', headers=token_for())

        assert response.status_code == 401
        assert response.get_json(force=True)["type"].endswith("/token-revoked")

    def test_garbage_token(self, client):
        response = client.get('/api/profiles/me', headers={'Authorization': 'Bearer nonsense'})

        assert response.status_code == 401
        assert response.get_json(force=True)["type"].endswith("/invalid-token")
