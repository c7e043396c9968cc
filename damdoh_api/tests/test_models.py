# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for entity and request models.
"""

import pytest
from datetime import datetime, timedelta, timezone
from bson import ObjectId
from pydantic import ValidationError

from damdoh_api.models.entities import (
    User, UserContext, MarketplaceListing, InsurancePolicy, TraceEvent,
    Notification, NotificationPreferences, QuietHours, GeoLocation
)
from damdoh_api.models.enums import (
    StakeholderRole, UserStatus, ListingStatus, NotificationStatus, NotificationType
)
from damdoh_api.models.requests import (
    RegisterRequest, CreateListingRequest, ListingSearchParams, UpdateFarmRequest,
    CreateCropRequest, UpdateApplicationStatusRequest, UpdateClaimStatusRequest,
    CreatePolicyRequest, LogTraceEventRequest, ApplicationListParams, WeatherReadingRequest,
    UpsertProfileRequest
)
from damdoh_api.models.base import to_naive_utc


class TestBaseEntity:
    """Test document mapping shared by all entities."""

    def test_to_document_uses_object_id_and_camel_case(self):
        """Test that stored documents carry an ObjectId and camelCase keys."""
        listing = MarketplaceListing(
            seller_id=str(ObjectId()),
            name="Maize",
            description="Dry white maize",
            price=12.5,
            quantity=100,
            available_quantity=100,
            category="grains"
        )

        document = listing.to_document()

        assert isinstance(document["_id"], ObjectId)
        assert str(document["_id"]) == listing.id
        assert "id" not in document
        assert document["sellerId"] == listing.seller_id
        assert document["availableQuantity"] == 100
        assert document["status"] == "ACTIVE"

    def test_to_document_keeps_non_object_ids(self):
        """Test that UUID identifiers are stored as-is."""
        event = TraceEvent(
            id="4b8f6a2e-2f7b-4c55-9d87-0f1a1c3e9b11",
            farm_field_id="field-1",
            event_type="OBSERVED",
            actor_ref="user-1"
        )

        assert event.to_document()["_id"] == "4b8f6a2e-2f7b-4c55-9d87-0f1a1c3e9b11"

    def test_from_document_round_trip(self):
        """Test building an entity back from a stored document."""
        user = User(
            email="Farmer@Example.com",
            display_name="Amina",
            password_hash="hash",
            primary_role=StakeholderRole.FARMER
        )

        restored = User.from_document(user.to_document())

        assert restored.id == user.id
        assert restored.email == "farmer@example.com"
        assert restored.primary_role == StakeholderRole.FARMER.value

    def test_to_api_hides_private_fields(self):
        """Test that credentials never reach API responses."""
        user = User(
            email="farmer@example.com",
            display_name="Amina",
            password_hash="hash",
            primary_role=StakeholderRole.FARMER
        )

        data = user.to_api()

        assert "passwordHash" not in data
        assert "failedLoginAttempts" not in data
        assert "deletedAt" not in data
        assert "schemaVersion" not in data
        assert data["displayName"] == "Amina"


class TestUser:
    """Test user model validation."""

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            User(email="not-an-email", display_name="A", password_hash="h", primary_role="Farmer")

    def test_blank_display_name(self):
        with pytest.raises(ValidationError):
            User(email="a@example.com", display_name="   ", password_hash="h", primary_role="Farmer")

    def test_is_active(self):
        """Test that inactive and deleted accounts are not active."""
        user = User(email="a@example.com", display_name="A", password_hash="h", primary_role="Farmer")
        assert user.is_active()

        user.status = UserStatus.SUSPENDED
        assert not user.is_active()

        user.status = UserStatus.ACTIVE
        user.deleted_at = datetime.utcnow()
        assert not user.is_active()


class TestUserContext:
    """Test user context helpers."""

    def test_permissions_and_roles(self):
        context = UserContext(
            user_id="u1",
            role=StakeholderRole.BUYER,
            permissions=["marketplace:order", "profile:read"]
        )

        assert context.has_permission("marketplace:order")
        assert not context.has_permission("farm:manage")
        assert context.has_role(StakeholderRole.BUYER)
        assert not context.has_role(StakeholderRole.FARMER)


class TestInsurancePolicy:
    def test_period_must_be_ordered(self):
        """Test that a policy cannot end before it starts."""
        start = datetime(2025, 6, 1)

        with pytest.raises(ValidationError):
            InsurancePolicy(
                policy_id="policy_1",
                policyholder_id="u1",
                insurer_id="u2",
                coverage_amount=1000,
                premium=50,
                start_date=start,
                end_date=start - timedelta(days=1)
            )


class TestTraceEvent:
    def test_requires_vti_or_farm_field(self):
        with pytest.raises(ValidationError):
            TraceEvent(event_type="OBSERVED", actor_ref="user-1")


class TestNotificationModels:
    """Test notification and preference models."""

    def test_mark_read(self):
        notification = Notification(
            user_id="u1",
            type=NotificationType.NEW_ORDER,
            title="New order",
            body="Someone ordered"
        )
        assert notification.status == NotificationStatus.UNREAD.value

        notification.mark_read()

        assert notification.status == NotificationStatus.READ.value
        assert notification.read_at is not None

    def test_default_preferences(self):
        """Test that every channel is enabled for every type by default."""
        preferences = NotificationPreferences()

        assert preferences.in_app.enabled
        assert preferences.push.enabled
        assert {NotificationType(t).value for t in preferences.push.types} == {t.value for t in NotificationType}
        assert preferences.quiet_hours.enabled is False
        assert preferences.quiet_hours.start == "22:00"
        assert preferences.quiet_hours.end == "08:00"

    def test_quiet_hours_format(self):
        with pytest.raises(ValidationError):
            QuietHours(enabled=True, start="25:00", end="08:00")

    def test_preferences_accept_camel_case(self):
        preferences = NotificationPreferences.model_validate({
            "inApp": {"enabled": False},
            "quietHours": {"enabled": True, "start": "21:30", "end": "06:00", "timezone": "Africa/Nairobi"}
        })

        assert preferences.in_app.enabled is False
        assert preferences.quiet_hours.timezone == "Africa/Nairobi"


class TestRegisterRequest:
    """Test registration request validation."""

    def _payload(self, **overrides):
        payload = {
            "email": "Grower@Example.com",
            "password": "Harvest2025",
            "displayName": "Green Valley Farm",
            "primaryRole": "Farmer"
        }
        payload.update(overrides)
        return payload

    def test_valid_request(self):
        request = RegisterRequest.model_validate(self._payload())

        assert request.email == "grower@example.com"
        assert request.primary_role == StakeholderRole.FARMER.value

    @pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
    def test_weak_passwords(self, password):
        with pytest.raises(ValidationError):
            RegisterRequest.model_validate(self._payload(password=password))

    def test_unknown_role(self):
        with pytest.raises(ValidationError):
            RegisterRequest.model_validate(self._payload(primaryRole="Wizard"))

    @pytest.mark.parametrize("role", ["Admin", "System"])
    def test_reserved_roles(self, role):
        """Test that internal roles cannot be self-registered."""
        with pytest.raises(ValidationError):
            RegisterRequest.model_validate(self._payload(primaryRole=role))


class TestMarketplaceRequests:
    """Test marketplace request validation."""

    def test_listing_currency_is_upper_cased(self):
        request = CreateListingRequest.model_validate({
            "name": "Tomatoes",
            "description": "Fresh roma tomatoes",
            "price": 3.2,
            "currency": "kes",
            "quantity": 40,
            "category": "vegetables"
        })

        assert request.currency == "KES"

    @pytest.mark.parametrize("field,value", [("price", 0), ("quantity", 0), ("name", "  ")])
    def test_listing_rejects_invalid_values(self, field, value):
        payload = {
            "name": "Tomatoes",
            "description": "Fresh roma tomatoes",
            "price": 3.2,
            "quantity": 40,
            "category": "vegetables"
        }
        payload[field] = value

        with pytest.raises(ValidationError):
            CreateListingRequest.model_validate(payload)

    def test_search_defaults_to_active(self):
        params = ListingSearchParams.model_validate({})

        assert params.status == ListingStatus.ACTIVE.value
        assert params.page == 1
        assert params.page_size == 20

    def test_search_requires_complete_geo_filter(self):
        with pytest.raises(ValidationError):
            ListingSearchParams.model_validate({"lat": "1.5", "lng": "36.8"})

    def test_search_price_range(self):
        with pytest.raises(ValidationError):
            ListingSearchParams.model_validate({"minPrice": "10", "maxPrice": "5"})


class TestFarmRequests:
    def test_update_requires_a_field(self):
        with pytest.raises(ValidationError):
            UpdateFarmRequest.model_validate({})

    def test_harvest_before_planting(self):
        with pytest.raises(ValidationError):
            CreateCropRequest.model_validate({
                "cropType": "Maize",
                "plantingDate": "2025-03-01T00:00:00",
                "harvestDate": "2025-02-01T00:00:00"
            })

    def test_mixed_timezone_crop_dates(self):
        request = CreateCropRequest.model_validate({
            "cropType": "Maize",
            "plantingDate": "2025-03-01T00:00:00",
            "harvestDate": "2025-07-01T00:00:00Z"
        })

        assert request.harvest_date == datetime(2025, 7, 1)
        assert request.harvest_date.tzinfo is None

    def test_harvest_before_planting_after_conversion(self):
        """Test that 02:00+05:00 on planting day is the evening before in UTC."""
        with pytest.raises(ValidationError):
            CreateCropRequest.model_validate({
                "cropType": "Maize",
                "plantingDate": "2025-03-01T00:00:00",
                "harvestDate": "2025-03-01T02:00:00+05:00"
            })


class TestProfileRequests:
    @pytest.mark.parametrize("role", ["Admin", "System"])
    def test_platform_roles_cannot_be_self_assigned(self, role):
        with pytest.raises(ValidationError):
            UpsertProfileRequest.model_validate({"primaryRole": role})

        with pytest.raises(ValidationError):
            UpsertProfileRequest.model_validate({"primaryRole": "Farmer", "secondaryRoles": [role]})

    def test_stakeholder_role_accepted(self):
        request = UpsertProfileRequest.model_validate({"primaryRole": "Buyer (Restaurant, Supermarket, Exporter)"})

        assert request.primary_role == StakeholderRole.BUYER.value


class TestNaiveUtc:
    def test_aware_value_is_converted(self):
        value = datetime(2025, 6, 1, 1, 0, tzinfo=timezone(timedelta(hours=3)))

        assert to_naive_utc(value) == datetime(2025, 5, 31, 22, 0)

    def test_string_with_offset(self):
        assert to_naive_utc("2025-06-01T01:00:00+03:00") == datetime(2025, 5, 31, 22, 0)
        assert to_naive_utc("2025-06-01T01:00:00Z") == datetime(2025, 6, 1, 1, 0)

    def test_naive_value_is_kept(self):
        assert to_naive_utc(datetime(2025, 6, 1)) == datetime(2025, 6, 1)

    def test_other_values(self):
        assert to_naive_utc(None) is None


class TestDecisionRequests:
    """Test that decisions cannot move a record back to PENDING."""

    def test_application_decision(self):
        with pytest.raises(ValidationError):
            UpdateApplicationStatusRequest.model_validate({"status": "PENDING"})

        request = UpdateApplicationStatusRequest.model_validate({"status": "MORE_INFO_REQUIRED"})
        assert request.status == "MORE_INFO_REQUIRED"

    def test_claim_decision(self):
        with pytest.raises(ValidationError):
            UpdateClaimStatusRequest.model_validate({"status": "PENDING"})

    def test_application_list_status(self):
        assert ApplicationListParams.model_validate({"status": "All"}).status == "All"
        assert ApplicationListParams.model_validate({"status": "APPROVED"}).status == "APPROVED"

        with pytest.raises(ValidationError):
            ApplicationListParams.model_validate({"status": "MAYBE"})


class TestInsuranceRequests:
    def test_unsupported_threshold_metric(self):
        with pytest.raises(ValidationError):
            CreatePolicyRequest.model_validate({
                "insurerId": "insurer-1",
                "coverageAmount": 1000,
                "premium": 100,
                "startDate": "2025-01-01T00:00:00",
                "endDate": "2025-12-31T00:00:00",
                "parametricThresholds": {"hail": {"threshold": 1, "payoutPercentage": 10}}
            })

    def test_weather_reading_needs_coordinates(self):
        with pytest.raises(ValidationError):
            WeatherReadingRequest.model_validate({
                "location": {"city": "Nakuru"},
                "timestamp": "2025-04-01T12:00:00",
                "rainfall": 80,
                "source": "station-12"
            })


class TestTraceEventRequest:
    def test_requires_subject(self):
        with pytest.raises(ValidationError):
            LogTraceEventRequest.model_validate({"eventType": "SHIPPED", "actorRef": "u1"})

    def test_geo_location_bounds(self):
        with pytest.raises(ValidationError):
            GeoLocation(lat=95, lng=10)
