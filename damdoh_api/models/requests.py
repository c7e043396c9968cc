# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.
"""

import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional
from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator
from .base import CamelModel, to_naive_utc
from .entities import (
    EMAIL_PATTERN, GeoLocation, ContactInfo, ParametricThreshold,
    NotificationPreferences
)
from .enums import (
    StakeholderRole, OrderStatus, TransactionType, ApplicationStatus,
    ProductType, PolicyStatus, ClaimStatus, KnfBatchStatus, TraceEventType, NotificationStatus
)


def _strip_required(v: Optional[str]) -> Optional[str]:
    if v is not None and not v.strip():
        raise ValueError('Field cannot be empty')
    return v.strip() if v is not None else v


RESERVED_ROLES = (StakeholderRole.SYSTEM.value, StakeholderRole.ADMIN.value)


def _reject_reserved_role(v):
    if v in RESERVED_ROLES:
        raise ValueError("Admin and System roles cannot be self-assigned")
    return v


def _check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if not any(c.isupper() for c in v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not any(c.islower() for c in v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not any(c.isdigit() for c in v):
        raise ValueError('Password must contain at least one digit')
    return v


# Request timestamps are compared with stored naive UTC values
UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


# Authentication

class RegisterRequest(CamelModel):
    """Request model for creating an account."""

    email: str = Field(..., description="User email address")
    password: str = Field(..., min_length=8, description="User password")
    display_name: str = Field(..., min_length=1, max_length=200, description="Display name")
    primary_role: StakeholderRole = Field(..., description="Stakeholder role")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """Validate email format."""
        if not re.match(EMAIL_PATTERN, v.lower()):
            raise ValueError('Invalid email format')
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        """Validate password strength."""
        return _check_password_strength(v)

    @field_validator('display_name')
    @classmethod
    def validate_display_name(cls, v):
        return _strip_required(v)

    @field_validator('primary_role')
    @classmethod
    def validate_primary_role(cls, v):
        """System accounts cannot be self-registered."""
        return _reject_reserved_role(v)


class LoginRequest(CamelModel):
    """Request model for user login."""

    email: str = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class RefreshTokenRequest(CamelModel):
    """Request model for token refresh."""

    refresh_token: str = Field(..., min_length=1, description="Refresh token")


# Profiles

class UpsertProfileRequest(CamelModel):
    """Request model for creating or updating a stakeholder profile."""

    primary_role: StakeholderRole
    display_name: Optional[str] = Field(None, min_length=1, max_length=200)
    avatar_url: Optional[str] = None
    secondary_roles: List[StakeholderRole] = Field(default_factory=list)
    profile_summary: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = Field(None, max_length=5000)
    location: Optional[GeoLocation] = None
    areas_of_interest: List[str] = Field(default_factory=list)
    needs: List[str] = Field(default_factory=list)
    contact_info: Optional[ContactInfo] = None
    profile_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('display_name')
    @classmethod
    def validate_display_name(cls, v):
        return _strip_required(v)

    @field_validator('primary_role')
    @classmethod
    def validate_primary_role(cls, v):
        """Admin and System are granted by operators, never through the profile."""
        return _reject_reserved_role(v)

    @field_validator('secondary_roles')
    @classmethod
    def validate_secondary_roles(cls, v):
        return [_reject_reserved_role(role) for role in v]


# Farm management

class CreateFarmRequest(CamelModel):
    """Request model for registering a farm."""

    name: str = Field(..., min_length=1, max_length=200)
    location: str = Field(..., min_length=1, max_length=500)
    size: str = Field(..., min_length=1, max_length=100)
    farm_type: str = Field(..., min_length=1, max_length=100)
    irrigation_methods: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator('name', 'location', 'size', 'farm_type')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


class UpdateFarmRequest(CamelModel):
    """Request model for a partial farm update."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    location: Optional[str] = Field(None, min_length=1, max_length=500)
    size: Optional[str] = Field(None, min_length=1, max_length=100)
    farm_type: Optional[str] = Field(None, min_length=1, max_length=100)
    irrigation_methods: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator('name', 'location', 'size', 'farm_type')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)

    @model_validator(mode='after')
    def validate_not_empty(self):
        if not self.model_fields_set:
            raise ValueError('At least one field must be provided')
        return self


class CreateCropRequest(CamelModel):
    """Request model for planting a crop on a farm."""

    crop_type: str = Field(..., min_length=1, max_length=100)
    planting_date: Optional[UtcDatetime] = None
    harvest_date: Optional[UtcDatetime] = None
    expected_yield: Optional[str] = Field(None, max_length=100)
    current_stage: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('crop_type')
    @classmethod
    def validate_crop_type(cls, v):
        return _strip_required(v)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.planting_date and self.harvest_date and self.harvest_date < self.planting_date:
            raise ValueError('Harvest date cannot be before planting date')
        return self


class CreateKnfBatchRequest(CamelModel):
    """Request model for starting a KNF input batch."""

    type: str = Field(..., min_length=1, max_length=50)
    type_name: str = Field(..., min_length=1, max_length=100)
    ingredients: List[str] = Field(default_factory=list)
    start_date: UtcDatetime
    next_step: Optional[str] = Field(None, max_length=500)
    next_step_date: Optional[UtcDatetime] = None


class UpdateKnfBatchRequest(CamelModel):
    """Request model for changing a KNF batch status."""

    status: KnfBatchStatus
    next_step: Optional[str] = Field(None, max_length=500)
    next_step_date: Optional[UtcDatetime] = None


# Marketplace

class CreateListingRequest(CamelModel):
    """Request model for listing a product or service."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    price: float = Field(..., gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    unit: Optional[str] = Field(None, max_length=50)
    quantity: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    location: Optional[GeoLocation] = None
    image_url: Optional[str] = None
    related_traceability_id: Optional[str] = None
    reorder_level: Optional[int] = Field(None, ge=0)

    @field_validator('name', 'description', 'category')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v):
        return v.upper()


class ListingSearchParams(CamelModel):
    """Query parameters for marketplace search."""

    q: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = None
    seller_id: Optional[str] = None
    status: Optional[str] = Field(default="ACTIVE")
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0, le=20000)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)

    @model_validator(mode='after')
    def validate_ranges(self):
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError('minPrice cannot exceed maxPrice')
        geo = [self.lat, self.lng, self.radius_km]
        if any(v is not None for v in geo) and not all(v is not None for v in geo):
            raise ValueError('lat, lng and radiusKm must be provided together')
        return self


class CreateOrderRequest(CamelModel):
    """Request model for ordering from a listing."""

    listing_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    buyer_notes: Optional[str] = Field(None, max_length=1000)
    buyer_location: Optional[GeoLocation] = None


class UpdateOrderStatusRequest(CamelModel):
    """Request model for moving an order through its lifecycle."""

    status: OrderStatus


class CreateShopRequest(CamelModel):
    """Request model for opening a digital shopfront."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    stakeholder_type: StakeholderRole
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    contact_info: Optional[ContactInfo] = None

    @field_validator('name', 'description')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


# Forums

class CreateTopicRequest(CamelModel):
    """Request model for creating a forum topic."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)

    @field_validator('name', 'description')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


class CreatePostRequest(CamelModel):
    """Request model for posting in a topic."""

    title: str = Field(..., min_length=1, max_length=300)
    content: str = Field(..., min_length=1, max_length=20000)

    @field_validator('title', 'content')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


class CreateReplyRequest(CamelModel):
    """Request model for replying to a post."""

    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator('content')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


# Financial services

class LogTransactionRequest(CamelModel):
    """Request model for logging an income or expense."""

    type: TransactionType
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1, max_length=10)
    description: str = Field(..., min_length=1, max_length=500)
    category: Optional[str] = Field(None, max_length=100)

    @field_validator('currency', 'description')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


class SubmitApplicationRequest(CamelModel):
    """Request model for applying to a financial institution."""

    fi_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., gt=0)
    currency: str = Field(default="USD", min_length=1, max_length=10)
    purpose: str = Field(..., min_length=1, max_length=2000)

    @field_validator('type', 'purpose')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


class UpdateApplicationStatusRequest(CamelModel):
    """Request model for a financial institution's decision."""

    status: ApplicationStatus
    reviewer_notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('status')
    @classmethod
    def validate_decision(cls, v):
        if v == ApplicationStatus.PENDING:
            raise ValueError('Status must be APPROVED, REJECTED or MORE_INFO_REQUIRED')
        return v


class CreateProductRequest(CamelModel):
    """Request model for publishing a financial product."""

    name: str = Field(..., min_length=1, max_length=200)
    type: ProductType
    description: str = Field(..., min_length=1, max_length=2000)
    interest_rate: Optional[float] = Field(None, ge=0)
    max_amount: Optional[float] = Field(None, gt=0)
    target_roles: List[StakeholderRole] = Field(default_factory=list)

    @field_validator('name', 'description')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


# Insurance

class CreatePolicyRequest(CamelModel):
    """Request model for an insurance application."""

    insurer_id: str = Field(..., min_length=1)
    coverage_amount: float = Field(..., gt=0)
    currency: str = Field(default="USD")
    premium: float = Field(..., gt=0)
    start_date: UtcDatetime
    end_date: UtcDatetime
    insured_assets: List[Dict[str, Any]] = Field(default_factory=list)
    parametric_thresholds: Dict[str, ParametricThreshold] = Field(default_factory=dict)

    @field_validator('parametric_thresholds')
    @classmethod
    def validate_threshold_keys(cls, v):
        unknown = set(v) - {"rainfall", "temperature"}
        if unknown:
            raise ValueError(f'Unsupported parametric thresholds: {", ".join(sorted(unknown))}')
        return v


class SubmitClaimRequest(CamelModel):
    """Request model for filing an insurance claim."""

    policy_id: str = Field(..., min_length=1)
    incident_date: UtcDatetime
    claimed_amount: float = Field(..., gt=0)
    currency: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=5000)
    supporting_documents_urls: List[str] = Field(default_factory=list)

    @field_validator('description')
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)


class UpdateClaimStatusRequest(CamelModel):
    """Request model for an insurer's claim decision."""

    status: ClaimStatus
    payout_amount: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('status')
    @classmethod
    def validate_decision(cls, v):
        if v == ClaimStatus.PENDING:
            raise ValueError('Status must be APPROVED or REJECTED')
        return v


class WeatherReadingRequest(CamelModel):
    """Request model for recording a weather observation."""

    location: GeoLocation
    timestamp: UtcDatetime
    temperature: Optional[float] = None
    humidity: Optional[float] = Field(None, ge=0, le=100)
    rainfall: Optional[float] = Field(None, ge=0)
    wind_speed: Optional[float] = Field(None, ge=0)
    source: str = Field(..., min_length=1, max_length=100)

    @field_validator('location')
    @classmethod
    def validate_coordinates(cls, v):
        if not v.has_coordinates():
            raise ValueError('Location must include lat and lng')
        return v


# Traceability

class GenerateVtiRequest(CamelModel):
    """Request model for generating a VTI."""

    type: str = Field(..., min_length=1, max_length=100)
    linked_vtis: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_public_traceable: bool = False

    @field_validator('type')
    @classmethod
    def validate_type(cls, v):
        return _strip_required(v)


class LogTraceEventRequest(CamelModel):
    """Request model for a generic traceability event."""

    vti_id: Optional[str] = None
    farm_field_id: Optional[str] = None
    event_type: TraceEventType
    actor_ref: str = Field(..., min_length=1)
    geo_location: Optional[GeoLocation] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_subject(self):
        if not self.vti_id and not self.farm_field_id:
            raise ValueError('Either vtiId or farmFieldId is required')
        return self


class HarvestEventRequest(CamelModel):
    """Request model for logging a harvest."""

    farm_field_id: str = Field(..., min_length=1)
    crop_type: str = Field(..., min_length=1, max_length=100)
    yield_kg: Optional[float] = Field(None, ge=0)
    quality_grade: Optional[str] = Field(None, max_length=50)
    actor_vti_id: Optional[str] = None
    geo_location: Optional[GeoLocation] = None


class InputApplicationRequest(CamelModel):
    """Request model for logging fertilizer or pesticide application."""

    farm_field_id: str = Field(..., min_length=1)
    input_id: str = Field(..., min_length=1)
    application_date: UtcDatetime
    quantity: float = Field(..., ge=0)
    unit: str = Field(..., min_length=1, max_length=20)
    method: Optional[str] = Field(None, max_length=100)
    actor_vti_id: Optional[str] = None
    geo_location: Optional[GeoLocation] = None


class ObservationEventRequest(CamelModel):
    """Request model for logging a field observation."""

    farm_field_id: str = Field(..., min_length=1)
    observation_type: str = Field(..., min_length=1, max_length=100)
    observation_date: UtcDatetime
    details: str = Field(..., min_length=1, max_length=5000)
    media_urls: List[str] = Field(default_factory=list)
    actor_vti_id: Optional[str] = None
    geo_location: Optional[GeoLocation] = None


# Notifications

class MarkNotificationsReadRequest(CamelModel):
    """Request model for marking several notifications read."""

    notification_ids: List[str] = Field(..., min_length=1, max_length=500)


class UpdatePreferencesRequest(NotificationPreferences):
    """Request model for replacing notification preferences."""


class NotificationListParams(CamelModel):
    """Query parameters for listing notifications."""

    status: Optional[NotificationStatus] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class PaginationParams(CamelModel):
    """Common pagination parameters."""

    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")


class ProfileListParams(PaginationParams):
    """Query parameters for browsing stakeholder profiles."""

    role: Optional[StakeholderRole] = None


class OrderListParams(PaginationParams):
    """Query parameters for listing the caller's orders."""

    role: Literal["buyer", "seller"] = "buyer"


class ApplicationListParams(CamelModel):
    """Query parameters for listing financial applications."""

    status: Optional[str] = Field(None, description="Application status, or All")

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v is None or v == "All":
            return v
        return ApplicationStatus(v).value


class ProductListParams(CamelModel):
    """Query parameters for listing financial products."""

    fi_id: Optional[str] = None


class PolicyListParams(CamelModel):
    """Query parameters for listing insurance policies."""

    status: Optional[PolicyStatus] = None


class ClaimListParams(CamelModel):
    """Query parameters for listing insurance claims."""

    status: Optional[ClaimStatus] = None


class CursorParams(CamelModel):
    """Cursor pagination: the id of the last item already seen."""

    after: Optional[str] = None


# URL path parameters

class UserPath(BaseModel):
    user_id: str


class FarmPath(BaseModel):
    farm_id: str


class KnfBatchPath(BaseModel):
    batch_id: str


class ListingPath(BaseModel):
    listing_id: str


class OrderPath(BaseModel):
    order_id: str


class ShopPath(BaseModel):
    shop_id: str


class TopicPath(BaseModel):
    topic_id: str


class PostPath(BaseModel):
    post_id: str


class ApplicationPath(BaseModel):
    application_id: str


class ClaimPath(BaseModel):
    claim_id: str


class VtiPath(BaseModel):
    vti_id: str


class FarmFieldPath(BaseModel):
    farm_field_id: str


class NotificationPath(BaseModel):
    notification_id: str
