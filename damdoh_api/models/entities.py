# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the DamDoh platform.
"""

import re
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Set
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, CamelModel
from .enums import (
    StakeholderRole,
    UserStatus,
    ListingStatus,
    OrderStatus,
    TransactionType,
    ApplicationStatus,
    ProductType,
    PolicyStatus,
    ClaimStatus,
    TraceEventType,
    NotificationType,
    NotificationStatus,
    KnfBatchStatus
)


EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


def _require_text(value: Optional[str], label: str) -> Optional[str]:
    """Strip a text value and reject blank strings."""
    if value is None:
        return value
    if not value.strip():
        raise ValueError(f'{label} cannot be empty')
    return value.strip()


class GeoLocation(CamelModel):
    """Geographic point with an optional human readable address."""

    lat: Optional[float] = Field(None, ge=-90, le=90, description="Latitude")
    lng: Optional[float] = Field(None, ge=-180, le=180, description="Longitude")
    address: Optional[str] = Field(None, max_length=500, description="Address")
    country: Optional[str] = Field(None, max_length=100, description="Country")
    city: Optional[str] = Field(None, max_length=100, description="City")

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


class ContactInfo(CamelModel):
    """Public contact details of a stakeholder."""

    phone: Optional[str] = Field(None, max_length=50)
    website: Optional[str] = Field(None, max_length=300)


class User(BaseEntity):
    """User account with credentials."""

    private_fields: ClassVar[Set[str]] = {"password_hash", "failed_login_attempts"}

    email: str = Field(..., description="User email address")
    display_name: str = Field(..., min_length=1, max_length=200, description="Display name")
    password_hash: str = Field(..., description="Hashed password")
    primary_role: StakeholderRole = Field(..., description="Stakeholder role")
    status: UserStatus = Field(default=UserStatus.ACTIVE, description="User account status")
    last_login: Optional[datetime] = Field(None, description="Last login timestamp")
    failed_login_attempts: int = Field(default=0, description="Failed login attempt counter")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """Validate email format."""
        if not re.match(EMAIL_PATTERN, v.lower()):
            raise ValueError('Invalid email format')
        return v.lower()

    @field_validator('display_name')
    @classmethod
    def validate_display_name(cls, v):
        return _require_text(v, 'Display name')

    def is_active(self) -> bool:
        """Check if user account is active."""
        return self.status == UserStatus.ACTIVE and not self.is_deleted()


class UserProfile(BaseEntity):
    """Public stakeholder profile, keyed by the owning user's id."""

    user_id: str = Field(..., description="Owning user ID")
    email: Optional[str] = Field(None, description="Contact email")
    display_name: Optional[str] = Field(None, max_length=200, description="Display name")
    avatar_url: Optional[str] = Field(None, description="Avatar image URL")
    primary_role: StakeholderRole = Field(..., description="Stakeholder role")
    secondary_roles: List[StakeholderRole] = Field(default_factory=list)
    profile_summary: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = Field(None, max_length=5000)
    location: Optional[GeoLocation] = None
    areas_of_interest: List[str] = Field(default_factory=list)
    needs: List[str] = Field(default_factory=list)
    contact_info: Optional[ContactInfo] = None
    profile_data: Dict[str, Any] = Field(default_factory=dict, description="Role specific profile data")


class Farm(BaseEntity):
    """Farm owned by a stakeholder."""

    owner_id: str = Field(..., description="Owning user ID")
    name: str = Field(..., min_length=1, max_length=200)
    location: str = Field(..., min_length=1, max_length=500)
    size: str = Field(..., min_length=1, max_length=100)
    farm_type: str = Field(..., min_length=1, max_length=100)
    irrigation_methods: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator('name', 'location', 'size', 'farm_type')
    @classmethod
    def validate_text(cls, v, info):
        return _require_text(v, info.field_name)


class Crop(BaseEntity):
    """Crop planted on a farm."""

    farm_id: str = Field(..., description="Farm ID")
    owner_id: str = Field(..., description="Owning user ID")
    crop_type: str = Field(..., min_length=1, max_length=100)
    planting_date: Optional[datetime] = None
    harvest_date: Optional[datetime] = None
    expected_yield: Optional[str] = Field(None, max_length=100)
    current_stage: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class KnfBatch(BaseEntity):
    """Korean Natural Farming input batch."""

    user_id: str = Field(..., description="Owning user ID")
    type: str = Field(..., min_length=1, max_length=50)
    type_name: str = Field(..., min_length=1, max_length=100)
    ingredients: List[str] = Field(default_factory=list)
    start_date: datetime
    status: KnfBatchStatus = Field(default=KnfBatchStatus.FERMENTING)
    next_step: Optional[str] = Field(None, max_length=500)
    next_step_date: Optional[datetime] = None


class MarketplaceListing(BaseEntity):
    """Product or service offered on the marketplace."""

    seller_id: str = Field(..., description="Seller user ID")
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    price: float = Field(..., gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    unit: Optional[str] = Field(None, max_length=50)
    quantity: int = Field(..., gt=0, description="Quantity originally listed")
    available_quantity: int = Field(..., ge=0, description="Quantity still available")
    category: str = Field(..., min_length=1, max_length=100)
    location: Optional[GeoLocation] = None
    image_url: Optional[str] = None
    related_traceability_id: Optional[str] = Field(None, description="VTI of the listed batch")
    reorder_level: Optional[int] = Field(None, ge=0)
    status: ListingStatus = Field(default=ListingStatus.ACTIVE)

    @field_validator('name', 'description', 'category')
    @classmethod
    def validate_text(cls, v, info):
        return _require_text(v, info.field_name)

    @model_validator(mode='after')
    def validate_quantities(self):
        if self.available_quantity > self.quantity:
            raise ValueError('Available quantity cannot exceed listed quantity')
        return self


class MarketplaceOrder(BaseEntity):
    """Order placed by a buyer on a listing."""

    listing_id: str
    listing_name: str
    buyer_id: str
    seller_id: str
    quantity: int = Field(..., gt=0)
    unit_price: float = Field(..., gt=0)
    total_price: float = Field(..., gt=0)
    currency: str = Field(default="USD")
    status: OrderStatus = Field(default=OrderStatus.PENDING)
    buyer_notes: Optional[str] = Field(None, max_length=1000)
    buyer_location: Optional[GeoLocation] = None
    status_history: List[Dict[str, Any]] = Field(default_factory=list)


class Shop(BaseEntity):
    """Digital shopfront owned by a stakeholder."""

    owner_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    stakeholder_type: StakeholderRole
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    contact_info: Optional[ContactInfo] = None

    @field_validator('name', 'description')
    @classmethod
    def validate_text(cls, v, info):
        return _require_text(v, info.field_name)


class ForumTopic(BaseEntity):
    """Forum discussion topic."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    post_count: int = Field(default=0, ge=0)
    last_activity_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('name', 'description')
    @classmethod
    def validate_text(cls, v, info):
        return _require_text(v, info.field_name)


class ForumPost(BaseEntity):
    """Post inside a forum topic."""

    topic_id: str
    author_ref: str
    author_name: Optional[str] = None
    author_avatar: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=300)
    content: str = Field(..., min_length=1, max_length=20000)
    reply_count: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)

    @field_validator('title', 'content')
    @classmethod
    def validate_text(cls, v, info):
        return _require_text(v, info.field_name)


class ForumReply(BaseEntity):
    """Reply to a forum post."""

    post_id: str
    topic_id: str
    author_ref: str
    author_name: Optional[str] = None
    author_avatar: Optional[str] = None
    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        return _require_text(v, 'Content')


class FinancialTransaction(BaseEntity):
    """Income or expense line in a stakeholder's books."""

    transaction_id: str
    user_id: str
    type: TransactionType
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1, max_length=10)
    description: str = Field(..., min_length=1, max_length=500)
    category: str = Field(default="Uncategorized", max_length=100)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class FinancialApplication(BaseEntity):
    """Loan or grant application submitted to a financial institution."""

    applicant_id: str
    applicant_name: Optional[str] = None
    fi_id: str
    type: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., gt=0)
    currency: str = Field(default="USD")
    purpose: str = Field(..., min_length=1, max_length=2000)
    status: ApplicationStatus = Field(default=ApplicationStatus.PENDING)
    submitted_at: datetime = Field(default_factory=datetime.utcnow)
    reviewer_notes: Optional[str] = Field(None, max_length=2000)
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None


class FinancialProduct(BaseEntity):
    """Product advertised by a financial institution."""

    fi_id: str
    name: str = Field(..., min_length=1, max_length=200)
    type: ProductType
    description: str = Field(..., min_length=1, max_length=2000)
    interest_rate: Optional[float] = Field(None, ge=0)
    max_amount: Optional[float] = Field(None, gt=0)
    target_roles: List[StakeholderRole] = Field(default_factory=list)
    status: str = Field(default="ACTIVE")

    @model_validator(mode='after')
    def validate_interest_rate(self):
        """Interest rates only apply to loans."""
        if self.type != ProductType.LOAN and self.interest_rate is not None:
            raise ValueError('Interest rate is only valid for LOAN products')
        return self


class ParametricThreshold(CamelModel):
    """Weather threshold that triggers an automatic payout."""

    threshold: float
    payout_percentage: float = Field(..., gt=0, le=100)


class RiskAssessment(CamelModel):
    """Rule-based risk assessment attached to a policy."""

    score: float = Field(..., ge=0, le=10)
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    assessed_at: datetime = Field(default_factory=datetime.utcnow)


class InsurancePolicy(BaseEntity):
    """Insurance policy held by a stakeholder."""

    policy_id: str
    policyholder_id: str
    insurer_id: str
    coverage_amount: float = Field(..., gt=0)
    currency: str = Field(default="USD")
    premium: float = Field(..., gt=0)
    start_date: datetime
    end_date: datetime
    insured_assets: List[Dict[str, Any]] = Field(default_factory=list)
    parametric_thresholds: Dict[str, ParametricThreshold] = Field(default_factory=dict)
    status: PolicyStatus = Field(default=PolicyStatus.ACTIVE)
    risk_assessment: Optional[RiskAssessment] = None

    @model_validator(mode='after')
    def validate_period(self):
        if self.start_date >= self.end_date:
            raise ValueError('Policy start date must be before end date')
        return self


class InsuranceClaim(BaseEntity):
    """Claim filed against an insurance policy."""

    claim_id: str
    policy_id: str
    policyholder_id: str
    insurer_id: str
    incident_date: datetime
    claimed_amount: float = Field(..., gt=0)
    currency: str = Field(default="USD")
    description: str = Field(..., min_length=1, max_length=5000)
    supporting_documents_urls: List[str] = Field(default_factory=list)
    status: ClaimStatus = Field(default=ClaimStatus.PENDING)
    submission_date: datetime = Field(default_factory=datetime.utcnow)
    payout_amount: Optional[float] = Field(None, ge=0)
    payout_date: Optional[datetime] = None
    assessment_details: Dict[str, Any] = Field(default_factory=dict)


class WeatherReading(BaseEntity):
    """Weather observation used for parametric insurance."""

    location: GeoLocation
    timestamp: datetime
    temperature: Optional[float] = None
    humidity: Optional[float] = Field(None, ge=0, le=100)
    rainfall: Optional[float] = Field(None, ge=0)
    wind_speed: Optional[float] = Field(None, ge=0)
    source: str = Field(..., min_length=1, max_length=100)


class VtiRecord(BaseEntity):
    """Verifiable Traceability Id for a batch moving through the supply chain."""

    vti_id: str
    type: str = Field(..., min_length=1, max_length=100)
    creator_ref: str
    linked_vtis: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_public_traceable: bool = Field(default=False)


class TraceEvent(BaseEntity):
    """Event logged against a VTI or a farm field."""

    vti_id: Optional[str] = None
    farm_field_id: Optional[str] = None
    event_type: TraceEventType
    actor_ref: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    geo_location: Optional[GeoLocation] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    is_public_traceable: bool = Field(default=False)

    @model_validator(mode='after')
    def validate_subject(self):
        """An event must be attached to a VTI or a farm field."""
        if not self.vti_id and not self.farm_field_id:
            raise ValueError('Either vti_id or farm_field_id is required')
        return self


class LinkedEntity(CamelModel):
    """Reference from a notification to the document it concerns."""

    collection: str
    document_id: str


class Notification(BaseEntity):
    """In-app notification delivered to a user."""

    user_id: str
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=2000)
    actor_id: Optional[str] = None
    linked_entity: Optional[LinkedEntity] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = Field(default=NotificationStatus.UNREAD)
    read_at: Optional[datetime] = None

    def mark_read(self) -> None:
        """Mark the notification as read."""
        self.status = NotificationStatus.READ
        self.read_at = datetime.utcnow()


class ChannelPreference(CamelModel):
    """Delivery preference for one notification channel."""

    enabled: bool = True
    types: List[NotificationType] = Field(default_factory=lambda: list(NotificationType))


class QuietHours(CamelModel):
    """Daily window during which notifications are suppressed."""

    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "UTC"

    @field_validator('start', 'end')
    @classmethod
    def validate_time(cls, v):
        """Validate HH:MM format."""
        if not re.match(r'^([01]\d|2[0-3]):[0-5]\d$', v):
            raise ValueError('Time must use HH:MM 24-hour format')
        return v


class NotificationPreferences(CamelModel):
    """Per-user notification delivery preferences."""

    email: ChannelPreference = Field(default_factory=ChannelPreference)
    push: ChannelPreference = Field(default_factory=ChannelPreference)
    in_app: ChannelPreference = Field(default_factory=ChannelPreference)
    quiet_hours: QuietHours = Field(default_factory=QuietHours)


class UserContext(BaseModel):
    """User context for request processing with authentication and authorization data."""

    user_id: str = Field(..., description="Authenticated user ID")
    email: Optional[str] = Field(None, description="User email")
    display_name: Optional[str] = Field(None, description="User display name")
    role: Optional[StakeholderRole] = Field(None, description="Primary stakeholder role")
    permissions: List[str] = Field(default_factory=list, description="User's effective permissions")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    session_id: Optional[str] = Field(None, description="Session identifier")

    model_config = ConfigDict(
        use_enum_values=True
    )

    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions

    def has_role(self, *roles: StakeholderRole) -> bool:
        """Check if the user's primary role is one of the given roles."""
        return self.role in {StakeholderRole(r).value for r in roles}
