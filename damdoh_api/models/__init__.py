# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the DamDoh platform.
"""

# Base models
from .base import BaseEntity, CamelModel, generate_object_id

# Enumerations
from .enums import (
    StakeholderRole,
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
    KnfBatchStatus,
    UserStatus
)

# Core entities
from .entities import (
    GeoLocation,
    ContactInfo,
    User,
    UserProfile,
    Farm,
    Crop,
    KnfBatch,
    MarketplaceListing,
    MarketplaceOrder,
    Shop,
    ForumTopic,
    ForumPost,
    ForumReply,
    FinancialTransaction,
    FinancialApplication,
    FinancialProduct,
    ParametricThreshold,
    RiskAssessment,
    InsurancePolicy,
    InsuranceClaim,
    WeatherReading,
    VtiRecord,
    TraceEvent,
    LinkedEntity,
    Notification,
    NotificationPreferences,
    UserContext
)

# Request models
from .requests import (
    RegisterRequest,
    LoginRequest,
    RefreshTokenRequest,
    UpsertProfileRequest,
    CreateFarmRequest,
    UpdateFarmRequest,
    CreateCropRequest,
    CreateKnfBatchRequest,
    UpdateKnfBatchRequest,
    CreateListingRequest,
    ListingSearchParams,
    CreateOrderRequest,
    UpdateOrderStatusRequest,
    CreateShopRequest,
    CreateTopicRequest,
    CreatePostRequest,
    CreateReplyRequest,
    LogTransactionRequest,
    SubmitApplicationRequest,
    UpdateApplicationStatusRequest,
    CreateProductRequest,
    CreatePolicyRequest,
    SubmitClaimRequest,
    UpdateClaimStatusRequest,
    WeatherReadingRequest,
    GenerateVtiRequest,
    LogTraceEventRequest,
    HarvestEventRequest,
    InputApplicationRequest,
    ObservationEventRequest,
    MarkNotificationsReadRequest,
    UpdatePreferencesRequest,
    NotificationListParams,
    PaginationParams,
    ProfileListParams,
    OrderListParams,
    ApplicationListParams,
    ProductListParams,
    PolicyListParams,
    ClaimListParams,
    CursorParams,
    UserPath,
    FarmPath,
    KnfBatchPath,
    ListingPath,
    OrderPath,
    ShopPath,
    TopicPath,
    PostPath,
    ApplicationPath,
    ClaimPath,
    VtiPath,
    FarmFieldPath,
    NotificationPath
)

# Response models
from .responses import (
    HalLink,
    AuthUserResponse,
    LoginResponse,
    RefreshTokenResponse
)

__all__ = [
    # Base models
    "BaseEntity",
    "CamelModel",
    "generate_object_id",

    # Enumerations
    "StakeholderRole",
    "ListingStatus",
    "OrderStatus",
    "TransactionType",
    "ApplicationStatus",
    "ProductType",
    "PolicyStatus",
    "ClaimStatus",
    "TraceEventType",
    "NotificationType",
    "NotificationStatus",
    "KnfBatchStatus",
    "UserStatus",

    # Core entities
    "GeoLocation",
    "ContactInfo",
    "User",
    "UserProfile",
    "Farm",
    "Crop",
    "KnfBatch",
    "MarketplaceListing",
    "MarketplaceOrder",
    "Shop",
    "ForumTopic",
    "ForumPost",
    "ForumReply",
    "FinancialTransaction",
    "FinancialApplication",
    "FinancialProduct",
    "ParametricThreshold",
    "RiskAssessment",
    "InsurancePolicy",
    "InsuranceClaim",
    "WeatherReading",
    "VtiRecord",
    "TraceEvent",
    "LinkedEntity",
    "Notification",
    "NotificationPreferences",
    "UserContext",

    # Request models
    "RegisterRequest",
    "LoginRequest",
    "RefreshTokenRequest",
    "UpsertProfileRequest",
    "CreateFarmRequest",
    "UpdateFarmRequest",
    "CreateCropRequest",
    "CreateKnfBatchRequest",
    "UpdateKnfBatchRequest",
    "CreateListingRequest",
    "ListingSearchParams",
    "CreateOrderRequest",
    "UpdateOrderStatusRequest",
    "CreateShopRequest",
    "CreateTopicRequest",
    "CreatePostRequest",
    "CreateReplyRequest",
    "LogTransactionRequest",
    "SubmitApplicationRequest",
    "UpdateApplicationStatusRequest",
    "CreateProductRequest",
    "CreatePolicyRequest",
    "SubmitClaimRequest",
    "UpdateClaimStatusRequest",
    "WeatherReadingRequest",
    "GenerateVtiRequest",
    "LogTraceEventRequest",
    "HarvestEventRequest",
    "InputApplicationRequest",
    "ObservationEventRequest",
    "MarkNotificationsReadRequest",
    "UpdatePreferencesRequest",
    "NotificationListParams",
    "PaginationParams",
    "ProfileListParams",
    "OrderListParams",
    "ApplicationListParams",
    "ProductListParams",
    "PolicyListParams",
    "ClaimListParams",
    "CursorParams",

    # Path parameters
    "UserPath",
    "FarmPath",
    "KnfBatchPath",
    "ListingPath",
    "OrderPath",
    "ShopPath",
    "TopicPath",
    "PostPath",
    "ApplicationPath",
    "ClaimPath",
    "VtiPath",
    "FarmFieldPath",
    "NotificationPath",

    # Response models
    "HalLink",
    "AuthUserResponse",
    "LoginResponse",
    "RefreshTokenResponse"
]
