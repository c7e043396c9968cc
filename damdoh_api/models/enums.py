# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the DamDoh platform.
"""

from enum import Enum


class StakeholderRole(str, Enum):
    """Stakeholder role a user registers under."""
    ADMIN = "Admin"
    SYSTEM = "System"
    FARMER = "Farmer"
    COOPERATIVE = "Agricultural Cooperative"
    FIELD_AGENT = "Field Agent/Agronomist (DamDoh Internal)"
    OPERATIONS_TEAM = "Operations/Logistics Team (DamDoh Internal)"
    QA_TEAM = "Quality Assurance Team (DamDoh Internal)"
    PROCESSING_UNIT = "Processing & Packaging Unit"
    BUYER = "Buyer (Restaurant, Supermarket, Exporter)"
    INPUT_SUPPLIER = "Input Supplier (Seed, Fertilizer, Pesticide)"
    EQUIPMENT_SUPPLIER = "Equipment Supplier (Sales of Machinery/IoT)"
    FINANCIAL_INSTITUTION = "Financial Institution (Micro-finance/Loans)"
    REGULATOR = "Government Regulator/Auditor"
    CERTIFICATION_BODY = "Certification Body (Organic, Fair Trade etc.)"
    CONSUMER = "Consumer"
    RESEARCHER = "Researcher/Academic"
    LOGISTICS_PARTNER = "Logistics Partner (Third-Party Transporter)"
    WAREHOUSE = "Storage/Warehouse Facility"
    AGRONOMY_EXPERT = "Agronomy Expert/Consultant (External)"
    AGRO_TOURISM = "Agro-Tourism Operator"
    ENERGY_PROVIDER = "Energy Solutions Provider (Solar, Biogas)"
    AGRO_EXPORT = "Agro-Export Facilitator/Customs Broker"
    AGRI_TECH = "Agri-Tech Innovator/Developer"
    WASTE_MANAGEMENT = "Waste Management & Compost Facility"
    INSURANCE_PROVIDER = "Insurance Provider"
    CROWDFUNDER = "Crowdfunder (Impact Investor, Individual)"


class ListingStatus(str, Enum):
    """Marketplace listing status."""
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    INACTIVE = "INACTIVE"


class OrderStatus(str, Enum):
    """Marketplace order lifecycle status."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class TransactionType(str, Enum):
    """Farm bookkeeping transaction type."""
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class ApplicationStatus(str, Enum):
    """Financial application review status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MORE_INFO_REQUIRED = "MORE_INFO_REQUIRED"


class ProductType(str, Enum):
    """Financial product type."""
    LOAN = "LOAN"
    GRANT = "GRANT"
    INSURANCE = "INSURANCE"
    SAVINGS = "SAVINGS"


class PolicyStatus(str, Enum):
    """Insurance policy status."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class ClaimStatus(str, Enum):
    """Insurance claim status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TraceEventType(str, Enum):
    """Supply chain event recorded against a VTI or farm field."""
    PLANTED = "PLANTED"
    HARVESTED = "HARVESTED"
    INPUT_APPLIED = "INPUT_APPLIED"
    OBSERVED = "OBSERVED"
    PROCESSED = "PROCESSED"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"


class NotificationType(str, Enum):
    """In-app notification type."""
    NEW_ORDER = "NEW_ORDER"
    ORDER_STATUS = "ORDER_STATUS"
    FORUM_POST = "FORUM_POST"
    FORUM_REPLY = "FORUM_REPLY"
    APPLICATION_STATUS = "APPLICATION_STATUS"
    CLAIM_STATUS = "CLAIM_STATUS"
    SYSTEM = "SYSTEM"


class NotificationStatus(str, Enum):
    """In-app notification read status."""
    UNREAD = "UNREAD"
    READ = "READ"


class KnfBatchStatus(str, Enum):
    """Korean Natural Farming input batch status."""
    FERMENTING = "Fermenting"
    READY = "Ready"
    USED = "Used"
    ARCHIVED = "Archived"


class UserStatus(str, Enum):
    """User account status enumeration."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
