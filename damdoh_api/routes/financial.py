# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Financial services endpoints: bookkeeping, funding applications and products.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from typing import Dict, Any

from ..domain.authorization import FINANCE_APPLY, FINANCE_REVIEW, FINANCE_TRACK, check_participant
from ..domain.finance import (
    SUMMARY_WINDOW, new_transaction_id, summarize_transactions, review_updates
)
from ..middleware.auth import require_jwt, require_permission
from ..middleware.error_handler import AuthorizationException, BusinessRuleException, ConflictException
from ..middleware.validation import validated_body, validated_query
from ..models.entities import (
    UserContext, FinancialTransaction, FinancialApplication, FinancialProduct, LinkedEntity
)
from ..models.enums import ApplicationStatus, NotificationType, ProductType, StakeholderRole
from ..models.requests import (
    LogTransactionRequest, SubmitApplicationRequest, UpdateApplicationStatusRequest,
    CreateProductRequest, ApplicationListParams, ProductListParams, ApplicationPath
)
from ..services.notifications import create_notification
from ..utils.documents import present, present_all, get_or_404

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

financial_tag = Tag(name="Financial", description="Bookkeeping, financial applications and products")
financial_bp = APIBlueprint(
    'financial',
    __name__,
    url_prefix='/api/financial',
    abp_tags=[financial_tag]
)

TRANSACTIONS = "financial_transactions"
APPLICATIONS = "financial_applications"
PRODUCTS = "financial_products"
PROFILES = "profiles"

OPEN_APPLICATION_STATUSES = (ApplicationStatus.PENDING.value, ApplicationStatus.MORE_INFO_REQUIRED.value)


def _is_financial_institution(user_context: UserContext) -> bool:
    return user_context.has_role(StakeholderRole.FINANCIAL_INSTITUTION)


def _format_application(application: Dict[str, Any], user_context: UserContext) -> Dict[str, Any]:
    is_reviewer = application.get("fiId") == user_context.user_id
    return current_app.hal_formatter.format_application(application, is_reviewer)


# Bookkeeping

@financial_bp.post('/transactions')
@require_jwt
@require_permission(FINANCE_TRACK)
@validated_body(LogTransactionRequest)
def log_transaction(user_context: UserContext, payload: LogTransactionRequest):
    """Record an income or expense for the caller."""
    with tracer.start_as_current_span(
        "financial.log_transaction",
        attributes={"user.id": user_context.user_id, "transaction.type": payload.type}
    ) as span:
        transaction = FinancialTransaction(
            transaction_id=new_transaction_id(),
            user_id=user_context.user_id,
            type=payload.type,
            amount=payload.amount,
            currency=payload.currency,
            description=payload.description,
            category=payload.category or "Uncategorized",
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        current_app.mongodb_service.create(TRANSACTIONS, transaction.to_document(), user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_attribute("transaction.id", transaction.transaction_id)
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Transaction logged",
            extra={"transaction_id": transaction.transaction_id, "user_id": user_context.user_id}
        )

        return jsonify(current_app.hal_formatter.format_resource(
            transaction.to_api(), "/api/financial/summary"
        )), 201


@financial_bp.get('/summary')
@require_jwt
@require_permission(FINANCE_TRACK)
def financial_summary(user_context: UserContext):
    """Income, expense and net flow over the caller's latest transactions."""
    with tracer.start_as_current_span("financial.summary", attributes={"user.id": user_context.user_id}):
        transactions = current_app.mongodb_service.find_many(
            TRANSACTIONS, {"userId": user_context.user_id},
            sort=[("timestamp", -1)], limit=SUMMARY_WINDOW
        )
        summary = summarize_transactions(present_all(transactions))

        return jsonify(current_app.hal_formatter.format_resource(summary, "/api/financial/summary")), 200


# Applications

@financial_bp.post('/applications')
@require_jwt
@require_permission(FINANCE_APPLY)
@validated_body(SubmitApplicationRequest)
def submit_application(user_context: UserContext, payload: SubmitApplicationRequest):
    """
    Apply to a financial institution.

    The institution is notified of the new application.
    """
    with tracer.start_as_current_span(
        "financial.submit_application",
        attributes={"user.id": user_context.user_id, "application.fi_id": payload.fi_id}
    ) as span:
        mongodb_service = current_app.mongodb_service

        institution = mongodb_service.find_one(PROFILES, payload.fi_id)
        if institution is None or institution.get("primaryRole") != StakeholderRole.FINANCIAL_INSTITUTION.value:
            span.set_status(Status(StatusCode.ERROR, "Invalid financial institution"))
            raise BusinessRuleException("The selected financial institution is not valid")

        application = FinancialApplication(
            applicant_id=user_context.user_id,
            applicant_name=user_context.display_name,
            fi_id=payload.fi_id,
            type=payload.type,
            amount=payload.amount,
            currency=payload.currency,
            purpose=payload.purpose,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        mongodb_service.create(APPLICATIONS, application.to_document(), user_context.user_id)

        create_notification(
            mongodb_service,
            current_app.amqp_service,
            payload.fi_id,
            NotificationType.APPLICATION_STATUS.value,
            "New financial application",
            f"{application.applicant_name or 'A stakeholder'} applied for "
            f"{application.amount:,.2f} {application.currency} ({application.type})",
            actor_id=user_context.user_id,
            linked_entity=LinkedEntity(collection=APPLICATIONS, document_id=application.id),
            data={"applicationId": application.id}
        )
        current_app.redis_service.invalidate_dashboards([user_context.user_id, payload.fi_id])

        span.set_attribute("application.id", application.id)
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Financial application submitted",
            extra={"application_id": application.id, "fi_id": payload.fi_id}
        )

        return jsonify(_format_application(application.to_api(), user_context)), 201


@financial_bp.get('/applications')
@require_jwt
@validated_query(ApplicationListParams)
def list_applications(user_context: UserContext, params: ApplicationListParams):
    """
    List applications.

    Financial institutions see the applications assigned to them; everyone
    else sees their own.
    """
    with tracer.start_as_current_span("financial.list_applications") as span:
        if _is_financial_institution(user_context):
            filters: Dict[str, Any] = {"fiId": user_context.user_id}
        else:
            filters = {"applicantId": user_context.user_id}

        if params.status and params.status != "All":
            filters["status"] = params.status

        applications = current_app.mongodb_service.find_many(
            APPLICATIONS, filters, sort=[("submittedAt", -1)]
        )
        span.set_attribute("applications.count", len(applications))

        items = [_format_application(present(a), user_context) for a in applications]
        return jsonify(current_app.hal_formatter.format_list(items, "/api/financial/applications")), 200


@financial_bp.get('/applications/<application_id>')
@require_jwt
def get_application(user_context: UserContext, path: ApplicationPath):
    """Get an application. The assigned institution also sees the applicant's profile."""
    with tracer.start_as_current_span(
        "financial.get_application", attributes={"application.id": path.application_id}
    ):
        mongodb_service = current_app.mongodb_service
        application = get_or_404(mongodb_service, APPLICATIONS, path.application_id, "Application")

        result = check_participant(
            user_context, [application.get("applicantId"), application.get("fiId")], "application"
        )
        if not result.allowed:
            raise AuthorizationException(result.reason)

        data = present(application)
        if application.get("fiId") == user_context.user_id:
            data["applicant"] = present(mongodb_service.find_one(PROFILES, application["applicantId"]))

        return jsonify(_format_application(data, user_context)), 200


@financial_bp.patch('/applications/<application_id>/status')
@require_jwt
@require_permission(FINANCE_REVIEW)
@validated_body(UpdateApplicationStatusRequest)
def review_application(user_context: UserContext, path: ApplicationPath,
                       payload: UpdateApplicationStatusRequest):
    """Record the assigned institution's decision and notify the applicant."""
    with tracer.start_as_current_span(
        "financial.review_application",
        attributes={"application.id": path.application_id, "application.status": payload.status}
    ) as span:
        mongodb_service = current_app.mongodb_service
        application = get_or_404(mongodb_service, APPLICATIONS, path.application_id, "Application")

        if application.get("fiId") != user_context.user_id:
            span.set_status(Status(StatusCode.ERROR, "Not the assigned institution"))
            raise AuthorizationException("Only the assigned financial institution can review this application")

        if application.get("status") not in OPEN_APPLICATION_STATUSES:
            span.set_status(Status(StatusCode.ERROR, "Application already decided"))
            raise BusinessRuleException(
                f"Application has already been {str(application.get('status')).lower()}"
            )

        updates = review_updates(payload.status, user_context.user_id, payload.reviewer_notes)
        # Conditional on the status read above
        updated = mongodb_service.update(
            APPLICATIONS, path.application_id, updates, user_context.user_id,
            filters={"status": application["status"]}
        )
        if not updated:
            span.set_status(Status(StatusCode.ERROR, "Concurrent review"))
            raise ConflictException("The application was reviewed while processing this request")

        create_notification(
            mongodb_service,
            current_app.amqp_service,
            application["applicantId"],
            NotificationType.APPLICATION_STATUS.value,
            "Application status updated",
            f"Your {application.get('type', 'financial')} application is now {payload.status}",
            actor_id=user_context.user_id,
            linked_entity=LinkedEntity(collection=APPLICATIONS, document_id=path.application_id),
            data={"applicationId": path.application_id, "status": payload.status}
        )
        current_app.redis_service.invalidate_dashboards([application["applicantId"], user_context.user_id])

        application = mongodb_service.find_one(APPLICATIONS, path.application_id)
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Financial application reviewed",
            extra={"application_id": path.application_id, "status": payload.status}
        )

        return jsonify(_format_application(present(application), user_context)), 200


# Products and institutions

@financial_bp.post('/products')
@require_jwt
@require_permission(FINANCE_REVIEW)
@validated_body(CreateProductRequest)
def create_product(user_context: UserContext, payload: CreateProductRequest):
    """Publish a financial product. Interest rates are only kept for loans."""
    with tracer.start_as_current_span("financial.create_product", attributes={"product.type": payload.type}) as span:
        fields = payload.model_dump(exclude_none=True)
        if fields["type"] != ProductType.LOAN.value:
            fields.pop("interest_rate", None)

        product = FinancialProduct(
            fi_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **fields
        )
        current_app.mongodb_service.create(PRODUCTS, product.to_document(), user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_attribute("product.id", product.id)
        span.set_status(Status(StatusCode.OK))

        return jsonify(current_app.hal_formatter.format_resource(
            product.to_api(), f"/api/financial/products?fiId={user_context.user_id}"
        )), 201


@financial_bp.get('/products')
@require_jwt
@validated_query(ProductListParams)
def list_products(user_context: UserContext, params: ProductListParams):
    with tracer.start_as_current_span("financial.list_products"):
        filters = {"fiId": params.fi_id} if params.fi_id else {}
        products = current_app.mongodb_service.find_many(PRODUCTS, filters, sort=[("createdAt", -1)])

        return jsonify(current_app.hal_formatter.format_list(
            present_all(products), "/api/financial/products"
        )), 200


@financial_bp.get('/institutions')
@require_jwt
def list_institutions(user_context: UserContext):
    """Profiles registered as financial institutions."""
    with tracer.start_as_current_span("financial.list_institutions"):
        institutions = current_app.mongodb_service.find_many(
            PROFILES,
            {"primaryRole": StakeholderRole.FINANCIAL_INSTITUTION.value},
            sort=[("displayName", 1)]
        )

        items = []
        for profile in institutions:
            data = present(profile)
            data.pop("email", None)
            items.append(current_app.hal_formatter.format_resource(data, f"/api/profiles/{profile['id']}"))

        return jsonify(current_app.hal_formatter.format_list(items, "/api/financial/institutions")), 200
