# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Insurance endpoints: policies, claims and parametric weather triggers.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from datetime import datetime
from typing import Dict, Any, List

from ..domain.authorization import INSURANCE_APPLY, INSURANCE_UNDERWRITE, WEATHER_INGEST
from ..domain.insurance import (
    new_policy_id, new_claim_id, new_parametric_claim_id,
    assess_policy_risk, policy_covers, evaluate_parametric_triggers, claim_decision_updates
)
from ..middleware.auth import require_jwt, require_permission
from ..middleware.error_handler import (
    AuthorizationException, BusinessRuleException, ConflictException, NotFoundException
)
from ..middleware.validation import validated_body, validated_query
from ..models.entities import UserContext, InsurancePolicy, InsuranceClaim, WeatherReading, LinkedEntity
from ..models.enums import ClaimStatus, NotificationType, PolicyStatus, StakeholderRole
from ..models.requests import (
    CreatePolicyRequest, SubmitClaimRequest, UpdateClaimStatusRequest, WeatherReadingRequest,
    PolicyListParams, ClaimListParams, ClaimPath
)
from ..services.notifications import create_notification
from ..utils.documents import find_by_or_404, present, present_all

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

insurance_tag = Tag(name="Insurance", description="Insurance policies, claims and weather triggers")
insurance_bp = APIBlueprint(
    'insurance',
    __name__,
    url_prefix='/api/insurance',
    abp_tags=[insurance_tag]
)

POLICIES = "insurance_policies"
CLAIMS = "insurance_claims"
WEATHER_READINGS = "weather_readings"
PROFILES = "profiles"

PLATFORM_ROLES = (StakeholderRole.SYSTEM, StakeholderRole.ADMIN)


def _party_filter(user_context: UserContext) -> Dict[str, Any]:
    return {"$or": [{"policyholderId": user_context.user_id}, {"insurerId": user_context.user_id}]}


def _format_claim(claim: Dict[str, Any], user_context: UserContext) -> Dict[str, Any]:
    return current_app.hal_formatter.format_claim(claim, claim.get("insurerId") == user_context.user_id)


# Policies

@insurance_bp.post('/policies')
@require_jwt
@require_permission(INSURANCE_APPLY)
@validated_body(CreatePolicyRequest)
def create_policy(user_context: UserContext, payload: CreatePolicyRequest):
    """
    Apply for an insurance policy.

    A rule-based risk assessment is attached to every new policy.
    """
    with tracer.start_as_current_span(
        "insurance.create_policy",
        attributes={"user.id": user_context.user_id, "policy.insurer_id": payload.insurer_id}
    ) as span:
        mongodb_service = current_app.mongodb_service

        if mongodb_service.find_one(PROFILES, payload.insurer_id) is None:
            span.set_status(Status(StatusCode.ERROR, "Insurer not found"))
            raise NotFoundException("Insurer not found")

        if payload.start_date >= payload.end_date:
            span.set_status(Status(StatusCode.ERROR, "Invalid policy period"))
            raise BusinessRuleException("Policy start date must be before end date")

        thresholds = {
            metric: rule.model_dump(by_alias=True)
            for metric, rule in payload.parametric_thresholds.items()
        }
        risk = assess_policy_risk(
            payload.coverage_amount, payload.premium, thresholds, payload.insured_assets
        )

        policy = InsurancePolicy(
            policy_id=new_policy_id(),
            policyholder_id=user_context.user_id,
            insurer_id=payload.insurer_id,
            coverage_amount=payload.coverage_amount,
            currency=payload.currency,
            premium=payload.premium,
            start_date=payload.start_date,
            end_date=payload.end_date,
            insured_assets=payload.insured_assets,
            parametric_thresholds=payload.parametric_thresholds,
            risk_assessment=risk,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        mongodb_service.create(POLICIES, policy.to_document(), user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id, payload.insurer_id])

        span.set_attributes({"policy.id": policy.policy_id, "policy.risk_score": risk.score})
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Insurance policy created",
            extra={"policy_id": policy.policy_id, "insurer_id": payload.insurer_id, "risk_score": risk.score}
        )

        return jsonify(current_app.hal_formatter.format_resource(
            policy.to_api(), "/api/insurance/policies"
        )), 201


@insurance_bp.get('/policies')
@require_jwt
@validated_query(PolicyListParams)
def list_policies(user_context: UserContext, params: PolicyListParams):
    """Policies the caller holds or underwrites."""
    with tracer.start_as_current_span("insurance.list_policies"):
        filters = _party_filter(user_context)
        if params.status:
            filters["status"] = params.status

        policies = current_app.mongodb_service.find_many(POLICIES, filters, sort=[("createdAt", -1)])
        return jsonify(current_app.hal_formatter.format_list(
            present_all(policies), "/api/insurance/policies"
        )), 200


# Claims

@insurance_bp.post('/claims')
@require_jwt
@require_permission(INSURANCE_APPLY)
@validated_body(SubmitClaimRequest)
def submit_claim(user_context: UserContext, payload: SubmitClaimRequest):
    """File a claim against one of the caller's active policies."""
    with tracer.start_as_current_span(
        "insurance.submit_claim", attributes={"policy.id": payload.policy_id}
    ) as span:
        mongodb_service = current_app.mongodb_service

        policy = mongodb_service.find_one_by(POLICIES, {
            "policyId": payload.policy_id,
            "policyholderId": user_context.user_id,
            "status": PolicyStatus.ACTIVE.value,
        })
        if policy is None:
            span.set_status(Status(StatusCode.ERROR, "Policy not found"))
            raise NotFoundException("Active policy not found")

        if payload.claimed_amount > float(policy["coverageAmount"]):
            span.set_status(Status(StatusCode.ERROR, "Claim exceeds coverage"))
            raise BusinessRuleException("Claimed amount exceeds the policy coverage")

        claim = InsuranceClaim(
            claim_id=new_claim_id(),
            policy_id=payload.policy_id,
            policyholder_id=user_context.user_id,
            insurer_id=policy["insurerId"],
            incident_date=payload.incident_date,
            claimed_amount=payload.claimed_amount,
            currency=payload.currency or policy.get("currency", "USD"),
            description=payload.description,
            supporting_documents_urls=payload.supporting_documents_urls,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        mongodb_service.create(CLAIMS, claim.to_document(), user_context.user_id)

        create_notification(
            mongodb_service,
            current_app.amqp_service,
            claim.insurer_id,
            NotificationType.CLAIM_STATUS.value,
            "New insurance claim",
            f"A claim of {claim.claimed_amount:,.2f} {claim.currency} was filed on policy {claim.policy_id}",
            actor_id=user_context.user_id,
            linked_entity=LinkedEntity(collection=CLAIMS, document_id=claim.claim_id),
            data={"claimId": claim.claim_id, "policyId": claim.policy_id}
        )
        current_app.redis_service.invalidate_dashboards([user_context.user_id, claim.insurer_id])

        span.set_attribute("claim.id", claim.claim_id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Insurance claim submitted", extra={"claim_id": claim.claim_id, "policy_id": claim.policy_id})

        return jsonify(_format_claim(claim.to_api(), user_context)), 201


@insurance_bp.get('/claims')
@require_jwt
@validated_query(ClaimListParams)
def list_claims(user_context: UserContext, params: ClaimListParams):
    """Claims where the caller is the policyholder or the insurer."""
    with tracer.start_as_current_span("insurance.list_claims"):
        filters = _party_filter(user_context)
        if params.status:
            filters["status"] = params.status

        claims = current_app.mongodb_service.find_many(CLAIMS, filters, sort=[("submissionDate", -1)])
        items = [_format_claim(present(claim), user_context) for claim in claims]

        return jsonify(current_app.hal_formatter.format_list(items, "/api/insurance/claims")), 200


@insurance_bp.patch('/claims/<claim_id>/status')
@require_jwt
@require_permission(INSURANCE_UNDERWRITE)
@validated_body(UpdateClaimStatusRequest)
def decide_claim(user_context: UserContext, path: ClaimPath, payload: UpdateClaimStatusRequest):
    """
    Approve or reject a claim.

    Only the policy's insurer may decide. An approval without a payout amount
    pays the claimed amount.
    """
    with tracer.start_as_current_span(
        "insurance.decide_claim", attributes={"claim.id": path.claim_id, "claim.status": payload.status}
    ) as span:
        mongodb_service = current_app.mongodb_service

        claim = find_by_or_404(mongodb_service, CLAIMS, {"claimId": path.claim_id}, "Claim")

        if claim.get("insurerId") != user_context.user_id:
            span.set_status(Status(StatusCode.ERROR, "Not the insurer"))
            raise AuthorizationException("Only the insurer of this policy can decide the claim")

        try:
            updates = claim_decision_updates(claim, payload.status, payload.payout_amount, payload.notes)
        except ValueError as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise BusinessRuleException(str(e))

        if not mongodb_service.update(
            CLAIMS, claim["id"], updates, user_context.user_id,
            filters={"status": ClaimStatus.PENDING.value}
        ):
            raise ConflictException("The claim was decided while processing this request")

        create_notification(
            mongodb_service,
            current_app.amqp_service,
            claim["policyholderId"],
            NotificationType.CLAIM_STATUS.value,
            "Claim decision",
            f"Your claim {path.claim_id} was {payload.status.lower()}",
            actor_id=user_context.user_id,
            linked_entity=LinkedEntity(collection=CLAIMS, document_id=path.claim_id),
            data={"claimId": path.claim_id, "status": payload.status, "payoutAmount": updates.get("payoutAmount")}
        )
        current_app.redis_service.invalidate_dashboards([claim["policyholderId"], user_context.user_id])

        claim = mongodb_service.find_one_by(CLAIMS, {"claimId": path.claim_id})
        span.set_status(Status(StatusCode.OK))
        logger.info("Insurance claim decided", extra={"claim_id": path.claim_id, "status": payload.status})

        return jsonify(_format_claim(present(claim), user_context)), 200


# Parametric triggers

@insurance_bp.post('/weather-readings')
@require_jwt
@require_permission(WEATHER_INGEST)
@validated_body(WeatherReadingRequest)
def record_weather_reading(user_context: UserContext, payload: WeatherReadingRequest):
    """
    Record a weather reading and settle parametric policies it triggers.

    Every active policy covering the reading's time whose rainfall or
    temperature threshold is exceeded gets one approved claim paying the
    threshold's share of its coverage.
    Insurance providers only trigger their own policies; System and Admin
    callers trigger every insurer's.
    """
    with tracer.start_as_current_span("insurance.weather_reading", attributes={"reading.source": payload.source}) as span:
        mongodb_service = current_app.mongodb_service

        reading = WeatherReading(
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **payload.model_dump(exclude_none=True)
        )
        mongodb_service.create(WEATHER_READINGS, reading.to_document(), user_context.user_id)

        observed = {"rainfall": payload.rainfall, "temperature": payload.temperature}
        policy_filters = {
            "status": PolicyStatus.ACTIVE.value,
            "parametricThresholds": {"$ne": {}},
        }
        # Insurers settle only their own book
        if not user_context.has_role(*PLATFORM_ROLES):
            policy_filters["insurerId"] = user_context.user_id
        policies = mongodb_service.find_many(POLICIES, policy_filters)

        now = datetime.utcnow()
        created: List[str] = []
        for policy in policies:
            if not policy_covers(policy, payload.timestamp):
                continue
            trigger = evaluate_parametric_triggers(policy, observed)
            if trigger is None:
                continue

            claim = InsuranceClaim(
                claim_id=new_parametric_claim_id(),
                policy_id=policy["policyId"],
                policyholder_id=policy["policyholderId"],
                insurer_id=policy["insurerId"],
                incident_date=payload.timestamp,
                claimed_amount=trigger.payout_amount,
                currency=policy.get("currency", "USD"),
                description=(
                    f"Parametric {trigger.metric} trigger: observed {trigger.observed} "
                    f"exceeded threshold {trigger.threshold}"
                ),
                status=ClaimStatus.APPROVED,
                payout_amount=trigger.payout_amount,
                payout_date=now,
                assessment_details={
                    "parametric": True,
                    "metric": trigger.metric,
                    "observed": trigger.observed,
                    "threshold": trigger.threshold,
                    "payoutPercentage": trigger.payout_percentage,
                    "weatherReadingId": reading.id,
                },
                created_by=user_context.user_id,
                updated_by=user_context.user_id
            )
            mongodb_service.create(CLAIMS, claim.to_document(), user_context.user_id)
            created.append(claim.claim_id)

            create_notification(
                mongodb_service,
                current_app.amqp_service,
                claim.policyholder_id,
                NotificationType.CLAIM_STATUS.value,
                "Automatic insurance payout",
                f"A {trigger.metric} reading triggered a payout of {claim.payout_amount:,.2f} {claim.currency}",
                actor_id=user_context.user_id,
                linked_entity=LinkedEntity(collection=CLAIMS, document_id=claim.claim_id),
                data={"claimId": claim.claim_id, "policyId": claim.policy_id}
            )
            current_app.redis_service.invalidate_dashboards([claim.policyholder_id, claim.insurer_id])

        span.set_attributes({"reading.id": reading.id, "claims.created": len(created)})
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Weather reading recorded",
            extra={"reading_id": reading.id, "policies_checked": len(policies), "claims_created": len(created)}
        )

        return jsonify(current_app.hal_formatter.format_resource(
            {"readingId": reading.id, "claimsCreated": created}, "/api/insurance/claims"
        )), 201
