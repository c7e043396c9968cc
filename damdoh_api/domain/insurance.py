# SPDX-License-Identifier: Apache-2.0

"""
Insurance domain logic.

Rule-based policy risk assessment, parametric weather triggers and claim
decisions. Every score is derived from the stored policy, never sampled.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.base import to_naive_utc
from ..models.entities import RiskAssessment
from ..models.enums import ClaimStatus, PolicyStatus


def new_policy_id() -> str:
    return f"policy_{uuid.uuid4().hex}"


def new_claim_id() -> str:
    return f"claim_{uuid.uuid4().hex}"


def new_parametric_claim_id() -> str:
    return f"parametric_{uuid.uuid4().hex}"


@dataclass
class ParametricTrigger:
    """A weather threshold exceeded by a reading."""
    metric: str
    observed: float
    threshold: float
    payout_percentage: float
    payout_amount: float


def assess_policy_risk(coverage_amount: float, premium: float,
                       parametric_thresholds: Dict[str, Any],
                       insured_assets: List[Dict[str, Any]],
                       now: Optional[datetime] = None) -> RiskAssessment:
    """
    Score a policy from 0 (low) to 10 (high) risk.

    - coverage/premium ratio: up to 6 points, one point per 10x of leverage
    - no parametric thresholds: 2 points, payouts need manual assessment
    - insured assets: none adds 2 points, more than 5 adds 1 point
    """
    score = 0.0
    factors: List[str] = []
    recommendations: List[str] = []

    ratio = coverage_amount / premium if premium > 0 else float("inf")
    leverage_points = min(6.0, ratio / 10)
    score += leverage_points
    if ratio > 30:
        factors.append(f"High coverage to premium ratio ({ratio:.1f}x)")
        recommendations.append("Review premium pricing for this coverage level")

    if not parametric_thresholds:
        score += 2
        factors.append("No parametric thresholds defined")
        recommendations.append("Define rainfall or temperature thresholds to enable automatic payouts")

    if not insured_assets:
        score += 2
        factors.append("No insured assets listed")
        recommendations.append("Attach the farms or assets covered by this policy")
    elif len(insured_assets) > 5:
        score += 1
        factors.append(f"Large number of insured assets ({len(insured_assets)})")

    return RiskAssessment(
        score=round(min(score, 10.0), 2),
        risk_factors=factors,
        recommendations=recommendations,
        assessed_at=now or datetime.utcnow()
    )


def policy_covers(policy: Dict[str, Any], when: datetime) -> bool:
    """Whether a policy is active and its period includes ``when``."""
    if policy.get("status") != PolicyStatus.ACTIVE.value:
        return False

    start = to_naive_utc(policy.get("startDate"))
    end = to_naive_utc(policy.get("endDate"))
    when = to_naive_utc(when)

    if start and when < start:
        return False
    if end and when > end:
        return False
    return True


def evaluate_parametric_triggers(policy: Dict[str, Any], reading: Dict[str, Any]) -> Optional[ParametricTrigger]:
    """
    Find the strongest threshold a weather reading exceeds for a policy.

    A metric triggers when the reading is strictly above its threshold. When
    several trigger, the one with the highest payout percentage wins.
    """
    thresholds = policy.get("parametricThresholds") or {}
    coverage = float(policy.get("coverageAmount") or 0)
    best: Optional[ParametricTrigger] = None

    for metric in ("rainfall", "temperature"):
        rule = thresholds.get(metric)
        observed = reading.get(metric)
        if not rule or observed is None:
            continue

        if observed > rule["threshold"]:
            percentage = float(rule["payoutPercentage"])
            candidate = ParametricTrigger(
                metric=metric,
                observed=observed,
                threshold=rule["threshold"],
                payout_percentage=percentage,
                payout_amount=round(coverage * percentage / 100, 2)
            )
            if best is None or candidate.payout_percentage > best.payout_percentage:
                best = candidate

    if best is None or best.payout_amount <= 0:
        return None
    return best


def claim_decision_updates(claim: Dict[str, Any], status: str, payout_amount: Optional[float],
                           notes: Optional[str], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Document updates for an insurer's claim decision.

    Raises:
        ValueError: If the claim is already decided or the payout exceeds the claimed amount
    """
    if claim.get("status") != ClaimStatus.PENDING.value:
        raise ValueError(f"Claim has already been {str(claim.get('status')).lower()}")

    now = now or datetime.utcnow()
    updates: Dict[str, Any] = {"status": status}
    assessment = dict(claim.get("assessmentDetails") or {})
    if notes:
        assessment["notes"] = notes
    assessment["decidedAt"] = now
    updates["assessmentDetails"] = assessment

    if status == ClaimStatus.APPROVED.value:
        claimed = float(claim["claimedAmount"])
        payout = claimed if payout_amount is None else payout_amount
        if payout > claimed:
            raise ValueError("Payout amount cannot exceed the claimed amount")
        updates["payoutAmount"] = payout
        updates["payoutDate"] = now

    return updates
