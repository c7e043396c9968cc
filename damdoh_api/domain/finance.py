# SPDX-License-Identifier: Apache-2.0

"""
Financial services domain logic: bookkeeping summaries and application review.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.enums import ApplicationStatus, TransactionType

SUMMARY_WINDOW = 50
RECENT_TRANSACTIONS = 10


def new_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex}"


def summarize_transactions(transactions: List[Dict[str, Any]],
                           recent: int = RECENT_TRANSACTIONS) -> Dict[str, Any]:
    """
    Summarize income and expenses.

    Args:
        transactions: Transaction documents, newest first
        recent: How many transactions to include verbatim

    Returns:
        totalIncome, totalExpense, netFlow and recentTransactions
    """
    total_income = sum(
        float(t.get("amount") or 0) for t in transactions
        if t.get("type") == TransactionType.INCOME.value
    )
    total_expense = sum(
        float(t.get("amount") or 0) for t in transactions
        if t.get("type") == TransactionType.EXPENSE.value
    )

    return {
        "totalIncome": round(total_income, 2),
        "totalExpense": round(total_expense, 2),
        "netFlow": round(total_income - total_expense, 2),
        "recentTransactions": transactions[:recent],
    }


def review_updates(status: str, reviewer_id: str, reviewer_notes: Optional[str],
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    """Document updates for a reviewer's decision on an application."""
    now = now or datetime.utcnow()
    updates: Dict[str, Any] = {"status": status, "reviewedBy": reviewer_id}

    if reviewer_notes is not None:
        updates["reviewerNotes"] = reviewer_notes
    if status == ApplicationStatus.APPROVED.value:
        updates["approvedAt"] = now
    elif status == ApplicationStatus.REJECTED.value:
        updates["rejectedAt"] = now

    return updates


def portfolio_totals(applications: List[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    """Count and amount of applications per status."""
    totals = {status.value: {"count": 0, "amount": 0.0} for status in ApplicationStatus}

    for application in applications:
        bucket = totals.setdefault(application.get("status", "UNKNOWN"), {"count": 0, "amount": 0.0})
        bucket["count"] += 1
        bucket["amount"] = round(bucket["amount"] + float(application.get("amount") or 0), 2)

    return totals
