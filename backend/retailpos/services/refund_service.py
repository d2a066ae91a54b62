# Overview: Service-layer operations for refunds; encapsulates business logic and database work.

# backend/retailpos/services/refund_service.py
"""
Refund Processing Service

WORKFLOW:
1. Cashier creates a refund against a completed transaction (status: pending)
2. Manager approves or rejects it
3. Completing an approved refund returns the money; once completed refunds
   cover the whole total the transaction becomes refunded

REFUND CAP (REFUND_ENFORCE_TOTAL, on by default):
approved + completed refunds + the new amount <= transaction total.
Checked at creation and again at approval. With the cap off any positive
amount is accepted.
"""

from __future__ import annotations

import secrets
import string
import time

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Refund, Transaction
from ..models.documents import (
    REFUND_STATUS_APPROVED,
    REFUND_STATUS_COMPLETED,
    REFUND_STATUS_PENDING,
    REFUND_STATUS_REJECTED,
)
from ..models.transactions import STATUS_COMPLETED, STATUS_REFUNDED
from ..validation import ConflictError, NotFoundError, ValidationError, require_cents
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from retailpos.time_utils import utcnow


REFUNDABLE_STATUSES = (STATUS_COMPLETED, STATUS_REFUNDED)

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def generate_refund_number() -> str:
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"REF-{millis}-{suffix}"


def _committed_refund_total(transaction_id: int, *, exclude_id: int | None = None) -> int:
    q = db.session.query(func.coalesce(func.sum(Refund.refund_amount_cents), 0)).filter(
        Refund.transaction_id == transaction_id,
        Refund.status.in_((REFUND_STATUS_APPROVED, REFUND_STATUS_COMPLETED)),
    )
    if exclude_id is not None:
        q = q.filter(Refund.id != exclude_id)
    return int(q.scalar() or 0)


def _check_cap(txn: Transaction, amount_cents: int, *, exclude_id: int | None = None) -> None:
    if not current_app.config["REFUND_ENFORCE_TOTAL"]:
        return
    already = _committed_refund_total(txn.id, exclude_id=exclude_id)
    if already + amount_cents > txn.total_cents:
        raise ConflictError(
            "Refund amount exceeds the remaining refundable total",
            code="REFUND_EXCEEDS_TOTAL",
            details={
                "total_cents": txn.total_cents,
                "already_refunded_cents": already,
                "requested_cents": amount_cents,
                "remaining_cents": max(txn.total_cents - already, 0),
            },
        )


def _lock_refund(refund_id: int) -> Refund:
    refund = lock_for_update(db.session.query(Refund).filter_by(id=refund_id)).first()
    if not refund:
        raise NotFoundError(f"Refund {refund_id} not found")
    return refund


# =============================================================================
# REFUND LIFECYCLE
# =============================================================================

def create_refund(transaction_id: int, data: dict, processed_by: int) -> Refund:
    """
    Create a pending refund.

    Raises:
        ValidationError: missing reason or non-positive amount
        NotFoundError: transaction does not exist
        ConflictError: transaction not completed, REFUND_EXCEEDS_TOTAL
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    reason = (data.get("reason") or "").strip()
    if not reason:
        raise ValidationError("reason is required", details={"field": "reason"})
    amount = require_cents(data, "refund_amount_cents", positive=True)

    def _op():
        with unit_of_work():
            txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
            if not txn:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if txn.status not in REFUNDABLE_STATUSES:
                raise ConflictError(
                    f"Can only refund completed transactions. Transaction {transaction_id} has status: {txn.status}",
                    details={"status": txn.status},
                )
            _check_cap(txn, amount)

            refund = Refund(
                transaction_id=txn.id,
                refund_number=generate_refund_number(),
                reason=reason,
                refund_amount_cents=amount,
                status=REFUND_STATUS_PENDING,
                processed_by=processed_by,
            )
            db.session.add(refund)
            db.session.flush()
        return refund

    try:
        refund = run_with_retry(_op)
    except IntegrityError as exc:
        if "refund_number" in str(exc.orig) or "uq_refunds_number" in str(exc.orig):
            raise ConflictError("Refund number already exists", code="DUPLICATE_REFUND_NUMBER") from exc
        raise

    current_app.logger.info(
        "Refund %s created for transaction %s (%s cents)",
        refund.refund_number, transaction_id, amount,
    )
    return refund


def approve_refund(refund_id: int, manager_user_id: int) -> Refund:
    """Approve a pending refund; the cap is checked again against the current state."""

    def _op():
        with unit_of_work():
            refund = _lock_refund(refund_id)
            if refund.status != REFUND_STATUS_PENDING:
                raise ConflictError(
                    f"Can only approve pending refunds. Refund {refund_id} has status: {refund.status}",
                    details={"status": refund.status},
                )
            txn = lock_for_update(db.session.query(Transaction).filter_by(id=refund.transaction_id)).first()
            _check_cap(txn, refund.refund_amount_cents, exclude_id=refund.id)

            refund.status = REFUND_STATUS_APPROVED
            refund.approved_by = manager_user_id
            refund.approved_at = utcnow()
        return refund

    refund = run_with_retry(_op)
    current_app.logger.info("Refund %s approved by user %s", refund.refund_number, manager_user_id)
    return refund


def reject_refund(refund_id: int, manager_user_id: int, rejection_reason: str) -> Refund:
    rejection_reason = (rejection_reason or "").strip()
    if not rejection_reason:
        raise ValidationError("rejection_reason is required", details={"field": "rejection_reason"})

    def _op():
        with unit_of_work():
            refund = _lock_refund(refund_id)
            if refund.status != REFUND_STATUS_PENDING:
                raise ConflictError(
                    f"Can only reject pending refunds. Refund {refund_id} has status: {refund.status}",
                    details={"status": refund.status},
                )
            refund.status = REFUND_STATUS_REJECTED
            refund.rejected_by = manager_user_id
            refund.rejected_at = utcnow()
            refund.rejection_reason = rejection_reason
        return refund

    refund = run_with_retry(_op)
    current_app.logger.info("Refund %s rejected by user %s", refund.refund_number, manager_user_id)
    return refund


def complete_refund(refund_id: int, user_id: int) -> Refund:
    """
    Complete an approved refund.

    The transaction moves to refunded when completed refunds reach its total.
    """

    def _op():
        with unit_of_work():
            refund = _lock_refund(refund_id)
            if refund.status != REFUND_STATUS_APPROVED:
                raise ConflictError(
                    f"Can only complete approved refunds. Refund {refund_id} has status: {refund.status}",
                    details={"status": refund.status},
                )
            refund.status = REFUND_STATUS_COMPLETED
            refund.completed_by = user_id
            refund.completed_at = utcnow()
            db.session.flush()

            txn = lock_for_update(db.session.query(Transaction).filter_by(id=refund.transaction_id)).first()
            completed_total = int(
                db.session.query(func.coalesce(func.sum(Refund.refund_amount_cents), 0))
                .filter(Refund.transaction_id == txn.id, Refund.status == REFUND_STATUS_COMPLETED)
                .scalar() or 0
            )
            if completed_total >= txn.total_cents:
                txn.status = STATUS_REFUNDED
        return refund

    refund = run_with_retry(_op)
    current_app.logger.info("Refund %s completed", refund.refund_number)
    return refund


# =============================================================================
# QUERIES
# =============================================================================

def get_refund(refund_id: int) -> Refund:
    refund = db.session.get(Refund, refund_id)
    if not refund:
        raise NotFoundError(f"Refund {refund_id} not found")
    return refund


def get_refunds_by_transaction(transaction_id: int) -> list[Refund]:
    if not db.session.get(Transaction, transaction_id):
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return (
        db.session.query(Refund)
        .filter_by(transaction_id=transaction_id)
        .order_by(Refund.created_at.desc(), Refund.id.desc())
        .all()
    )
