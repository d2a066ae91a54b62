# Overview: Service-layer operations for parked (held) sales; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import HeldTransaction, Transaction
from ..models.documents import (
    HOLD_STATE_DISCARDED,
    HOLD_STATE_EXPIRED,
    HOLD_STATE_HELD,
    HOLD_STATE_RESUMED,
)
from ..models.transactions import STATUS_CANCELLED, STATUS_HELD, STATUS_OPEN
from ..validation import ConflictError, NotFoundError
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .transaction_service import transaction_payload
from retailpos.time_utils import utcnow


"""
Hold/Resume state machine:

    open --hold--> held --resume--> open
                        --discard--> cancelled
                        --expire---> cancelled

Held rows keep a snapshot of the cart; resume hands that snapshot back
unchanged. Expiry is checked lazily on resume (ENFORCE_HOLD_EXPIRY) and by
expire_stale_holds, which the `holds sweep` CLI command runs.
"""


def _lock_hold(held_id: int) -> HeldTransaction:
    held = lock_for_update(db.session.query(HeldTransaction).filter_by(id=held_id)).first()
    if not held:
        raise NotFoundError(f"Held transaction {held_id} not found")
    return held


def _cancel(held: HeldTransaction, state: str, now: datetime) -> None:
    held.state = state
    held.resolved_at = now
    txn = db.session.get(Transaction, held.transaction_id)
    if txn is not None and txn.status == STATUS_HELD:
        txn.status = STATUS_CANCELLED


def hold_transaction(transaction_id: int, held_by: int, notes: str | None = None) -> HeldTransaction:
    """
    Park an open transaction.

    Raises:
        NotFoundError: transaction does not exist
        ConflictError: transaction is not open (completed, already held, ...)
    """
    ttl = timedelta(hours=current_app.config["HOLD_TTL_HOURS"])

    def _op():
        with unit_of_work():
            txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
            if not txn:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if txn.status != STATUS_OPEN:
                raise ConflictError(
                    f"Can only hold open transactions. Transaction {transaction_id} has status: {txn.status}",
                    details={"status": txn.status},
                )

            now = utcnow()
            snapshot = transaction_payload(txn)
            held = db.session.query(HeldTransaction).filter_by(transaction_id=txn.id).first()
            if held is None:
                held = HeldTransaction(transaction_id=txn.id)
                db.session.add(held)
            # A resumed cart can be held again; the row is reused
            held.held_by = held_by
            held.held_at = now
            held.expires_at = now + ttl
            held.notes = notes
            held.state = HOLD_STATE_HELD
            held.cart_snapshot = snapshot
            held.resolved_at = None

            txn.status = STATUS_HELD
            db.session.flush()
        return held

    held = run_with_retry(_op)
    current_app.logger.info(
        "Transaction %s held by user %s until %s", transaction_id, held_by, held.expires_at
    )
    return held


def resume_held_transaction(held_id: int, now: datetime | None = None) -> dict:
    """
    Hand a held cart back to the register.

    Returns the snapshot taken at hold time.

    Raises:
        NotFoundError: hold does not exist or is no longer held
        ConflictError(HOLD_EXPIRED): hold passed its expiry; it is marked expired
    """
    now = now or utcnow()
    enforce_expiry = current_app.config["ENFORCE_HOLD_EXPIRY"]

    def _op():
        with unit_of_work():
            held = _lock_hold(held_id)
            if held.state != HOLD_STATE_HELD:
                raise NotFoundError(
                    f"Held transaction {held_id} is no longer held",
                    details={"state": held.state},
                )
            if enforce_expiry and held.expires_at <= now:
                _cancel(held, HOLD_STATE_EXPIRED, now)
                return None

            held.state = HOLD_STATE_RESUMED
            held.resolved_at = now
            txn = db.session.get(Transaction, held.transaction_id)
            txn.status = STATUS_OPEN
            snapshot = dict(held.cart_snapshot)
        return snapshot

    snapshot = run_with_retry(_op)
    if snapshot is None:
        # Expiry was committed above; the caller still gets a failure
        current_app.logger.info("Held transaction %s expired before resume", held_id)
        raise ConflictError(f"Held transaction {held_id} has expired", code="HOLD_EXPIRED")

    current_app.logger.info("Held transaction %s resumed", held_id)
    return snapshot


def discard_held_transaction(held_id: int) -> HeldTransaction:
    """Drop a held cart. Discarding an already discarded hold is a no-op."""

    def _op():
        with unit_of_work():
            held = _lock_hold(held_id)
            if held.state == HOLD_STATE_DISCARDED:
                return held
            if held.state != HOLD_STATE_HELD:
                raise ConflictError(
                    f"Can only discard held transactions. Hold {held_id} has state: {held.state}",
                    details={"state": held.state},
                )
            _cancel(held, HOLD_STATE_DISCARDED, utcnow())
        return held

    held = run_with_retry(_op)
    current_app.logger.info("Held transaction %s discarded", held_id)
    return held


def get_held_transactions(user_id: int, limit: int | None = None) -> list[HeldTransaction]:
    """Active holds parked by user_id, newest first."""
    q = (
        db.session.query(HeldTransaction)
        .filter_by(held_by=user_id, state=HOLD_STATE_HELD)
        .order_by(HeldTransaction.held_at.desc(), HeldTransaction.id.desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def expire_stale_holds(now: datetime | None = None) -> int:
    """Mark every overdue hold expired and cancel its transaction. Returns the count."""
    now = now or utcnow()
    with unit_of_work():
        stale = lock_for_update(
            db.session.query(HeldTransaction).filter(
                HeldTransaction.state == HOLD_STATE_HELD,
                HeldTransaction.expires_at <= now,
            )
        ).all()
        for held in stale:
            _cancel(held, HOLD_STATE_EXPIRED, now)
    if stale:
        current_app.logger.info("Expired %d stale held transactions", len(stale))
    return len(stale)
