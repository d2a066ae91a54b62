from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


HOLD_STATE_HELD = "held"
HOLD_STATE_RESUMED = "resumed"
HOLD_STATE_DISCARDED = "discarded"
HOLD_STATE_EXPIRED = "expired"

REFUND_STATUS_PENDING = "pending"
REFUND_STATUS_APPROVED = "approved"
REFUND_STATUS_COMPLETED = "completed"
REFUND_STATUS_REJECTED = "rejected"


class HeldTransaction(db.Model):
    """
    A parked in-progress sale.

    LIFECYCLE:
    1. held: cashier parked the cart; expires_at = held_at + TTL
    2. resumed: cart handed back to the register (transaction back to open)
    3. discarded: cashier dropped the cart (terminal)
    4. expired: TTL passed before resume (terminal)

    cart_snapshot stores the transaction and items exactly as they were held.
    """
    __tablename__ = "held_transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_held_transactions_transaction"),
        db.Index("ix_held_transactions_user_state", "held_by", "state"),
        db.Index("ix_held_transactions_state_expires", "state", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False)
    held_by = db.Column(db.Integer, nullable=False)
    held_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    state = db.Column(db.String(16), nullable=False, default=HOLD_STATE_HELD, index=True)
    cart_snapshot = db.Column(db.JSON, nullable=False)
    resolved_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    transaction = db.relationship("Transaction")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "held_by": self.held_by,
            "held_at": to_utc_z(self.held_at),
            "expires_at": to_utc_z(self.expires_at),
            "notes": self.notes,
            "state": self.state,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "version_id": self.version_id,
        }


class Refund(db.Model):
    """
    Refund against a completed transaction.

    LIFECYCLE:
    1. pending: created by a cashier
    2. approved / rejected: manager decision
    3. completed: money returned to the customer
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("refund_number", name="uq_refunds_number"),
        db.Index("ix_refunds_transaction_status", "transaction_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    refund_number = db.Column(db.String(64), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=REFUND_STATUS_PENDING, index=True)

    processed_by = db.Column(db.Integer, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)
    completed_by = db.Column(db.Integer, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    transaction = db.relationship("Transaction", backref=db.backref("refunds", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "refund_number": self.refund_number,
            "reason": self.reason,
            "refund_amount_cents": self.refund_amount_cents,
            "status": self.status,
            "processed_by": self.processed_by,
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "completed_by": self.completed_by,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "version_id": self.version_id,
        }
