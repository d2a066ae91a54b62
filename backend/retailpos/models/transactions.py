from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


STATUS_OPEN = "open"
STATUS_COMPLETED = "completed"
STATUS_HELD = "held"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

PAYMENT_METHODS = ("cash", "card", "ewallet", "mixed")


class Transaction(db.Model):
    """
    POS sale header.

    LIFECYCLE:
    - open: cart recorded, not yet paid (may be held)
    - held: parked by a cashier (see HeldTransaction)
    - completed: paid; immutable from here on except for refund status
    - cancelled: held cart discarded or expired
    - refunded: completed refunds cover the full total

    INVARIANTS (all amounts in cents):
    - total_cents = subtotal_cents - discount_cents + tax_cents
    - change_cents = amount_paid_cents - total_cents, >= 0 once completed
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_transactions_number"),
        db.Index("ix_transactions_branch_created", "branch_id", "created_at"),
        db.Index("ix_transactions_cashier_created", "cashier_id", "created_at"),
        db.Index("ix_transactions_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "TXN-1760000000000-k3j9x0a2b")
    transaction_number = db.Column(db.String(64), nullable=False)

    branch_id = db.Column(db.Integer, nullable=False, index=True)
    cashier_id = db.Column(db.Integer, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=True)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=STATUS_COMPLETED, index=True)
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "branch_id": self.branch_id,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "amount_paid_cents": self.amount_paid_cents,
            "change_cents": self.change_cents,
            "status": self.status,
            "points_earned": self.points_earned,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "version_id": self.version_id,
        }


class TransactionItem(db.Model):
    """
    Line item on a transaction.

    INVARIANT: subtotal_cents = quantity * unit_price_cents - discount_cents + tax_cents
    """
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    applied_promotion_ids = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "subtotal_cents": self.subtotal_cents,
            "applied_promotion_ids": list(self.applied_promotion_ids or []),
            "created_at": to_utc_z(self.created_at),
        }
