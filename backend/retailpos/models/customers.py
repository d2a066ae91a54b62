from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


CUSTOMER_TIERS = ("standard", "silver", "gold", "vip")


class Customer(db.Model):
    """
    Customer master data for tracking purchases and loyalty.

    Aggregates are denormalized and updated when a sale completes.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(320), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tier = db.Column(db.String(16), nullable=False, default="standard")

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Denormalized aggregates (updated when sales are completed)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchases = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "tier": self.tier,
            "is_active": self.is_active,
            "total_spent_cents": self.total_spent_cents,
            "total_purchases": self.total_purchases,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerRewardAccount(db.Model):
    """
    Loyalty/rewards account for a customer.

    Tracks points balance and lifetime earning/redemption.
    One account per customer.
    """
    __tablename__ = "customer_reward_accounts"
    __table_args__ = (
        db.UniqueConstraint("customer_id", name="uq_reward_accounts_customer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_redeemed = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("reward_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "points_balance": self.points_balance,
            "lifetime_points_earned": self.lifetime_points_earned,
            "lifetime_points_redeemed": self.lifetime_points_redeemed,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerRewardTransaction(db.Model):
    """
    Append-only ledger of reward point events.

    TRANSACTION TYPES:
    - EARN: Points earned from a sale
    - REDEEM: Points redeemed for a discount
    - ADJUST: Manual adjustment by manager

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_reward_transactions"
    __table_args__ = (
        db.Index("ix_reward_txns_account_occurred", "reward_account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reward_account_id = db.Column(db.Integer, db.ForeignKey("customer_reward_accounts.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # EARN, REDEEM, ADJUST
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    reward_account = db.relationship("CustomerRewardAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reward_account_id": self.reward_account_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "transaction_id": self.transaction_id,
            "reason": self.reason,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
