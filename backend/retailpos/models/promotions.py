from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


PROMO_PERCENTAGE = "percentage"
PROMO_FIXED = "fixed"
PROMO_BUY_X_GET_Y = "buy_x_get_y"
PROMO_MEMBER_ONLY = "member_only"
PROMO_HAPPY_HOUR = "happy_hour"

PROMOTION_TYPES = (
    PROMO_PERCENTAGE,
    PROMO_FIXED,
    PROMO_BUY_X_GET_Y,
    PROMO_MEMBER_ONLY,
    PROMO_HAPPY_HOUR,
)

# Types whose discount_value is basis points of the line subtotal
PERCENT_TYPES = (PROMO_PERCENTAGE, PROMO_BUY_X_GET_Y, PROMO_MEMBER_ONLY, PROMO_HAPPY_HOUR)


class Promotion(db.Model):
    """
    Promotions and discounts.

    Applies to every branch/product unless applicable_branch_ids or
    applicable_product_ids narrow it. At most one promotion is applied per
    cart line: highest priority first, no stacking.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.Index("ix_promotions_window", "start_date", "end_date"),
        db.Index("ix_promotions_active_priority", "is_active", "priority"),
        db.CheckConstraint("start_date <= end_date", name="ck_promotions_window"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    promo_type = db.Column(db.String(32), nullable=False, index=True)
    discount_value = db.Column(db.Integer, nullable=False, default=0)  # cents for fixed, basis points otherwise

    # buy_x_get_y
    buy_quantity = db.Column(db.Integer, nullable=True)
    get_quantity = db.Column(db.Integer, nullable=True)
    get_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    # Inclusive validity window
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    # HH:MM band for happy_hour
    start_time = db.Column(db.String(5), nullable=True)
    end_time = db.Column(db.String(5), nullable=True)

    applicable_product_ids = db.Column(db.JSON, nullable=True)
    applicable_branch_ids = db.Column(db.JSON, nullable=True)

    member_only = db.Column(db.Boolean, nullable=False, default=False)
    priority = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def applies_to_product(self, product_id: int) -> bool:
        return not self.applicable_product_ids or product_id in self.applicable_product_ids

    def applies_to_branch(self, branch_id: int | None) -> bool:
        if not self.applicable_branch_ids:
            return True
        return branch_id is not None and branch_id in self.applicable_branch_ids

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "promo_type": self.promo_type,
            "discount_value": self.discount_value,
            "buy_quantity": self.buy_quantity,
            "get_quantity": self.get_quantity,
            "get_product_id": self.get_product_id,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "applicable_product_ids": self.applicable_product_ids or [],
            "applicable_branch_ids": self.applicable_branch_ids or [],
            "member_only": self.member_only,
            "priority": self.priority,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
