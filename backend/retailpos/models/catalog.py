from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


class Product(db.Model):
    """Sellable product. Master-data CRUD lives outside this service; POS only reads it."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(100), nullable=False, index=True)
    barcode = db.Column(db.String(100), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    category_id = db.Column(db.Integer, nullable=True)
    brand_id = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "price_cents": self.price_cents,
            "category_id": self.category_id,
            "brand_id": self.brand_id,
            "is_active": self.is_active,
        }


class BranchStock(db.Model):
    """
    Per-branch stock level for a product.

    Decremented inside the same DB transaction that records a completed sale.
    version_id gives optimistic locking on concurrent sales of the same product.
    """
    __tablename__ = "branch_stock"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_branch_stock_branch_product"),
        db.CheckConstraint("quantity >= 0", name="ck_branch_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only record of stock changes.

    MOVEMENT TYPES:
    - SALE: stock leaving with a completed transaction (negative delta)
    - ADJUST: manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_branch_product", "branch_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    movement_type = db.Column(db.String(16), nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "transaction_id": self.transaction_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
