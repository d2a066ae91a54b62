# Overview: Service-layer operations for branch stock; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import BranchStock, StockMovement, Transaction
from ..validation import ConflictError, ValidationError
from .concurrency import lock_for_update

"""
Branch stock invariants:

- Stock for a completed sale is decremented inside the same DB transaction
  that writes the sale; callers own the commit.
- Quantity never goes negative (CHECK constraint + explicit validation).
- Every change appends a StockMovement row.
"""

MOVEMENT_SALE = "SALE"
MOVEMENT_ADJUST = "ADJUST"


def get_stock(branch_id: int, product_id: int) -> int:
    row = db.session.query(BranchStock).filter_by(branch_id=branch_id, product_id=product_id).first()
    return row.quantity if row else 0


def decrement_for_sale(txn: Transaction) -> list[StockMovement]:
    """
    Remove sold quantities from the transaction's branch.

    Raises ConflictError(INSUFFICIENT_STOCK) listing every short product; the
    caller's rollback then discards the whole sale.
    """
    if not current_app.config["STOCK_TRACKING_ENABLED"]:
        return []

    wanted: dict[int, int] = {}
    for item in txn.items:
        wanted[item.product_id] = wanted.get(item.product_id, 0) + item.quantity

    rows: dict[int, BranchStock] = {}
    insufficient = []
    # Lock in product order so concurrent sales acquire rows consistently
    for product_id in sorted(wanted):
        row = lock_for_update(
            db.session.query(BranchStock).filter_by(branch_id=txn.branch_id, product_id=product_id)
        ).first()
        on_hand = row.quantity if row else 0
        if on_hand < wanted[product_id]:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": wanted[product_id],
                "on_hand": on_hand,
            })
        rows[product_id] = row

    if insufficient:
        raise ConflictError(
            "Insufficient stock to complete sale",
            code="INSUFFICIENT_STOCK",
            details={"items": insufficient},
        )

    movements = []
    for product_id, qty in wanted.items():
        rows[product_id].quantity -= qty
        movement = StockMovement(
            branch_id=txn.branch_id,
            product_id=product_id,
            movement_type=MOVEMENT_SALE,
            quantity_delta=-qty,
            transaction_id=txn.id,
        )
        db.session.add(movement)
        movements.append(movement)

    db.session.flush()
    return movements


def set_stock(branch_id: int, product_id: int, quantity: int) -> BranchStock:
    """Set absolute stock for a product at a branch, recording the delta as ADJUST."""
    if quantity < 0:
        raise ValidationError("quantity must be >= 0", details={"field": "quantity"})

    row = lock_for_update(
        db.session.query(BranchStock).filter_by(branch_id=branch_id, product_id=product_id)
    ).first()
    if row is None:
        row = BranchStock(branch_id=branch_id, product_id=product_id, quantity=0)
        db.session.add(row)

    delta = quantity - (row.quantity or 0)
    row.quantity = quantity
    if delta:
        db.session.add(StockMovement(
            branch_id=branch_id,
            product_id=product_id,
            movement_type=MOVEMENT_ADJUST,
            quantity_delta=delta,
        ))
    db.session.commit()
    return row
