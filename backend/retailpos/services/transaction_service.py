"""
Transaction Ledger - records POS sales.

A sale is written as one unit of work: header, items, stock decrement and
loyalty credit commit together or not at all.

LIFECYCLE:
- create_transaction(finalize=True): cart + payment in one call -> completed
- create_transaction(finalize=False): cart recorded as open (can be held,
  extended with add_transaction_item, then complete_transaction)

INVARIANTS (integer cents):
- total = subtotal - discount + tax
- change = amount_paid - total, and change >= 0 once completed
- item subtotal = quantity * unit_price - discount + tax
Client-supplied totals are accepted within TOTAL_TOLERANCE_CENTS of the
computed value; the computed value is what gets stored.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Product, Transaction, TransactionItem
from ..models.transactions import (
    PAYMENT_METHODS,
    STATUS_COMPLETED,
    STATUS_HELD,
    STATUS_OPEN,
)
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    optional_int,
    require_cents,
    require_positive_int,
)
from . import discount_service, loyalty_service, promotions_service, stock_service
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from retailpos.time_utils import parse_iso_datetime, utcnow


TOTAL_TOLERANCE_CENTS = 1

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def generate_transaction_number() -> str:
    """TXN-<unix millis>-<9 char base36 suffix>. Uniqueness is enforced by the DB."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"TXN-{millis}-{suffix}"


def _is_duplicate_number(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return "transaction_number" in message or "uq_transactions_number" in message


# =============================================================================
# INPUT PARSING
# =============================================================================

def _check_close(field: str, given: int | None, computed: int) -> None:
    if given is not None and abs(given - computed) > TOTAL_TOLERANCE_CENTS:
        raise ValidationError(
            f"{field} does not match computed value",
            details={"field": field, "given": given, "computed": computed},
        )


def _parse_item(raw: dict, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object", details={"field": f"items[{index}]"})

    try:
        item = {
            "product_id": require_positive_int(raw, "product_id"),
            "quantity": require_positive_int(raw, "quantity"),
            "unit_price_cents": require_cents(raw, "unit_price_cents", positive=True),
            "discount_cents": require_cents(raw, "discount_cents", default=0),
            "tax_cents": require_cents(raw, "tax_cents", default=0),
            "subtotal_cents": optional_int(raw, "subtotal_cents"),
            "applied_promotion_ids": [
                coerce_int("applied_promotion_ids", v) for v in (raw.get("applied_promotion_ids") or [])
            ],
        }
    except ValidationError as exc:
        exc.details = {**exc.details, "item_index": index}
        raise
    return item


def _build_item(parsed: dict, index: int, promotion_ctx=None) -> TransactionItem:
    """
    Turn a parsed item into a TransactionItem.

    promotion_ctx is (DiscountContext, active promotions); when given, the
    discount resolver decides the discount instead of the client.
    """
    product = db.session.get(Product, parsed["product_id"])
    if not product or not product.is_active:
        raise ValidationError(
            f"Product {parsed['product_id']} not found",
            details={"field": "product_id", "item_index": index},
        )

    gross = parsed["quantity"] * parsed["unit_price_cents"]
    discount = parsed["discount_cents"]
    promotion_ids = parsed["applied_promotion_ids"]

    if promotion_ctx is not None:
        ctx, promotions = promotion_ctx
        line = discount_service.CartLine(
            product_id=parsed["product_id"],
            quantity=parsed["quantity"],
            unit_price_cents=parsed["unit_price_cents"],
        )
        result = discount_service.resolve(line, ctx, promotions)
        discount = result.discount_cents
        promotion_ids = result.applied_promotion_ids

    if discount > gross:
        raise ValidationError(
            "discount_cents cannot exceed quantity * unit_price_cents",
            details={"field": "discount_cents", "item_index": index},
        )

    subtotal = gross - discount + parsed["tax_cents"]
    if promotion_ctx is None:
        _check_close(f"items[{index}].subtotal_cents", parsed["subtotal_cents"], subtotal)

    return TransactionItem(
        product_id=parsed["product_id"],
        quantity=parsed["quantity"],
        unit_price_cents=parsed["unit_price_cents"],
        discount_cents=discount,
        tax_cents=parsed["tax_cents"],
        subtotal_cents=subtotal,
        applied_promotion_ids=promotion_ids,
    )


def _items_totals(items: list[TransactionItem]) -> tuple[int, int, int]:
    subtotal = sum(i.quantity * i.unit_price_cents for i in items)
    discount = sum(i.discount_cents for i in items)
    tax = sum(i.tax_cents for i in items)
    return subtotal, discount, tax


def _parse_payment(data: dict, total_cents: int) -> dict:
    method = data.get("payment_method")
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"field": "payment_method"},
        )
    amount_paid = require_cents(data, "amount_paid_cents")
    change = amount_paid - total_cents
    _check_close("change_cents", optional_int(data, "change_cents"), change)
    if change < 0:
        raise ValidationError(
            "amount_paid_cents is less than total_cents",
            details={"field": "amount_paid_cents", "total_cents": total_cents, "amount_paid_cents": amount_paid},
        )

    points = optional_int(data, "points_earned")
    if points is not None and points < 0:
        raise ValidationError("points_earned must be >= 0", details={"field": "points_earned"})

    return {
        "payment_method": method,
        "amount_paid_cents": amount_paid,
        "change_cents": change,
        "points_earned": points,
    }


# =============================================================================
# LEDGER WRITES
# =============================================================================

def _apply_completion(txn: Transaction, user_id: int | None) -> None:
    """Mark completed and run the side effects inside the caller's unit of work."""
    txn.status = STATUS_COMPLETED
    txn.completed_at = utcnow()
    db.session.flush()

    stock_service.decrement_for_sale(txn)
    if txn.customer_id is not None:
        loyalty_service.record_purchase(txn, user_id=user_id)


def create_transaction(data: dict, cashier_id: int, *, finalize: bool = True) -> Transaction:
    """
    Record a sale (header + items) atomically.

    Header amounts may be omitted and are then derived from the items.
    With data["apply_promotions"] the discount resolver sets each item's
    discount and applied_promotion_ids.

    Raises:
        ValidationError: bad input, totals that do not reconcile, underpayment
        ConflictError: DUPLICATE_TRANSACTION_NUMBER, INSUFFICIENT_STOCK
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    branch_id = require_positive_int(data, "branch_id")
    customer_id = optional_int(data, "customer_id")
    if customer_id is not None and not db.session.get(Customer, customer_id):
        raise ValidationError(f"Customer {customer_id} not found", details={"field": "customer_id"})

    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list", details={"field": "items"})
    if finalize and not raw_items:
        raise ValidationError("Cannot complete a transaction with no items", details={"field": "items"})
    parsed_items = [_parse_item(raw, i) for i, raw in enumerate(raw_items)]

    promotion_ctx = None
    if data.get("apply_promotions"):
        try:
            now = parse_iso_datetime(data.get("current_time")) or utcnow()
        except ValueError:
            raise ValidationError("current_time must be an ISO-8601 datetime", details={"field": "current_time"})
        ctx = discount_service.DiscountContext(
            branch_id=branch_id,
            customer_id=customer_id,
            customer_tier=data.get("customer_tier"),
            now=now,
        )
        promotion_ctx = (ctx, promotions_service.get_active_promotions(now))

    items = [_build_item(p, i, promotion_ctx) for i, p in enumerate(parsed_items)]

    items_subtotal, items_discount, items_tax = _items_totals(items)
    # Header subtotal always follows the items; discount and tax may carry cart-level amounts
    _check_close("subtotal_cents", require_cents(data, "subtotal_cents", default=items_subtotal), items_subtotal)
    subtotal = items_subtotal
    discount = require_cents(data, "discount_cents", default=items_discount)
    tax = require_cents(data, "tax_cents", default=items_tax)
    if discount > subtotal:
        raise ValidationError("discount_cents cannot exceed subtotal_cents", details={"field": "discount_cents"})
    total = subtotal - discount + tax
    _check_close("total_cents", optional_int(data, "total_cents"), total)

    payment = _parse_payment(data, total) if finalize else {}

    notes = data.get("notes")

    def _op():
        with unit_of_work():
            txn = Transaction(
                transaction_number=generate_transaction_number(),
                branch_id=branch_id,
                cashier_id=cashier_id,
                customer_id=customer_id,
                subtotal_cents=subtotal,
                discount_cents=discount,
                tax_cents=tax,
                total_cents=total,
                payment_method=payment.get("payment_method"),
                amount_paid_cents=payment.get("amount_paid_cents", 0),
                change_cents=payment.get("change_cents", 0),
                points_earned=payment.get("points_earned") or 0,
                notes=notes,
                status=STATUS_OPEN,
            )
            # Fresh copies so a retried attempt never reuses rolled-back instances
            txn.items = [_copy_item(i) for i in items]
            db.session.add(txn)
            db.session.flush()

            if finalize:
                _apply_completion(txn, cashier_id)
        return txn

    try:
        txn = run_with_retry(_op)
    except IntegrityError as exc:
        if _is_duplicate_number(exc):
            current_app.logger.warning("Duplicate transaction number rejected")
            raise ConflictError(
                "Transaction number already exists",
                code="DUPLICATE_TRANSACTION_NUMBER",
            ) from exc
        raise

    current_app.logger.info(
        "Transaction %s recorded (%s, branch %s, total %s cents)",
        txn.transaction_number, txn.status, txn.branch_id, txn.total_cents,
    )
    return txn


def _copy_item(item: TransactionItem) -> TransactionItem:
    return TransactionItem(
        product_id=item.product_id,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        discount_cents=item.discount_cents,
        tax_cents=item.tax_cents,
        subtotal_cents=item.subtotal_cents,
        applied_promotion_ids=list(item.applied_promotion_ids or []),
    )


def _recompute_totals(txn: Transaction) -> None:
    subtotal, discount, tax = _items_totals(txn.items)
    txn.subtotal_cents = subtotal
    txn.discount_cents = discount
    txn.tax_cents = tax
    txn.total_cents = subtotal - discount + tax


def _lock_transaction(transaction_id: int) -> Transaction:
    txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
    if not txn:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def add_transaction_item(transaction_id: int, data: dict) -> TransactionItem:
    """Append a line to an open transaction and refresh its header totals."""
    parsed = _parse_item(data, 0)

    def _op():
        with unit_of_work():
            txn = _lock_transaction(transaction_id)
            if txn.status != STATUS_OPEN:
                raise ConflictError(
                    f"Can only add items to open transactions (status: {txn.status})",
                    details={"status": txn.status},
                )
            item = _build_item(parsed, len(txn.items))
            txn.items.append(item)
            _recompute_totals(txn)
            db.session.flush()
        return item

    return run_with_retry(_op)


def complete_transaction(transaction_id: int, data: dict, user_id: int | None = None) -> Transaction:
    """Take payment for an open transaction and apply stock/loyalty side effects."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    def _op():
        with unit_of_work():
            txn = _lock_transaction(transaction_id)
            if txn.status == STATUS_HELD:
                raise ConflictError("Transaction is held; resume it before completing", details={"status": txn.status})
            if txn.status != STATUS_OPEN:
                raise ConflictError(
                    f"Can only complete open transactions (status: {txn.status})",
                    details={"status": txn.status},
                )
            if not txn.items:
                raise ValidationError("Cannot complete a transaction with no items", details={"field": "items"})

            payment = _parse_payment(data, txn.total_cents)
            txn.payment_method = payment["payment_method"]
            txn.amount_paid_cents = payment["amount_paid_cents"]
            txn.change_cents = payment["change_cents"]
            txn.points_earned = payment["points_earned"] or 0
            if data.get("notes") is not None:
                txn.notes = data["notes"]

            _apply_completion(txn, user_id or txn.cashier_id)
        return txn

    txn = run_with_retry(_op)
    current_app.logger.info("Transaction %s completed (total %s cents)", txn.transaction_number, txn.total_cents)
    return txn


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if not txn:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def get_transaction_items(transaction_id: int) -> list[TransactionItem]:
    get_transaction(transaction_id)
    return (
        db.session.query(TransactionItem)
        .filter_by(transaction_id=transaction_id)
        .order_by(TransactionItem.id.asc())
        .all()
    )


def transaction_payload(txn: Transaction) -> dict:
    return {
        "transaction": txn.to_dict(),
        "items": [item.to_dict() for item in txn.items],
    }


def _newest_first(query, limit: int | None):
    query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_transactions_by_branch(branch_id: int, limit: int = 100) -> list[Transaction]:
    return _newest_first(db.session.query(Transaction).filter_by(branch_id=branch_id), limit)


def get_transactions_by_cashier(cashier_id: int, limit: int = 100) -> list[Transaction]:
    return _newest_first(db.session.query(Transaction).filter_by(cashier_id=cashier_id), limit)


def get_transactions_by_customer(customer_id: int, limit: int | None = None) -> list[Transaction]:
    return _newest_first(db.session.query(Transaction).filter_by(customer_id=customer_id), limit)


def get_transactions_by_date_range(
    branch_id: int,
    start: datetime,
    end: datetime,
    limit: int | None = None,
) -> list[Transaction]:
    """Transactions created within [start, end], inclusive."""
    q = db.session.query(Transaction).filter(
        Transaction.branch_id == branch_id,
        Transaction.created_at >= start,
        Transaction.created_at <= end,
    )
    return _newest_first(q, limit)
