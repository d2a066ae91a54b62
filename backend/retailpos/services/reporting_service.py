# Overview: Branch sales summary built from completed transactions (read projections only).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from retailpos.extensions import db
from retailpos.models import Product, Transaction, TransactionItem
from retailpos.models.transactions import STATUS_COMPLETED, STATUS_REFUNDED
from retailpos.time_utils import parse_iso_datetime, to_utc_z
from retailpos.validation import ValidationError


# Refunded sales still happened; refund amounts are reported separately
SALE_STATUSES = (STATUS_COMPLETED, STATUS_REFUNDED)


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end, end_of_day=True) if end else None
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 dates", details={"field": "start"})
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must be on or before end", details={"field": "end"})
    return start_dt, end_dt


def branch_sales_summary(
    *,
    branch_id: int,
    start: str | None = None,
    end: str | None = None,
    top_limit: int = 5,
) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    sale_time = func.coalesce(Transaction.completed_at, Transaction.created_at)

    def _scoped(query):
        query = query.filter(
            Transaction.branch_id == branch_id,
            Transaction.status.in_(SALE_STATUSES),
        )
        if start_dt:
            query = query.filter(sale_time >= start_dt)
        if end_dt:
            query = query.filter(sale_time <= end_dt)
        return query

    totals = _scoped(db.session.query(
        func.count(Transaction.id).label("transaction_count"),
        func.coalesce(func.sum(Transaction.total_cents), 0).label("total_sales_cents"),
        func.coalesce(func.sum(Transaction.discount_cents), 0).label("total_discount_cents"),
        func.coalesce(func.sum(Transaction.tax_cents), 0).label("total_tax_cents"),
    )).one()

    count = int(totals.transaction_count or 0)
    total_sales = int(totals.total_sales_cents or 0)

    by_method = _scoped(db.session.query(
        Transaction.payment_method,
        func.count(Transaction.id).label("count"),
        func.coalesce(func.sum(Transaction.total_cents), 0).label("total_cents"),
    )).group_by(Transaction.payment_method).order_by(Transaction.payment_method).all()

    top = _scoped(
        db.session.query(
            TransactionItem.product_id,
            Product.name,
            func.coalesce(func.sum(TransactionItem.quantity), 0).label("quantity_sold"),
            func.coalesce(func.sum(TransactionItem.subtotal_cents), 0).label("sales_cents"),
        )
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .join(Product, Product.id == TransactionItem.product_id)
    ).group_by(TransactionItem.product_id, Product.name).order_by(
        func.sum(TransactionItem.quantity).desc(), TransactionItem.product_id.asc()
    ).limit(top_limit).all()

    return {
        "branch_id": branch_id,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "transaction_count": count,
        "total_sales_cents": total_sales,
        "total_discount_cents": int(totals.total_discount_cents or 0),
        "total_tax_cents": int(totals.total_tax_cents or 0),
        # Integer cents; rounded half-up
        "average_transaction_cents": (total_sales * 2 + count) // (count * 2) if count else 0,
        "payment_methods": [
            {
                "payment_method": row.payment_method,
                "count": int(row.count or 0),
                "total_cents": int(row.total_cents or 0),
            }
            for row in by_method
        ],
        "top_products": [
            {
                "product_id": row.product_id,
                "name": row.name,
                "quantity_sold": int(row.quantity_sold or 0),
                "sales_cents": int(row.sales_cents or 0),
            }
            for row in top
        ],
    }
