"""
Promotion Catalog

Holds promotion definitions and answers "which promotions are live right now".

INVARIANTS:
- start_date <= end_date; the window is inclusive on both ends
- Active listings are ordered by priority descending (id ascending on ties),
  which is the order the discount resolver evaluates them in
- Deleting a promotion deactivates it; rows are kept for sale history
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Promotion, Transaction, TransactionItem
from ..models.transactions import STATUS_COMPLETED, STATUS_REFUNDED
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_promotion,
    validate_payload,
)
from retailpos.time_utils import parse_iso_datetime, utcnow


PROMOTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "promo_type", "discount_value",
        "buy_quantity", "get_quantity", "get_product_id",
        "start_date", "end_date", "start_time", "end_time",
        "applicable_product_ids", "applicable_branch_ids",
        "member_only", "priority", "is_active",
    },
    required_on_create={"name", "promo_type", "discount_value", "start_date", "end_date"},
)

# Codes returned by validate_promotion
VALIDATION_NOT_FOUND = "NOT_FOUND"
VALIDATION_INACTIVE = "INACTIVE"
VALIDATION_NOT_STARTED = "NOT_STARTED"
VALIDATION_EXPIRED = "EXPIRED"

# Sales that count towards usage figures
USAGE_STATUSES = (STATUS_COMPLETED, STATUS_REFUNDED)


def _priority_order(query):
    return query.order_by(Promotion.priority.desc(), Promotion.id.asc())


def get_promotion(promo_id: int) -> Promotion:
    promo = db.session.get(Promotion, promo_id)
    if not promo:
        raise NotFoundError(f"Promotion {promo_id} not found")
    return promo


def list_promotions(active_only: bool = False, promo_type: str | None = None) -> list[dict]:
    q = db.session.query(Promotion)
    if active_only:
        q = q.filter_by(is_active=True)
    if promo_type:
        q = q.filter_by(promo_type=promo_type)
    return [p.to_dict() for p in _priority_order(q).all()]


def get_active_promotions(now: datetime | None = None) -> list[Promotion]:
    """Promotions that are enabled and whose window contains now, highest priority first."""
    now = now or utcnow()
    q = db.session.query(Promotion).filter(
        Promotion.is_active.is_(True),
        Promotion.start_date <= now,
        Promotion.end_date >= now,
    )
    return _priority_order(q).all()


def create_promotion(data: dict, user_id: int | None) -> dict:
    patch = validate_payload(model=Promotion, payload=data, policy=PROMOTION_POLICY, partial=False)
    patch.setdefault("priority", 0)
    patch.setdefault("member_only", False)
    patch.setdefault("is_active", True)
    enforce_rules_promotion(patch)

    promo = Promotion(created_by_user_id=user_id, **patch)
    db.session.add(promo)
    db.session.commit()
    current_app.logger.info("Promotion %s created (%s, priority %s)", promo.id, promo.promo_type, promo.priority)
    return promo.to_dict()


def update_promotion(promo_id: int, data: dict) -> dict:
    promo = get_promotion(promo_id)
    patch = validate_payload(model=Promotion, payload=data, policy=PROMOTION_POLICY, partial=True)

    merged = {key: getattr(promo, key) for key in PROMOTION_POLICY.writable_fields}
    merged.update(patch)
    enforce_rules_promotion(merged)

    for key, value in patch.items():
        setattr(promo, key, value)
    db.session.commit()
    return promo.to_dict()


def delete_promotion(promo_id: int) -> dict:
    promo = get_promotion(promo_id)
    promo.is_active = False
    db.session.commit()
    current_app.logger.info("Promotion %s deactivated", promo.id)
    return promo.to_dict()


def get_upcoming_promotions(days: int = 7, now: datetime | None = None) -> list[dict]:
    """Enabled promotions starting after now and within the next `days` days."""
    now = now or utcnow()
    horizon = now + timedelta(days=days)
    q = db.session.query(Promotion).filter(
        Promotion.is_active.is_(True),
        Promotion.start_date > now,
        Promotion.start_date <= horizon,
    ).order_by(Promotion.start_date.asc(), Promotion.id.asc())
    return [p.to_dict() for p in q.all()]


def get_expired_promotions(now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    q = db.session.query(Promotion).filter(Promotion.end_date < now).order_by(Promotion.end_date.desc())
    return [p.to_dict() for p in q.all()]


def get_top_promotions(limit: int = 10) -> list[dict]:
    q = _priority_order(db.session.query(Promotion)).limit(limit)
    return [p.to_dict() for p in q.all()]


def validate_promotion(promo_id: int, now: datetime | None = None) -> dict:
    """
    Check whether a promotion could be applied right now.

    Never raises for the expected failure modes; they come back as
    {"valid": False, "code": ..., "reason": ...}.
    """
    promo = db.session.get(Promotion, promo_id)
    if not promo:
        return {"valid": False, "code": VALIDATION_NOT_FOUND, "reason": "Promotion not found"}

    if not promo.is_active:
        return {"valid": False, "code": VALIDATION_INACTIVE, "reason": "Promotion is inactive"}

    now = now or utcnow()
    if promo.start_date > now:
        return {"valid": False, "code": VALIDATION_NOT_STARTED, "reason": "Promotion has not started yet"}

    if promo.end_date < now:
        return {"valid": False, "code": VALIDATION_EXPIRED, "reason": "Promotion has expired"}

    return {"valid": True}


def check_conflicts(
    start_date,
    end_date,
    branch_id: int | None = None,
    product_id: int | None = None,
    exclude_id: int | None = None,
) -> dict:
    """
    Find promotions whose window overlaps [start_date, end_date].

    Overlap is a pure date-range test (p_start <= d_end AND p_end >= d_start).
    branch_id/product_id only annotate each conflict with scope_overlap;
    they never remove a promotion from the result.
    """
    d_start = parse_iso_datetime(start_date)
    d_end = parse_iso_datetime(end_date, end_of_day=True)
    if d_start is None or d_end is None:
        raise ValidationError("start_date and end_date are required", details={"field": "start_date"})
    if d_start > d_end:
        raise ValidationError("start_date must be on or before end_date", details={"field": "end_date"})

    q = db.session.query(Promotion).filter(
        Promotion.start_date <= d_end,
        Promotion.end_date >= d_start,
    )
    if exclude_id is not None:
        q = q.filter(Promotion.id != exclude_id)

    conflicts = []
    for promo in _priority_order(q).all():
        row = promo.to_dict()
        scope_overlap = True
        if branch_id is not None:
            scope_overlap = scope_overlap and promo.applies_to_branch(branch_id)
        if product_id is not None:
            scope_overlap = scope_overlap and promo.applies_to_product(product_id)
        row["scope_overlap"] = scope_overlap
        conflicts.append(row)

    return {"has_conflicts": bool(conflicts), "conflicts": conflicts}


def get_promotions_by_branch(branch_id: int, now: datetime | None = None) -> list[dict]:
    """Live promotions whose branch set is empty or contains branch_id."""
    return [p.to_dict() for p in get_active_promotions(now) if p.applies_to_branch(branch_id)]


def get_promotions_by_product(product_id: int, now: datetime | None = None) -> list[dict]:
    """Live promotions whose product set is empty or contains product_id."""
    return [p.to_dict() for p in get_active_promotions(now) if p.applies_to_product(product_id)]


def get_promotion_usage(promo_id: int) -> dict:
    """
    Usage of a promotion across completed (or refunded) sales.

    A sale counts once however many of its lines carried the promotion.
    revenue_cents sums the net line subtotals (after discount, with tax).
    """
    promo = get_promotion(promo_id)

    rows = (
        db.session.query(TransactionItem)
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .filter(Transaction.status.in_(USAGE_STATUSES))
        .all()
    )

    transaction_ids = set()
    discount = revenue = 0
    for item in rows:
        if promo.id not in (item.applied_promotion_ids or []):
            continue
        transaction_ids.add(item.transaction_id)
        discount += item.discount_cents
        revenue += item.subtotal_cents

    return {
        "promotion_id": promo.id,
        "usage_count": len(transaction_ids),
        "discount_cents": discount,
        "revenue_cents": revenue,
    }
