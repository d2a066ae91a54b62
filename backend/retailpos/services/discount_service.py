"""
Discount Resolver

Picks at most one promotion for a cart line and computes its discount.

RULES:
- Candidates come from the promotion catalog, highest priority first
- Each candidate passes an eligibility filter before any discount is computed
- The first eligible promotion whose discount is > 0 wins; nothing stacks
- final_price_cents is clamped to [0, subtotal_cents]
- "No applicable promotion" is a normal zero-discount result, never an error

Money is integer cents. Percentage-like promotions store basis points and
round half-up to the nearest cent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time

from flask import current_app

from ..models import Promotion
from ..models.customers import CUSTOMER_TIERS
from ..models.promotions import (
    PERCENT_TYPES,
    PROMO_BUY_X_GET_Y,
    PROMO_FIXED,
    PROMO_HAPPY_HOUR,
    PROMO_MEMBER_ONLY,
)
from ..validation import ValidationError, optional_int, require_positive_int
from . import promotions_service
from retailpos.time_utils import parse_hhmm, parse_iso_datetime, to_business_time, utcnow


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class DiscountContext:
    branch_id: int | None
    now: datetime
    customer_id: int | None = None
    customer_tier: str | None = None


@dataclass(frozen=True)
class DiscountResult:
    subtotal_cents: int
    discount_cents: int
    final_price_cents: int
    applied_promotion: Promotion | None = None

    @property
    def applied_promotion_ids(self) -> list[int]:
        return [self.applied_promotion.id] if self.applied_promotion else []

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "final_price_cents": self.final_price_cents,
            "applied_promotion": self.applied_promotion.to_dict() if self.applied_promotion else None,
        }


def percent_of(amount_cents: int, basis_points: int) -> int:
    """amount * bps / 10000, nearest cent, half-up."""
    return (amount_cents * basis_points + 5000) // 10000


def happy_hour_band(promo: Promotion) -> tuple[time, time]:
    """
    The [start, end) time-of-day band a happy-hour promotion is live in.

    HAPPY_HOUR_SOURCE="fixed" always uses the configured default band;
    "promotion" uses the promotion's own start_time/end_time when both are set.
    """
    default = (
        parse_hhmm(current_app.config["HAPPY_HOUR_DEFAULT_START"]),
        parse_hhmm(current_app.config["HAPPY_HOUR_DEFAULT_END"]),
    )
    if current_app.config["HAPPY_HOUR_SOURCE"] == "fixed":
        return default

    start, end = parse_hhmm(promo.start_time), parse_hhmm(promo.end_time)
    if start is None or end is None:
        return default
    return start, end


def _in_band(moment: time, start: time, end: time) -> bool:
    if start <= end:
        return start <= moment < end
    # Band wraps midnight (e.g. 22:00-02:00)
    return moment >= start or moment < end


def is_eligible(promo: Promotion, line: CartLine, ctx: DiscountContext) -> bool:
    if (promo.promo_type == PROMO_MEMBER_ONLY or promo.member_only) and ctx.customer_id is None:
        return False

    if promo.promo_type == PROMO_HAPPY_HOUR:
        start, end = happy_hour_band(promo)
        local_now = to_business_time(ctx.now, current_app.config["BUSINESS_TIMEZONE"])
        if not _in_band(local_now.time(), start, end):
            return False

    if promo.promo_type == PROMO_BUY_X_GET_Y:
        if not promo.buy_quantity or line.quantity < promo.buy_quantity:
            return False

    if current_app.config["PROMOTION_SCOPE_ENFORCED"]:
        if not promo.applies_to_product(line.product_id):
            return False
        if not promo.applies_to_branch(ctx.branch_id):
            return False

    return True


def compute_discount(promo: Promotion, line: CartLine) -> int:
    subtotal = line.subtotal_cents
    if promo.promo_type == PROMO_FIXED:
        discount = promo.discount_value
    elif promo.promo_type in PERCENT_TYPES:
        discount = percent_of(subtotal, promo.discount_value)
    else:
        discount = 0
    return max(0, min(discount, subtotal))


def resolve(line: CartLine, ctx: DiscountContext, promotions: list[Promotion] | None = None) -> DiscountResult:
    """
    Resolve the single promotion that applies to a cart line.

    promotions may be passed in when resolving a whole cart so the catalog
    is read once; it must already be in priority order.
    """
    if promotions is None:
        promotions = promotions_service.get_active_promotions(ctx.now)

    subtotal = line.subtotal_cents
    for promo in promotions:
        if not is_eligible(promo, line, ctx):
            continue
        discount = compute_discount(promo, line)
        if discount > 0:
            return DiscountResult(
                subtotal_cents=subtotal,
                discount_cents=discount,
                final_price_cents=subtotal - discount,
                applied_promotion=promo,
            )

    return DiscountResult(subtotal_cents=subtotal, discount_cents=0, final_price_cents=subtotal)


def calculate_discount(data: dict) -> dict:
    """Validate a calculate-discount request body and resolve it."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    line = CartLine(
        product_id=require_positive_int(data, "product_id"),
        quantity=require_positive_int(data, "quantity"),
        unit_price_cents=require_positive_int(data, "unit_price_cents"),
    )

    tier = data.get("customer_tier")
    if tier is not None and tier not in CUSTOMER_TIERS:
        raise ValidationError(
            f"customer_tier must be one of: {', '.join(CUSTOMER_TIERS)}",
            details={"field": "customer_tier"},
        )

    try:
        now = parse_iso_datetime(data.get("current_time")) or utcnow()
    except ValueError:
        raise ValidationError("current_time must be an ISO-8601 datetime", details={"field": "current_time"})

    ctx = DiscountContext(
        branch_id=require_positive_int(data, "branch_id"),
        customer_id=optional_int(data, "customer_id"),
        customer_tier=tier,
        now=now,
    )
    return resolve(line, ctx).to_dict()
