from datetime import timedelta

import pytest

from retailpos.models import Promotion
from retailpos.services import promotions_service, transaction_service
from retailpos.time_utils import utcnow
from retailpos.validation import NotFoundError, ValidationError


def _payload(**overrides):
    body = {
        "name": "Weekend 15%",
        "promo_type": "percentage",
        "discount_value": 1500,
        "start_date": "2026-01-01",
        "end_date": "2026-01-31",
    }
    body.update(overrides)
    return body


def test_create_promotion_normalizes_dates(db_session):
    promo = promotions_service.create_promotion(_payload(), user_id=20)

    assert promo["start_date"] == "2026-01-01T00:00:00Z"
    # Date-only end is inclusive through the last second of the day
    assert promo["end_date"] == "2026-01-31T23:59:59Z"
    assert promo["priority"] == 0
    assert promo["is_active"] is True
    assert promo["created_by_user_id"] == 20


@pytest.mark.parametrize("overrides", [
    {"promo_type": "bogus"},
    {"discount_value": 0},
    {"discount_value": 10001},
    {"start_date": "2026-02-01", "end_date": "2026-01-01"},
    {"promo_type": "buy_x_get_y"},
    {"start_time": "25:00"},
    {"discount_value": 12.5},
    {"unknown_field": 1},
])
def test_create_promotion_rejects_invalid(db_session, overrides):
    with pytest.raises(ValidationError):
        promotions_service.create_promotion(_payload(**overrides), user_id=None)
    assert db_session.query(Promotion).count() == 0


def test_create_promotion_requires_fields(db_session):
    with pytest.raises(ValidationError) as exc:
        promotions_service.create_promotion({"name": "x"}, user_id=None)
    assert "promo_type" in exc.value.details["missing"]


def test_fixed_promotion_allows_more_than_ten_thousand_cents(db_session):
    promo = promotions_service.create_promotion(_payload(promo_type="fixed", discount_value=25000), user_id=None)
    assert promo["discount_value"] == 25000


def test_update_validates_against_merged_values(db_session):
    promo = promotions_service.create_promotion(_payload(), user_id=None)

    with pytest.raises(ValidationError):
        promotions_service.update_promotion(promo["id"], {"end_date": "2025-12-01"})

    updated = promotions_service.update_promotion(promo["id"], {"priority": 9})
    assert updated["priority"] == 9


def test_delete_is_soft(db_session):
    promo = promotions_service.create_promotion(_payload(), user_id=None)

    result = promotions_service.delete_promotion(promo["id"])

    assert result["is_active"] is False
    assert db_session.get(Promotion, promo["id"]) is not None


def test_get_missing_promotion_raises(db_session):
    with pytest.raises(NotFoundError):
        promotions_service.get_promotion(999)


def test_active_listing_orders_by_priority(db_session, make_promotion):
    low = make_promotion(name="low", priority=1)
    high = make_promotion(name="high", priority=10)
    make_promotion(name="off", priority=50, is_active=False)

    active = promotions_service.get_active_promotions()

    assert [p.id for p in active] == [high.id, low.id]


def test_upcoming_and_expired(db_session, make_promotion):
    now = utcnow()
    soon = make_promotion(name="soon", start_date=now + timedelta(days=2), end_date=now + timedelta(days=5))
    make_promotion(name="later", start_date=now + timedelta(days=30), end_date=now + timedelta(days=40))
    old = make_promotion(name="old", start_date=now - timedelta(days=10), end_date=now - timedelta(days=5))

    upcoming = promotions_service.get_upcoming_promotions(days=7, now=now)
    expired = promotions_service.get_expired_promotions(now=now)

    assert [p["id"] for p in upcoming] == [soon.id]
    assert [p["id"] for p in expired] == [old.id]


def test_list_by_type(db_session, make_promotion):
    make_promotion(promo_type="percentage")
    fixed = make_promotion(promo_type="fixed", discount_value=500)

    result = promotions_service.list_promotions(promo_type="fixed")

    assert [p["id"] for p in result] == [fixed.id]


def test_validate_promotion_codes(db_session, make_promotion):
    now = utcnow()
    live = make_promotion()
    inactive = make_promotion(is_active=False)
    future = make_promotion(start_date=now + timedelta(days=1), end_date=now + timedelta(days=2))
    past = make_promotion(start_date=now - timedelta(days=2), end_date=now - timedelta(days=1))

    assert promotions_service.validate_promotion(live.id, now) == {"valid": True}
    assert promotions_service.validate_promotion(inactive.id, now)["code"] == "INACTIVE"
    assert promotions_service.validate_promotion(future.id, now)["code"] == "NOT_STARTED"
    assert promotions_service.validate_promotion(past.id, now)["code"] == "EXPIRED"
    assert promotions_service.validate_promotion(12345, now)["code"] == "NOT_FOUND"


def test_conflicts_are_pure_overlap_with_scope_annotation(db_session):
    a = promotions_service.create_promotion(
        _payload(name="A", applicable_branch_ids=[1]), user_id=None
    )
    b = promotions_service.create_promotion(
        _payload(name="B", applicable_branch_ids=[2], start_date="2026-01-20", end_date="2026-02-10"), user_id=None
    )
    promotions_service.create_promotion(
        _payload(name="C", start_date="2026-03-01", end_date="2026-03-31"), user_id=None
    )

    result = promotions_service.check_conflicts("2026-01-25", "2026-02-05", branch_id=1)

    assert result["has_conflicts"] is True
    by_id = {c["id"]: c for c in result["conflicts"]}
    assert set(by_id) == {a["id"], b["id"]}
    assert by_id[a["id"]]["scope_overlap"] is True
    assert by_id[b["id"]]["scope_overlap"] is False


def test_conflicts_boundaries_are_inclusive(db_session):
    promotions_service.create_promotion(_payload(), user_id=None)

    assert promotions_service.check_conflicts("2026-01-31", "2026-02-02")["has_conflicts"] is True
    assert promotions_service.check_conflicts("2026-02-01", "2026-02-02")["has_conflicts"] is False


def test_conflicts_reject_inverted_range(db_session):
    with pytest.raises(ValidationError):
        promotions_service.check_conflicts("2026-02-01", "2026-01-01")


def test_by_branch_and_by_product_listings(db_session, make_promotion):
    everywhere = make_promotion(name="everywhere", priority=1)
    branch_two = make_promotion(name="branch two", applicable_branch_ids=[2], priority=5)
    product_five = make_promotion(name="product five", applicable_product_ids=[5], priority=9)
    make_promotion(name="off", applicable_branch_ids=[2], is_active=False)

    by_branch = promotions_service.get_promotions_by_branch(2)
    by_other_branch = promotions_service.get_promotions_by_branch(1)
    by_product = promotions_service.get_promotions_by_product(5)
    by_other_product = promotions_service.get_promotions_by_product(6)

    assert [p["id"] for p in by_branch] == [product_five.id, branch_two.id, everywhere.id]
    assert [p["id"] for p in by_other_branch] == [product_five.id, everywhere.id]
    assert [p["id"] for p in by_product] == [product_five.id, branch_two.id, everywhere.id]
    assert [p["id"] for p in by_other_product] == [branch_two.id, everywhere.id]


def test_usage_counts_completed_sales_carrying_the_promotion(db_session, make_product, make_promotion, sale_payload):
    product = make_product()
    promo = make_promotion(discount_value=2000, priority=10)
    for _ in range(2):
        transaction_service.create_transaction(
            sale_payload(product.id, quantity=2, apply_promotions=True, amount_paid_cents=16000),
            cashier_id=10,
        )
    # Sale without promotions does not count
    transaction_service.create_transaction(sale_payload(product.id), cashier_id=10)

    usage = promotions_service.get_promotion_usage(promo.id)

    assert usage == {
        "promotion_id": promo.id,
        "usage_count": 2,
        "discount_cents": 8000,
        "revenue_cents": 32000,
    }


def test_usage_of_missing_promotion_raises(db_session):
    with pytest.raises(NotFoundError):
        promotions_service.get_promotion_usage(999)
