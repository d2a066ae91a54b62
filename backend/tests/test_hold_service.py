from datetime import timedelta

import pytest

from retailpos.models import HeldTransaction, Transaction
from retailpos.services import hold_service, maintenance_service, transaction_service
from retailpos.time_utils import utcnow
from retailpos.validation import ConflictError, NotFoundError


CASHIER_ID = 10


@pytest.fixture
def open_txn(db_session, make_product, sale_payload):
    product = make_product(price_cents=1500)
    body = sale_payload(product.id, quantity=3, unit_price_cents=1500, tax_cents=0, notes="table 4")
    return transaction_service.create_transaction(body, cashier_id=CASHIER_ID, finalize=False)


def test_hold_then_resume_returns_exactly_what_was_held(db_session, open_txn):
    before = transaction_service.transaction_payload(open_txn)

    held = hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID, notes="back in 5")
    assert db_session.get(Transaction, open_txn.id).status == "held"
    assert held.expires_at == held.held_at + timedelta(hours=4)

    snapshot = hold_service.resume_held_transaction(held.id)

    assert snapshot == before
    assert db_session.get(Transaction, open_txn.id).status == "open"
    assert db_session.get(HeldTransaction, held.id).state == "resumed"


def test_hold_ttl_is_configurable(app, db_session, open_txn, monkeypatch):
    monkeypatch.setitem(app.config, "HOLD_TTL_HOURS", 1)

    held = hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)

    assert held.expires_at - held.held_at == timedelta(hours=1)


def test_resumed_cart_can_be_held_again(db_session, open_txn):
    held = hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)
    hold_service.resume_held_transaction(held.id)

    again = hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)

    assert again.id == held.id
    assert again.state == "held"


def test_cannot_hold_completed_or_missing_transaction(db_session, make_product, sale_payload, open_txn):
    product = make_product()
    done = transaction_service.create_transaction(sale_payload(product.id), cashier_id=CASHIER_ID)

    with pytest.raises(ConflictError):
        hold_service.hold_transaction(done.id, held_by=CASHIER_ID)
    with pytest.raises(NotFoundError):
        hold_service.hold_transaction(9999, held_by=CASHIER_ID)

    hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)
    with pytest.raises(ConflictError):
        hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)


def test_expired_hold_fails_resume_and_cancels(db_session, open_txn):
    held = hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)

    with pytest.raises(ConflictError) as exc:
        hold_service.resume_held_transaction(held.id, now=utcnow() + timedelta(hours=5))

    assert exc.value.code == "HOLD_EXPIRED"
    assert db_session.get(HeldTransaction, held.id).state == "expired"
    assert db_session.get(Transaction, open_txn.id).status == "cancelled"

    with pytest.raises(NotFoundError):
        hold_service.resume_held_transaction(held.id)


def test_expiry_enforcement_can_be_disabled(app, db_session, open_txn, monkeypatch):
    monkeypatch.setitem(app.config, "ENFORCE_HOLD_EXPIRY", False)
    held = hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)

    snapshot = hold_service.resume_held_transaction(held.id, now=utcnow() + timedelta(days=2))

    assert snapshot["transaction"]["id"] == open_txn.id


def test_discard_is_idempotent(db_session, open_txn):
    held = hold_service.hold_transaction(open_txn.id, held_by=CASHIER_ID)

    first = hold_service.discard_held_transaction(held.id)
    second = hold_service.discard_held_transaction(held.id)

    assert first.state == second.state == "discarded"
    assert db_session.get(Transaction, open_txn.id).status == "cancelled"
    with pytest.raises(NotFoundError):
        hold_service.resume_held_transaction(held.id)


def test_discard_missing_hold(db_session):
    with pytest.raises(NotFoundError):
        hold_service.discard_held_transaction(123)


def test_held_list_is_per_user_newest_first(db_session, make_product, sale_payload):
    product = make_product()

    def _open():
        return transaction_service.create_transaction(
            sale_payload(product.id), cashier_id=CASHIER_ID, finalize=False
        )

    a = hold_service.hold_transaction(_open().id, held_by=CASHIER_ID)
    b = hold_service.hold_transaction(_open().id, held_by=CASHIER_ID)
    hold_service.hold_transaction(_open().id, held_by=11)
    c = hold_service.hold_transaction(_open().id, held_by=CASHIER_ID)
    hold_service.discard_held_transaction(c.id)

    held = hold_service.get_held_transactions(CASHIER_ID)

    assert [h.id for h in held] == [b.id, a.id]


def test_sweep_expires_only_overdue_holds(db_session, make_product, sale_payload):
    product = make_product()
    txns = [
        transaction_service.create_transaction(sale_payload(product.id), cashier_id=CASHIER_ID, finalize=False)
        for _ in range(2)
    ]
    stale = hold_service.hold_transaction(txns[0].id, held_by=CASHIER_ID)
    fresh = hold_service.hold_transaction(txns[1].id, held_by=CASHIER_ID)
    stale_row = db_session.get(HeldTransaction, stale.id)
    stale_row.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    expired = maintenance_service.sweep_expired_holds()

    assert expired == 1
    assert db_session.get(HeldTransaction, stale.id).state == "expired"
    assert db_session.get(HeldTransaction, fresh.id).state == "held"
    assert db_session.get(Transaction, txns[0].id).status == "cancelled"
