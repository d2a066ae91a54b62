import re

import pytest

from retailpos.models import Refund, Transaction
from retailpos.services import refund_service, transaction_service
from retailpos.validation import ConflictError, NotFoundError, ValidationError


CASHIER_ID = 10
MANAGER_ID = 20


@pytest.fixture
def sale(db_session, make_product, sale_payload):
    product = make_product(price_cents=10000)
    return transaction_service.create_transaction(sale_payload(product.id), cashier_id=CASHIER_ID)


def _refund(txn_id, amount, reason="Damaged"):
    return refund_service.create_refund(
        txn_id, {"reason": reason, "refund_amount_cents": amount}, processed_by=CASHIER_ID
    )


def test_refund_lifecycle(db_session, sale):
    refund = _refund(sale.id, 4000)
    assert refund.status == "pending"
    assert re.fullmatch(r"REF-\d{13}-[0-9a-z]{9}", refund.refund_number)

    refund_service.approve_refund(refund.id, MANAGER_ID)
    done = refund_service.complete_refund(refund.id, MANAGER_ID)

    assert done.status == "completed"
    assert done.approved_by == MANAGER_ID
    assert done.completed_by == MANAGER_ID
    # Partial refund leaves the sale completed
    assert db_session.get(Transaction, sale.id).status == "completed"


def test_full_refund_marks_transaction_refunded(db_session, sale):
    first = _refund(sale.id, 6000)
    second = _refund(sale.id, 4000)
    for r in (first, second):
        refund_service.approve_refund(r.id, MANAGER_ID)
        refund_service.complete_refund(r.id, MANAGER_ID)

    assert db_session.get(Transaction, sale.id).status == "refunded"


def test_refund_over_total_is_rejected_when_enforced(db_session, sale):
    with pytest.raises(ConflictError) as exc:
        _refund(sale.id, 10001)

    assert exc.value.code == "REFUND_EXCEEDS_TOTAL"
    assert exc.value.details["remaining_cents"] == 10000
    assert db_session.query(Refund).count() == 0


def test_refund_cap_counts_prior_approved_refunds(db_session, sale):
    first = _refund(sale.id, 7000)
    refund_service.approve_refund(first.id, MANAGER_ID)

    with pytest.raises(ConflictError) as exc:
        _refund(sale.id, 3001)
    assert exc.value.details["already_refunded_cents"] == 7000

    assert _refund(sale.id, 3000).status == "pending"


def test_refund_cap_is_rechecked_on_approval(db_session, sale):
    a = _refund(sale.id, 8000)
    b = _refund(sale.id, 8000)
    refund_service.approve_refund(a.id, MANAGER_ID)

    with pytest.raises(ConflictError) as exc:
        refund_service.approve_refund(b.id, MANAGER_ID)

    assert exc.value.code == "REFUND_EXCEEDS_TOTAL"
    assert db_session.get(Refund, b.id).status == "pending"


def test_refund_over_total_is_accepted_when_cap_disabled(app, db_session, sale, monkeypatch):
    # Legacy behaviour: amounts were never checked against the sale total
    monkeypatch.setitem(app.config, "REFUND_ENFORCE_TOTAL", False)

    refund = _refund(sale.id, 25000)
    refund_service.approve_refund(refund.id, MANAGER_ID)

    assert refund.refund_amount_cents == 25000
    assert db_session.get(Refund, refund.id).status == "approved"


def test_refund_requires_completed_transaction(db_session, make_product, sale_payload):
    product = make_product()
    open_txn = transaction_service.create_transaction(
        sale_payload(product.id), cashier_id=CASHIER_ID, finalize=False
    )

    with pytest.raises(ConflictError):
        _refund(open_txn.id, 100)
    with pytest.raises(NotFoundError):
        _refund(9999, 100)


@pytest.mark.parametrize("body", [
    {"reason": "", "refund_amount_cents": 100},
    {"reason": "x"},
    {"reason": "x", "refund_amount_cents": 0},
    {"reason": "x", "refund_amount_cents": -5},
])
def test_refund_input_validation(db_session, sale, body):
    with pytest.raises(ValidationError):
        refund_service.create_refund(sale.id, body, processed_by=CASHIER_ID)


def test_state_machine_guards(db_session, sale):
    refund = _refund(sale.id, 1000)

    with pytest.raises(ConflictError):
        refund_service.complete_refund(refund.id, MANAGER_ID)

    rejected = refund_service.reject_refund(refund.id, MANAGER_ID, "No receipt")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "No receipt"

    with pytest.raises(ConflictError):
        refund_service.approve_refund(refund.id, MANAGER_ID)
    with pytest.raises(ConflictError):
        refund_service.reject_refund(refund.id, MANAGER_ID, "again")


def test_reject_requires_reason(db_session, sale):
    refund = _refund(sale.id, 1000)
    with pytest.raises(ValidationError):
        refund_service.reject_refund(refund.id, MANAGER_ID, "  ")


def test_refunds_listed_newest_first(db_session, sale):
    first = _refund(sale.id, 100)
    second = _refund(sale.id, 200)

    refunds = refund_service.get_refunds_by_transaction(sale.id)

    assert [r.id for r in refunds] == [second.id, first.id]
    with pytest.raises(NotFoundError):
        refund_service.get_refunds_by_transaction(9999)
