"""
HTTP-level tests for /api/pos.

Covers the response envelope, auth and role gates, and error code mapping.
Business rules themselves are covered by the service tests.
"""

from sqlalchemy.exc import OperationalError

from retailpos.services import transaction_service


BRANCH_ID = 1


def _create(client, headers, body):
    return client.post("/api/pos/transactions", json=body, headers=headers)


def test_requires_bearer_token(client, db_session):
    resp = client.get("/api/pos/held")
    assert resp.status_code == 401
    assert resp.get_json()["success"] is False

    resp = client.get("/api/pos/held", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_identity_resolver_takes_precedence(app, client, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "IDENTITY_RESOLVER", lambda token: {"user_id": 77} if token == "ext" else None)

    assert client.get("/api/pos/held", headers={"Authorization": "Bearer ext"}).status_code == 200
    assert client.get("/api/pos/held", headers={"Authorization": "Bearer cashier-token"}).status_code == 401


def test_product_lookups(client, db_session, cashier_headers, make_product):
    product = make_product(name="Arabica Beans", sku="SKU-ARA", barcode="111222333")

    search = client.get("/api/pos/products/search?q=arabica", headers=cashier_headers)
    by_barcode = client.get("/api/pos/products/barcode/111222333", headers=cashier_headers)
    by_sku = client.get("/api/pos/products/sku/SKU-ARA", headers=cashier_headers)
    missing = client.get("/api/pos/products/sku/NOPE", headers=cashier_headers)
    blank = client.get("/api/pos/products/search?q=", headers=cashier_headers)

    assert [p["id"] for p in search.get_json()["products"]] == [product.id]
    assert by_barcode.get_json()["product"]["sku"] == "SKU-ARA"
    assert by_sku.get_json()["product"]["id"] == product.id
    assert missing.status_code == 404
    assert missing.get_json()["code"] == "NOT_FOUND"
    assert blank.status_code == 400


def test_create_transaction_envelope(client, db_session, cashier_headers, make_product, sale_payload):
    product = make_product()
    body = sale_payload(product.id)
    body.pop("branch_id")  # defaults to the caller's branch

    resp = _create(client, cashier_headers, body)

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["success"] is True
    assert data["transaction_number"].startswith("TXN-")
    assert data["transaction"]["branch_id"] == BRANCH_ID
    assert data["transaction"]["cashier_id"] == 10
    assert len(data["items"]) == 1

    fetched = client.get(f"/api/pos/transactions/{data['transaction_id']}", headers=cashier_headers)
    items = client.get(f"/api/pos/transactions/{data['transaction_id']}/items", headers=cashier_headers)
    assert fetched.get_json()["transaction"]["total_cents"] == 10000
    assert items.get_json()["count"] == 1


def test_validation_error_shape(client, db_session, cashier_headers, make_product, sale_payload):
    product = make_product()

    resp = _create(client, cashier_headers, sale_payload(product.id, total_cents=1))

    assert resp.status_code == 400
    data = resp.get_json()
    assert data == {
        "success": False,
        "error": data["error"],
        "code": "VALIDATION_ERROR",
        "details": data["details"],
    }
    assert data["details"]["field"] == "total_cents"


def test_insufficient_stock_is_409(client, db_session, cashier_headers, make_product, sale_payload):
    product = make_product(stock=0)

    resp = _create(client, cashier_headers, sale_payload(product.id))

    assert resp.status_code == 409
    assert resp.get_json()["code"] == "INSUFFICIENT_STOCK"


def test_storage_failure_is_503(client, db_session, cashier_headers, monkeypatch):
    def _boom(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(transaction_service, "get_transaction", _boom)

    resp = client.get("/api/pos/transactions/1", headers=cashier_headers)

    assert resp.status_code == 503
    assert resp.get_json()["code"] == "STORAGE_UNAVAILABLE"


def test_unexpected_failure_is_500(client, db_session, cashier_headers, monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(transaction_service, "get_transaction", _boom)

    resp = client.get("/api/pos/transactions/1", headers=cashier_headers)

    assert resp.status_code == 500
    assert resp.get_json()["code"] == "INTERNAL_ERROR"


def test_open_cart_hold_resume_complete_flow(client, db_session, cashier_headers, make_product, sale_payload):
    product = make_product(price_cents=2000)
    body = sale_payload(product.id, unit_price_cents=2000, finalize=False)
    created = _create(client, cashier_headers, body).get_json()
    txn_id = created["transaction_id"]
    assert created["transaction"]["status"] == "open"

    added = client.post(
        f"/api/pos/transactions/{txn_id}/items",
        json={"product_id": product.id, "quantity": 1, "unit_price_cents": 2000},
        headers=cashier_headers,
    )
    assert added.status_code == 201
    assert added.get_json()["transaction"]["total_cents"] == 4000

    held = client.post(f"/api/pos/transactions/{txn_id}/hold", json={"notes": "wallet"}, headers=cashier_headers)
    assert held.status_code == 201
    held_id = held.get_json()["held_transaction"]["id"]

    listing = client.get("/api/pos/held", headers=cashier_headers).get_json()
    assert [h["id"] for h in listing["held_transactions"]] == [held_id]
    other = client.get("/api/pos/held", headers={"Authorization": "Bearer cashier2-token"}).get_json()
    assert other["count"] == 0

    blocked = client.post(
        f"/api/pos/transactions/{txn_id}/complete",
        json={"payment_method": "cash", "amount_paid_cents": 4000},
        headers=cashier_headers,
    )
    assert blocked.status_code == 409

    resumed = client.post(f"/api/pos/held/{held_id}/resume", headers=cashier_headers)
    assert resumed.status_code == 200
    snapshot = resumed.get_json()
    assert snapshot["transaction"]["total_cents"] == 4000
    assert len(snapshot["items"]) == 2

    completed = client.post(
        f"/api/pos/transactions/{txn_id}/complete",
        json={"payment_method": "cash", "amount_paid_cents": 5000},
        headers=cashier_headers,
    )
    assert completed.status_code == 200
    assert completed.get_json()["transaction"]["change_cents"] == 1000


def test_hold_completed_transaction_is_conflict(client, db_session, cashier_headers, make_product, sale_payload):
    product = make_product()
    txn_id = _create(client, cashier_headers, sale_payload(product.id)).get_json()["transaction_id"]

    resp = client.post(f"/api/pos/transactions/{txn_id}/hold", headers=cashier_headers)
    missing = client.post("/api/pos/transactions/9999/hold", headers=cashier_headers)

    assert resp.status_code == 409
    assert resp.get_json()["code"] == "STATE_CONFLICT"
    assert missing.status_code == 404


def test_discard_twice_succeeds(client, db_session, cashier_headers, make_product, sale_payload):
    product = make_product()
    txn_id = _create(client, cashier_headers, sale_payload(product.id, finalize=False)).get_json()["transaction_id"]
    held_id = client.post(f"/api/pos/transactions/{txn_id}/hold", headers=cashier_headers).get_json()["held_transaction"]["id"]

    first = client.post(f"/api/pos/held/{held_id}/discard", headers=cashier_headers)
    second = client.post(f"/api/pos/held/{held_id}/discard", headers=cashier_headers)
    resume = client.post(f"/api/pos/held/{held_id}/resume", headers=cashier_headers)

    assert first.status_code == second.status_code == 200
    assert second.get_json()["held_transaction"]["state"] == "discarded"
    assert resume.status_code == 404


def test_refund_routes_and_manager_gate(
    client, db_session, cashier_headers, manager_headers, make_product, sale_payload
):
    product = make_product()
    txn_id = _create(client, cashier_headers, sale_payload(product.id)).get_json()["transaction_id"]
    url = f"/api/pos/transactions/{txn_id}/refunds"

    too_much = client.post(url, json={"reason": "x", "refund_amount_cents": 20000}, headers=cashier_headers)
    assert too_much.status_code == 409
    assert too_much.get_json()["code"] == "REFUND_EXCEEDS_TOTAL"

    created = client.post(url, json={"reason": "Broken", "refund_amount_cents": 10000}, headers=cashier_headers)
    assert created.status_code == 201
    refund_id = created.get_json()["refund"]["id"]

    forbidden = client.post(f"/api/pos/refunds/{refund_id}/approve", headers=cashier_headers)
    assert forbidden.status_code == 403

    approved = client.post(f"/api/pos/refunds/{refund_id}/approve", headers=manager_headers)
    completed = client.post(f"/api/pos/refunds/{refund_id}/complete", headers=manager_headers)
    assert approved.get_json()["refund"]["status"] == "approved"
    assert completed.get_json()["refund"]["status"] == "completed"

    listing = client.get(url, headers=cashier_headers).get_json()
    assert [r["id"] for r in listing["refunds"]] == [refund_id]
    single = client.get(f"/api/pos/refunds/{refund_id}", headers=cashier_headers).get_json()
    assert single["refund"]["completed_by"] == 20
    assert client.get("/api/pos/refunds/9999", headers=cashier_headers).status_code == 404
    txn = client.get(f"/api/pos/transactions/{txn_id}", headers=cashier_headers).get_json()["transaction"]
    assert txn["status"] == "refunded"


def test_reject_refund_route(client, db_session, cashier_headers, manager_headers, make_product, sale_payload):
    product = make_product()
    txn_id = _create(client, cashier_headers, sale_payload(product.id)).get_json()["transaction_id"]
    refund_id = client.post(
        f"/api/pos/transactions/{txn_id}/refunds",
        json={"reason": "Changed mind", "refund_amount_cents": 500},
        headers=cashier_headers,
    ).get_json()["refund"]["id"]

    no_reason = client.post(f"/api/pos/refunds/{refund_id}/reject", json={}, headers=manager_headers)
    rejected = client.post(
        f"/api/pos/refunds/{refund_id}/reject",
        json={"rejection_reason": "Outside window"},
        headers=manager_headers,
    )

    assert no_reason.status_code == 400
    assert rejected.get_json()["refund"]["status"] == "rejected"


def test_transaction_listing_selectors(client, db_session, cashier_headers, make_product, sale_payload):
    product = make_product()
    for _ in range(3):
        _create(client, cashier_headers, sale_payload(product.id))

    by_branch = client.get(f"/api/pos/transactions?branch_id={BRANCH_ID}&limit=2", headers=cashier_headers)
    by_cashier = client.get("/api/pos/transactions?cashier_id=10", headers=cashier_headers)
    dated = client.get(
        f"/api/pos/transactions?branch_id={BRANCH_ID}&start=2000-01-01&end=2000-01-02", headers=cashier_headers
    )
    ambiguous = client.get("/api/pos/transactions?branch_id=1&cashier_id=10", headers=cashier_headers)

    assert by_branch.get_json()["count"] == 2
    assert by_cashier.get_json()["count"] == 3
    assert dated.get_json()["count"] == 0
    assert ambiguous.status_code == 400


def test_sales_summary(client, db_session, cashier_headers, make_product, sale_payload):
    coffee = make_product(name="Coffee", price_cents=3000)
    tea = make_product(name="Tea", price_cents=1000)
    _create(client, cashier_headers, sale_payload(coffee.id, quantity=2, unit_price_cents=3000))
    _create(client, cashier_headers, sale_payload(tea.id, quantity=1, unit_price_cents=1000, payment_method="card"))
    _create(client, cashier_headers, sale_payload(tea.id, quantity=1, unit_price_cents=1000, finalize=False))

    resp = client.get(f"/api/pos/summary?branch_id={BRANCH_ID}", headers=cashier_headers)

    summary = resp.get_json()["summary"]
    assert summary["transaction_count"] == 2
    assert summary["total_sales_cents"] == 7000
    assert summary["average_transaction_cents"] == 3500
    assert {m["payment_method"]: m["count"] for m in summary["payment_methods"]} == {"card": 1, "cash": 1}
    assert summary["top_products"][0]["product_id"] == coffee.id
    assert summary["top_products"][0]["quantity_sold"] == 2
