from datetime import timedelta

from retailpos.time_utils import to_utc_z, utcnow


def _promo_body(**overrides):
    now = utcnow()
    body = {
        "name": "Lunch 20%",
        "promo_type": "percentage",
        "discount_value": 2000,
        "start_date": to_utc_z(now - timedelta(days=1)),
        "end_date": to_utc_z(now + timedelta(days=1)),
        "priority": 10,
    }
    body.update(overrides)
    return body


def test_calculate_discount_scenarios(client, db_session, cashier_headers, manager_headers):
    line = {"product_id": 1, "quantity": 2, "unit_price_cents": 10000, "branch_id": 1}

    none = client.post("/api/promotions/calculate-discount", json=line, headers=cashier_headers)
    assert none.status_code == 200
    assert none.get_json()["discount_cents"] == 0
    assert none.get_json()["final_price_cents"] == 20000
    assert none.get_json()["applied_promotion"] is None

    created = client.post("/api/promotions", json=_promo_body(), headers=manager_headers)
    assert created.status_code == 201
    promo_id = created.get_json()["promotion"]["id"]

    applied = client.post("/api/promotions/calculate-discount", json=line, headers=cashier_headers).get_json()
    assert applied["discount_cents"] == 4000
    assert applied["final_price_cents"] == 16000
    assert applied["applied_promotion"]["id"] == promo_id


def test_calculate_discount_rejects_bad_body(client, db_session, cashier_headers):
    resp = client.post(
        "/api/promotions/calculate-discount",
        json={"product_id": 1, "quantity": 0, "unit_price_cents": 100, "branch_id": 1},
        headers=cashier_headers,
    )
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_promotion_writes_need_manager(client, db_session, cashier_headers, manager_headers):
    assert client.post("/api/promotions", json=_promo_body(), headers=cashier_headers).status_code == 403

    promo_id = client.post("/api/promotions", json=_promo_body(), headers=manager_headers).get_json()["promotion"]["id"]

    patched = client.patch(f"/api/promotions/{promo_id}", json={"priority": 3}, headers=manager_headers)
    deleted = client.delete(f"/api/promotions/{promo_id}", headers=manager_headers)

    assert patched.get_json()["promotion"]["priority"] == 3
    assert deleted.get_json()["promotion"]["is_active"] is False
    assert client.get(f"/api/promotions/{promo_id}", headers=cashier_headers).status_code == 200
    assert client.get("/api/promotions/999", headers=cashier_headers).status_code == 404


def test_invalid_promotion_is_400(client, db_session, manager_headers):
    resp = client.post("/api/promotions", json=_promo_body(discount_value=-1), headers=manager_headers)

    assert resp.status_code == 400
    assert resp.get_json()["details"]["field"] == "discount_value"


def test_listings(client, db_session, cashier_headers, manager_headers, make_promotion):
    now = utcnow()
    live = make_promotion(name="live", priority=5)
    soon = make_promotion(name="soon", start_date=now + timedelta(days=1), end_date=now + timedelta(days=3))
    gone = make_promotion(name="gone", start_date=now - timedelta(days=5), end_date=now - timedelta(days=2))

    active = client.get("/api/promotions/active", headers=cashier_headers).get_json()["promotions"]
    upcoming = client.get("/api/promotions/upcoming?days=7", headers=cashier_headers).get_json()["promotions"]
    expired = client.get("/api/promotions/expired", headers=cashier_headers).get_json()["promotions"]
    everything = client.get("/api/promotions", headers=cashier_headers).get_json()["promotions"]
    top = client.get("/api/promotions/top?limit=1", headers=cashier_headers).get_json()["promotions"]

    assert [p["id"] for p in active] == [live.id]
    assert [p["id"] for p in upcoming] == [soon.id]
    assert [p["id"] for p in expired] == [gone.id]
    assert len(everything) == 3
    assert [p["id"] for p in top] == [live.id]


def test_validate_route(client, db_session, cashier_headers, make_promotion):
    promo = make_promotion()

    ok = client.get(f"/api/promotions/{promo.id}/validate", headers=cashier_headers).get_json()
    missing = client.get("/api/promotions/999/validate", headers=cashier_headers).get_json()

    assert ok["valid"] is True
    assert missing["valid"] is False
    assert missing["code"] == "NOT_FOUND"


def test_conflicts_route(client, db_session, cashier_headers, make_promotion):
    now = utcnow()
    promo = make_promotion(applicable_branch_ids=[2])

    resp = client.get(
        "/api/promotions/conflicts",
        query_string={
            "start_date": to_utc_z(now),
            "end_date": to_utc_z(now + timedelta(hours=1)),
            "branch_id": 1,
        },
        headers=cashier_headers,
    )
    bad = client.get("/api/promotions/conflicts?start_date=garbage&end_date=2026-01-01", headers=cashier_headers)

    data = resp.get_json()
    assert data["has_conflicts"] is True
    assert data["conflicts"][0]["id"] == promo.id
    assert data["conflicts"][0]["scope_overlap"] is False
    assert bad.status_code == 400


def test_branch_and_product_routes(client, db_session, cashier_headers, make_promotion):
    scoped = make_promotion(applicable_branch_ids=[2], applicable_product_ids=[5])
    anywhere = make_promotion()

    branch_two = client.get("/api/promotions/branch/2", headers=cashier_headers).get_json()
    branch_one = client.get("/api/promotions/branch/1", headers=cashier_headers).get_json()
    product_six = client.get("/api/promotions/product/6", headers=cashier_headers).get_json()

    assert {p["id"] for p in branch_two["promotions"]} == {scoped.id, anywhere.id}
    assert [p["id"] for p in branch_one["promotions"]] == [anywhere.id]
    assert [p["id"] for p in product_six["promotions"]] == [anywhere.id]


def test_usage_route(client, db_session, cashier_headers, make_promotion):
    promo = make_promotion()

    resp = client.get(f"/api/promotions/{promo.id}/usage", headers=cashier_headers)
    missing = client.get("/api/promotions/999/usage", headers=cashier_headers)

    assert resp.status_code == 200
    assert resp.get_json()["usage_count"] == 0
    assert resp.get_json()["revenue_cents"] == 0
    assert missing.status_code == 404
