"""
HTTP surface tests: status codes and payload shapes of the admin and customer routes.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from fulfillment import api
from fulfillment.main import create_app


@pytest.fixture
def client(db):
    # no context manager: lifespan (detector thread, create_all) stays off
    return TestClient(create_app())


def _order_body(**overrides):
    body = {
        "user_id": "u1",
        "customer_name": "Jan Kowalski",
        "customer_email": "jan@example.com",
        "items": [{"product_id": "p1", "name": "Pizza", "unit_price": "10.00", "quantity": 2}],
        "payment_method": "cash",
    }
    body.update(overrides)
    return body


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_create_and_fetch_order(client):
    created = client.post("/orders/", json=_order_body())
    assert created.status_code == 201
    order = created.json()
    assert Decimal(order["total"]) == Decimal("21.60")

    fetched = client.get(f"/orders/{order['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["order_number"] == order["order_number"]

    listed = client.get("/orders/", params={"status": "pending"})
    assert [o["id"] for o in listed.json()] == [order["id"]]


def test_invalid_order_payload(client):
    assert client.post("/orders/", json=_order_body(items=[])).status_code == 422


def test_customer_tracker_hides_foreign_orders(client, make_order):
    order = make_order(user_id="u1")
    assert client.get(f"/orders/{order.id}", params={"user_id": "u2"}).status_code == 403


def test_unknown_order_is_404(client):
    assert client.get("/orders/missing").status_code == 404


def test_status_patch_and_illegal_transition(client, make_order):
    order = make_order(status="pending")

    ok = client.patch(f"/orders/{order.id}/status", json={"status": "confirmed", "actor": "admin"})
    assert ok.status_code == 200
    assert ok.json()["status"] == "confirmed"

    bad = client.patch(f"/orders/{order.id}/status", json={"status": "delivered"})
    assert bad.status_code == 409
    assert bad.json()["detail"]["code"] == "illegal_transition"

    events = client.get(f"/orders/{order.id}/events").json()
    assert [e["to_status"] for e in events] == ["confirmed"]


def test_bulk_status_partial_is_207(client, make_order):
    a = make_order(status="pending")
    b = make_order(status="delivered")

    resp = client.post("/orders/bulk-status", json={"order_ids": [a.id, b.id], "status": "confirmed"})

    assert resp.status_code == 207
    body = resp.json()
    assert [o["id"] for o in body["succeeded"]] == [a.id]
    assert body["failed"][0]["id"] == b.id


def test_customer_cancel(client, make_order):
    order = make_order(user_id="u1")

    assert client.post(f"/orders/{order.id}/cancel", json={"user_id": "u2"}).status_code == 403
    resp = client.post(f"/orders/{order.id}/cancel", json={"user_id": "u1", "reason": "late"})
    assert resp.status_code == 200
    assert resp.json()["cancel_reason"] == "late"


def test_coupon_validate(client, make_coupon):
    make_coupon(code="SAVE10", value=Decimal("10"))

    ok = client.post("/coupons/validate", json={"code": "save10", "order_subtotal": "200.00", "user_id": "u1"})
    assert ok.status_code == 200
    assert Decimal(ok.json()["discount_amount"]) == Decimal("20.00")

    missing = client.post("/coupons/validate", json={"code": "NOPE", "order_subtotal": "10", "user_id": "u1"})
    assert missing.status_code == 404


def test_coupon_validate_rejection_is_400(client, make_coupon):
    make_coupon(code="OFF", is_active=False)
    resp = client.post("/coupons/validate", json={"code": "OFF", "order_subtotal": "10", "user_id": "u1"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "coupon_inactive"


def test_history_flow(client, make_order):
    done = make_order(status="delivered")
    live = make_order(status="pending")

    moved = client.post("/history/move", json={"order_ids": [done.id, live.id]})
    assert moved.status_code == 200
    assert moved.json()["moved_ids"] == [done.id]
    assert moved.json()["skipped"] == [{"id": live.id, "reason": "not_terminal"}]

    history = client.get("/history/").json()
    assert [r["id"] for r in history] == [done.id]
    assert history[0]["moved_by"] == "admin"

    assert client.delete("/history/").status_code == 400
    assert client.delete(f"/history/{done.id}").status_code == 204
    assert client.delete(f"/history/{done.id}").status_code == 404
    assert client.delete("/history/", params={"confirm": "true"}).json() == {"deleted": 0}


def test_requests_share_one_lock_service(db, monkeypatch):
    shared = object()
    monkeypatch.setattr(api, "lock_service", shared)

    first = api.get_service(db)
    second = api.get_service(db)

    assert first.lock_service is shared
    assert second.lock_service is shared
