from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from orderflow.api import deps
from orderflow.data.database import get_db
from orderflow.main import app as fastapi_app


@pytest.fixture
def client(session_factory, cache, publisher, shipping):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[deps.get_cache] = lambda: cache
    fastapi_app.dependency_overrides[deps.get_publisher] = lambda: publisher
    fastapi_app.dependency_overrides[deps.get_shipping_policy] = lambda: shipping
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def products(make_product):
    return {"a": make_product("10.00", 5, name="A"), "b": make_product("5.00", 1, name="B")}


def checkout(client, user_id=1):
    return client.post(
        "/orders/checkout",
        json={"user_id": user_id, "address": "Main St 1", "city": "Springfield", "postal_code": "62701"},
    )


def fill_cart(client, products, user_id=1):
    client.post(f"/cart/items?user_id={user_id}", json={"product_id": products["a"], "quantity": 2})
    client.post(f"/cart/items?user_id={user_id}", json={"product_id": products["b"], "quantity": 1})


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_cart_endpoints(client, products):
    first = client.post("/cart/items?user_id=1", json={"product_id": products["a"], "quantity": 1})
    merged = client.post("/cart/items?user_id=1", json={"product_id": products["a"], "quantity": 2})

    assert first.status_code == 200
    assert merged.json()["id"] == first.json()["id"]
    assert merged.json()["quantity"] == 3

    line_id = first.json()["id"]
    assert client.put(f"/cart/items/{line_id}?user_id=1", json={"quantity": 4}).json()["quantity"] == 4

    cart = client.get("/cart?user_id=1").json()
    assert Decimal(cart["total"]) == Decimal("40.00")
    assert cart["items"][0]["name"] == "A"

    assert client.delete(f"/cart/items/{line_id}?user_id=1").status_code == 204
    assert client.delete(f"/cart/items/{line_id}?user_id=1").status_code == 204
    assert client.delete("/cart?user_id=1").status_code == 204
    assert client.get("/cart?user_id=1").json()["items"] == []


def test_cart_errors(client, products):
    missing = client.post("/cart/items?user_id=1", json={"product_id": 999, "quantity": 1})
    assert missing.status_code == 404
    assert missing.json()["detail"]["kind"] == "not_found"

    bad_qty = client.post("/cart/items?user_id=1", json={"product_id": products["a"], "quantity": 0})
    assert bad_qty.status_code == 422

    foreign = client.put("/cart/items/1?user_id=2", json={"quantity": 1})
    assert foreign.status_code == 404


def test_checkout_flow(client, products, publisher):
    fill_cart(client, products)

    response = checkout(client)

    assert response.status_code == 201
    order = response.json()
    assert Decimal(order["subtotal"]) == Decimal("25.00")
    assert Decimal(order["total_amount"]) == Decimal("27.00")
    assert order["status"] == "pending"
    assert len(order["items"]) == 2
    assert publisher.kinds == ["order.created"]
    assert client.get("/cart?user_id=1").json()["items"] == []


def test_checkout_errors(client, products):
    empty = checkout(client)
    assert empty.status_code == 422
    assert empty.json()["detail"]["kind"] == "empty_cart"

    fill_cart(client, products)
    checkout(client)
    client.post("/cart/items?user_id=2", json={"product_id": products["b"], "quantity": 1})

    sold_out = checkout(client, user_id=2)
    assert sold_out.status_code == 409
    assert sold_out.json()["detail"]["kind"] == "insufficient_stock"


def test_payment_callback_flow(client, products):
    fill_cart(client, products)
    order = checkout(client).json()

    linked = client.put(
        f"/payments/{order['payment_id']}/gateway",
        json={"external_reference": "trx-1", "payment_url": "https://pay.example/trx-1"},
    )
    assert linked.status_code == 200

    callback = {"external_reference": "trx-1", "status": "settlement", "amount": "27.00", "signature": "sig"}
    applied = client.post("/payments/callback", json=callback)
    duplicate = client.post("/payments/callback", json=callback)

    assert applied.json()["applied"] is True
    assert applied.json()["order_status"] == "confirmed"
    assert duplicate.status_code == 200
    assert duplicate.json()["applied"] is False

    history = client.get(f"/orders/{order['id']}/history?user_id=1").json()
    assert [h["to_status"] for h in history] == ["pending", "confirmed"]

    payment = client.get(f"/payments/{order['payment_id']}?user_id=1").json()
    assert payment["status"] == "paid"
    assert client.get("/payments?user_id=1").json()["pagination"]["total"] == 1


def test_payment_callback_errors(client, products):
    fill_cart(client, products)
    order = checkout(client).json()
    client.put(f"/payments/{order['payment_id']}/gateway", json={"external_reference": "trx-2"})

    mismatch = client.post(
        "/payments/callback", json={"external_reference": "trx-2", "status": "paid", "amount": "1.00"}
    )
    unknown = client.post(
        "/payments/callback", json={"external_reference": "nope", "status": "paid", "amount": "27.00"}
    )

    assert mismatch.status_code == 409
    assert mismatch.json()["detail"]["kind"] == "amount_mismatch"
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["kind"] == "unknown_payment"
    assert client.get(f"/orders/{order['id']}?user_id=1").json()["status"] == "pending"


def test_order_status_endpoints(client, products):
    fill_cart(client, products)
    order = checkout(client).json()

    illegal = client.put(f"/orders/{order['id']}/status", json={"status": "delivered"})
    assert illegal.status_code == 409
    assert illegal.json()["detail"]["kind"] == "invalid_transition"

    confirmed = client.put(f"/orders/{order['id']}/status", json={"status": "confirmed", "actor_id": 9})
    assert confirmed.json()["status"] == "confirmed"

    cancelled = client.put(f"/orders/{order['id']}/cancel?user_id=1", json={"reason": "changed mind"})
    assert cancelled.json()["status"] == "cancelled"

    assert client.get(f"/orders/{order['id']}?user_id=2").status_code == 404
    assert client.get("/orders?user_id=1").json()["pagination"]["total"] == 1
    assert client.get("/admin/orders?status=cancelled").json()["pagination"]["total"] == 1

    assert client.delete(f"/orders/{order['id']}").status_code == 204
    assert client.get(f"/orders/{order['id']}?user_id=1").status_code == 404


def test_bad_paging(client):
    response = client.get("/orders?user_id=1&limit=500")

    assert response.status_code == 422
    assert response.json()["detail"]["kind"] == "validation_error"
