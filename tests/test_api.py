# tests/test_api.py
import json

import pytest

from schemas.order_definitions import OrderStatus


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["providers"] == ["fake"]
    assert "X-Response-Time-Ms" in r.headers


@pytest.mark.asyncio
async def test_checkout_returns_redirect_and_order_id(client, provider):
    r = await client.post("/api/checkout", json={
        "items": [{"id": 1, "quantity": 2}],
        "customer_email": "a@b.c",
    })

    assert r.status_code == 200
    body = r.json()
    assert body["url"] == f"https://pay.example/{provider.created[0]['external_id']}"
    assert provider.created[0]["amount"] == 1998
    assert provider.created[0]["return_url"] == f"http://shop.test/success.html?order={body['order_id']}"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload, code", [
    ({}, "invalid_input"),
    ({"items": []}, "invalid_input"),
    ({"items": "nope"}, "invalid_input"),
    ({"items": [{"id": 99}]}, "unknown_product"),
    ({"items": [{"id": 1}], "provider": "paypal"}, "unsupported_provider"),
])
async def test_checkout_client_errors(client, orders, payload, code):
    r = await client.post("/api/checkout", json=payload)

    assert r.status_code == 400
    assert r.json()["code"] == code
    assert "error" in r.json()
    assert await orders.list_all() == []


@pytest.mark.asyncio
async def test_checkout_provider_failure_is_500(client, provider):
    provider.create_error = RuntimeError("connection reset")

    r = await client.post("/api/checkout", json={"items": [{"id": 1}]})

    assert r.status_code == 500
    assert r.json() == {"error": "Checkout could not be completed", "code": "provider_error"}


@pytest.mark.asyncio
async def test_verify_payment_flow(client, provider, products):
    r = await client.post("/api/checkout", json={"items": [{"id": 1, "quantity": 2}]})
    order_id = r.json()["order_id"]
    provider.statuses[provider.created[0]["external_id"]] = "paid"

    r = await client.get("/api/verify-payment", params={"order": order_id})
    assert r.status_code == 200
    assert r.json() == {"status": "paid"}

    r = await client.get("/api/verify-mollie", params={"order": order_id})
    assert r.status_code == 200

    assert products.get(1).inventory == 8


@pytest.mark.asyncio
async def test_verify_payment_errors(client):
    r = await client.get("/api/verify-payment")
    assert r.status_code == 400

    r = await client.get("/api/verify-payment", params={"order": "missing"})
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_webhook_applies_payment(client, provider, orders):
    r = await client.post("/api/checkout", json={"items": [{"id": 1}]})
    order_id = r.json()["order_id"]
    reference = provider.created[0]["external_id"]
    provider.statuses[reference] = "paid"

    r = await client.post("/webhook/fake", content=json.dumps({"id": reference}))

    assert r.status_code == 200
    assert r.json() == {"received": True}
    assert (await orders.get(order_id)).status == OrderStatus.PAID


@pytest.mark.asyncio
@pytest.mark.parametrize("path, content", [
    ("/webhook/fake", b"garbage"),
    ("/webhook/fake", b'{"id": "tr_unknown"}'),
    ("/webhook/paypal", b'{"id": "tr_1"}'),
])
async def test_webhook_always_acknowledges(client, path, content):
    r = await client.post(path, content=content)
    assert r.status_code == 200
    assert r.json() == {"received": True}


@pytest.mark.asyncio
async def test_admin_endpoints_require_token(client, orders):
    r = await client.post("/api/checkout", json={"items": [{"id": 1}]})
    order_id = r.json()["order_id"]

    assert (await client.get("/api/orders")).status_code == 401
    r = await client.put(f"/api/orders/{order_id}", json={"status": "shipped"},
                         headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401
    assert r.json()["code"] == "unauthorized"
    assert (await client.delete(f"/api/orders/{order_id}")).status_code == 401

    assert (await orders.get(order_id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_admin_endpoints(client, admin_headers, orders):
    r = await client.post("/api/checkout", json={"items": [{"id": 1}]})
    order_id = r.json()["order_id"]

    r = await client.get("/api/orders", headers=admin_headers)
    assert r.status_code == 200
    assert [o["id"] for o in r.json()] == [order_id]
    assert r.json()[0]["total_amount_minor_units"] == 999

    r = await client.put(f"/api/orders/{order_id}",
                         json={"status": "shipped", "tracking_number": "TRK-9"},
                         headers=admin_headers)
    assert r.json() == {"changed": 1}
    assert (await orders.get(order_id)).tracking_number == "TRK-9"

    r = await client.put(f"/api/orders/{order_id}", json={"status": "lost"}, headers=admin_headers)
    assert r.status_code == 400

    r = await client.delete(f"/api/orders/{order_id}", headers={"X-Admin-Token": admin_headers["Authorization"][7:]})
    assert r.json() == {"deleted": 1}
    assert await orders.get(order_id) is None
