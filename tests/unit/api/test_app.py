"""
Tests for the HTTP API.

Tests cover:
- Bearer token authentication
- Error rendering for domain, validation and unexpected errors
- Order, payment, discount, inventory and shipping routes
- The signed payment webhook
"""

from __future__ import annotations

import json
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from shopcore.api import create_app
from shopcore.auth import StaticTokenAuthenticator
from shopcore.config import ShopConfig
from shopcore.payments import SIGNATURE_HEADER, sign_payload
from shopcore.services import build_in_memory_services

BUYER = {"Authorization": "Bearer buyer-token"}
SELLER = {"Authorization": "Bearer seller-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


@pytest.fixture
def authenticator(buyer, seller, admin) -> StaticTokenAuthenticator:
    return StaticTokenAuthenticator(
        {"buyer-token": buyer, "seller-token": seller, "admin-token": admin}
    )


@pytest.fixture
def app(services, authenticator):
    return create_app(services, authenticator)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def order_body(seller, products, quantity: int = 1, **extra) -> dict:
    return {
        "seller_id": str(seller.id),
        "items": [
            {
                "product_id": str(products.phone),
                "variant_id": str(products.phone_variant),
                "quantity": quantity,
            }
        ],
        **extra,
    }


def signed_event(secret: str, event_type: str, transaction_id: str) -> tuple[bytes, dict]:
    body = json.dumps(
        {"id": "evt_1", "type": event_type, "data": {"object": {"id": transaction_id}}}
    ).encode()
    return body, {SIGNATURE_HEADER: sign_payload(secret, body)}


class TestAuthentication:
    def test_health_needs_no_token(self, app):
        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_token(self, app):
        with TestClient(app) as client:
            response = client.get(f"/orders/{uuid4()}")

        assert response.status_code == 401
        assert response.json() == {
            "error": "authentication_error",
            "message": "Missing bearer token",
        }

    def test_unknown_token(self, app):
        with TestClient(app) as client:
            response = client.get(
                f"/orders/{uuid4()}", headers={"Authorization": "Bearer nope"}
            )

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid bearer token"


class TestErrors:
    @pytest.mark.asyncio
    async def test_not_found(self, client):
        response = await client.get(f"/orders/{uuid4()}", headers=BUYER)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_request_validation(self, client, seller, products):
        response = await client.post(
            "/orders", json=order_body(seller, products, quantity=0), headers=BUYER
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["message"].startswith("body.items.0.quantity:")

    @pytest.mark.asyncio
    async def test_forbidden(self, client, seller, products):
        response = await client.post("/orders", json=order_body(seller, products), headers=SELLER)

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_unexpected_error(self, config, catalog, authenticator, monkeypatch):
        services = build_in_memory_services(config, catalog)

        async def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(services.orders, "get", explode)
        app = create_app(services, authenticator)

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get(f"/orders/{uuid4()}", headers=BUYER)

        assert response.status_code == 500
        assert response.json() == {"error": "internal_error", "message": "Internal server error"}

    @pytest.mark.asyncio
    async def test_traceback_in_development_mode(self, catalog, authenticator):
        config = ShopConfig(development_mode=True, enable_tracing=False)
        app = create_app(build_in_memory_services(config, catalog), authenticator)

        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.get(f"/orders/{uuid4()}", headers=BUYER)

        assert response.status_code == 404
        assert "NotFoundError" in response.json()["traceback"]


class TestOrderRoutes:
    @pytest.mark.asyncio
    async def test_order_lifecycle(self, client, services, seller, products, stock_factory):
        await stock_factory(products.phone_variant, 5)

        created = await client.post("/orders", json=order_body(seller, products, 2), headers=BUYER)
        assert created.status_code == 201
        order = created.json()
        assert order["status"] == "pending"
        assert order["total_amount"] == "1000.00"

        fetched = await client.get(f"/orders/{order['id']}", headers=SELLER)
        assert fetched.status_code == 200

        confirmed = await client.patch(
            f"/orders/{order['id']}/status", json={"status": "confirmed"}, headers=SELLER
        )
        assert confirmed.json()["status"] == "confirmed"
        assert (await services.inventory.find(products.phone_variant, seller.id)).quantity == 3

        skipped = await client.patch(
            f"/orders/{order['id']}/status", json={"status": "delivered"}, headers=SELLER
        )
        assert skipped.status_code == 409
        assert skipped.json()["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_order_with_coupon(self, client, seller, products, coupon_factory):
        await coupon_factory(code="SAVE10")

        response = await client.post(
            "/orders", json=order_body(seller, products, 2, coupon_code="SAVE10"), headers=BUYER
        )

        assert response.status_code == 201
        assert response.json()["discount_amount"] == "100.00"
        assert response.json()["total_amount"] == "900.00"

    @pytest.mark.asyncio
    async def test_stale_price(self, client, seller, products):
        body = order_body(seller, products)
        body["items"][0]["unit_price"] = "450.00"

        response = await client.post("/orders", json=body, headers=BUYER)

        assert response.status_code == 409
        assert response.json()["error"] == "price_mismatch"


class TestPaymentRoutes:
    @pytest.mark.asyncio
    async def test_pay_and_confirm_via_webhook(self, client, config, order_factory):
        order = await order_factory()

        created = await client.post(
            "/payments",
            json={"order_id": str(order.id), "method": "card", "transaction_id": "pi_api"},
            headers=BUYER,
        )
        assert created.status_code == 201
        assert created.json()["amount"] == "500.00"

        body, headers = signed_event(config.webhook_secret, "payment_intent.succeeded", "pi_api")
        delivered = await client.post("/webhooks/payments", content=body, headers=headers)
        assert delivered.status_code == 200
        assert delivered.json() == {"received": True, "ignored": False, "outcome": "applied"}

        order_state = await client.get(f"/orders/{order.id}", headers=BUYER)
        assert order_state.json()["status"] == "confirmed"

        replay = await client.post("/webhooks/payments", content=body, headers=headers)
        assert replay.json()["outcome"] == "duplicate"

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, client, order_factory):
        order = await order_factory()

        response = await client.post(
            "/payments",
            json={"order_id": str(order.id), "method": "card", "amount": "499.00"},
            headers=BUYER,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "amount_mismatch"

    @pytest.mark.asyncio
    async def test_retry_and_refund(self, client, services, config, order_factory):
        order = await order_factory()
        created = await client.post(
            "/payments",
            json={"order_id": str(order.id), "method": "card", "transaction_id": "pi_f"},
            headers=BUYER,
        )
        payment_id = created.json()["id"]
        body, headers = signed_event(config.webhook_secret, "payment_intent.payment_failed", "pi_f")
        await client.post("/webhooks/payments", content=body, headers=headers)

        retried = await client.patch(
            f"/payments/{payment_id}/retry", json={"transaction_id": "pi_g"}, headers=BUYER
        )
        assert retried.status_code == 200
        assert retried.json()["status"] == "pending"
        assert retried.json()["retry_count"] == 1

        await services.payments.apply_provider_event("payment_intent.succeeded", "pi_g")
        refunded = await client.patch(f"/payments/{payment_id}/refund", headers=ADMIN)
        assert refunded.status_code == 200
        assert refunded.json()["status"] == "refunded"

    @pytest.mark.asyncio
    async def test_webhook_bad_signature(self, client):
        body, _ = signed_event("whsec_attacker", "payment_intent.succeeded", "pi_x")

        response = await client.post(
            "/webhooks/payments",
            content=body,
            headers={SIGNATURE_HEADER: sign_payload("whsec_attacker", body)},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_signature"

    @pytest.mark.asyncio
    async def test_webhook_unsigned(self, client):
        response = await client.post("/webhooks/payments", content=b"{}")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_webhook_unknown_transaction_acknowledged(self, client, config):
        body, headers = signed_event(
            config.webhook_secret, "payment_intent.succeeded", "pi_unknown"
        )

        response = await client.post("/webhooks/payments", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["ignored"] is True


class TestDiscountAndInventoryRoutes:
    @pytest.mark.asyncio
    async def test_apply_discount(self, client, coupon_factory):
        await coupon_factory(code="TAKE10")

        first = await client.post(
            "/discounts/apply", json={"code": "TAKE10", "order_amount": "200.00"}, headers=BUYER
        )
        second = await client.post(
            "/discounts/apply", json={"code": "TAKE10", "order_amount": "200.00"}, headers=BUYER
        )

        assert first.status_code == 200
        assert first.json()["final_amount"] == "180.00"
        assert second.status_code == 409
        assert second.json()["error"] == "coupon_already_used"

    @pytest.mark.asyncio
    async def test_unknown_coupon(self, client):
        response = await client.post(
            "/discounts/apply", json={"code": "NOPE", "order_amount": "10"}, headers=BUYER
        )

        assert response.status_code == 404
        assert response.json()["error"] == "coupon_not_found"

    @pytest.mark.asyncio
    async def test_adjust_inventory(self, client, products, stock_factory):
        row = await stock_factory(products.phone_variant, 2)

        ok = await client.patch(f"/inventory/{row.id}/adjust", json={"delta": -2}, headers=SELLER)
        short = await client.patch(
            f"/inventory/{row.id}/adjust", json={"delta": -1}, headers=SELLER
        )

        assert ok.json()["quantity"] == 0
        assert short.status_code == 409
        assert short.json()["error"] == "negative_stock"

    @pytest.mark.asyncio
    async def test_bulk_adjust(self, client, seller, products, stock_factory):
        row = await stock_factory(products.phone_variant, 1)

        response = await client.post(
            "/inventory/bulk-adjust",
            json={
                "entries": [
                    {"inventory_id": str(row.id), "delta": 4},
                    {
                        "variant_id": str(products.case_variant),
                        "seller_id": str(seller.id),
                        "delta": 1,
                    },
                ]
            },
            headers=SELLER,
        )

        assert response.status_code == 200
        outcomes = response.json()["outcomes"]
        assert [o["ok"] for o in outcomes] == [True, False]
        assert outcomes[1]["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_bulk_adjust_requires_entries(self, client):
        response = await client.post("/inventory/bulk-adjust", json={"entries": []}, headers=SELLER)

        assert response.status_code == 400


class TestShippingRoutes:
    @pytest.mark.asyncio
    async def test_ship_and_deliver(self, client, paid_order_factory):
        order = await paid_order_factory()

        created = await client.post(
            "/shipping",
            json={"order_id": str(order.id), "address_id": str(uuid4()), "carrier": "DHL"},
            headers=SELLER,
        )
        assert created.status_code == 201
        shipping_id = created.json()["id"]

        delivered = await client.patch(
            f"/shipping/{shipping_id}/status", json={"status": "delivered"}, headers=SELLER
        )

        assert delivered.status_code == 200
        assert delivered.json()["delivered_at"] is not None
