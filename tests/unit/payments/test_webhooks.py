"""
Unit tests for payment webhook signing, parsing and handling.

Tests cover:
- HMAC signature header generation and verification
- Rejection of missing, malformed, stale and forged signatures
- Event parsing and minor-unit amounts
- End-to-end handling without state changes on rejection
"""

from __future__ import annotations

import json
import time
from decimal import Decimal

import pytest

from shopcore.exceptions import AmountMismatchError, ValidationError, WebhookSignatureError
from shopcore.orders import OrderStatus
from shopcore.payments import (
    PaymentMethod,
    PaymentStatus,
    ReconciliationOutcome,
    parse_event,
    sign_payload,
    verify_signature,
)

SECRET = "whsec_unit"


def event_body(event_type: str, transaction_id: str, amount: int | None = None) -> bytes:
    payment_object: dict = {"id": transaction_id, "metadata": {}}
    if amount is not None:
        payment_object["amount"] = amount
    return json.dumps(
        {"id": "evt_1", "type": event_type, "data": {"object": payment_object}}
    ).encode()


class TestSignature:
    def test_round_trip(self) -> None:
        body = b'{"type": "payment_intent.succeeded"}'
        header = sign_payload(SECRET, body, timestamp=1_700_000_000)

        assert verify_signature(SECRET, body, header, now=1_700_000_010) == 1_700_000_000

    def test_header_format(self) -> None:
        header = sign_payload(SECRET, b"{}", timestamp=42)

        assert header.startswith("t=42,v1=")
        assert len(header.split("v1=")[1]) == 64

    def test_tampered_body(self) -> None:
        header = sign_payload(SECRET, b'{"amount": 100}')

        with pytest.raises(WebhookSignatureError):
            verify_signature(SECRET, b'{"amount": 999}', header)

    def test_wrong_secret(self) -> None:
        header = sign_payload("whsec_other", b"{}")

        with pytest.raises(WebhookSignatureError):
            verify_signature(SECRET, b"{}", header)

    def test_stale_timestamp(self) -> None:
        header = sign_payload(SECRET, b"{}", timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookSignatureError):
            verify_signature(SECRET, b"{}", header, tolerance_seconds=300)

    @pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=00", "t=1", "v1=00"])
    def test_malformed_or_missing_header(self, header) -> None:
        with pytest.raises(WebhookSignatureError):
            verify_signature(SECRET, b"{}", header)

    def test_unconfigured_secret_rejects_everything(self) -> None:
        header = sign_payload("", b"{}")

        with pytest.raises(WebhookSignatureError):
            verify_signature("", b"{}", header)

    def test_any_matching_v1_signature_accepted(self) -> None:
        body = b"{}"
        header = sign_payload(SECRET, body)
        timestamp, good = header.split(",")

        assert verify_signature(SECRET, body, f"{timestamp},v1=deadbeef,{good}")


class TestParseEvent:
    def test_handled_event(self) -> None:
        event = parse_event(event_body("payment_intent.succeeded", "pi_1", amount=90000))

        assert event.handled
        assert event.transaction_id == "pi_1"
        assert event.reconciliation_metadata()["amount"] == Decimal("900")

    def test_unhandled_event_needs_only_a_type(self) -> None:
        event = parse_event(b'{"type": "customer.created"}')

        assert not event.handled
        assert event.transaction_id == ""

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[]",
            b'{"id": "evt_1"}',
            b'{"type": "payment_intent.succeeded"}',
            b'{"type": "payment_intent.succeeded", "data": {"object": {}}}',
        ],
    )
    def test_malformed_bodies(self, body) -> None:
        with pytest.raises(ValidationError):
            parse_event(body)


class TestHandler:
    @pytest.mark.asyncio
    async def test_signed_success_confirms_order(self, services, config, buyer, order_factory):
        order = await order_factory()
        payment = await services.payments.create(
            buyer, order.id, PaymentMethod.CARD, transaction_id="pi_hook"
        )
        body = event_body("payment_intent.succeeded", "pi_hook", amount=50000)

        result = await services.webhooks.handle(body, sign_payload(config.webhook_secret, body))

        assert result.outcome == ReconciliationOutcome.APPLIED
        assert (await services.payments.get(payment.id)).status == PaymentStatus.COMPLETED
        assert (await services.orders.get(order.id)).status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_bad_signature_changes_nothing(self, services, buyer, order_factory):
        order = await order_factory()
        payment = await services.payments.create(
            buyer, order.id, PaymentMethod.CARD, transaction_id="pi_forged"
        )
        body = event_body("payment_intent.succeeded", "pi_forged")

        with pytest.raises(WebhookSignatureError):
            await services.webhooks.handle(body, sign_payload("whsec_attacker", body))

        stored = await services.payments.get(payment.id)
        assert stored.status == PaymentStatus.PENDING
        assert stored.version == payment.version
        assert (await services.orders.get(order.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_signature_checked_before_parsing(self, services):
        with pytest.raises(WebhookSignatureError):
            await services.webhooks.handle(b"not json", None)

    @pytest.mark.asyncio
    async def test_amount_in_cents_cross_checked(self, services, config, buyer, order_factory):
        order = await order_factory()
        payment = await services.payments.create(
            buyer, order.id, PaymentMethod.CARD, transaction_id="pi_cents"
        )
        body = event_body("payment_intent.succeeded", "pi_cents", amount=40000)

        with pytest.raises(AmountMismatchError):
            await services.webhooks.handle(body, sign_payload(config.webhook_secret, body))

        assert (await services.payments.get(payment.id)).status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_unhandled_type_ignored(self, services, config):
        body = b'{"type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}'

        result = await services.webhooks.handle(body, sign_payload(config.webhook_secret, body))

        assert result.outcome == ReconciliationOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_replayed_delivery_is_duplicate(self, services, config, buyer, order_factory):
        order = await order_factory()
        await services.payments.create(buyer, order.id, PaymentMethod.CARD, transaction_id="pi_r")
        body = event_body("payment_intent.succeeded", "pi_r")
        header = sign_payload(config.webhook_secret, body)

        first = await services.webhooks.handle(body, header)
        second = await services.webhooks.handle(body, header)

        assert first.outcome == ReconciliationOutcome.APPLIED
        assert second.outcome == ReconciliationOutcome.DUPLICATE
