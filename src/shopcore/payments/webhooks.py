"""
Payment provider webhooks.

Deliveries carry an ``X-Signature`` header of the form
``t=<unix timestamp>,v1=<hex digest>`` where the digest is
HMAC-SHA256 of ``"<timestamp>.<raw body>"`` under the shared secret.
The signature is checked against the raw bytes before the body is
parsed; any failure rejects the delivery without touching state.

Body format::

    {
        "id": "evt_...",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_...", "amount": 90000, "metadata": {...}}}
    }

``amount`` is in minor units (cents).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from shopcore.exceptions import ValidationError, WebhookSignatureError
from shopcore.observability import SpanKindEnum, Tracer, create_tracer
from shopcore.observability.attributes import ATTR_PROVIDER_EVENT_TYPE, ATTR_TRANSACTION_ID
from shopcore.payments.models import ReconciliationResult
from shopcore.payments.service import EVENT_FAILED, EVENT_SUCCEEDED, PaymentService

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
SIGNATURE_SCHEME = "v1"
HANDLED_EVENTS = frozenset({EVENT_SUCCEEDED, EVENT_FAILED})


def compute_signature(secret: str, timestamp: int, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``"<timestamp>.<body>"``."""
    signed = f"{timestamp}.".encode() + body
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def sign_payload(secret: str, body: bytes, timestamp: int | None = None) -> str:
    """
    Build an ``X-Signature`` header value for a body.

    Example:
        >>> header = sign_payload("whsec_test", b'{"type": "payment_intent.succeeded"}')
        >>> header.startswith("t=")
        True
    """
    if timestamp is None:
        timestamp = int(time.time())
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(secret, timestamp, body)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as e:
                raise WebhookSignatureError("Malformed signature timestamp") from e
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed signature header")
    return timestamp, signatures


def verify_signature(
    secret: str,
    body: bytes,
    header: str | None,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> int:
    """
    Verify a webhook signature header.

    Args:
        secret: Shared webhook secret
        body: Raw request body, exactly as received
        header: ``X-Signature`` header value
        tolerance_seconds: Maximum allowed distance between the signed
            timestamp and now
        now: Current unix time (defaults to the wall clock)

    Returns:
        The signed timestamp

    Raises:
        WebhookSignatureError: Secret not configured, header missing or
            malformed, timestamp outside tolerance, or digest mismatch
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not header:
        raise WebhookSignatureError(f"Missing {SIGNATURE_HEADER} header")

    timestamp, signatures = _parse_header(header)
    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance_seconds:
        raise WebhookSignatureError("Signature timestamp outside the tolerance window")

    expected = compute_signature(secret, timestamp, body)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Signature does not match payload")
    return timestamp


class PaymentIntent(BaseModel):
    id: str
    amount: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProviderEventData(BaseModel):
    object: PaymentIntent


class ProviderEvent(BaseModel):
    """A parsed webhook delivery."""

    id: str | None = None
    type: str
    data: ProviderEventData | None = None

    @property
    def handled(self) -> bool:
        return self.type in HANDLED_EVENTS

    @property
    def transaction_id(self) -> str:
        return self.data.object.id if self.data is not None else ""

    def reconciliation_metadata(self) -> dict[str, Any]:
        """Metadata for reconciliation, with the amount in major units."""
        if self.data is None:
            return {}
        metadata = dict(self.data.object.metadata)
        if self.data.object.amount is not None:
            metadata["amount"] = Decimal(self.data.object.amount) / 100
        return metadata


def parse_event(body: bytes) -> ProviderEvent:
    """
    Parse a verified webhook body.

    Only the type is read from events that are not reconciled.

    Raises:
        ValidationError: If the body is not a well-formed event
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Webhook body is not valid JSON") from e
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise ValidationError("Webhook event has no type")

    try:
        if payload["type"] not in HANDLED_EVENTS:
            return ProviderEvent(type=payload["type"])
        event = ProviderEvent.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed webhook event: {e.errors()[0]['msg']}") from e

    if event.data is None:
        raise ValidationError(f"Webhook event {event.type} has no payment object")
    return event


class PaymentWebhookHandler:
    """
    Verifies, parses and applies payment provider deliveries.

    Example:
        >>> handler = PaymentWebhookHandler(payments, secret="whsec_test")
        >>> result = await handler.handle(raw_body, request.headers.get("X-Signature"))
    """

    def __init__(
        self,
        payments: PaymentService,
        secret: str,
        tolerance_seconds: int = 300,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._payments = payments
        self._secret = secret
        self._tolerance_seconds = tolerance_seconds
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def handle(self, body: bytes, signature: str | None) -> ReconciliationResult:
        """
        Process one delivery.

        Raises:
            WebhookSignatureError: Signature rejected; nothing was parsed or changed
            ValidationError: Body is not a well-formed event
            AmountMismatchError: Event amount differs from the payment amount
        """
        with self._tracer.span_with_kind("shopcore.webhook.payment", SpanKindEnum.SERVER) as span:
            try:
                verify_signature(self._secret, body, signature, self._tolerance_seconds)
            except WebhookSignatureError as e:
                logger.warning(
                    "Rejected webhook delivery: %s",
                    e.message,
                    extra={"body_size": len(body)},
                )
                raise

            event = parse_event(body)
            if span is not None:
                span.set_attribute(ATTR_PROVIDER_EVENT_TYPE, event.type)
                span.set_attribute(ATTR_TRANSACTION_ID, event.transaction_id)

            logger.debug(
                "Webhook %s for transaction %s",
                event.type,
                event.transaction_id,
                extra={"event_id": event.id, "event_type": event.type},
            )
            return await self._payments.apply_provider_event(
                event.type, event.transaction_id, event.reconciliation_metadata()
            )


__all__ = [
    "SIGNATURE_HEADER",
    "compute_signature",
    "sign_payload",
    "verify_signature",
    "PaymentIntent",
    "ProviderEvent",
    "parse_event",
    "PaymentWebhookHandler",
]
