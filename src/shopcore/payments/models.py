"""Payment documents and reconciliation results."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from shopcore.documents import Document

DEFAULT_REFUND_REASON = "No reason specified"


class PaymentMethod(StrEnum):
    CARD = "card"
    CASH_ON_DELIVERY = "cash_on_delivery"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Allowed target -> predecessor states
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.REFUNDED: frozenset({PaymentStatus.COMPLETED}),
}


class Payment(Document):
    """
    One payment attempt for an order.

    ``amount`` is snapshotted from the order at creation and never changes.
    ``transaction_id`` correlates the attempt with the payment provider and
    is unique when present.
    """

    __unique__ = (("transaction_id",),)
    __indexes__ = [{"fields": ["order_id"]}, {"fields": ["status"]}]

    order_id: UUID
    method: PaymentMethod
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: str | None = None
    retry_count: int = Field(default=0, ge=0)
    paid_at: datetime | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None


class ReconciliationOutcome(StrEnum):
    """What applying a provider event did."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_TRANSACTION = "unknown_transaction"


class ReconciliationResult(BaseModel):
    """
    Result of applying one provider event.

    Attributes:
        outcome: Whether the event changed the payment
        payment_id: Payment the event refers to, when known
        status: Payment status after the event
        order_confirmed: True if this delivery confirmed the linked order
    """

    outcome: ReconciliationOutcome
    payment_id: UUID | None = None
    status: PaymentStatus | None = None
    order_confirmed: bool = False


class PaymentStats(BaseModel):
    """Payment count and amount per status."""

    counts: dict[str, int]
    totals: dict[str, Decimal]


__all__ = [
    "DEFAULT_REFUND_REASON",
    "PaymentMethod",
    "PaymentStatus",
    "PAYMENT_TRANSITIONS",
    "Payment",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "PaymentStats",
]
