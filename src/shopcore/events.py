"""
Domain notifications.

Immutable records of things that happened in the core, published to the
event bus after the corresponding state change is persisted. Downstream
collaborators (notification delivery, analytics) subscribe to them; the
core never depends on a handler succeeding.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shopcore.documents.base import utcnow


class ShopEvent(BaseModel):
    """
    Base class for domain notifications.

    The event_type field is set to the class name when not provided.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Type name of the event (class name)
        occurred_at: When the event occurred (UTC timestamp)
        aggregate_id: ID of the entity the event is about
        aggregate_type: Type of that entity (e.g., 'Order')
        actor_id: Principal that triggered the event, None for provider events

    Example:
        >>> event = OrderPlaced(
        ...     aggregate_id=order.id,
        ...     buyer_id=order.buyer_id,
        ...     seller_id=order.seller_id,
        ...     total_amount=order.total_amount,
        ... )
        >>> assert event.event_type == "OrderPlaced"
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier",
    )
    event_type: str = Field(
        default="",
        description="Type of event (class name)",
    )
    occurred_at: datetime = Field(
        default_factory=utcnow,
        description="When event occurred (UTC)",
    )
    aggregate_id: UUID = Field(
        ...,
        description="ID of the entity this event is about",
    )
    aggregate_type: str = Field(
        ...,
        description="Type of entity (e.g., 'Order')",
    )
    actor_id: UUID | None = Field(
        default=None,
        description="Principal that triggered this event",
    )

    @model_validator(mode="before")
    @classmethod
    def _ensure_event_type(cls, data: Any) -> Any:
        """Fill event_type with the class name when it is missing or empty."""
        if isinstance(data, dict) and not data.get("event_type"):
            data = dict(data)
            data["event_type"] = cls.__name__
        return data

    def __str__(self) -> str:
        return f"{self.event_type}(event_id={self.event_id}, aggregate_id={self.aggregate_id})"


# =============================================================================
# Orders
# =============================================================================


class OrderPlaced(ShopEvent):
    """A pending order was persisted."""

    aggregate_type: str = "Order"
    buyer_id: UUID
    seller_id: UUID
    total_amount: Decimal
    coupon_id: UUID | None = None


class OrderStatusChanged(ShopEvent):
    """An order moved to a new status."""

    aggregate_type: str = "Order"
    previous_status: str
    new_status: str


# =============================================================================
# Discounts
# =============================================================================


class CouponApplied(ShopEvent):
    """A user consumed a coupon."""

    aggregate_type: str = "Coupon"
    code: str
    user_id: UUID
    discount_amount: Decimal


# =============================================================================
# Payments
# =============================================================================


class PaymentCompleted(ShopEvent):
    """A payment reached the completed state."""

    aggregate_type: str = "Payment"
    order_id: UUID
    amount: Decimal
    transaction_id: str | None = None


class PaymentFailed(ShopEvent):
    """A payment attempt failed."""

    aggregate_type: str = "Payment"
    order_id: UUID
    transaction_id: str | None = None


class PaymentRefunded(ShopEvent):
    """A completed payment was refunded."""

    aggregate_type: str = "Payment"
    order_id: UUID
    amount: Decimal
    reason: str


# =============================================================================
# Inventory
# =============================================================================


class StockShortage(ShopEvent):
    """A confirmed order line could not be deducted from stock."""

    aggregate_type: str = "Order"
    variant_id: UUID
    seller_id: UUID
    requested: int
    reason: str


__all__ = [
    "ShopEvent",
    "OrderPlaced",
    "OrderStatusChanged",
    "CouponApplied",
    "PaymentCompleted",
    "PaymentFailed",
    "PaymentRefunded",
    "StockShortage",
]
