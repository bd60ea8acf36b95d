"""Order documents, line items and the status machine."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from shopcore.documents import Document


class OrderStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Allowed target -> predecessor states
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PENDING}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.CONFIRMED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.CANCELLED: frozenset(
        {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED}
    ),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """
    True if an order in ``current`` may move to ``target``.

    Example:
        >>> can_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)
        True
        >>> can_transition(OrderStatus.DELIVERED, OrderStatus.CANCELLED)
        False
    """
    return current in TRANSITIONS[target]


class StockState(StrEnum):
    """Outcome of deducting a line from inventory on confirmation."""

    NOT_TRACKED = "not_tracked"
    PENDING = "pending"
    DEDUCTED = "deducted"
    SHORTAGE = "shortage"
    RESTOCKED = "restocked"


class OrderItemInput(BaseModel):
    """
    A line as submitted by the buyer.

    ``unit_price`` is optional; when given it must match the catalog
    price within the configured tolerance.
    """

    product_id: UUID
    variant_id: UUID | None = None
    quantity: int = Field(ge=1)
    unit_price: Decimal | None = Field(default=None, ge=0)


class OrderLineItem(BaseModel):
    """A priced line embedded in an order."""

    product_id: UUID
    variant_id: UUID | None = None
    category_id: UUID | None = None
    quantity: int = Field(ge=1)
    unit_price: Decimal
    subtotal: Decimal
    stock_deducted: StockState = StockState.NOT_TRACKED

    @model_validator(mode="after")
    def _check_subtotal(self) -> OrderLineItem:
        if self.subtotal != self.unit_price * self.quantity:
            raise ValueError("subtotal must equal unit_price * quantity")
        return self


class Order(Document):
    """
    A buyer's purchase from one seller.

    Line items are embedded and owned by the order. Payment, shipping and
    coupon are referenced by ID only.
    """

    __indexes__ = [
        {"fields": ["buyer_id"]},
        {"fields": ["seller_id"]},
        {"fields": ["status"]},
    ]

    buyer_id: UUID
    seller_id: UUID
    items: list[OrderLineItem]
    coupon_id: UUID | None = None
    discount_amount: Decimal = Decimal("0.00")
    subtotal: Decimal
    total_amount: Decimal
    payment_id: UUID | None = None
    shipping_id: UUID | None = None
    status: OrderStatus = OrderStatus.PENDING
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @model_validator(mode="after")
    def _check_totals(self) -> Order:
        if not self.items:
            raise ValueError("order must contain at least one item")
        if self.subtotal != sum((item.subtotal for item in self.items), Decimal("0")):
            raise ValueError("subtotal must equal the sum of item subtotals")
        if self.total_amount != self.subtotal - self.discount_amount:
            raise ValueError("total_amount must equal subtotal - discount_amount")
        return self


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderStats(BaseModel):
    """Order count and amount per status."""

    counts: dict[str, int]
    totals: dict[str, Decimal]


__all__ = [
    "OrderStatus",
    "TRANSITIONS",
    "TERMINAL_STATUSES",
    "can_transition",
    "StockState",
    "OrderItemInput",
    "OrderLineItem",
    "Order",
    "OrderStatusUpdate",
    "OrderStats",
]
