"""Request bodies of the HTTP API."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from shopcore.discounts import OrderContext
from shopcore.inventory import StockAdjustment
from shopcore.orders import OrderItemInput
from shopcore.payments import PaymentMethod


class CreateOrderBody(BaseModel):
    seller_id: UUID
    items: list[OrderItemInput]
    coupon_code: str | None = None


class CreatePaymentBody(BaseModel):
    order_id: UUID
    method: PaymentMethod
    amount: Decimal | None = None
    transaction_id: str | None = Field(default=None, min_length=1, max_length=255)


class RetryPaymentBody(BaseModel):
    transaction_id: str | None = Field(default=None, min_length=1, max_length=255)


class RefundPaymentBody(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ApplyDiscountBody(BaseModel):
    code: str
    order_amount: Decimal = Field(ge=0)
    product_id: UUID | None = None
    category_id: UUID | None = None

    def context(self) -> OrderContext:
        return OrderContext(
            product_id=self.product_id,
            category_id=self.category_id,
            order_amount=self.order_amount,
        )


class AdjustInventoryBody(BaseModel):
    delta: int


class BulkAdjustBody(BaseModel):
    entries: list[StockAdjustment] = Field(min_length=1)


__all__ = [
    "CreateOrderBody",
    "CreatePaymentBody",
    "RetryPaymentBody",
    "RefundPaymentBody",
    "ApplyDiscountBody",
    "AdjustInventoryBody",
    "BulkAdjustBody",
]
