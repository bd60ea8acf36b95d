"""Return request documents."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from shopcore.documents import Document


class ReturnStatus(StrEnum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"


def active_key(order_id: UUID, product_id: UUID) -> str:
    return f"{order_id}:{product_id}"


class ReturnRequest(Document):
    """
    A buyer's request to return one product of a delivered order.

    ``active_key`` is set while the request is open or accepted and
    cleared on rejection; its uniqueness allows at most one live return
    per order and product.

    ``refund_amount`` is the value of the returned lines. The money
    actually sent back is ``refunded_amount``: the whole payment the
    refund went through, recorded once the return is refunded.
    """

    __unique__ = (("active_key",),)
    __indexes__ = [{"fields": ["order_id"]}, {"fields": ["status"]}]

    order_id: UUID
    product_id: UUID
    variant_id: UUID | None = None
    buyer_id: UUID
    seller_id: UUID
    quantity: int = Field(ge=1)
    reason: str
    status: ReturnStatus = ReturnStatus.REQUESTED
    refund_amount: Decimal
    refunded_amount: Decimal | None = None
    payment_id: UUID | None = None
    restocked: bool = False
    resolved_at: datetime | None = None
    active_key: str | None = None


class ReturnInput(BaseModel):
    order_id: UUID
    product_id: UUID
    reason: str = Field(min_length=1, max_length=500)
    quantity: int = Field(default=1, ge=1)


class ReturnStats(BaseModel):
    total: int
    counts: dict[str, int]
    requested_amount: Decimal
    refunded_amount: Decimal


__all__ = ["ReturnStatus", "active_key", "ReturnRequest", "ReturnInput", "ReturnStats"]
