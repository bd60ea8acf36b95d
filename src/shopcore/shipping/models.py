"""Shipment documents."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from shopcore.documents import Document, as_utc


class ShippingStatus(StrEnum):
    PROCESSING = "processing"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Shipping(Document):
    """
    Delivery record of a confirmed order.

    ``seller_id`` is copied from the order at creation so the shipment
    can be authorized without loading the order. Soft-deletable.
    """

    __table_name__ = "shipments"
    __indexes__ = [{"fields": ["order_id"]}, {"fields": ["status"]}]

    order_id: UUID
    seller_id: UUID
    address_id: UUID
    tracking_id: str | None = None
    carrier: str | None = None
    status: ShippingStatus = ShippingStatus.PROCESSING
    estimated_delivery: datetime | None = None
    delivered_at: datetime | None = None


class ShippingRequest(BaseModel):
    order_id: UUID
    address_id: UUID
    carrier: str | None = Field(default=None, max_length=100)
    tracking_id: str | None = Field(default=None, max_length=200)
    estimated_delivery: datetime | None = None

    @field_validator("estimated_delivery")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return None if value is None else as_utc(value)


class ShippingStatusUpdate(BaseModel):
    """A status change; ``shipping_id`` is only used by bulk updates."""

    shipping_id: UUID | None = None
    status: ShippingStatus
    delivered_at: datetime | None = None

    @field_validator("delivered_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return None if value is None else as_utc(value)


class ShippingStats(BaseModel):
    total: int
    counts: dict[str, int]


__all__ = [
    "ShippingStatus",
    "Shipping",
    "ShippingRequest",
    "ShippingStatusUpdate",
    "ShippingStats",
]
