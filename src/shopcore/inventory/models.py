"""Inventory documents and request types."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from shopcore.documents import Document, utcnow


class Inventory(Document):
    """
    Stock of one product variant held by one seller.

    Identity is the (variant_id, seller_id) pair; quantity never drops
    below zero.
    """

    __unique__ = (("variant_id", "seller_id"),)
    __indexes__ = [
        {"fields": ["seller_id"]},
        {"fields": ["quantity"]},
    ]

    variant_id: UUID
    seller_id: UUID
    quantity: int = Field(default=0, ge=0)
    last_updated: datetime = Field(default_factory=utcnow)


class StockAdjustment(BaseModel):
    """
    One entry of a bulk adjustment.

    Addresses the row either by ``inventory_id`` or by the
    (``variant_id``, ``seller_id``) pair.
    """

    inventory_id: UUID | None = None
    variant_id: UUID | None = None
    seller_id: UUID | None = None
    delta: int

    @model_validator(mode="after")
    def _check_target(self) -> StockAdjustment:
        if self.inventory_id is None and (self.variant_id is None or self.seller_id is None):
            raise ValueError("Provide inventory_id or both variant_id and seller_id")
        return self


class InventoryStats(BaseModel):
    """Row count and summed quantity."""

    total_items: int
    total_quantity: int


__all__ = ["Inventory", "StockAdjustment", "InventoryStats"]
