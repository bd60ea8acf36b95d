"""
Shipping records.

Shipments belong to confirmed or shipped orders and can be soft-deleted.
"""

from shopcore.shipping.models import (
    Shipping,
    ShippingRequest,
    ShippingStats,
    ShippingStatus,
    ShippingStatusUpdate,
)
from shopcore.shipping.service import SHIPPABLE_ORDER_STATUSES, ShippingService

__all__ = [
    "SHIPPABLE_ORDER_STATUSES",
    "Shipping",
    "ShippingRequest",
    "ShippingService",
    "ShippingStats",
    "ShippingStatus",
    "ShippingStatusUpdate",
]
