"""
Order aggregate.

Orders own their line items and reference payment, shipping and coupon
by ID. Status moves forward through a fixed allow-list; cancellation is
reachable from every non-terminal status.
"""

from shopcore.orders.models import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    Order,
    OrderItemInput,
    OrderLineItem,
    OrderStats,
    OrderStatus,
    OrderStatusUpdate,
    StockState,
    can_transition,
)
from shopcore.orders.service import OrderService

__all__ = [
    "Order",
    "OrderItemInput",
    "OrderLineItem",
    "OrderService",
    "OrderStats",
    "OrderStatus",
    "OrderStatusUpdate",
    "StockState",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "can_transition",
]
