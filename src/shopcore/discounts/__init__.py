"""
Discount engine.

Coupons scoped to everything, a category, or a product, each usable
once per user and consumed atomically.
"""

from shopcore.discounts.engine import DiscountEngine
from shopcore.discounts.models import (
    AppliedDiscount,
    Coupon,
    CouponPatch,
    CouponStats,
    CouponTarget,
    CouponTerms,
    DiscountType,
    OrderContext,
    TargetKind,
    compute_discount,
)

__all__ = [
    "AppliedDiscount",
    "Coupon",
    "CouponPatch",
    "CouponStats",
    "CouponTarget",
    "CouponTerms",
    "DiscountEngine",
    "DiscountType",
    "OrderContext",
    "TargetKind",
    "compute_discount",
]
