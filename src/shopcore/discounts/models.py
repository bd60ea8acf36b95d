"""Coupon documents and discount value types."""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shopcore.documents import Document, as_utc

CENT = Decimal("0.01")


class DiscountType(StrEnum):
    FLAT = "flat"
    PERCENTAGE = "percentage"


class TargetKind(StrEnum):
    ALL = "all"
    CATEGORY = "category"
    PRODUCT = "product"


class CouponTarget(BaseModel):
    """
    What a coupon applies to.

    ``entity_id`` is a category ID for CATEGORY targets, a product ID for
    PRODUCT targets, and absent for ALL.

    Example:
        >>> CouponTarget.everything()
        >>> CouponTarget.category(electronics_id)
    """

    model_config = ConfigDict(frozen=True)

    kind: TargetKind = TargetKind.ALL
    entity_id: UUID | None = None

    @model_validator(mode="after")
    def _check_entity(self) -> CouponTarget:
        if self.kind == TargetKind.ALL and self.entity_id is not None:
            raise ValueError("entity_id must be empty for coupons that apply to all")
        if self.kind != TargetKind.ALL and self.entity_id is None:
            raise ValueError(f"entity_id is required for {self.kind} coupons")
        return self

    @classmethod
    def everything(cls) -> CouponTarget:
        return cls(kind=TargetKind.ALL)

    @classmethod
    def category(cls, category_id: UUID) -> CouponTarget:
        return cls(kind=TargetKind.CATEGORY, entity_id=category_id)

    @classmethod
    def product(cls, product_id: UUID) -> CouponTarget:
        return cls(kind=TargetKind.PRODUCT, entity_id=product_id)


class CouponTerms(BaseModel):
    """Editable terms of a coupon, validated together."""

    code: str = Field(min_length=1, max_length=64)
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0, decimal_places=2)
    target: CouponTarget = Field(default_factory=CouponTarget)
    valid_from: datetime
    valid_till: datetime
    is_active: bool = True

    @field_validator("valid_from", "valid_till")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("code")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("code must not be blank")
        return value

    @model_validator(mode="after")
    def _check_terms(self) -> CouponTerms:
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount_value must be at most 100")
        if self.valid_till < self.valid_from:
            raise ValueError("valid_till must not be before valid_from")
        return self


class Coupon(Document):
    """
    A code entitling each user to one scoped price reduction.

    ``used_by`` holds every user who consumed the coupon; a user appears
    at most once.
    """

    __unique__ = (("code",),)
    __indexes__ = [{"fields": ["valid_till"]}]

    code: str
    discount_type: DiscountType
    discount_value: Decimal
    target: CouponTarget = Field(default_factory=CouponTarget)
    valid_from: datetime
    valid_till: datetime
    is_active: bool = True
    used_by: list[UUID] = Field(default_factory=list)
    created_by: UUID | None = None

    def is_valid_at(self, now: datetime) -> bool:
        """True if ``now`` lies in the inclusive validity window."""
        return self.valid_from <= now <= self.valid_till

    def terms(self) -> CouponTerms:
        return CouponTerms(
            code=self.code,
            discount_type=self.discount_type,
            discount_value=self.discount_value,
            target=self.target,
            valid_from=self.valid_from,
            valid_till=self.valid_till,
            is_active=self.is_active,
        )


class CouponPatch(BaseModel):
    """Partial update of a coupon's terms; unset fields are left alone."""

    code: str | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None
    target: CouponTarget | None = None
    valid_from: datetime | None = None
    valid_till: datetime | None = None
    is_active: bool | None = None

    @field_validator("valid_from", "valid_till")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return None if value is None else as_utc(value)


class OrderContext(BaseModel):
    """
    What a coupon is being applied to.

    Attributes:
        product_id: Product of the order line, for product-scoped coupons
        category_id: Category of the order line, for category-scoped coupons
        order_amount: Amount the discount is computed from
    """

    product_id: UUID | None = None
    category_id: UUID | None = None
    order_amount: Decimal = Field(ge=0)


class AppliedDiscount(BaseModel):
    """Result of a successful coupon application."""

    coupon_id: UUID
    code: str
    discount_type: DiscountType
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


class CouponStats(BaseModel):
    total_coupons: int
    total_usages: int


def compute_discount(discount_type: DiscountType, value: Decimal, amount: Decimal) -> Decimal:
    """
    Discount granted on ``amount``, never more than ``amount``.

    Percentage discounts are rounded half-up to the cent.

    Example:
        >>> compute_discount(DiscountType.PERCENTAGE, Decimal("10"), Decimal("1000.00"))
        Decimal('100.00')
        >>> compute_discount(DiscountType.FLAT, Decimal("50"), Decimal("30.00"))
        Decimal('30.00')
    """
    if discount_type == DiscountType.PERCENTAGE:
        discount = (amount * value / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        discount = value.quantize(CENT, rounding=ROUND_HALF_UP)
    return min(discount, amount.quantize(CENT, rounding=ROUND_HALF_UP))


__all__ = [
    "CENT",
    "DiscountType",
    "TargetKind",
    "CouponTarget",
    "CouponTerms",
    "Coupon",
    "CouponPatch",
    "OrderContext",
    "AppliedDiscount",
    "CouponStats",
    "compute_discount",
]
