"""
Discount engine.

Validates coupon codes against an order and consumes them atomically.
Consumption is one conditional update that adds the user to ``used_by``
only while the coupon is active, inside its window, and not yet used by
that user. An update that matches nothing is diagnosed and reported as
the specific failure; it is never treated as success.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import NoReturn
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from shopcore.auth import Principal, Role, require_owner_or_admin, require_role
from shopcore.bulk import BulkResult, ItemOutcome
from shopcore.bus import EventPublisher
from shopcore.discounts.models import (
    AppliedDiscount,
    Coupon,
    CouponPatch,
    CouponStats,
    CouponTerms,
    OrderContext,
    TargetKind,
    compute_discount,
)
from shopcore.documents import (
    DocumentRepository,
    DuplicateDocumentError,
    Filter,
    OptimisticLockError,
    Query,
    Update,
    utcnow,
)
from shopcore.events import CouponApplied
from shopcore.exceptions import (
    ConflictError,
    CouponAlreadyUsedError,
    CouponInactiveError,
    CouponNotFoundError,
    CouponOutOfWindowError,
    CouponScopeMismatchError,
    DuplicateError,
    NotFoundError,
    ShopError,
    ValidationError,
)
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_BATCH_SIZE,
    ATTR_COUPON_CODE,
    ATTR_COUPON_ID,
)
from shopcore.pagination import Page, paginate

logger = logging.getLogger(__name__)


class DiscountEngine:
    """
    Coupon validation, consumption and administration.

    Example:
        >>> engine = DiscountEngine(InMemoryDocumentRepository(Coupon))
        >>> applied = await engine.validate_and_apply(
        ...     buyer, "SAVE10", OrderContext(order_amount=Decimal("1000.00"))
        ... )
        >>> applied.final_amount
        Decimal('900.00')
    """

    def __init__(
        self,
        repository: DocumentRepository[Coupon],
        bus: EventPublisher | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._bus = bus
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # Application
    # =========================================================================

    async def validate_and_apply(
        self,
        principal: Principal,
        code: str,
        context: OrderContext,
        now: datetime | None = None,
    ) -> AppliedDiscount:
        """
        Validate a coupon for the principal and consume it.

        Args:
            principal: The user consuming the coupon
            code: Coupon code
            context: Order amount and, for scoped coupons, the matching entity
            now: Evaluation time (defaults to the current time)

        Returns:
            The discount granted

        Raises:
            CouponNotFoundError: Unknown code
            CouponInactiveError: Coupon deactivated
            CouponOutOfWindowError: Outside [valid_from, valid_till]
            CouponScopeMismatchError: Scoped coupon does not match the context
            CouponAlreadyUsedError: The user already consumed the coupon
        """
        now = now or utcnow()
        user_id = principal.id

        with self._tracer.span(
            "shopcore.discount.validate_and_apply",
            {ATTR_COUPON_CODE: code, ATTR_ACTOR_ID: str(user_id)},
        ):
            coupon = await self._repository.find_one([Filter.eq("code", code)])
            if coupon is None:
                raise CouponNotFoundError(code)

            # Scope depends only on the request, so it is checked before the write
            self._check_scope(coupon, context)

            consumed = await self._repository.find_one_and_update(
                [
                    Filter.eq("id", coupon.id),
                    Filter.eq("is_active", True),
                    Filter.lte("valid_from", now),
                    Filter.gte("valid_till", now),
                    Filter.not_contains("used_by", user_id),
                ],
                Update(add_to_set={"used_by": user_id}),
            )
            if consumed is None:
                await self._diagnose_rejection(coupon.id, code, user_id, now)
            discount = compute_discount(
                consumed.discount_type, consumed.discount_value, context.order_amount
            )
            applied = AppliedDiscount(
                coupon_id=consumed.id,
                code=consumed.code,
                discount_type=consumed.discount_type,
                original_amount=context.order_amount,
                discount_amount=discount,
                final_amount=context.order_amount - discount,
            )

            logger.info(
                "User %s applied coupon %s for %s off %s",
                user_id,
                code,
                discount,
                context.order_amount,
                extra={
                    "coupon_id": str(consumed.id),
                    "user_id": str(user_id),
                    "discount_amount": str(discount),
                },
            )
            if self._bus is not None:
                await self._bus.publish(
                    [
                        CouponApplied(
                            aggregate_id=consumed.id,
                            actor_id=user_id,
                            code=consumed.code,
                            user_id=user_id,
                            discount_amount=discount,
                        )
                    ]
                )
            return applied

    def _check_scope(self, coupon: Coupon, context: OrderContext) -> None:
        target = coupon.target
        if target.kind == TargetKind.ALL:
            return
        if context.product_id is None and context.category_id is None:
            raise CouponScopeMismatchError(
                coupon.code, "a product or category is required for this coupon"
            )
        if target.kind == TargetKind.PRODUCT and context.product_id != target.entity_id:
            raise CouponScopeMismatchError(coupon.code, "not valid for this product")
        if target.kind == TargetKind.CATEGORY and context.category_id != target.entity_id:
            raise CouponScopeMismatchError(coupon.code, "not valid for this category")

    async def _diagnose_rejection(
        self, coupon_id: UUID, code: str, user_id: UUID, now: datetime
    ) -> NoReturn:
        """Raise the error explaining why the conditional consumption matched nothing."""
        current = await self._repository.get(coupon_id)
        if current is None:
            raise CouponNotFoundError(code)
        if not current.is_active:
            raise CouponInactiveError(code)
        if not current.is_valid_at(now):
            raise CouponOutOfWindowError(code)
        if user_id in current.used_by:
            logger.warning(
                "User %s tried to reuse coupon %s",
                user_id,
                code,
                extra={"coupon_id": str(coupon_id), "user_id": str(user_id)},
            )
            raise CouponAlreadyUsedError(code, user_id)
        # Terms changed between the write and this read
        raise ConflictError(f"Coupon {code} changed concurrently, retry the request")

    async def remove_usage(self, principal: Principal, coupon_id: UUID, user_id: UUID) -> Coupon:
        """
        Remove a user from the coupon's ``used_by`` (admin only).

        Idempotent: removing a user that never used the coupon succeeds.

        Raises:
            ForbiddenError: If the principal is not an admin
            NotFoundError: If the coupon does not exist
        """
        require_role(principal, Role.ADMIN)
        coupon = await self.release_usage(coupon_id, user_id)
        if coupon is None:
            raise NotFoundError("Coupon", coupon_id)
        return coupon

    async def release_usage(self, coupon_id: UUID, user_id: UUID) -> Coupon | None:
        """
        Give a consumed coupon back to the user.

        Compensation for an order that consumed the coupon but could not
        be stored.

        Returns:
            The coupon, or None if it no longer exists
        """
        with self._tracer.span(
            "shopcore.discount.release_usage",
            {ATTR_COUPON_ID: str(coupon_id), ATTR_ACTOR_ID: str(user_id)},
        ):
            coupon = await self._repository.find_one_and_update(
                [Filter.eq("id", coupon_id)],
                Update(pull={"used_by": user_id}),
            )
            if coupon is not None:
                logger.info(
                    "Released coupon %s for user %s",
                    coupon.code,
                    user_id,
                    extra={"coupon_id": str(coupon_id), "user_id": str(user_id)},
                )
            return coupon

    # =========================================================================
    # Administration
    # =========================================================================

    async def create_coupon(self, principal: Principal, terms: CouponTerms) -> Coupon:
        """
        Create a coupon.

        Raises:
            ForbiddenError: If the principal is neither seller nor admin
            DuplicateError: If the code is taken
        """
        require_role(principal, Role.SELLER, Role.ADMIN)

        with self._tracer.span(
            "shopcore.discount.create_coupon",
            {ATTR_COUPON_CODE: terms.code, ATTR_ACTOR_ID: str(principal.id)},
        ):
            try:
                coupon = await self._repository.insert(
                    Coupon(**terms.model_dump(), created_by=principal.id)
                )
            except DuplicateDocumentError as e:
                raise DuplicateError("Coupon", e.fields) from e

            logger.info(
                "Created coupon %s (%s %s)",
                coupon.code,
                coupon.discount_type,
                coupon.discount_value,
                extra={"coupon_id": str(coupon.id), "actor_id": str(principal.id)},
            )
            return coupon

    async def bulk_create(self, principal: Principal, terms: list[CouponTerms]) -> BulkResult:
        """Create coupons one by one, reporting each entry's outcome."""
        require_role(principal, Role.SELLER, Role.ADMIN)

        with self._tracer.span(
            "shopcore.discount.bulk_create",
            {ATTR_BATCH_SIZE: len(terms), ATTR_ACTOR_ID: str(principal.id)},
        ):
            result = BulkResult()
            for index, entry in enumerate(terms):
                try:
                    coupon = await self.create_coupon(principal, entry)
                    result.outcomes.append(ItemOutcome.success(index, coupon.id))
                except ShopError as e:
                    result.outcomes.append(ItemOutcome.failure(index, e))
            return result

    async def get_coupon(self, coupon_id: UUID) -> Coupon:
        coupon = await self._repository.get(coupon_id)
        if coupon is None:
            raise NotFoundError("Coupon", coupon_id)
        return coupon

    async def get_by_code(self, code: str) -> Coupon:
        coupon = await self._repository.find_one([Filter.eq("code", code)])
        if coupon is None:
            raise CouponNotFoundError(code)
        return coupon

    async def list_coupons(self, limit: int = 10, offset: int = 0) -> Page[Coupon]:
        """Newest coupons first."""
        return await paginate(
            self._repository,
            Query(order_by="created_at", order_direction="desc", limit=limit, offset=offset),
        )

    async def update_coupon(
        self, principal: Principal, coupon_id: UUID, patch: CouponPatch
    ) -> Coupon:
        """
        Change a coupon's terms.

        The edit is saved only if nobody wrote the coupon since it was
        loaded; usage recorded in between surfaces as a ConflictError.

        Raises:
            ValidationError: If the resulting terms are invalid
            ConflictError: On a concurrent modification
            DuplicateError: If the new code is taken
        """
        coupon = await self.get_coupon(coupon_id)
        require_owner_or_admin(principal, coupon.created_by)

        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        try:
            terms = CouponTerms.model_validate({**coupon.terms().model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid coupon terms: {e.errors()[0]['msg']}") from e

        updated = coupon.model_copy(
            update={name: getattr(terms, name) for name in CouponTerms.model_fields}
        )
        try:
            saved = await self._repository.save_with_version_check(updated)
        except OptimisticLockError as e:
            raise ConflictError(
                f"Coupon {coupon_id} was modified concurrently, reload and retry"
            ) from e
        except DuplicateDocumentError as e:
            raise DuplicateError("Coupon", e.fields) from e

        logger.info(
            "Updated coupon %s: %s",
            saved.code,
            sorted(changes),
            extra={"coupon_id": str(coupon_id), "actor_id": str(principal.id)},
        )
        return saved

    async def toggle_active(self, principal: Principal, coupon_id: UUID) -> Coupon:
        """Flip ``is_active``."""
        coupon = await self.get_coupon(coupon_id)
        require_owner_or_admin(principal, coupon.created_by)

        toggled = await self._repository.find_one_and_update(
            [Filter.eq("id", coupon_id), Filter.eq("is_active", coupon.is_active)],
            Update(changes={"is_active": not coupon.is_active}),
        )
        if toggled is None:
            raise ConflictError(f"Coupon {coupon_id} was modified concurrently, retry")

        logger.info(
            "Coupon %s %s",
            toggled.code,
            "activated" if toggled.is_active else "deactivated",
            extra={"coupon_id": str(coupon_id), "actor_id": str(principal.id)},
        )
        return toggled

    async def delete_coupon(self, principal: Principal, coupon_id: UUID) -> None:
        coupon = await self.get_coupon(coupon_id)
        require_owner_or_admin(principal, coupon.created_by)
        await self._repository.delete(coupon_id)
        logger.info(
            "Deleted coupon %s",
            coupon.code,
            extra={"coupon_id": str(coupon_id), "actor_id": str(principal.id)},
        )

    async def active_coupons(self, now: datetime | None = None) -> list[Coupon]:
        """Active coupons valid now, soonest expiry first."""
        now = now or utcnow()
        return await self._repository.find(
            Query(
                filters=[
                    Filter.eq("is_active", True),
                    Filter.lte("valid_from", now),
                    Filter.gte("valid_till", now),
                ],
                order_by="valid_till",
            )
        )

    async def expired_coupons(
        self, limit: int = 10, offset: int = 0, now: datetime | None = None
    ) -> Page[Coupon]:
        """Coupons past their window, most recently expired first."""
        now = now or utcnow()
        return await paginate(
            self._repository,
            Query(
                filters=[Filter.lt("valid_till", now)],
                order_by="valid_till",
                order_direction="desc",
                limit=limit,
                offset=offset,
            ),
        )

    async def used_by_user(self, user_id: UUID) -> list[Coupon]:
        return await self._repository.find(
            Query(
                filters=[Filter.contains("used_by", user_id)],
                order_by="created_at",
                order_direction="desc",
            )
        )

    async def search(self, text: str) -> list[Coupon]:
        """
        Case-insensitive search on code and discount type; exact on target kind.

        Raises:
            ValidationError: If the search text is blank
        """
        needle = text.strip().lower()
        if not needle:
            raise ValidationError("Search text is required")

        coupons = await self._repository.find(
            Query(order_by="created_at", order_direction="desc")
        )
        return [
            c
            for c in coupons
            if needle in c.code.lower()
            or needle in c.discount_type.value
            or needle == c.target.kind.value
        ]

    async def stats(self) -> CouponStats:
        coupons = await self._repository.find()
        return CouponStats(
            total_coupons=len(coupons),
            total_usages=sum(len(c.used_by) for c in coupons),
        )


__all__ = ["DiscountEngine"]
