"""
Order aggregate service.

Creates orders from server-trusted catalog prices, drives the status
machine, and keeps inventory in step with confirmations and
cancellations.

Status changes are single conditional updates keyed on the allowed
predecessor states, so of two concurrent transitions at most one wins.
Stock is deducted only by the caller whose update moved the order from
pending to confirmed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from shopcore.auth import Principal, Role, require_owner_or_admin, require_role
from shopcore.bus import EventPublisher
from shopcore.catalog import ProductCatalog
from shopcore.config import OrderDeletePolicy
from shopcore.discounts import AppliedDiscount, DiscountEngine, OrderContext, TargetKind
from shopcore.documents import DocumentRepository, Filter, Query, Update, utcnow
from shopcore.events import OrderPlaced, OrderStatusChanged, ShopEvent, StockShortage
from shopcore.exceptions import (
    ConflictError,
    CouponScopeMismatchError,
    EmptyItemsError,
    ForbiddenError,
    InvalidTransitionError,
    NegativeStockError,
    NotFoundError,
    PriceMismatchError,
)
from shopcore.inventory import InventoryLedger
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
    ATTR_SELLER_ID,
)
from shopcore.orders.models import (
    TRANSITIONS,
    Order,
    OrderItemInput,
    OrderLineItem,
    OrderStats,
    OrderStatus,
    StockState,
)
from shopcore.pagination import Page, paginate

logger = logging.getLogger(__name__)


class OrderService:
    """
    Order creation and lifecycle.

    Args:
        repository: Order storage
        catalog: Source of current prices and categories
        discounts: Engine consuming coupons at creation
        inventory: Ledger deducted on confirmation, restocked on cancellation
        bus: Optional publisher for domain notifications
        price_tolerance: Accepted difference between submitted and catalog price
        delete_policy: What deletion does when payments or shipments reference the order
        dependents: Repositories of documents holding an ``order_id`` reference,
            consulted by the RESTRICT delete policy
    """

    def __init__(
        self,
        repository: DocumentRepository[Order],
        catalog: ProductCatalog,
        discounts: DiscountEngine,
        inventory: InventoryLedger,
        bus: EventPublisher | None = None,
        price_tolerance: Decimal = Decimal("0.01"),
        delete_policy: OrderDeletePolicy = OrderDeletePolicy.DETACH,
        dependents: Sequence[DocumentRepository[Any]] = (),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._discounts = discounts
        self._inventory = inventory
        self._bus = bus
        self._price_tolerance = price_tolerance
        self._delete_policy = delete_policy
        self._dependents = list(dependents)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # Creation
    # =========================================================================

    async def create(
        self,
        principal: Principal,
        seller_id: UUID,
        items: list[OrderItemInput],
        coupon_code: str | None = None,
    ) -> Order:
        """
        Place a pending order.

        Prices come from the catalog. If a coupon code is given it is
        consumed before the order is stored and released again if storing
        fails. Scoped coupons discount only the matching lines.

        Raises:
            EmptyItemsError: No items
            NotFoundError: Unknown product
            PriceMismatchError: A submitted price differs from the catalog price
            CouponNotFoundError, CouponInactiveError, CouponOutOfWindowError,
            CouponScopeMismatchError, CouponAlreadyUsedError: Coupon rejected
        """
        require_role(principal, Role.BUYER, Role.ADMIN)
        if not items:
            raise EmptyItemsError()

        with self._tracer.span(
            "shopcore.order.create",
            {ATTR_ACTOR_ID: str(principal.id), ATTR_SELLER_ID: str(seller_id)},
        ) as span:
            lines = [await self._price_line(item) for item in items]
            subtotal = sum((line.subtotal for line in lines), Decimal("0.00"))

            applied: AppliedDiscount | None = None
            if coupon_code:
                applied = await self._consume_coupon(principal, coupon_code, lines, subtotal)

            discount = applied.discount_amount if applied else Decimal("0.00")
            order = Order(
                buyer_id=principal.id,
                seller_id=seller_id,
                items=lines,
                coupon_id=applied.coupon_id if applied else None,
                discount_amount=discount,
                subtotal=subtotal,
                total_amount=subtotal - discount,
            )

            try:
                order = await self._repository.insert(order)
            except Exception:
                if applied is not None:
                    logger.warning(
                        "Storing order failed, releasing coupon %s for user %s",
                        applied.code,
                        principal.id,
                        extra={"coupon_id": str(applied.coupon_id)},
                    )
                    await self._discounts.release_usage(applied.coupon_id, principal.id)
                raise

            if span is not None:
                span.set_attribute(ATTR_ORDER_ID, str(order.id))

            logger.info(
                "Placed order %s for buyer %s: %d items, total %s",
                order.id,
                principal.id,
                len(lines),
                order.total_amount,
                extra={
                    "order_id": str(order.id),
                    "buyer_id": str(principal.id),
                    "seller_id": str(seller_id),
                    "total_amount": str(order.total_amount),
                },
            )
            await self._publish(
                OrderPlaced(
                    aggregate_id=order.id,
                    actor_id=principal.id,
                    buyer_id=order.buyer_id,
                    seller_id=order.seller_id,
                    total_amount=order.total_amount,
                    coupon_id=order.coupon_id,
                )
            )
            return order

    async def _price_line(self, item: OrderItemInput) -> OrderLineItem:
        product = await self._catalog.get_product(item.product_id)
        if product is None:
            raise NotFoundError("Product", item.product_id)
        if (
            item.unit_price is not None
            and abs(item.unit_price - product.price) > self._price_tolerance
        ):
            raise PriceMismatchError(item.product_id, item.unit_price, product.price)

        return OrderLineItem(
            product_id=item.product_id,
            variant_id=item.variant_id,
            category_id=product.category_id,
            quantity=item.quantity,
            unit_price=product.price,
            subtotal=product.price * item.quantity,
            stock_deducted=StockState.PENDING if item.variant_id else StockState.NOT_TRACKED,
        )

    async def _consume_coupon(
        self,
        principal: Principal,
        code: str,
        lines: list[OrderLineItem],
        subtotal: Decimal,
    ) -> AppliedDiscount:
        coupon = await self._discounts.get_by_code(code)
        target = coupon.target

        if target.kind == TargetKind.ALL:
            context = OrderContext(order_amount=subtotal)
        else:
            if target.kind == TargetKind.PRODUCT:
                matching = [line for line in lines if line.product_id == target.entity_id]
            else:
                matching = [line for line in lines if line.category_id == target.entity_id]
            if not matching:
                raise CouponScopeMismatchError(code, f"no item in the order matches its {target.kind}")
            context = OrderContext(
                product_id=matching[0].product_id,
                category_id=matching[0].category_id,
                order_amount=sum((line.subtotal for line in matching), Decimal("0.00")),
            )

        return await self._discounts.validate_and_apply(principal, code, context)

    # =========================================================================
    # Status machine
    # =========================================================================

    async def transition(
        self, principal: Principal, order_id: UUID, target: OrderStatus
    ) -> Order:
        """
        Move an order to ``target``.

        Sellers and admins drive the lifecycle; a buyer may only cancel
        their own order.

        Raises:
            NotFoundError: Unknown order
            ForbiddenError: Principal may not change this order
            InvalidTransitionError: ``target`` is not reachable from the current status
        """
        order = await self.get(order_id)
        require_owner_or_admin(principal, order.seller_id, order.buyer_id)
        if principal.role == Role.BUYER and target != OrderStatus.CANCELLED:
            raise ForbiddenError("Buyers may only cancel their own orders")

        return await self._transition(order, target, principal.id)

    async def confirm_paid(self, order_id: UUID) -> Order | None:
        """
        Confirm a pending order after its payment completed.

        System path used by payment reconciliation. Safe to call on every
        webhook delivery: an order that is no longer pending is left alone.

        Returns:
            The confirmed order, or None if it was not pending, no longer exists
            or was cancelled before its stock was recorded
        """
        order = await self._repository.get(order_id)
        if order is None:
            logger.warning(
                "Payment completed for missing order %s",
                order_id,
                extra={"order_id": str(order_id)},
            )
            return None
        if order.status != OrderStatus.PENDING:
            logger.debug(
                "Order %s already %s, not confirming",
                order_id,
                order.status,
                extra={"order_id": str(order_id)},
            )
            return None
        try:
            confirmed = await self._transition(order, OrderStatus.CONFIRMED, None)
        except InvalidTransitionError:
            return None
        return confirmed if confirmed.status != OrderStatus.CANCELLED else None

    async def _transition(
        self, order: Order, target: OrderStatus, actor_id: UUID | None
    ) -> Order:
        with self._tracer.span(
            "shopcore.order.transition",
            {ATTR_ORDER_ID: str(order.id), ATTR_ORDER_STATUS: str(target)},
        ):
            predecessors = TRANSITIONS[target]
            changes: dict[str, Any] = {"status": target}
            if target == OrderStatus.CONFIRMED:
                changes["confirmed_at"] = utcnow()
            elif target == OrderStatus.CANCELLED:
                changes["cancelled_at"] = utcnow()

            updated = None
            if predecessors:
                updated = await self._repository.find_one_and_update(
                    [Filter.eq("id", order.id), Filter.in_("status", list(predecessors))],
                    Update(changes=changes),
                )
            if updated is None:
                current = await self._repository.get(order.id)
                if current is None:
                    raise NotFoundError("Order", order.id)
                logger.warning(
                    "Rejected transition of order %s from %s to %s",
                    order.id,
                    current.status,
                    target,
                    extra={"order_id": str(order.id), "status": str(current.status)},
                )
                raise InvalidTransitionError("Order", order.id, current.status, target)

            logger.info(
                "Order %s moved from %s to %s",
                order.id,
                order.status,
                target,
                extra={"order_id": str(order.id), "status": str(target)},
            )
            await self._publish(
                OrderStatusChanged(
                    aggregate_id=order.id,
                    actor_id=actor_id,
                    previous_status=order.status,
                    new_status=target,
                )
            )

            if target == OrderStatus.CONFIRMED:
                updated = await self._deduct_stock(updated)
            elif target == OrderStatus.CANCELLED:
                updated = await self._restock(updated)
            return updated

    async def _deduct_stock(self, order: Order) -> Order:
        """
        Deduct every tracked line; shortages are recorded, not raised.

        The line states are written only while the order is not
        cancelled. A cancel that lands between the deductions and that
        write saw no deducted lines, so the deductions made here are
        returned to stock instead.
        """
        items = [item.model_copy() for item in order.items]
        shortages: list[ShopEvent] = []

        for item in items:
            if item.variant_id is None or item.stock_deducted != StockState.PENDING:
                continue
            try:
                await self._inventory.adjust(item.variant_id, order.seller_id, -item.quantity)
                item.stock_deducted = StockState.DEDUCTED
            except (NegativeStockError, NotFoundError) as e:
                item.stock_deducted = StockState.SHORTAGE
                logger.warning(
                    "Stock shortage for order %s, variant %s: %s",
                    order.id,
                    item.variant_id,
                    e.message,
                    extra={"order_id": str(order.id), "variant_id": str(item.variant_id)},
                )
                shortages.append(
                    StockShortage(
                        aggregate_id=order.id,
                        variant_id=item.variant_id,
                        seller_id=order.seller_id,
                        requested=item.quantity,
                        reason=e.kind,
                    )
                )

        updated = await self._store_items(
            order, items, Filter.ne("status", OrderStatus.CANCELLED)
        )
        if updated is None:
            logger.warning(
                "Order %s was cancelled while its stock was deducted, returning it",
                order.id,
                extra={"order_id": str(order.id)},
            )
            return await self._restock_lines(order, items)

        await self._publish(*shortages)
        return updated

    async def _restock(self, order: Order) -> Order:
        """Return deducted lines of a cancelled order to stock."""
        items = [item.model_copy() for item in order.items]
        if not any(item.stock_deducted == StockState.DEDUCTED for item in items):
            return order
        return await self._restock_lines(order, items)

    async def _restock_lines(self, order: Order, items: list[OrderLineItem]) -> Order:
        for item in items:
            if item.variant_id is None or item.stock_deducted != StockState.DEDUCTED:
                continue
            try:
                await self._inventory.adjust(item.variant_id, order.seller_id, item.quantity)
                item.stock_deducted = StockState.RESTOCKED
            except NotFoundError:
                logger.warning(
                    "Cannot restock variant %s of cancelled order %s: inventory row is gone",
                    item.variant_id,
                    order.id,
                    extra={"order_id": str(order.id), "variant_id": str(item.variant_id)},
                )

        updated = await self._store_items(
            order, items, Filter.eq("status", OrderStatus.CANCELLED)
        )
        if updated is not None:
            return updated
        current = await self._repository.get(order.id)
        return current if current is not None else order

    async def _store_items(
        self, order: Order, items: list[OrderLineItem], guard: Filter
    ) -> Order | None:
        return await self._repository.find_one_and_update(
            [Filter.eq("id", order.id), guard], Update(changes={"items": items})
        )

    # =========================================================================
    # References
    # =========================================================================

    async def attach_payment(self, order_id: UUID, payment_id: UUID) -> Order:
        return await self._set_reference(order_id, "payment_id", payment_id)

    async def attach_shipping(self, order_id: UUID, shipping_id: UUID) -> Order:
        return await self._set_reference(order_id, "shipping_id", shipping_id)

    async def _set_reference(self, order_id: UUID, field: str, value: UUID) -> Order:
        updated = await self._repository.find_one_and_update(
            [Filter.eq("id", order_id)], Update(changes={field: value})
        )
        if updated is None:
            raise NotFoundError("Order", order_id)
        logger.debug(
            "Order %s %s set to %s",
            order_id,
            field,
            value,
            extra={"order_id": str(order_id)},
        )
        return updated

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, order_id: UUID, principal: Principal | None = None) -> Order:
        """
        Load an order.

        When a principal is given, only the buyer, the seller or an admin
        may read it.
        """
        order = await self._repository.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if principal is not None:
            require_owner_or_admin(principal, order.buyer_id, order.seller_id)
        return order

    async def list_orders(
        self,
        status: OrderStatus | None = None,
        buyer_id: UUID | None = None,
        seller_id: UUID | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Page[Order]:
        """Newest orders first, optionally filtered."""
        filters = []
        if status is not None:
            filters.append(Filter.eq("status", status))
        if buyer_id is not None:
            filters.append(Filter.eq("buyer_id", buyer_id))
        if seller_id is not None:
            filters.append(Filter.eq("seller_id", seller_id))
        if created_from is not None:
            filters.append(Filter.gte("created_at", created_from))
        if created_to is not None:
            filters.append(Filter.lte("created_at", created_to))

        return await paginate(
            self._repository,
            Query(
                filters=filters,
                order_by="created_at",
                order_direction="desc",
                limit=limit,
                offset=offset,
            ),
        )

    async def recent(self, limit: int = 5) -> list[Order]:
        return await self._repository.find(
            Query(order_by="created_at", order_direction="desc", limit=limit)
        )

    async def stats(self) -> OrderStats:
        orders = await self._repository.find()
        counts = {str(status): 0 for status in OrderStatus}
        totals = {str(status): Decimal("0.00") for status in OrderStatus}
        for order in orders:
            counts[str(order.status)] += 1
            totals[str(order.status)] += order.total_amount
        return OrderStats(counts=counts, totals=totals)

    async def total_sales(self) -> Decimal:
        """Sum of ``total_amount`` over orders that were not cancelled."""
        orders = await self._repository.find(
            Query(filters=[Filter.ne("status", OrderStatus.CANCELLED)])
        )
        return sum((order.total_amount for order in orders), Decimal("0.00"))

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete(self, principal: Principal, order_id: UUID) -> None:
        """
        Delete an order (admin only).

        Line items go with the order. Payments and shipments are never
        deleted; under RESTRICT the deletion is refused while any exist.

        Raises:
            NotFoundError: Unknown order
            ConflictError: RESTRICT policy and the order has dependents
        """
        require_role(principal, Role.ADMIN)
        await self.get(order_id)

        if self._delete_policy == OrderDeletePolicy.RESTRICT:
            for repository in self._dependents:
                referencing = await repository.count(
                    Query(filters=[Filter.eq("order_id", order_id)], include_deleted=True)
                )
                if referencing:
                    raise ConflictError(
                        f"Order {order_id} is still referenced by {referencing} "
                        f"{repository.document_class.__name__.lower()} record(s)"
                    )

        await self._repository.delete(order_id)
        logger.info(
            "Deleted order %s",
            order_id,
            extra={"order_id": str(order_id), "actor_id": str(principal.id)},
        )

    async def _publish(self, *events: ShopEvent) -> None:
        if self._bus is not None and events:
            await self._bus.publish(list(events))


__all__ = ["OrderService"]
