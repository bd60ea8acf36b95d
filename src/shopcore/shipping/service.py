"""
Shipping records.

A shipment can be opened only for a confirmed or shipped order. Status
changes are free-form among the shipment statuses; reaching DELIVERED
stamps ``delivered_at``.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from shopcore.auth import Principal, Role, require_owner_or_admin, require_role
from shopcore.bulk import BulkResult, ItemOutcome
from shopcore.documents import DocumentRepository, Filter, Query, Update, utcnow
from shopcore.exceptions import InvalidTransitionError, NotFoundError, ShopError, ValidationError
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_BATCH_SIZE,
    ATTR_ORDER_ID,
    ATTR_SHIPPING_ID,
)
from shopcore.orders import OrderService, OrderStatus
from shopcore.pagination import Page, paginate
from shopcore.shipping.models import (
    Shipping,
    ShippingRequest,
    ShippingStats,
    ShippingStatus,
    ShippingStatusUpdate,
)

logger = logging.getLogger(__name__)

SHIPPABLE_ORDER_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.SHIPPED})


class ShippingService:
    """Shipment creation, tracking and maintenance."""

    def __init__(
        self,
        repository: DocumentRepository[Shipping],
        orders: OrderService,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._orders = orders
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def create(self, principal: Principal, request: ShippingRequest) -> Shipping:
        """
        Open a shipment for an order and link it from the order.

        Raises:
            NotFoundError: Unknown order
            ForbiddenError: Principal is neither the seller nor an admin
            InvalidTransitionError: Order is not confirmed or shipped
        """
        require_role(principal, Role.SELLER, Role.ADMIN)
        order = await self._orders.get(request.order_id)
        require_owner_or_admin(principal, order.seller_id)

        with self._tracer.span(
            "shopcore.shipping.create",
            {ATTR_ORDER_ID: str(order.id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            if order.status not in SHIPPABLE_ORDER_STATUSES:
                raise InvalidTransitionError("Order", order.id, order.status, "shipment")

            shipping = await self._repository.insert(
                Shipping(
                    order_id=order.id,
                    seller_id=order.seller_id,
                    address_id=request.address_id,
                    carrier=request.carrier,
                    tracking_id=request.tracking_id,
                    estimated_delivery=request.estimated_delivery,
                )
            )
            await self._orders.attach_shipping(order.id, shipping.id)

            logger.info(
                "Created shipment %s for order %s",
                shipping.id,
                order.id,
                extra={
                    "shipping_id": str(shipping.id),
                    "order_id": str(order.id),
                    "carrier": shipping.carrier,
                },
            )
            return shipping

    async def update_status(
        self, principal: Principal, shipping_id: UUID, update: ShippingStatusUpdate
    ) -> Shipping:
        """
        Set a shipment's status.

        ``delivered_at`` defaults to now when the status becomes DELIVERED.
        """
        shipping = await self.get(shipping_id)
        require_owner_or_admin(principal, shipping.seller_id)

        with self._tracer.span(
            "shopcore.shipping.update_status",
            {ATTR_SHIPPING_ID: str(shipping_id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            changes: dict[str, Any] = {"status": update.status}
            if update.status == ShippingStatus.DELIVERED:
                changes["delivered_at"] = update.delivered_at or utcnow()

            updated = await self._repository.find_one_and_update(
                [Filter.eq("id", shipping_id)], Update(changes=changes)
            )
            if updated is None:
                raise NotFoundError("Shipping", shipping_id)

            logger.info(
                "Shipment %s is now %s",
                shipping_id,
                update.status,
                extra={"shipping_id": str(shipping_id), "status": str(update.status)},
            )
            return updated

    async def bulk_update_status(
        self, principal: Principal, updates: list[ShippingStatusUpdate]
    ) -> BulkResult:
        """Apply each status change independently and report per-entry outcomes."""
        with self._tracer.span(
            "shopcore.shipping.bulk_update_status",
            {ATTR_BATCH_SIZE: len(updates), ATTR_ACTOR_ID: str(principal.id)},
        ):
            result = BulkResult()
            for index, entry in enumerate(updates):
                try:
                    if entry.shipping_id is None:
                        raise ValidationError("shipping_id is required")
                    shipping = await self.update_status(principal, entry.shipping_id, entry)
                    result.outcomes.append(ItemOutcome.success(index, shipping.id))
                except ShopError as e:
                    result.outcomes.append(ItemOutcome.failure(index, e, entry.shipping_id))
            return result

    async def get(self, shipping_id: UUID) -> Shipping:
        shipping = await self._repository.get(shipping_id)
        if shipping is None:
            raise NotFoundError("Shipping", shipping_id)
        return shipping

    async def for_order(self, order_id: UUID) -> list[Shipping]:
        return await self._repository.find(
            Query(filters=[Filter.eq("order_id", order_id)], order_by="created_at")
        )

    async def list_shipments(
        self,
        status: ShippingStatus | None = None,
        carrier: str | None = None,
        include_deleted: bool = False,
        limit: int = 10,
        offset: int = 0,
    ) -> Page[Shipping]:
        filters = []
        if status is not None:
            filters.append(Filter.eq("status", status))
        if carrier is not None:
            filters.append(Filter.eq("carrier", carrier))
        return await paginate(
            self._repository,
            Query(
                filters=filters,
                order_by="created_at",
                order_direction="desc",
                limit=limit,
                offset=offset,
                include_deleted=include_deleted,
            ),
        )

    async def soft_delete(self, principal: Principal, shipping_id: UUID) -> None:
        shipping = await self.get(shipping_id)
        require_owner_or_admin(principal, shipping.seller_id)
        await self._repository.soft_delete(shipping_id)
        logger.info("Soft-deleted shipment %s", shipping_id, extra={"shipping_id": str(shipping_id)})

    async def restore(self, principal: Principal, shipping_id: UUID) -> Shipping:
        """
        Undo a soft delete.

        Raises:
            NotFoundError: No soft-deleted shipment with this ID
        """
        deleted = await self._repository.get_deleted(shipping_id)
        if deleted is None:
            raise NotFoundError("Shipping", shipping_id)
        require_owner_or_admin(principal, deleted.seller_id)
        await self._repository.restore(shipping_id)
        logger.info("Restored shipment %s", shipping_id, extra={"shipping_id": str(shipping_id)})
        return await self.get(shipping_id)

    async def delete(self, principal: Principal, shipping_id: UUID) -> None:
        """Hard delete (admin only), including soft-deleted shipments."""
        require_role(principal, Role.ADMIN)
        if not await self._repository.delete(shipping_id):
            raise NotFoundError("Shipping", shipping_id)
        logger.info("Deleted shipment %s", shipping_id, extra={"shipping_id": str(shipping_id)})

    async def stats(self) -> ShippingStats:
        shipments = await self._repository.find()
        counts = {str(status): 0 for status in ShippingStatus}
        for shipping in shipments:
            counts[str(shipping.status)] += 1
        return ShippingStats(total=len(shipments), counts=counts)


__all__ = ["ShippingService", "SHIPPABLE_ORDER_STATUSES"]
