"""
Return workflow.

requested -> approved -> refunded, or requested -> rejected. Approval
puts the returned units back into inventory; refunding goes through the
order's completed payment.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from shopcore.auth import Principal, Role, require_owner_or_admin, require_role
from shopcore.documents import (
    DocumentRepository,
    DuplicateDocumentError,
    Filter,
    Query,
    Update,
    utcnow,
)
from shopcore.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ShopError,
    ValidationError,
)
from shopcore.inventory import InventoryLedger
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import ATTR_ACTOR_ID, ATTR_ORDER_ID, ATTR_RETURN_ID
from shopcore.orders import OrderService, OrderStatus
from shopcore.pagination import Page, paginate
from shopcore.payments import PaymentService, PaymentStatus
from shopcore.returns.models import (
    ReturnInput,
    ReturnRequest,
    ReturnStats,
    ReturnStatus,
    active_key,
)

logger = logging.getLogger(__name__)


class ReturnService:
    """Return requests for delivered orders."""

    def __init__(
        self,
        repository: DocumentRepository[ReturnRequest],
        orders: OrderService,
        inventory: InventoryLedger,
        payments: PaymentService,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._orders = orders
        self._inventory = inventory
        self._payments = payments
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def request(self, principal: Principal, request: ReturnInput) -> ReturnRequest:
        """
        Open a return for one product of a delivered order.

        The refund amount is the line's unit price times the returned
        quantity, capped at the order total.

        Raises:
            NotFoundError: Unknown order
            ForbiddenError: Principal is not the buyer
            InvalidTransitionError: Order is not delivered
            ValidationError: Product not in the order, or quantity too large
            ConflictError: A live return already exists for this order and product
        """
        order = await self._orders.get(request.order_id)
        require_owner_or_admin(principal, order.buyer_id)

        with self._tracer.span(
            "shopcore.return.request",
            {ATTR_ORDER_ID: str(order.id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            if order.status != OrderStatus.DELIVERED:
                raise InvalidTransitionError("Order", order.id, order.status, "returned")

            line = next((item for item in order.items if item.product_id == request.product_id), None)
            if line is None:
                raise ValidationError(
                    f"Product {request.product_id} is not part of order {order.id}"
                )
            if request.quantity > line.quantity:
                raise ValidationError(
                    f"Cannot return {request.quantity} units, order has {line.quantity}"
                )

            try:
                created = await self._repository.insert(
                    ReturnRequest(
                        order_id=order.id,
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        buyer_id=order.buyer_id,
                        seller_id=order.seller_id,
                        quantity=request.quantity,
                        reason=request.reason,
                        refund_amount=min(line.unit_price * request.quantity, order.total_amount),
                        active_key=active_key(order.id, line.product_id),
                    )
                )
            except DuplicateDocumentError as e:
                raise ConflictError(
                    f"A return for product {request.product_id} of order {order.id} is already open"
                ) from e

            logger.info(
                "Return %s requested for order %s, product %s",
                created.id,
                order.id,
                line.product_id,
                extra={"return_id": str(created.id), "order_id": str(order.id)},
            )
            return created

    async def approve(
        self, principal: Principal, return_id: UUID, restock: bool = True
    ) -> ReturnRequest:
        """Accept a return and, optionally, put its units back into stock."""
        current = await self._load_for_seller(principal, return_id)

        with self._tracer.span(
            "shopcore.return.approve",
            {ATTR_RETURN_ID: str(return_id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            approved = await self._transition(
                current, ReturnStatus.REQUESTED, ReturnStatus.APPROVED, {}
            )
            if restock and approved.variant_id is not None:
                try:
                    await self._inventory.adjust(
                        approved.variant_id, approved.seller_id, approved.quantity
                    )
                except NotFoundError:
                    logger.warning(
                        "Return %s approved without restock: no inventory row for variant %s",
                        return_id,
                        approved.variant_id,
                        extra={"return_id": str(return_id)},
                    )
                else:
                    approved = await self._mark_restocked(approved)

            logger.info(
                "Return %s approved (restocked: %s)",
                return_id,
                approved.restocked,
                extra={"return_id": str(return_id), "actor_id": str(principal.id)},
            )
            return approved

    async def reject(self, principal: Principal, return_id: UUID) -> ReturnRequest:
        """Decline a return; a new one may be requested afterwards."""
        current = await self._load_for_seller(principal, return_id)
        with self._tracer.span(
            "shopcore.return.reject",
            {ATTR_RETURN_ID: str(return_id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            rejected = await self._transition(
                current, ReturnStatus.REQUESTED, ReturnStatus.REJECTED, {"active_key": None}
            )
            logger.info(
                "Return %s rejected",
                return_id,
                extra={"return_id": str(return_id), "actor_id": str(principal.id)},
            )
            return rejected

    async def refund(
        self, principal: Principal, return_id: UUID, reason: str | None = None
    ) -> ReturnRequest:
        """
        Refund an approved return through the order's completed payment.

        The whole payment is refunded and recorded as ``refunded_amount``,
        so any later return on the same order finds no completed payment.

        Raises:
            InvalidTransitionError: Return is not approved, or the payment is not completed
            ConflictError: The order has no completed payment
        """
        current = await self._load_for_seller(principal, return_id)

        with self._tracer.span(
            "shopcore.return.refund",
            {ATTR_RETURN_ID: str(return_id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            payments = await self._payments.for_order(current.order_id)
            payment = next((p for p in payments if p.status == PaymentStatus.COMPLETED), None)
            if payment is None:
                raise ConflictError(f"Order {current.order_id} has no completed payment to refund")

            refunded = await self._transition(
                current,
                ReturnStatus.APPROVED,
                ReturnStatus.REFUNDED,
                {"refunded_amount": payment.amount, "payment_id": payment.id},
            )
            try:
                await self._payments.refund(
                    principal, payment.id, reason or f"Return {return_id}: {current.reason}"
                )
            except ShopError:
                await self._repository.find_one_and_update(
                    [Filter.eq("id", return_id), Filter.eq("status", ReturnStatus.REFUNDED)],
                    Update(
                        changes={
                            "status": ReturnStatus.APPROVED,
                            "resolved_at": current.resolved_at,
                            "refunded_amount": None,
                            "payment_id": None,
                        }
                    ),
                )
                raise

            logger.info(
                "Return %s refunded via payment %s",
                return_id,
                payment.id,
                extra={"return_id": str(return_id), "payment_id": str(payment.id)},
            )
            return refunded

    async def _load_for_seller(self, principal: Principal, return_id: UUID) -> ReturnRequest:
        require_role(principal, Role.SELLER, Role.ADMIN)
        current = await self.get(return_id)
        require_owner_or_admin(principal, current.seller_id)
        return current

    async def _transition(
        self,
        current: ReturnRequest,
        expected: ReturnStatus,
        target: ReturnStatus,
        changes: dict[str, Any],
    ) -> ReturnRequest:
        updated = await self._repository.find_one_and_update(
            [Filter.eq("id", current.id), Filter.eq("status", expected)],
            Update(changes={"status": target, "resolved_at": utcnow(), **changes}),
        )
        if updated is None:
            latest = await self.get(current.id)
            raise InvalidTransitionError("ReturnRequest", current.id, latest.status, target)
        return updated

    async def _mark_restocked(self, approved: ReturnRequest) -> ReturnRequest:
        updated = await self._repository.find_one_and_update(
            [Filter.eq("id", approved.id)], Update(changes={"restocked": True})
        )
        return updated if updated is not None else approved

    async def get(self, return_id: UUID) -> ReturnRequest:
        found = await self._repository.get(return_id)
        if found is None:
            raise NotFoundError("ReturnRequest", return_id)
        return found

    async def for_order(self, order_id: UUID) -> list[ReturnRequest]:
        return await self._repository.find(
            Query(filters=[Filter.eq("order_id", order_id)], order_by="created_at")
        )

    async def list_returns(
        self, status: ReturnStatus | None = None, limit: int = 10, offset: int = 0
    ) -> Page[ReturnRequest]:
        filters = [Filter.eq("status", status)] if status is not None else []
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

    async def stats(self) -> ReturnStats:
        returns = await self._repository.find()
        counts = {str(status): 0 for status in ReturnStatus}
        requested = refunded = Decimal("0.00")
        for item in returns:
            counts[str(item.status)] += 1
            if item.status == ReturnStatus.REFUNDED:
                requested += item.refund_amount
                refunded += item.refunded_amount or Decimal("0.00")
        return ReturnStats(
            total=len(returns),
            counts=counts,
            requested_amount=requested,
            refunded_amount=refunded,
        )


__all__ = ["ReturnService"]
