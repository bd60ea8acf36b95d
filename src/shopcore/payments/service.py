"""
Payment reconciliation.

Payments move through pending -> {completed, failed}, failed -> pending
(retry) and completed -> refunded. Every status change is one
conditional update keyed on the expected current status, which makes
provider events idempotent under at-least-once delivery: a redelivered
event matches nothing and is reported as a duplicate.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from shopcore.auth import Principal, Role, require_owner_or_admin, require_role
from shopcore.bus import EventPublisher
from shopcore.documents import (
    DocumentRepository,
    DuplicateDocumentError,
    Filter,
    Query,
    Update,
    utcnow,
)
from shopcore.events import PaymentCompleted, PaymentFailed, PaymentRefunded, ShopEvent
from shopcore.exceptions import (
    AmountMismatchError,
    ConflictError,
    DuplicateError,
    InvalidTransitionError,
    NotFoundError,
    RetryLimitExceededError,
    ValidationError,
)
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_ORDER_ID,
    ATTR_PAYMENT_ID,
    ATTR_PAYMENT_STATUS,
    ATTR_PROVIDER_EVENT_TYPE,
    ATTR_TRANSACTION_ID,
)
from shopcore.orders import OrderService, OrderStatus
from shopcore.pagination import Page, paginate
from shopcore.payments.models import (
    DEFAULT_REFUND_REASON,
    PAYMENT_TRANSITIONS,
    Payment,
    PaymentMethod,
    PaymentStats,
    PaymentStatus,
    ReconciliationOutcome,
    ReconciliationResult,
)

logger = logging.getLogger(__name__)

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"


class PaymentService:
    """
    Payment creation, provider reconciliation, retries and refunds.

    Example:
        >>> payment = await payments.create(buyer, order.id, PaymentMethod.CARD,
        ...                                 transaction_id="pi_123")
        >>> await payments.apply_provider_event("payment_intent.succeeded", "pi_123")
        >>> await payments.apply_provider_event("payment_intent.succeeded", "pi_123")
        ReconciliationResult(outcome=<ReconciliationOutcome.DUPLICATE: 'duplicate'>, ...)
    """

    def __init__(
        self,
        repository: DocumentRepository[Payment],
        orders: OrderService,
        bus: EventPublisher | None = None,
        max_retries: int = 3,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._orders = orders
        self._bus = bus
        self._max_retries = max_retries
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # Creation
    # =========================================================================

    async def create(
        self,
        principal: Principal,
        order_id: UUID,
        method: PaymentMethod,
        amount: Decimal | None = None,
        transaction_id: str | None = None,
    ) -> Payment:
        """
        Open a pending payment for an order.

        Only a pending order with no completed payment takes a new
        payment; a failed attempt is either retried or replaced by a new
        one. The amount is always the order's total; a supplied amount
        only serves as a cross-check.

        Raises:
            NotFoundError: Unknown order
            InvalidTransitionError: Order is no longer pending
            ConflictError: Order already has a completed payment
            AmountMismatchError: Supplied amount differs from the order total
            DuplicateError: ``transaction_id`` already used
        """
        order = await self._orders.get(order_id, principal)

        with self._tracer.span(
            "shopcore.payment.create",
            {ATTR_ORDER_ID: str(order_id), ATTR_ACTOR_ID: str(principal.id)},
        ) as span:
            if order.status != OrderStatus.PENDING:
                raise InvalidTransitionError("Order", order.id, order.status, "paid")
            settled = await self._repository.find_one(
                [Filter.eq("order_id", order.id), Filter.eq("status", PaymentStatus.COMPLETED)]
            )
            if settled is not None:
                logger.warning(
                    "Rejected payment for order %s: already paid by %s",
                    order_id,
                    settled.id,
                    extra={"order_id": str(order_id), "payment_id": str(settled.id)},
                )
                raise ConflictError(
                    f"Order {order.id} is already paid", payment_id=str(settled.id)
                )
            if amount is not None and amount != order.total_amount:
                logger.warning(
                    "Rejected payment for order %s: amount %s, order total %s",
                    order_id,
                    amount,
                    order.total_amount,
                    extra={"order_id": str(order_id)},
                )
                raise AmountMismatchError(order.total_amount, amount)

            try:
                payment = await self._repository.insert(
                    Payment(
                        order_id=order.id,
                        method=method,
                        amount=order.total_amount,
                        transaction_id=transaction_id,
                    )
                )
            except DuplicateDocumentError as e:
                raise DuplicateError("Payment", e.fields) from e

            if span is not None:
                span.set_attribute(ATTR_PAYMENT_ID, str(payment.id))

            await self._orders.attach_payment(order.id, payment.id)
            logger.info(
                "Created %s payment %s of %s for order %s",
                method,
                payment.id,
                payment.amount,
                order_id,
                extra={
                    "payment_id": str(payment.id),
                    "order_id": str(order_id),
                    "transaction_id": transaction_id,
                },
            )
            return payment

    # =========================================================================
    # Provider events
    # =========================================================================

    async def apply_provider_event(
        self,
        event_type: str,
        transaction_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ReconciliationResult:
        """
        Apply a payment provider event; safe to call repeatedly.

        ``payment_intent.succeeded`` completes a pending payment and
        confirms its order if the order is still pending. The order step
        runs on every delivery, so a redelivery finishes a confirmation
        interrupted after the payment write. ``payment_intent.payment_failed``
        fails a pending payment and leaves the order alone. Other event
        types and unknown transactions are ignored.

        Args:
            event_type: Provider event type
            transaction_id: Provider transaction the event refers to
            metadata: Optional ``amount`` cross-checked against the payment

        Raises:
            AmountMismatchError: ``metadata["amount"]`` differs from the
                payment amount; nothing is changed
            ValidationError: ``metadata["amount"]`` is not a number
        """
        with self._tracer.span(
            "shopcore.payment.apply_provider_event",
            {ATTR_PROVIDER_EVENT_TYPE: event_type, ATTR_TRANSACTION_ID: transaction_id},
        ):
            if event_type not in (EVENT_SUCCEEDED, EVENT_FAILED):
                logger.info(
                    "Ignoring provider event %s",
                    event_type,
                    extra={"event_type": event_type, "transaction_id": transaction_id},
                )
                return ReconciliationResult(outcome=ReconciliationOutcome.IGNORED)

            payment = await self._repository.find_one(
                [Filter.eq("transaction_id", transaction_id)]
            )
            if payment is None:
                logger.warning(
                    "Provider event %s for unknown transaction %s",
                    event_type,
                    transaction_id,
                    extra={"event_type": event_type, "transaction_id": transaction_id},
                )
                return ReconciliationResult(outcome=ReconciliationOutcome.UNKNOWN_TRANSACTION)

            self._check_event_amount(payment, metadata or {})

            if event_type == EVENT_SUCCEEDED:
                return await self._apply_succeeded(payment)
            return await self._apply_failed(payment)

    def _check_event_amount(self, payment: Payment, metadata: Mapping[str, Any]) -> None:
        raw = metadata.get("amount")
        if raw is None:
            return
        try:
            supplied = Decimal(str(raw))
        except InvalidOperation as e:
            raise ValidationError(f"Invalid amount in provider event: {raw!r}") from e
        if supplied != payment.amount:
            logger.warning(
                "Provider amount %s for payment %s does not match %s",
                supplied,
                payment.id,
                payment.amount,
                extra={"payment_id": str(payment.id), "transaction_id": payment.transaction_id},
            )
            raise AmountMismatchError(payment.amount, supplied)

    async def _apply_succeeded(self, payment: Payment) -> ReconciliationResult:
        completed = await self._repository.find_one_and_update(
            [Filter.eq("id", payment.id), Filter.eq("status", PaymentStatus.PENDING)],
            Update(changes={"status": PaymentStatus.COMPLETED, "paid_at": utcnow()}),
        )

        if completed is not None:
            outcome = ReconciliationOutcome.APPLIED
            logger.info(
                "Payment %s completed",
                payment.id,
                extra={"payment_id": str(payment.id), "order_id": str(payment.order_id)},
            )
            await self._publish(
                PaymentCompleted(
                    aggregate_id=completed.id,
                    order_id=completed.order_id,
                    amount=completed.amount,
                    transaction_id=completed.transaction_id,
                )
            )
        else:
            current = await self._repository.get(payment.id)
            if current is None:
                return ReconciliationResult(outcome=ReconciliationOutcome.UNKNOWN_TRANSACTION)
            if current.status == PaymentStatus.FAILED:
                logger.warning(
                    "Ignoring success for failed payment %s; retry it first",
                    payment.id,
                    extra={"payment_id": str(payment.id)},
                )
                return ReconciliationResult(
                    outcome=ReconciliationOutcome.IGNORED,
                    payment_id=current.id,
                    status=current.status,
                )
            outcome = ReconciliationOutcome.DUPLICATE
            completed = current
            logger.debug(
                "Duplicate success for payment %s (status %s)",
                payment.id,
                current.status,
                extra={"payment_id": str(payment.id)},
            )

        confirmed = False
        if completed.status == PaymentStatus.COMPLETED:
            confirmed = await self._orders.confirm_paid(completed.order_id) is not None

        return ReconciliationResult(
            outcome=outcome,
            payment_id=completed.id,
            status=completed.status,
            order_confirmed=confirmed,
        )

    async def _apply_failed(self, payment: Payment) -> ReconciliationResult:
        failed = await self._repository.find_one_and_update(
            [Filter.eq("id", payment.id), Filter.eq("status", PaymentStatus.PENDING)],
            Update(changes={"status": PaymentStatus.FAILED}),
        )
        if failed is not None:
            logger.info(
                "Payment %s failed",
                payment.id,
                extra={"payment_id": str(payment.id), "order_id": str(payment.order_id)},
            )
            await self._publish(
                PaymentFailed(
                    aggregate_id=failed.id,
                    order_id=failed.order_id,
                    transaction_id=failed.transaction_id,
                )
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.APPLIED,
                payment_id=failed.id,
                status=failed.status,
            )

        current = await self._repository.get(payment.id)
        if current is None:
            return ReconciliationResult(outcome=ReconciliationOutcome.UNKNOWN_TRANSACTION)
        if current.status == PaymentStatus.FAILED:
            outcome = ReconciliationOutcome.DUPLICATE
        else:
            outcome = ReconciliationOutcome.IGNORED
            logger.warning(
                "Ignoring late failure for payment %s in status %s",
                payment.id,
                current.status,
                extra={"payment_id": str(payment.id)},
            )
        return ReconciliationResult(outcome=outcome, payment_id=current.id, status=current.status)

    # =========================================================================
    # Explicit transitions
    # =========================================================================

    async def update_status(
        self, principal: Principal, payment_id: UUID, status: PaymentStatus
    ) -> Payment:
        """
        Move a payment along its lifecycle (admin only).

        PENDING is delegated to ``retry`` and REFUNDED to ``refund`` so
        their rules apply on this path too.

        Raises:
            InvalidTransitionError: ``status`` is not reachable from the current status
        """
        require_role(principal, Role.ADMIN)
        if status == PaymentStatus.PENDING:
            return await self.retry(principal, payment_id)
        if status == PaymentStatus.REFUNDED:
            return await self.refund(principal, payment_id)

        changes: dict[str, Any] = {"status": status}
        if status == PaymentStatus.COMPLETED:
            changes["paid_at"] = utcnow()

        with self._tracer.span(
            "shopcore.payment.update_status",
            {ATTR_PAYMENT_ID: str(payment_id), ATTR_PAYMENT_STATUS: str(status)},
        ):
            updated = await self._transition(payment_id, status, Update(changes=changes))
            logger.info(
                "Admin %s set payment %s to %s",
                principal.id,
                payment_id,
                status,
                extra={"payment_id": str(payment_id), "actor_id": str(principal.id)},
            )

            if status == PaymentStatus.COMPLETED:
                await self._publish(
                    PaymentCompleted(
                        aggregate_id=updated.id,
                        actor_id=principal.id,
                        order_id=updated.order_id,
                        amount=updated.amount,
                        transaction_id=updated.transaction_id,
                    )
                )
                await self._orders.confirm_paid(updated.order_id)
            else:
                await self._publish(
                    PaymentFailed(
                        aggregate_id=updated.id,
                        actor_id=principal.id,
                        order_id=updated.order_id,
                        transaction_id=updated.transaction_id,
                    )
                )
            return updated

    async def retry(
        self,
        principal: Principal,
        payment_id: UUID,
        new_transaction_id: str | None = None,
    ) -> Payment:
        """
        Reopen a failed payment.

        Raises:
            NotFoundError: Unknown payment
            InvalidTransitionError: Payment is not failed
            RetryLimitExceededError: ``retry_count`` reached the maximum; status stays failed
            DuplicateError: ``new_transaction_id`` already used
        """
        payment = await self.get(payment_id)
        await self._authorize(principal, payment)

        with self._tracer.span(
            "shopcore.payment.retry",
            {ATTR_PAYMENT_ID: str(payment_id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            changes: dict[str, Any] = {"status": PaymentStatus.PENDING}
            if new_transaction_id is not None:
                changes["transaction_id"] = new_transaction_id

            try:
                retried = await self._repository.find_one_and_update(
                    [
                        Filter.eq("id", payment_id),
                        Filter.eq("status", PaymentStatus.FAILED),
                        Filter.lt("retry_count", self._max_retries),
                    ],
                    Update(changes=changes, inc={"retry_count": 1}),
                )
            except DuplicateDocumentError as e:
                raise DuplicateError("Payment", e.fields) from e

            if retried is None:
                current = await self.get(payment_id)
                if current.status != PaymentStatus.FAILED:
                    raise InvalidTransitionError(
                        "Payment", payment_id, current.status, PaymentStatus.PENDING
                    )
                logger.warning(
                    "Payment %s reached the retry limit",
                    payment_id,
                    extra={"payment_id": str(payment_id), "retry_count": current.retry_count},
                )
                raise RetryLimitExceededError(payment_id, current.retry_count, self._max_retries)

            logger.info(
                "Retrying payment %s (attempt %d of %d)",
                payment_id,
                retried.retry_count,
                self._max_retries,
                extra={"payment_id": str(payment_id), "retry_count": retried.retry_count},
            )
            return retried

    async def refund(
        self,
        principal: Principal,
        payment_id: UUID,
        reason: str | None = None,
    ) -> Payment:
        """
        Refund a completed payment.

        Inventory is not touched; restocking is the return workflow's job.

        Raises:
            NotFoundError: Unknown payment
            ForbiddenError: Principal is neither the order's seller nor an admin
            InvalidTransitionError: Payment is not completed
        """
        payment = await self.get(payment_id)
        await self._authorize(principal, payment, allow_buyer=False)
        reason = reason.strip() if reason and reason.strip() else DEFAULT_REFUND_REASON

        with self._tracer.span(
            "shopcore.payment.refund",
            {ATTR_PAYMENT_ID: str(payment_id), ATTR_ACTOR_ID: str(principal.id)},
        ):
            refunded = await self._transition(
                payment_id,
                PaymentStatus.REFUNDED,
                Update(
                    changes={
                        "status": PaymentStatus.REFUNDED,
                        "refunded_at": utcnow(),
                        "refund_reason": reason,
                    }
                ),
            )
            logger.info(
                "Refunded payment %s: %s",
                payment_id,
                reason,
                extra={"payment_id": str(payment_id), "actor_id": str(principal.id)},
            )
            await self._publish(
                PaymentRefunded(
                    aggregate_id=refunded.id,
                    actor_id=principal.id,
                    order_id=refunded.order_id,
                    amount=refunded.amount,
                    reason=reason,
                )
            )
            return refunded

    async def _transition(
        self, payment_id: UUID, target: PaymentStatus, update: Update
    ) -> Payment:
        updated = await self._repository.find_one_and_update(
            [
                Filter.eq("id", payment_id),
                Filter.in_("status", list(PAYMENT_TRANSITIONS[target])),
            ],
            update,
        )
        if updated is None:
            current = await self.get(payment_id)
            raise InvalidTransitionError("Payment", payment_id, current.status, target)
        return updated

    async def _authorize(
        self, principal: Principal, payment: Payment, allow_buyer: bool = True
    ) -> None:
        if principal.is_admin:
            return
        order = await self._orders.get(payment.order_id)
        owners = [order.seller_id, order.buyer_id] if allow_buyer else [order.seller_id]
        require_owner_or_admin(principal, *owners)

    # =========================================================================
    # Queries and maintenance
    # =========================================================================

    async def get(self, payment_id: UUID) -> Payment:
        payment = await self._repository.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def get_by_transaction(self, transaction_id: str) -> Payment | None:
        return await self._repository.find_one([Filter.eq("transaction_id", transaction_id)])

    async def list_payments(
        self,
        status: PaymentStatus | None = None,
        method: PaymentMethod | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Page[Payment]:
        filters = []
        if status is not None:
            filters.append(Filter.eq("status", status))
        if method is not None:
            filters.append(Filter.eq("method", method))
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

    async def for_order(self, order_id: UUID) -> list[Payment]:
        """Every attempt for an order, oldest first."""
        return await self._repository.find(
            Query(filters=[Filter.eq("order_id", order_id)], order_by="created_at")
        )

    async def recent(self, limit: int = 5) -> list[Payment]:
        return await self._repository.find(
            Query(order_by="created_at", order_direction="desc", limit=limit)
        )

    async def stats(self) -> PaymentStats:
        payments = await self._repository.find()
        counts = {str(status): 0 for status in PaymentStatus}
        totals = {str(status): Decimal("0.00") for status in PaymentStatus}
        for payment in payments:
            counts[str(payment.status)] += 1
            totals[str(payment.status)] += payment.amount
        return PaymentStats(counts=counts, totals=totals)

    async def purge(self, principal: Principal, payment_id: UUID) -> None:
        """Hard delete a payment (admin only)."""
        require_role(principal, Role.ADMIN)
        await self.get(payment_id)
        await self._repository.delete(payment_id)
        logger.info(
            "Purged payment %s",
            payment_id,
            extra={"payment_id": str(payment_id), "actor_id": str(principal.id)},
        )

    async def _publish(self, *events: ShopEvent) -> None:
        if self._bus is not None and events:
            await self._bus.publish(list(events))


__all__ = ["PaymentService", "EVENT_SUCCEEDED", "EVENT_FAILED"]
