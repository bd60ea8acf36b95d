"""
Inventory ledger.

Holds per-(variant, seller) stock. Every quantity change is a signed
delta applied by one conditional update that refuses to go below zero,
so concurrent adjustments can never oversell.
"""

from __future__ import annotations

import logging
from uuid import UUID

from shopcore.auth import Principal, Role, require_owner_or_admin, require_role
from shopcore.bulk import BulkResult, ItemOutcome
from shopcore.documents import (
    DocumentRepository,
    DuplicateDocumentError,
    Filter,
    Query,
    Update,
    utcnow,
)
from shopcore.exceptions import (
    DuplicateError,
    NegativeStockError,
    NotFoundError,
    ShopError,
    ValidationError,
)
from shopcore.inventory.models import Inventory, InventoryStats, StockAdjustment
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_BATCH_SIZE,
    ATTR_INVENTORY_ID,
    ATTR_QUANTITY_DELTA,
    ATTR_SELLER_ID,
    ATTR_VARIANT_ID,
)
from shopcore.pagination import Page, paginate

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Stock ledger over an Inventory repository.

    Example:
        >>> ledger = InventoryLedger(InMemoryDocumentRepository(Inventory))
        >>> await ledger.create(seller, variant_id, seller.id, quantity=5)
        >>> await ledger.adjust(variant_id, seller.id, -3)  # quantity 2
        >>> await ledger.adjust(variant_id, seller.id, -3)  # NegativeStockError
    """

    def __init__(
        self,
        repository: DocumentRepository[Inventory],
        low_stock_threshold: int = 5,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._low_stock_threshold = low_stock_threshold
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # Adjustments
    # =========================================================================

    async def adjust(
        self,
        variant_id: UUID,
        seller_id: UUID,
        delta: int,
        principal: Principal | None = None,
    ) -> Inventory:
        """
        Apply a signed quantity change to a (variant, seller) row.

        Args:
            variant_id: Product variant
            seller_id: Seller holding the stock
            delta: Signed change; negative values remove stock
            principal: Acting user, or None for system-initiated changes
                (order confirmation, cancellation, returns)

        Returns:
            The updated row

        Raises:
            NotFoundError: If no row exists for the pair
            NegativeStockError: If the result would be negative; quantity unchanged
            ForbiddenError: If the principal does not own the stock
        """
        if principal is not None:
            require_owner_or_admin(principal, seller_id)

        with self._tracer.span(
            "shopcore.inventory.adjust",
            {
                ATTR_VARIANT_ID: str(variant_id),
                ATTR_SELLER_ID: str(seller_id),
                ATTR_QUANTITY_DELTA: delta,
            },
        ):
            return await self._apply_delta(
                [Filter.eq("variant_id", variant_id), Filter.eq("seller_id", seller_id)],
                delta,
                missing=f"variant {variant_id} / seller {seller_id}",
            )

    async def adjust_by_id(
        self,
        inventory_id: UUID,
        delta: int,
        principal: Principal | None = None,
    ) -> Inventory:
        """
        Apply a signed quantity change to a row addressed by its ID.

        Raises:
            NotFoundError: If the row does not exist
            NegativeStockError: If the result would be negative; quantity unchanged
            ForbiddenError: If the principal does not own the stock
        """
        if principal is not None:
            current = await self.get(inventory_id)
            require_owner_or_admin(principal, current.seller_id)

        with self._tracer.span(
            "shopcore.inventory.adjust_by_id",
            {ATTR_INVENTORY_ID: str(inventory_id), ATTR_QUANTITY_DELTA: delta},
        ):
            return await self._apply_delta(
                [Filter.eq("id", inventory_id)], delta, missing=str(inventory_id)
            )

    async def bulk_adjust(
        self,
        entries: list[StockAdjustment],
        principal: Principal | None = None,
    ) -> BulkResult:
        """
        Apply independent adjustments and report each entry's outcome.

        Entries are applied in order, each atomically on its own; a failing
        entry does not roll back or stop the others.
        """
        with self._tracer.span(
            "shopcore.inventory.bulk_adjust",
            {ATTR_BATCH_SIZE: len(entries)},
        ):
            result = BulkResult()
            for index, entry in enumerate(entries):
                try:
                    if entry.inventory_id is not None:
                        row = await self.adjust_by_id(entry.inventory_id, entry.delta, principal)
                    else:
                        assert entry.variant_id is not None and entry.seller_id is not None
                        row = await self.adjust(
                            entry.variant_id, entry.seller_id, entry.delta, principal
                        )
                    result.outcomes.append(ItemOutcome.success(index, row.id))
                except ShopError as e:
                    result.outcomes.append(ItemOutcome.failure(index, e, entry.inventory_id))

            if result.failed:
                logger.warning(
                    "Bulk adjustment applied %d of %d entries",
                    result.succeeded,
                    len(entries),
                    extra={"succeeded": result.succeeded, "failed": len(result.failed)},
                )
            return result

    async def _apply_delta(self, target: list[Filter], delta: int, missing: str) -> Inventory:
        updated = await self._repository.find_one_and_update(
            [*target, Filter.gte("quantity", -delta)],
            Update(inc={"quantity": delta}, changes={"last_updated": utcnow()}),
        )
        if updated is not None:
            logger.info(
                "Adjusted stock of variant %s (seller %s) by %d to %d",
                updated.variant_id,
                updated.seller_id,
                delta,
                updated.quantity,
                extra={
                    "inventory_id": str(updated.id),
                    "delta": delta,
                    "quantity": updated.quantity,
                },
            )
            return updated

        current = await self._repository.find_one(target)
        if current is None:
            raise NotFoundError("Inventory", missing)

        logger.warning(
            "Rejected adjustment of %d on variant %s (seller %s): only %d in stock",
            delta,
            current.variant_id,
            current.seller_id,
            current.quantity,
            extra={"inventory_id": str(current.id), "delta": delta, "quantity": current.quantity},
        )
        raise NegativeStockError(current.variant_id, current.seller_id, delta, current.quantity)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def create(
        self,
        principal: Principal,
        variant_id: UUID,
        seller_id: UUID,
        quantity: int = 0,
    ) -> Inventory:
        """
        Create the stock row for a (variant, seller) pair.

        Raises:
            ValidationError: If quantity is negative
            DuplicateError: If the pair already has a row
        """
        require_role(principal, Role.SELLER, Role.ADMIN)
        require_owner_or_admin(principal, seller_id)
        if quantity < 0:
            raise ValidationError(f"quantity must be >= 0, got {quantity}")

        with self._tracer.span(
            "shopcore.inventory.create",
            {
                ATTR_VARIANT_ID: str(variant_id),
                ATTR_SELLER_ID: str(seller_id),
                ATTR_ACTOR_ID: str(principal.id),
            },
        ):
            try:
                inventory = await self._repository.insert(
                    Inventory(variant_id=variant_id, seller_id=seller_id, quantity=quantity)
                )
            except DuplicateDocumentError as e:
                raise DuplicateError("Inventory", e.fields) from e

            logger.info(
                "Created inventory %s for variant %s (seller %s) with %d units",
                inventory.id,
                variant_id,
                seller_id,
                quantity,
                extra={"inventory_id": str(inventory.id)},
            )
            return inventory

    async def get(self, inventory_id: UUID) -> Inventory:
        inventory = await self._repository.get(inventory_id)
        if inventory is None:
            raise NotFoundError("Inventory", inventory_id)
        return inventory

    async def find(self, variant_id: UUID, seller_id: UUID) -> Inventory | None:
        return await self._repository.find_one(
            [Filter.eq("variant_id", variant_id), Filter.eq("seller_id", seller_id)]
        )

    async def list_inventories(self, limit: int = 10, offset: int = 0) -> Page[Inventory]:
        """Rows most recently updated first."""
        return await paginate(
            self._repository,
            Query(order_by="last_updated", order_direction="desc", limit=limit, offset=offset),
        )

    async def for_seller(self, seller_id: UUID) -> list[Inventory]:
        return await self._repository.find(
            Query(
                filters=[Filter.eq("seller_id", seller_id)],
                order_by="last_updated",
                order_direction="desc",
            )
        )

    async def for_variant(self, variant_id: UUID) -> list[Inventory]:
        return await self._repository.find(
            Query(
                filters=[Filter.eq("variant_id", variant_id)],
                order_by="last_updated",
                order_direction="desc",
            )
        )

    async def low_stock(self, threshold: int | None = None) -> list[Inventory]:
        """Rows at or below the threshold, lowest quantity first."""
        if threshold is None:
            threshold = self._low_stock_threshold
        return await self._repository.find(
            Query(filters=[Filter.lte("quantity", threshold)], order_by="quantity")
        )

    async def stats(self) -> InventoryStats:
        rows = await self._repository.find()
        return InventoryStats(
            total_items=len(rows),
            total_quantity=sum(row.quantity for row in rows),
        )

    async def delete(self, principal: Principal, inventory_id: UUID) -> None:
        """
        Hard delete a row.

        Raises:
            NotFoundError: If the row does not exist
        """
        inventory = await self.get(inventory_id)
        require_owner_or_admin(principal, inventory.seller_id)
        await self._repository.delete(inventory_id)
        logger.info(
            "Deleted inventory %s",
            inventory_id,
            extra={"inventory_id": str(inventory_id), "actor_id": str(principal.id)},
        )

    async def clear(
        self,
        principal: Principal,
        seller_id: UUID | None = None,
        variant_id: UUID | None = None,
    ) -> int:
        """
        Delete every row of a seller and/or variant.

        Returns:
            Number of rows deleted

        Raises:
            ValidationError: If neither seller_id nor variant_id is given
        """
        require_role(principal, Role.ADMIN)
        if seller_id is None and variant_id is None:
            raise ValidationError("Provide seller_id or variant_id to clear inventory")

        filters = []
        if seller_id is not None:
            filters.append(Filter.eq("seller_id", seller_id))
        if variant_id is not None:
            filters.append(Filter.eq("variant_id", variant_id))

        deleted = await self._repository.delete_many(filters)
        logger.info(
            "Cleared %d inventory rows",
            deleted,
            extra={"seller_id": str(seller_id), "variant_id": str(variant_id)},
        )
        return deleted


__all__ = ["InventoryLedger"]
