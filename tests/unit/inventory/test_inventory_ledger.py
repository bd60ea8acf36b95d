"""
Unit tests for InventoryLedger.

Tests cover:
- Signed adjustments that never go below zero
- Concurrent adjustments against the same row
- Bulk adjustments with per-entry outcomes
- Ownership checks and maintenance operations
"""

from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from shopcore.auth import Principal, Role
from shopcore.exceptions import (
    DuplicateError,
    ForbiddenError,
    NegativeStockError,
    NotFoundError,
    ValidationError,
)
from shopcore.inventory import StockAdjustment


class TestAdjust:
    @pytest.mark.asyncio
    async def test_decrement_then_reject_overdraw(self, services, seller, stock_factory):
        variant_id = uuid4()
        await stock_factory(variant_id, 5)

        row = await services.inventory.adjust(variant_id, seller.id, -3)
        assert row.quantity == 2

        with pytest.raises(NegativeStockError) as exc_info:
            await services.inventory.adjust(variant_id, seller.id, -3)

        assert exc_info.value.quantity == 2
        current = await services.inventory.find(variant_id, seller.id)
        assert current.quantity == 2

    @pytest.mark.asyncio
    async def test_drain_to_zero(self, services, seller, stock_factory):
        variant_id = uuid4()
        await stock_factory(variant_id, 4)

        row = await services.inventory.adjust(variant_id, seller.id, -4)

        assert row.quantity == 0

    @pytest.mark.asyncio
    async def test_increment(self, services, seller, stock_factory):
        variant_id = uuid4()
        created = await stock_factory(variant_id, 1)

        row = await services.inventory.adjust(variant_id, seller.id, 9)

        assert row.quantity == 10
        assert row.last_updated >= created.last_updated

    @pytest.mark.asyncio
    async def test_unknown_pair(self, services, seller):
        with pytest.raises(NotFoundError):
            await services.inventory.adjust(uuid4(), seller.id, 1)

    @pytest.mark.asyncio
    async def test_adjust_by_id(self, services, seller, stock_factory):
        created = await stock_factory(uuid4(), 3)

        row = await services.inventory.adjust_by_id(created.id, -1, seller)

        assert row.quantity == 2

    @pytest.mark.asyncio
    async def test_other_seller_cannot_adjust(self, services, stock_factory):
        created = await stock_factory(uuid4(), 3)
        stranger = Principal(uuid4(), Role.SELLER)

        with pytest.raises(ForbiddenError):
            await services.inventory.adjust_by_id(created.id, -1, stranger)

    @pytest.mark.asyncio
    async def test_concurrent_decrements_never_oversell(self, services, seller, stock_factory):
        variant_id = uuid4()
        await stock_factory(variant_id, 5)

        results = await asyncio.gather(
            *(services.inventory.adjust(variant_id, seller.id, -1) for _ in range(8)),
            return_exceptions=True,
        )

        applied = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(applied) == 5
        assert len(rejected) == 3
        assert all(isinstance(r, NegativeStockError) for r in rejected)
        current = await services.inventory.find(variant_id, seller.id)
        assert current.quantity == 0

    @pytest.mark.asyncio
    async def test_concurrent_mixed_deltas_sum(self, services, seller, stock_factory):
        variant_id = uuid4()
        await stock_factory(variant_id, 10)

        await asyncio.gather(
            *(services.inventory.adjust(variant_id, seller.id, d) for d in (-2, 3, -4, 1, -1))
        )

        current = await services.inventory.find(variant_id, seller.id)
        assert current.quantity == 7


class TestBulkAdjust:
    @pytest.mark.asyncio
    async def test_reports_each_entry(self, services, seller, stock_factory):
        first = await stock_factory(uuid4(), 5)
        second_variant = uuid4()
        await stock_factory(second_variant, 1)

        result = await services.inventory.bulk_adjust(
            [
                StockAdjustment(inventory_id=first.id, delta=-2),
                StockAdjustment(variant_id=second_variant, seller_id=seller.id, delta=-5),
                StockAdjustment(inventory_id=uuid4(), delta=1),
                StockAdjustment(variant_id=second_variant, seller_id=seller.id, delta=4),
            ],
            seller,
        )

        assert [o.ok for o in result.outcomes] == [True, False, False, True]
        assert result.outcomes[1].error == "negative_stock"
        assert result.outcomes[2].error == "not_found"
        assert (await services.inventory.get(first.id)).quantity == 3
        assert (await services.inventory.find(second_variant, seller.id)).quantity == 5

    def test_entry_requires_target(self) -> None:
        with pytest.raises(ValueError):
            StockAdjustment(variant_id=uuid4(), delta=1)


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_create_rejects_duplicate_pair(self, services, seller, stock_factory):
        variant_id = uuid4()
        await stock_factory(variant_id, 1)

        with pytest.raises(DuplicateError):
            await stock_factory(variant_id, 2)

    @pytest.mark.asyncio
    async def test_create_rejects_negative(self, services, seller):
        with pytest.raises(ValidationError):
            await services.inventory.create(seller, uuid4(), seller.id, -1)

    @pytest.mark.asyncio
    async def test_buyer_cannot_create(self, services, buyer):
        with pytest.raises(ForbiddenError):
            await services.inventory.create(buyer, uuid4(), buyer.id, 1)

    @pytest.mark.asyncio
    async def test_low_stock_and_stats(self, services, stock_factory):
        low = await stock_factory(uuid4(), 2)
        empty = await stock_factory(uuid4(), 0)
        await stock_factory(uuid4(), 50)

        rows = await services.inventory.low_stock()
        stats = await services.inventory.stats()

        assert [r.id for r in rows] == [empty.id, low.id]
        assert stats.total_items == 3
        assert stats.total_quantity == 52

    @pytest.mark.asyncio
    async def test_listing_by_seller_and_variant(self, services, seller, stock_factory):
        variant_id = uuid4()
        row = await stock_factory(variant_id, 1)

        assert [r.id for r in await services.inventory.for_seller(seller.id)] == [row.id]
        assert [r.id for r in await services.inventory.for_variant(variant_id)] == [row.id]
        page = await services.inventory.list_inventories()
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_delete(self, services, seller, stock_factory):
        row = await stock_factory(uuid4(), 1)

        await services.inventory.delete(seller, row.id)

        with pytest.raises(NotFoundError):
            await services.inventory.get(row.id)

    @pytest.mark.asyncio
    async def test_clear_requires_filter(self, services, admin):
        with pytest.raises(ValidationError):
            await services.inventory.clear(admin)

    @pytest.mark.asyncio
    async def test_clear_by_seller(self, services, admin, seller, stock_factory):
        await stock_factory(uuid4(), 1)
        await stock_factory(uuid4(), 2)

        deleted = await services.inventory.clear(admin, seller_id=seller.id)

        assert deleted == 2
        assert await services.inventory.for_seller(seller.id) == []
