"""
Integration tests for SQLiteDocumentRepository.

Runs the repository against an in-memory SQLite database and checks the
behaviors the services rely on: unique constraints, conditional updates
on JSON list columns, numeric Decimal comparison and soft delete.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from pydantic import BaseModel, Field

from shopcore.documents import (
    Document,
    DocumentNotFoundError,
    DuplicateDocumentError,
    Filter,
    OptimisticLockError,
    Query,
    SQLiteDocumentRepository,
    Update,
)

pytestmark = pytest.mark.sqlite


class Label(BaseModel):
    text: str
    color: str = "red"


class Gadget(Document):
    __unique__ = (("serial",),)
    __indexes__ = [{"fields": ["owner_id"]}]

    name: str
    serial: str | None = None
    price: Decimal = Decimal("0.00")
    stock: int = Field(default=0, ge=0)
    enabled: bool = True
    owner_id: UUID | None = None
    holders: list[UUID] = Field(default_factory=list)
    label: Label | None = None
    released_at: datetime | None = None


@pytest_asyncio.fixture
async def repo(sqlite_connection) -> SQLiteDocumentRepository[Gadget]:
    repository = SQLiteDocumentRepository(sqlite_connection, Gadget, enable_tracing=False)
    await repository.create_schema()
    return repository


class TestSchema:
    @pytest.mark.asyncio
    async def test_create_schema_is_idempotent(self, repo):
        await repo.create_schema()

        assert await repo.count() == 0

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, repo):
        with pytest.raises(ValueError):
            await repo.find(Query(filters=[Filter.eq("colour", "red")]))


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_all_field_types(self, repo):
        released = datetime(2030, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)
        gadget = Gadget(
            name="probe",
            serial="P-1",
            price=Decimal("19.99"),
            stock=4,
            enabled=False,
            owner_id=uuid4(),
            holders=[uuid4()],
            label=Label(text="fragile"),
            released_at=released,
        )
        await repo.insert(gadget)

        loaded = await repo.get(gadget.id)

        assert loaded.price == Decimal("19.99")
        assert loaded.enabled is False
        assert loaded.owner_id == gadget.owner_id
        assert loaded.holders == gadget.holders
        assert loaded.label == Label(text="fragile")
        assert loaded.released_at == released
        assert loaded.version == 1

    @pytest.mark.asyncio
    async def test_get_many_and_exists(self, repo):
        first = await repo.insert(Gadget(name="a"))
        second = await repo.insert(Gadget(name="b"))

        found = await repo.get_many([first.id, second.id, uuid4()])

        assert {g.id for g in found} == {first.id, second.id}
        assert await repo.exists(first.id)
        assert not await repo.exists(uuid4())


class TestUnique:
    @pytest.mark.asyncio
    async def test_duplicate_serial(self, repo):
        await repo.insert(Gadget(name="a", serial="S-1"))

        with pytest.raises(DuplicateDocumentError) as exc_info:
            await repo.insert(Gadget(name="b", serial="S-1"))

        assert exc_info.value.fields == ("serial",)

    @pytest.mark.asyncio
    async def test_duplicate_id(self, repo):
        gadget = await repo.insert(Gadget(name="a"))

        with pytest.raises(DuplicateDocumentError) as exc_info:
            await repo.insert(gadget)

        assert exc_info.value.fields == ("id",)

    @pytest.mark.asyncio
    async def test_null_serials_never_collide(self, repo):
        await repo.insert(Gadget(name="a"))
        await repo.insert(Gadget(name="b"))

        assert await repo.count() == 2

    @pytest.mark.asyncio
    async def test_failed_write_leaves_connection_usable(self, repo):
        await repo.insert(Gadget(name="a", serial="S-1"))
        other = await repo.insert(Gadget(name="b", serial="S-2"))

        with pytest.raises(DuplicateDocumentError):
            await repo.find_one_and_update(
                [Filter.eq("id", other.id)], Update(changes={"serial": "S-1"})
            )

        assert (await repo.get(other.id)).serial == "S-2"
        await repo.insert(Gadget(name="c", serial="S-3"))
        assert await repo.count() == 3


class TestQueries:
    @pytest_asyncio.fixture
    async def priced(self, repo):
        owner = uuid4()
        # Text ordering would put "100.00" before "9.50"
        for name, price in [("cheap", "9.50"), ("mid", "25.00"), ("dear", "100.00")]:
            await repo.insert(Gadget(name=name, price=Decimal(price), owner_id=owner))
        await repo.insert(Gadget(name="free"))
        return owner

    @pytest.mark.asyncio
    async def test_decimal_ordering_is_numeric(self, repo, priced):
        found = await repo.find(
            Query(filters=[Filter.is_null("owner_id", False)], order_by="price")
        )

        assert [g.name for g in found] == ["cheap", "mid", "dear"]

    @pytest.mark.asyncio
    async def test_decimal_comparison_is_numeric(self, repo, priced):
        found = await repo.find(Query(filters=[Filter.gte("price", Decimal("10"))]))

        assert sorted(g.name for g in found) == ["dear", "mid"]

    @pytest.mark.asyncio
    async def test_nulls_sort_last(self, repo, priced):
        found = await repo.find(Query(order_by="owner_id", order_direction="desc"))

        assert found[-1].name == "free"

    @pytest.mark.asyncio
    async def test_pagination(self, repo, priced):
        query = Query(order_by="price", order_direction="desc")

        assert [g.name for g in await repo.find(query.with_pagination(2, 1))] == ["mid", "cheap"]
        assert [g.name for g in await repo.find(Query(order_by="price", offset=3))] == ["dear"]

    @pytest.mark.asyncio
    async def test_in_and_bool_filters(self, repo, priced):
        await repo.find_one_and_update(
            [Filter.eq("name", "mid")], Update(changes={"enabled": False})
        )

        enabled = await repo.find(
            Query(filters=[Filter.in_("name", ["mid", "dear"]), Filter.eq("enabled", True)])
        )

        assert [g.name for g in enabled] == ["dear"]

    @pytest.mark.asyncio
    async def test_datetime_comparison(self, repo):
        now = datetime.now(UTC)
        await repo.insert(Gadget(name="old", released_at=now - timedelta(days=2)))
        await repo.insert(Gadget(name="new", released_at=now + timedelta(days=2)))

        found = await repo.find(Query(filters=[Filter.lt("released_at", now)]))

        assert [g.name for g in found] == ["old"]


class TestConditionalUpdate:
    @pytest.mark.asyncio
    async def test_inc_guarded_by_filter(self, repo):
        gadget = await repo.insert(Gadget(name="a", stock=2))
        target = [Filter.eq("id", gadget.id), Filter.gte("stock", 3)]

        assert await repo.find_one_and_update(target, Update(inc={"stock": -3})) is None

        updated = await repo.find_one_and_update(
            [Filter.eq("id", gadget.id), Filter.gte("stock", 2)], Update(inc={"stock": -2})
        )
        assert updated.stock == 0
        assert updated.version == 2

    @pytest.mark.asyncio
    async def test_add_to_set_and_contains(self, repo):
        gadget = await repo.insert(Gadget(name="a"))
        user = uuid4()
        claim = [Filter.eq("id", gadget.id), Filter.not_contains("holders", user)]

        first = await repo.find_one_and_update(claim, Update(add_to_set={"holders": user}))
        second = await repo.find_one_and_update(claim, Update(add_to_set={"holders": user}))

        assert first.holders == [user]
        assert second is None
        assert await repo.find_one([Filter.contains("holders", user)]) is not None

    @pytest.mark.asyncio
    async def test_add_to_set_is_idempotent_without_guard(self, repo):
        user = uuid4()
        gadget = await repo.insert(Gadget(name="a", holders=[user]))

        updated = await repo.find_one_and_update(
            [Filter.eq("id", gadget.id)], Update(add_to_set={"holders": user})
        )

        assert updated.holders == [user]

    @pytest.mark.asyncio
    async def test_pull(self, repo):
        keep, drop = uuid4(), uuid4()
        gadget = await repo.insert(Gadget(name="a", holders=[keep, drop]))

        updated = await repo.find_one_and_update(
            [Filter.eq("id", gadget.id)], Update(pull={"holders": drop})
        )
        emptied = await repo.find_one_and_update(
            [Filter.eq("id", gadget.id)], Update(pull={"holders": keep})
        )

        assert updated.holders == [keep]
        assert emptied.holders == []

    @pytest.mark.asyncio
    async def test_nested_model_change(self, repo):
        gadget = await repo.insert(Gadget(name="a"))

        updated = await repo.find_one_and_update(
            [Filter.eq("id", gadget.id)], Update(changes={"label": Label(text="new", color="blue")})
        )

        assert updated.label == Label(text="new", color="blue")

    @pytest.mark.asyncio
    async def test_concurrent_claims(self, repo):
        gadget = await repo.insert(Gadget(name="a"))
        user = uuid4()
        claim = [Filter.eq("id", gadget.id), Filter.not_contains("holders", user)]

        results = await asyncio.gather(
            *(
                repo.find_one_and_update(claim, Update(add_to_set={"holders": user}))
                for _ in range(8)
            )
        )

        assert sum(1 for r in results if r is not None) == 1

    @pytest.mark.asyncio
    async def test_update_many(self, repo):
        owner = uuid4()
        await repo.insert(Gadget(name="a", owner_id=owner))
        await repo.insert(Gadget(name="b", owner_id=owner))
        await repo.insert(Gadget(name="c"))

        assert await repo.update_many([Filter.eq("owner_id", owner)], Update(inc={"stock": 1})) == 2
        assert await repo.count(Query(filters=[Filter.eq("stock", 1)])) == 2


class TestVersionAndDeletion:
    @pytest.mark.asyncio
    async def test_save_with_version_check(self, repo):
        gadget = await repo.insert(Gadget(name="a"))
        gadget.name = "b"

        saved = await repo.save_with_version_check(gadget)
        assert saved.version == 2

        gadget.name = "stale"
        with pytest.raises(OptimisticLockError):
            await repo.save_with_version_check(gadget)

        with pytest.raises(DocumentNotFoundError):
            await repo.save_with_version_check(Gadget(name="ghost"))

    @pytest.mark.asyncio
    async def test_soft_delete_and_restore(self, repo):
        gadget = await repo.insert(Gadget(name="a"))

        assert await repo.soft_delete(gadget.id)
        assert not await repo.soft_delete(gadget.id)
        assert await repo.get(gadget.id) is None
        assert (await repo.get_deleted(gadget.id)).deleted_at is not None
        assert await repo.count(Query(include_deleted=True)) == 1

        assert await repo.restore(gadget.id)
        assert (await repo.get(gadget.id)).deleted_at is None

    @pytest.mark.asyncio
    async def test_delete_many_and_truncate(self, repo):
        owner = uuid4()
        await repo.insert(Gadget(name="a", owner_id=owner))
        await repo.insert(Gadget(name="b"))

        assert await repo.delete_many([Filter.eq("owner_id", owner)]) == 1
        assert await repo.truncate() == 1
        assert await repo.count() == 0
