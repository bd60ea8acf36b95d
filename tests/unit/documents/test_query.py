"""Tests for Filter, Query and Update descriptions."""

from uuid import UUID

import pytest

from shopcore.documents import Filter, Query, Update


class TestFilter:
    def test_factories(self) -> None:
        assert Filter.eq("status", "pending") == Filter("status", "eq", "pending")
        assert Filter.in_("status", ("a", "b")).value == ["a", "b"]
        assert Filter.is_null("deleted_at").value is True
        assert Filter.is_null("deleted_at", null=False).value is False

    @pytest.mark.parametrize(
        ("filter_", "expected"),
        [
            (Filter.eq("status", "pending"), "status = 'pending'"),
            (Filter.gte("quantity", 3), "quantity >= 3"),
            (Filter.not_in("code", ["A"]), "code NOT IN ['A']"),
            (Filter.contains("used_by", "u1"), "used_by CONTAINS 'u1'"),
            (Filter.is_null("payment_id"), "payment_id IS NULL"),
            (Filter.is_null("payment_id", False), "payment_id IS NOT NULL"),
        ],
    )
    def test_str(self, filter_: Filter, expected: str) -> None:
        assert str(filter_) == expected

    def test_filters_are_immutable(self) -> None:
        filter_ = Filter.eq("status", "pending")

        with pytest.raises(AttributeError):
            filter_.value = "confirmed"  # type: ignore[misc]


class TestQuery:
    def test_defaults(self) -> None:
        query = Query()

        assert query.filters == []
        assert query.limit is None
        assert query.offset == 0
        assert query.include_deleted is False
        assert str(query) == "(all records)"

    def test_builders_return_new_queries(self) -> None:
        base = Query(filters=[Filter.eq("status", "pending")])

        filtered = base.with_filter(Filter.gt("total_amount", 100))
        ordered = filtered.with_order("created_at", "desc")
        paged = ordered.with_pagination(limit=20, offset=40)

        assert len(base.filters) == 1
        assert len(filtered.filters) == 2
        assert ordered.order_by == "created_at"
        assert paged.order_direction == "desc"
        assert (paged.limit, paged.offset) == (20, 40)

    def test_str(self) -> None:
        query = Query(
            filters=[Filter.eq("buyer_id", UUID(int=1))],
            order_by="created_at",
            order_direction="desc",
            limit=10,
            offset=10,
            include_deleted=True,
        )

        assert str(query) == (
            "WHERE buyer_id = UUID('00000000-0000-0000-0000-000000000001') "
            "ORDER BY created_at DESC LIMIT 10 OFFSET 10 (including deleted)"
        )


class TestUpdate:
    def test_empty(self) -> None:
        assert Update().is_empty()
        assert str(Update()) == "(no changes)"

    def test_str(self) -> None:
        update = Update(
            changes={"status": "completed"},
            inc={"retry_count": 1},
            add_to_set={"used_by": "u1"},
            pull={"tags": "old"},
        )

        assert not update.is_empty()
        assert str(update) == (
            "SET status='completed' INC retry_count+=1 ADD used_by<-'u1' PULL tags-'old'"
        )
