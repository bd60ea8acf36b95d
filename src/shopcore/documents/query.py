"""
Query and update descriptions for document repositories.

Provides a database-agnostic way to express filters, ordering,
pagination and conditional updates. Repository implementations translate
them to their backend (Python predicates, SQL).
"""

from dataclasses import dataclass, field
from typing import Any, Literal

Operator = Literal[
    "eq",
    "ne",
    "gt",
    "gte",
    "lt",
    "lte",
    "in",
    "not_in",
    "contains",
    "not_contains",
    "is_null",
]


@dataclass(frozen=True)
class Filter:
    """
    A single filter condition.

    Filters are immutable and represent a condition like "status = 'pending'"
    or "quantity >= 3". Use the factory class methods for construction.

    Supported Operators:
        - eq, ne, gt, gte, lt, lte: scalar comparisons
        - in, not_in: membership of the field value in a list
        - contains, not_contains: membership of a value in a list field
        - is_null: field IS NULL (value True) or IS NOT NULL (value False)

    Example:
        >>> Filter.eq("status", "pending")
        >>> Filter.gte("quantity", 3)
        >>> Filter.not_contains("used_by", user_id)
    """

    field: str
    operator: Operator
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> "Filter":
        """Equality filter (field = value)."""
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def ne(cls, field: str, value: Any) -> "Filter":
        """Not-equal filter (field != value)."""
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def gt(cls, field: str, value: Any) -> "Filter":
        """Greater-than filter (field > value)."""
        return cls(field=field, operator="gt", value=value)

    @classmethod
    def gte(cls, field: str, value: Any) -> "Filter":
        """Greater-than-or-equal filter (field >= value)."""
        return cls(field=field, operator="gte", value=value)

    @classmethod
    def lt(cls, field: str, value: Any) -> "Filter":
        """Less-than filter (field < value)."""
        return cls(field=field, operator="lt", value=value)

    @classmethod
    def lte(cls, field: str, value: Any) -> "Filter":
        """Less-than-or-equal filter (field <= value)."""
        return cls(field=field, operator="lte", value=value)

    @classmethod
    def in_(cls, field: str, values: list[Any]) -> "Filter":
        """
        "In list" filter (field IN (values)).

        Example:
            >>> Filter.in_("status", ["pending", "confirmed"])
        """
        return cls(field=field, operator="in", value=list(values))

    @classmethod
    def not_in(cls, field: str, values: list[Any]) -> "Filter":
        """"Not in list" filter (field NOT IN (values))."""
        return cls(field=field, operator="not_in", value=list(values))

    @classmethod
    def contains(cls, field: str, value: Any) -> "Filter":
        """
        List membership filter: the list stored in ``field`` contains ``value``.

        Example:
            >>> Filter.contains("used_by", user_id)
        """
        return cls(field=field, operator="contains", value=value)

    @classmethod
    def not_contains(cls, field: str, value: Any) -> "Filter":
        """The list stored in ``field`` does not contain ``value``."""
        return cls(field=field, operator="not_contains", value=value)

    @classmethod
    def is_null(cls, field: str, null: bool = True) -> "Filter":
        """Field IS NULL (or IS NOT NULL with ``null=False``)."""
        return cls(field=field, operator="is_null", value=null)

    def __str__(self) -> str:
        op_symbols = {
            "eq": "=",
            "ne": "!=",
            "gt": ">",
            "gte": ">=",
            "lt": "<",
            "lte": "<=",
            "in": "IN",
            "not_in": "NOT IN",
            "contains": "CONTAINS",
            "not_contains": "NOT CONTAINS",
        }
        if self.operator == "is_null":
            return f"{self.field} IS {'NULL' if self.value else 'NOT NULL'}"
        return f"{self.field} {op_symbols[self.operator]} {self.value!r}"


@dataclass
class Query:
    """
    Query description for document repositories.

    All filters are combined with AND logic.

    Attributes:
        filters: List of Filter conditions
        order_by: Field name to order results by
        order_direction: Sort direction ('asc' or 'desc')
        limit: Maximum number of records to return
        offset: Number of records to skip (for pagination)
        include_deleted: Whether to include soft-deleted records

    Example:
        >>> query = Query(
        ...     filters=[Filter.eq("status", "pending")],
        ...     order_by="created_at",
        ...     order_direction="desc",
        ...     limit=20,
        ... )
    """

    filters: list[Filter] = field(default_factory=list)
    order_by: str | None = None
    order_direction: Literal["asc", "desc"] = "asc"
    limit: int | None = None
    offset: int = 0
    include_deleted: bool = False

    def with_filter(self, filter_: Filter) -> "Query":
        """New Query with an additional filter."""
        return Query(
            filters=[*self.filters, filter_],
            order_by=self.order_by,
            order_direction=self.order_direction,
            limit=self.limit,
            offset=self.offset,
            include_deleted=self.include_deleted,
        )

    def with_order(self, field: str, direction: Literal["asc", "desc"] = "asc") -> "Query":
        """New Query with ordering."""
        return Query(
            filters=self.filters.copy(),
            order_by=field,
            order_direction=direction,
            limit=self.limit,
            offset=self.offset,
            include_deleted=self.include_deleted,
        )

    def with_pagination(self, limit: int, offset: int = 0) -> "Query":
        """
        New Query with pagination.

        Example:
            >>> # Page 2 with 20 items per page
            >>> query = Query().with_pagination(limit=20, offset=20)
        """
        return Query(
            filters=self.filters.copy(),
            order_by=self.order_by,
            order_direction=self.order_direction,
            limit=limit,
            offset=offset,
            include_deleted=self.include_deleted,
        )

    def __str__(self) -> str:
        parts = []
        if self.filters:
            parts.append("WHERE " + " AND ".join(str(f) for f in self.filters))
        if self.order_by:
            parts.append(f"ORDER BY {self.order_by} {self.order_direction.upper()}")
        if self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        if self.offset:
            parts.append(f"OFFSET {self.offset}")
        if self.include_deleted:
            parts.append("(including deleted)")
        return " ".join(parts) if parts else "(all records)"


@dataclass(frozen=True)
class Update:
    """
    Changes applied by a conditional update.

    All parts are applied together, in one atomic step, to the single
    document matched by the update's filters.

    Attributes:
        changes: Field values to overwrite
        inc: Integer fields to increment by a signed amount
        add_to_set: List fields to append a value to, when not already present
        pull: List fields to remove every occurrence of a value from

    Example:
        >>> Update(changes={"status": "completed"}, inc={"retry_count": 1})
        >>> Update(add_to_set={"used_by": user_id})
    """

    changes: dict[str, Any] = field(default_factory=dict)
    inc: dict[str, int] = field(default_factory=dict)
    add_to_set: dict[str, Any] = field(default_factory=dict)
    pull: dict[str, Any] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """True if the update would change nothing."""
        return not (self.changes or self.inc or self.add_to_set or self.pull)

    def __str__(self) -> str:
        parts = []
        if self.changes:
            parts.append("SET " + ", ".join(f"{k}={v!r}" for k, v in self.changes.items()))
        if self.inc:
            parts.append("INC " + ", ".join(f"{k}+={v}" for k, v in self.inc.items()))
        if self.add_to_set:
            parts.append("ADD " + ", ".join(f"{k}<-{v!r}" for k, v in self.add_to_set.items()))
        if self.pull:
            parts.append("PULL " + ", ".join(f"{k}-{v!r}" for k, v in self.pull.items()))
        return " ".join(parts) if parts else "(no changes)"
