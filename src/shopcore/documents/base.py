"""
Base class for persisted documents.

A document is a pydantic model stored as one row (SQLite) or one entry
(in-memory). Orders, payments, coupons, inventory rows and shipping
records are all documents; nested values such as order line items are
embedded in their owning document.
"""

import re
from datetime import UTC, datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def _camel_to_snake(name: str) -> str:
    """
    Convert CamelCase to snake_case.

    Examples:
        >>> _camel_to_snake("ReturnRequest")
        'return_request'
        >>> _camel_to_snake("HTTPResponse")
        'http_response'
    """
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def _pluralize(name: str) -> str:
    """
    Simple English pluralization.

    Examples:
        >>> _pluralize("inventory")
        'inventories'
        >>> _pluralize("address")
        'addresses'
        >>> _pluralize("order")
        'orders'
    """
    if name.endswith("y") and len(name) > 1 and name[-2] not in "aeiou":
        return name[:-1] + "ies"
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Document(BaseModel):
    """
    Base class for persisted documents.

    Provides standard fields for identity, timestamps, versioning, and soft
    delete. Subclasses declare their domain fields and, optionally, unique
    constraints and secondary indexes.

    Attributes:
        id: Unique identifier for this document
        created_at: When the document was first stored
        updated_at: When the document was last written (repository-managed)
        version: Write counter, incremented by every repository write
        deleted_at: Soft delete timestamp (None if not deleted)

    Class Attributes:
        __table_name__: Explicit table name, derived from the class name if unset
        __unique__: Tuples of field names that must be unique together.
            A tuple containing a None value never collides.
        __indexes__: Secondary index specs, ``{"fields": [...]}``

    Example:
        >>> class Coupon(Document):
        ...     __unique__ = (("code",),)
        ...     code: str
        ...     is_active: bool = True
        ...
        >>> Coupon.table_name()
        'coupons'
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        # NOT frozen - repositories stamp version and timestamps on write
    )

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique identifier for this document",
    )

    # Timestamps (auto-managed by repository)
    created_at: datetime = Field(
        default_factory=utcnow,
        description="When this document was first created",
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        description="When this document was last updated",
    )

    # Write counter
    version: int = Field(
        default=1,
        ge=1,
        description="Incremented on each write",
    )

    # Soft delete
    deleted_at: datetime | None = Field(
        default=None,
        description="Soft delete timestamp (None if not deleted)",
    )

    __table_name__: ClassVar[str | None] = None
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = ()
    __indexes__: ClassVar[list[dict[str, Any]]] = []

    @classmethod
    def table_name(cls) -> str:
        """
        Get the table name for this document type.

        Returns __table_name__ if explicitly set, otherwise derives the
        table name from the class name using snake_case and pluralization.

        Examples:
            Order -> orders
            ReturnRequest -> return_requests
            Inventory -> inventories
        """
        if cls.__table_name__:
            return cls.__table_name__
        return _pluralize(_camel_to_snake(cls.__name__))

    @classmethod
    def field_names(cls) -> list[str]:
        """All field names, base fields first."""
        return list(cls.model_fields.keys())

    @classmethod
    def unique_constraints(cls) -> tuple[tuple[str, ...], ...]:
        """Field groups that must be unique together."""
        return cls.__unique__

    def is_deleted(self) -> bool:
        """True if this document has been soft-deleted."""
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible dictionary of all fields."""
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id}, version={self.version})"

    def __repr__(self) -> str:
        deleted_str = f", deleted_at={self.deleted_at!r}" if self.deleted_at else ""
        return (
            f"{self.__class__.__name__}("
            f"id={self.id!r}, "
            f"version={self.version}, "
            f"created_at={self.created_at!r}, "
            f"updated_at={self.updated_at!r}"
            f"{deleted_str})"
        )
