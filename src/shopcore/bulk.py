"""
Per-item outcomes for bulk operations.

Bulk operations apply each entry independently and report every entry's
outcome instead of failing the whole batch on one bad entry.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from shopcore.exceptions import ShopError


class ItemOutcome(BaseModel):
    """
    Outcome of one bulk entry.

    Attributes:
        index: Position of the entry in the request
        ok: Whether the entry was applied
        id: ID of the affected document, when known
        error: Error kind for failed entries
        message: Human-readable error for failed entries
    """

    index: int
    ok: bool
    id: UUID | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def success(cls, index: int, id: UUID | None = None) -> ItemOutcome:
        return cls(index=index, ok=True, id=id)

    @classmethod
    def failure(cls, index: int, error: ShopError, id: UUID | None = None) -> ItemOutcome:
        return cls(index=index, ok=False, id=id, error=error.kind, message=error.message)


class BulkResult(BaseModel):
    """Outcomes of a bulk operation, in request order."""

    outcomes: list[ItemOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]


__all__ = ["ItemOutcome", "BulkResult"]
