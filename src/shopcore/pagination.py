"""Paginated listings."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

from shopcore.documents import Document, DocumentRepository, Query
from shopcore.exceptions import ValidationError

T = TypeVar("T", bound=Document)

MAX_PAGE_SIZE = 100


class Page(BaseModel, Generic[T]):
    """
    One page of a listing.

    Attributes:
        items: Documents on this page
        total: Number of documents matching the listing's filters
        limit: Page size
        offset: Number of documents skipped
    """

    items: list[T]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


async def paginate(repository: DocumentRepository[T], query: Query) -> Page[T]:
    """
    Run a query with its limit/offset and count the unpaged total.

    Raises:
        ValidationError: If limit or offset are out of range
    """
    limit = query.limit if query.limit is not None else 10
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
    if query.offset < 0:
        raise ValidationError(f"offset must be >= 0, got {query.offset}")

    paged = Query(
        filters=query.filters,
        order_by=query.order_by,
        order_direction=query.order_direction,
        limit=limit,
        offset=query.offset,
        include_deleted=query.include_deleted,
    )
    items = await repository.find(paged)
    total = await repository.count(Query(filters=query.filters, include_deleted=query.include_deleted))
    return Page(items=items, total=total, limit=limit, offset=query.offset)


__all__ = ["Page", "paginate", "MAX_PAGE_SIZE"]
