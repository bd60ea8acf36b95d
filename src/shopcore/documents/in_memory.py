"""
In-memory implementation of the document repository.

Provides a simple, fast repository for testing and development.
All data is stored in memory and lost when the process terminates.
"""

import asyncio
from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import UUID

from shopcore.documents.base import Document, utcnow
from shopcore.documents.exceptions import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    OptimisticLockError,
)
from shopcore.documents.query import Filter, Query, Update
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_DOCUMENT_ID,
    ATTR_DOCUMENT_TYPE,
    ATTR_QUERY_FILTER_COUNT,
    ATTR_QUERY_LIMIT,
)

# Type variable for document types
TDoc = TypeVar("TDoc", bound=Document)


class InMemoryDocumentRepository(Generic[TDoc]):
    """
    In-memory implementation of DocumentRepository.

    Stores documents in a Python dictionary, keyed by UUID. All
    operations are O(1) for ID-based access and O(n) for queries and
    unique-constraint checks.

    Every operation runs under one asyncio.Lock, which makes
    ``find_one_and_update`` atomic with respect to every other call.
    Documents are copied on the way in and on the way out, so callers
    can never mutate stored state behind the lock's back.

    Example:
        >>> repo = InMemoryDocumentRepository(Coupon)
        >>> await repo.insert(Coupon(code="SAVE10", ...))
        >>> coupon = await repo.find_one([Filter.eq("code", "SAVE10")])

    Note:
        - Use `clear()` for test teardown
        - Query performance is O(n) - acceptable for testing but not production
    """

    def __init__(
        self,
        document_class: type[TDoc],
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the in-memory repository.

        Args:
            document_class: The Document subclass this repository will manage
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._document_class = document_class
        self._documents: dict[UUID, TDoc] = {}
        self._lock = asyncio.Lock()

    async def get(self, id: UUID) -> TDoc | None:
        with self._tracer.span(
            "shopcore.document.get",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(id),
            },
        ):
            async with self._lock:
                document = self._documents.get(id)
                if document is None or document.is_deleted():
                    return None
                return self._copy(document)

    async def get_many(self, ids: list[UUID]) -> list[TDoc]:
        with self._tracer.span(
            "shopcore.document.get_many",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_BATCH_SIZE: len(ids),
            },
        ):
            async with self._lock:
                result = []
                for id_ in ids:
                    document = self._documents.get(id_)
                    if document is not None and not document.is_deleted():
                        result.append(self._copy(document))
                return result

    async def get_deleted(self, id: UUID) -> TDoc | None:
        with self._tracer.span(
            "shopcore.document.get_deleted",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(id),
            },
        ):
            async with self._lock:
                document = self._documents.get(id)
                if document is None or not document.is_deleted():
                    return None
                return self._copy(document)

    async def exists(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.exists",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(id),
            },
        ):
            async with self._lock:
                document = self._documents.get(id)
                return document is not None and not document.is_deleted()

    async def find(self, query: Query | None = None) -> list[TDoc]:
        """
        Find documents matching a query.

        Args:
            query: Query with filters, ordering, pagination

        Returns:
            List of matching documents
        """
        if query is None:
            query = Query()

        with self._tracer.span(
            "shopcore.document.find",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_QUERY_FILTER_COUNT: len(query.filters),
                ATTR_QUERY_LIMIT: query.limit if query.limit is not None else -1,
            },
        ):
            async with self._lock:
                results = self._matching(query.filters, query.include_deleted)

                # Apply ordering, NULLs last
                if query.order_by:
                    order_by = query.order_by
                    present = [d for d in results if getattr(d, order_by) is not None]
                    missing = [d for d in results if getattr(d, order_by) is None]
                    present.sort(
                        key=lambda d: getattr(d, order_by),
                        reverse=query.order_direction == "desc",
                    )
                    results = present + missing

                # Apply pagination
                if query.offset:
                    results = results[query.offset :]
                if query.limit is not None:
                    results = results[: query.limit]

                return [self._copy(d) for d in results]

    async def find_one(self, filters: list[Filter]) -> TDoc | None:
        with self._tracer.span(
            "shopcore.document.find_one",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_QUERY_FILTER_COUNT: len(filters),
            },
        ):
            async with self._lock:
                results = self._matching(filters, include_deleted=False)
                return self._copy(results[0]) if results else None

    async def count(self, query: Query | None = None) -> int:
        if query is None:
            query = Query()

        with self._tracer.span(
            "shopcore.document.count",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_QUERY_FILTER_COUNT: len(query.filters),
            },
        ):
            async with self._lock:
                return len(self._matching(query.filters, query.include_deleted))

    async def insert(self, document: TDoc) -> TDoc:
        """
        Insert a new document.

        Raises:
            DuplicateDocumentError: If the ID or a unique field group is taken
        """
        with self._tracer.span(
            "shopcore.document.insert",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(document.id),
            },
        ):
            async with self._lock:
                if document.id in self._documents:
                    raise DuplicateDocumentError(self._document_class.__name__, ("id",))
                stored = self._copy(document)
                stored.updated_at = utcnow()
                self._check_unique(stored)
                self._documents[stored.id] = stored
                return self._copy(stored)

    async def save_with_version_check(self, document: TDoc) -> TDoc:
        """
        Overwrite a document if its version is still the stored version.

        Raises:
            OptimisticLockError: If the stored version differs
            DocumentNotFoundError: If the document doesn't exist
        """
        with self._tracer.span(
            "shopcore.document.save_with_version_check",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(document.id),
            },
        ):
            async with self._lock:
                existing = self._documents.get(document.id)

                if existing is None:
                    raise DocumentNotFoundError(document.id)

                if existing.version != document.version:
                    raise OptimisticLockError(
                        document.id,
                        expected_version=document.version,
                        actual_version=existing.version,
                    )

                stored = self._copy(document)
                stored.version = existing.version + 1
                stored.updated_at = utcnow()
                self._check_unique(stored)
                self._documents[stored.id] = stored
                return self._copy(stored)

    async def find_one_and_update(
        self,
        filters: list[Filter],
        update: Update,
        include_deleted: bool = False,
    ) -> TDoc | None:
        """
        Atomically apply an update to one document matching all filters.

        Returns:
            The updated document, or None if nothing matched
        """
        with self._tracer.span(
            "shopcore.document.find_one_and_update",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_QUERY_FILTER_COUNT: len(filters),
            },
        ):
            async with self._lock:
                matches = self._matching(filters, include_deleted)
                if not matches:
                    return None
                updated = self._apply_update(matches[0], update, utcnow())
                self._check_unique(updated)
                self._documents[updated.id] = updated
                return self._copy(updated)

    async def update_many(self, filters: list[Filter], update: Update) -> int:
        with self._tracer.span(
            "shopcore.document.update_many",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_QUERY_FILTER_COUNT: len(filters),
            },
        ):
            async with self._lock:
                now = utcnow()
                updated = [
                    self._apply_update(d, update, now)
                    for d in self._matching(filters, include_deleted=False)
                ]
                for document in updated:
                    self._check_unique(document)
                for document in updated:
                    self._documents[document.id] = document
                return len(updated)

    async def delete(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.delete",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(id),
            },
        ):
            async with self._lock:
                if id in self._documents:
                    del self._documents[id]
                    return True
                return False

    async def delete_many(self, filters: list[Filter]) -> int:
        with self._tracer.span(
            "shopcore.document.delete_many",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_QUERY_FILTER_COUNT: len(filters),
            },
        ):
            async with self._lock:
                doomed = self._matching(filters, include_deleted=True)
                for document in doomed:
                    del self._documents[document.id]
                return len(doomed)

    async def soft_delete(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.soft_delete",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(id),
            },
        ):
            async with self._lock:
                document = self._documents.get(id)
                if document is None or document.is_deleted():
                    return False

                document.deleted_at = utcnow()
                document.updated_at = document.deleted_at
                document.version += 1
                return True

    async def restore(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.restore",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DOCUMENT_ID: str(id),
            },
        ):
            async with self._lock:
                document = self._documents.get(id)
                if document is None or not document.is_deleted():
                    return False

                document.deleted_at = None
                document.updated_at = utcnow()
                document.version += 1
                return True

    async def truncate(self) -> int:
        with self._tracer.span(
            "shopcore.document.truncate",
            {ATTR_DOCUMENT_TYPE: self._document_class.__name__},
        ):
            async with self._lock:
                count = len(self._documents)
                self._documents.clear()
                return count

    async def clear(self) -> None:
        """
        Clear all data. Alias for truncate() for test teardown.
        """
        await self.truncate()

    def _matching(self, filters: list[Filter], include_deleted: bool) -> list[TDoc]:
        """Stored documents satisfying every filter, in insertion order. Caller holds the lock."""
        results = list(self._documents.values())
        if not include_deleted:
            results = [d for d in results if not d.is_deleted()]
        for filter_ in filters:
            results = [d for d in results if self._apply_filter(d, filter_)]
        return results

    def _apply_filter(self, document: TDoc, filter_: Filter) -> bool:
        """
        Apply a single filter to a document.

        Comparisons against a missing (None) value never match, as in SQL.
        """
        value = getattr(document, filter_.field, None)

        if filter_.operator == "is_null":
            return (value is None) == bool(filter_.value)
        if filter_.operator == "contains":
            return filter_.value in (value or [])
        if filter_.operator == "not_contains":
            return filter_.value not in (value or [])
        if value is None:
            return False

        if filter_.operator == "eq":
            return bool(value == filter_.value)
        elif filter_.operator == "ne":
            return bool(value != filter_.value)
        elif filter_.operator == "gt":
            return bool(value > filter_.value)
        elif filter_.operator == "gte":
            return bool(value >= filter_.value)
        elif filter_.operator == "lt":
            return bool(value < filter_.value)
        elif filter_.operator == "lte":
            return bool(value <= filter_.value)
        elif filter_.operator == "in":
            return bool(value in filter_.value)
        elif filter_.operator == "not_in":
            return bool(value not in filter_.value)
        else:
            raise ValueError(f"Unknown operator: {filter_.operator}")

    def _apply_update(self, document: TDoc, update: Update, now: datetime) -> TDoc:
        """Build the updated copy of a document. Validation runs on the result."""
        data: dict[str, Any] = document.model_dump()
        data.update(update.changes)
        for field, amount in update.inc.items():
            data[field] = data[field] + amount
        for field, value in update.add_to_set.items():
            items = list(data[field] or [])
            if value not in items:
                items.append(value)
            data[field] = items
        for field, value in update.pull.items():
            data[field] = [item for item in (data[field] or []) if item != value]
        data["version"] = document.version + 1
        data["updated_at"] = now
        return self._document_class.model_validate(data)

    def _check_unique(self, document: TDoc) -> None:
        """
        Enforce the document class's unique field groups. Caller holds the lock.

        Groups with a None member never collide. Soft-deleted documents
        still hold their values.
        """
        for group in self._document_class.unique_constraints():
            key = tuple(getattr(document, f) for f in group)
            if any(v is None for v in key):
                continue
            for other in self._documents.values():
                if other.id == document.id:
                    continue
                if tuple(getattr(other, f) for f in group) == key:
                    raise DuplicateDocumentError(self._document_class.__name__, group)

    def _copy(self, document: TDoc) -> TDoc:
        return document.model_copy(deep=True)

    @property
    def document_class(self) -> type[TDoc]:
        """Get the document class this repository manages."""
        return self._document_class

    def __len__(self) -> int:
        """Return the number of documents (including soft-deleted)."""
        return len(self._documents)
