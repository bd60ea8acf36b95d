"""
Protocol for document repositories.

Document repositories provide persistence for every shopcore entity.
They abstract away database-specific details, so services run unchanged
against the in-memory backend (tests, development) and SQLite.

The central write primitive is ``find_one_and_update``: a filter plus an
``Update`` applied as one atomic step. Services express state-machine
transitions, single-use coupon consumption and non-negative stock
adjustments as conditional updates and never read-modify-write shared
fields.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable
from uuid import UUID

from shopcore.documents.base import Document

if TYPE_CHECKING:
    from shopcore.documents.query import Filter, Query, Update

# Type variable for document types
TDoc = TypeVar("TDoc", bound=Document)


@runtime_checkable
class DocumentRepository(Protocol[TDoc]):
    """
    Protocol for document persistence.

    Type Parameters:
        TDoc: The document type this repository manages, bound to Document

    Key Design Decisions:
        - `insert()` never overwrites; unique constraints raise DuplicateDocumentError
        - `find_one_and_update()` is atomic with respect to all other writes
        - `delete()` is hard delete; use `soft_delete()` for recoverable deletion
        - `find()` excludes soft-deleted records by default
        - Every write increments `version` and stamps `updated_at`

    Example:
        >>> repo: DocumentRepository[Coupon] = InMemoryDocumentRepository(Coupon)
        >>> await repo.insert(Coupon(code="SAVE10", ...))
        >>> used = await repo.find_one_and_update(
        ...     [Filter.eq("code", "SAVE10"), Filter.not_contains("used_by", user_id)],
        ...     Update(add_to_set={"used_by": user_id}),
        ... )
    """

    @property
    def document_class(self) -> type[TDoc]:
        """The Document subclass stored by this repository."""
        ...

    async def get(self, id: UUID) -> TDoc | None:
        """
        Get a document by ID.

        Args:
            id: Unique identifier of the document

        Returns:
            The document if found and not soft-deleted, None otherwise
        """
        ...

    async def get_many(self, ids: list[UUID]) -> list[TDoc]:
        """
        Get multiple documents by their IDs.

        Missing IDs are silently ignored. Order is not guaranteed.
        """
        ...

    async def get_deleted(self, id: UUID) -> TDoc | None:
        """Get a soft-deleted document by ID (None if absent or not deleted)."""
        ...

    async def exists(self, id: UUID) -> bool:
        """Check if a document exists and is not soft-deleted."""
        ...

    async def find(self, query: Query | None = None) -> list[TDoc]:
        """
        Find documents matching a query.

        Args:
            query: Query with filters, ordering, pagination.
                   If None, returns all non-deleted documents.

        Returns:
            List of matching documents
        """
        ...

    async def find_one(self, filters: list[Filter]) -> TDoc | None:
        """
        Find the first non-deleted document matching all filters.

        Example:
            >>> coupon = await repo.find_one([Filter.eq("code", "SAVE10")])
        """
        ...

    async def count(self, query: Query | None = None) -> int:
        """Count documents matching a query."""
        ...

    async def insert(self, document: TDoc) -> TDoc:
        """
        Insert a new document.

        Args:
            document: The document to insert

        Returns:
            The stored document

        Raises:
            DuplicateDocumentError: If the ID or a unique field group is taken
        """
        ...

    async def save_with_version_check(self, document: TDoc) -> TDoc:
        """
        Overwrite a document if its version is still the stored version.

        Args:
            document: The modified document, carrying the version it was loaded at

        Returns:
            The stored document with its version incremented

        Raises:
            OptimisticLockError: If another write happened since the load
            DocumentNotFoundError: If the document does not exist
            DuplicateDocumentError: If the change collides with a unique field group
        """
        ...

    async def find_one_and_update(
        self,
        filters: list[Filter],
        update: Update,
        include_deleted: bool = False,
    ) -> TDoc | None:
        """
        Atomically apply an update to one document matching all filters.

        The match and the write happen as a single step: two concurrent
        callers whose filters exclude each other's result can never both
        succeed.

        Args:
            filters: Conditions the document must satisfy at write time
            update: Changes to apply
            include_deleted: Whether soft-deleted documents may match

        Returns:
            The updated document, or None if nothing matched

        Example:
            >>> payment = await repo.find_one_and_update(
            ...     [Filter.eq("id", payment_id), Filter.eq("status", "pending")],
            ...     Update(changes={"status": "completed", "paid_at": now}),
            ... )
            >>> if payment is None:
            ...     ...  # not found, or no longer pending
        """
        ...

    async def update_many(self, filters: list[Filter], update: Update) -> int:
        """
        Apply an update to every non-deleted document matching all filters.

        Returns:
            Number of documents updated
        """
        ...

    async def delete(self, id: UUID) -> bool:
        """
        Delete a document by ID (hard delete).

        Returns:
            True if deleted, False if not found
        """
        ...

    async def delete_many(self, filters: list[Filter]) -> int:
        """
        Hard delete every document matching all filters, soft-deleted included.

        Returns:
            Number of documents deleted
        """
        ...

    async def soft_delete(self, id: UUID) -> bool:
        """
        Soft delete a document by setting deleted_at.

        Returns:
            True if soft-deleted, False if not found or already deleted
        """
        ...

    async def restore(self, id: UUID) -> bool:
        """
        Restore a soft-deleted document.

        Returns:
            True if restored, False if not found or not deleted
        """
        ...

    async def truncate(self) -> int:
        """
        Delete all documents, soft-deleted included.

        Returns:
            Number of records deleted
        """
        ...


__all__ = ["DocumentRepository", "TDoc"]
