"""
Document persistence for shopcore.

Documents are pydantic models persisted one per row. Repositories expose
CRUD, querying, and the atomic ``find_one_and_update`` primitive that the
services build their state machines on.

Example:
    >>> from shopcore.documents import (
    ...     Document,
    ...     Filter,
    ...     InMemoryDocumentRepository,
    ...     Update,
    ... )
    >>>
    >>> class Coupon(Document):
    ...     code: str
    ...     used_by: list[UUID] = []
    ...
    >>> repo = InMemoryDocumentRepository(Coupon, enable_tracing=False)
"""

from shopcore.documents.base import Document, as_utc, utcnow
from shopcore.documents.exceptions import (
    DocumentError,
    DocumentNotFoundError,
    DuplicateDocumentError,
    OptimisticLockError,
)
from shopcore.documents.in_memory import InMemoryDocumentRepository
from shopcore.documents.query import Filter, Query, Update
from shopcore.documents.repository import DocumentRepository
from shopcore.documents.schema import (
    generate_full_schema,
    generate_indexes,
    generate_schema,
)
from shopcore.documents.sqlite import SQLiteDocumentRepository

__all__ = [
    # Base
    "Document",
    "as_utc",
    "utcnow",
    # Query
    "Filter",
    "Query",
    "Update",
    # Repository
    "DocumentRepository",
    "InMemoryDocumentRepository",
    "SQLiteDocumentRepository",
    # Schema
    "generate_schema",
    "generate_indexes",
    "generate_full_schema",
    # Exceptions
    "DocumentError",
    "DuplicateDocumentError",
    "DocumentNotFoundError",
    "OptimisticLockError",
]
