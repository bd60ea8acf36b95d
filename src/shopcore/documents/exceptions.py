"""
Exceptions for document repositories.

Storage-level failures. Services translate them into the domain error
taxonomy in ``shopcore.exceptions``.
"""

from uuid import UUID


class DocumentError(Exception):
    """
    Base exception for document repository operations.

    Example:
        >>> try:
        ...     await repo.insert(coupon)
        ... except DocumentError as e:
        ...     print(f"Storage error: {e}")
    """

    pass


class DuplicateDocumentError(DocumentError):
    """
    Raised when a write would violate a unique constraint.

    Attributes:
        document_type: Class name of the document being written
        fields: The unique field group that collided
    """

    def __init__(self, document_type: str, fields: tuple[str, ...]) -> None:
        self.document_type = document_type
        self.fields = fields
        super().__init__(
            f"Unique constraint on {document_type}({', '.join(fields)}) violated"
        )


class DocumentNotFoundError(DocumentError):
    """
    Raised when a document was expected to exist but does not.

    Attributes:
        document_id: ID of the missing document
    """

    def __init__(self, document_id: UUID) -> None:
        self.document_id = document_id
        super().__init__(f"Document {document_id} not found")


class OptimisticLockError(DocumentError):
    """
    Raised when a version-checked save finds a newer version in storage.

    Attributes:
        document_id: ID of the document
        expected_version: Version the caller loaded
        actual_version: Version currently stored
    """

    def __init__(self, document_id: UUID, expected_version: int, actual_version: int) -> None:
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock failed for document {document_id}: "
            f"expected version {expected_version}, found version {actual_version}"
        )
