"""
Schema generation utilities for documents.

Generates SQLite CREATE TABLE and CREATE INDEX statements from Document
class definitions, and classifies fields for the SQLite repository's
value conversions.

Example:
    >>> from shopcore.documents import Document
    >>> from shopcore.documents.schema import generate_schema
    >>> from decimal import Decimal
    >>>
    >>> class Coupon(Document):
    ...     __unique__ = (("code",),)
    ...     code: str
    ...     discount_value: Decimal
    ...     is_active: bool = True
    ...
    >>> print(generate_schema(Coupon))
    CREATE TABLE IF NOT EXISTS coupons (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        deleted_at TEXT,
        code TEXT NOT NULL,
        discount_value TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1
    );
"""

import types
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Union, get_args, get_origin
from uuid import UUID

from pydantic import BaseModel
from pydantic.fields import FieldInfo

from shopcore.documents.base import Document

# Decimals are TEXT so money round-trips exactly
SQLITE_TYPE_MAP: dict[type, str] = {
    UUID: "TEXT",
    str: "TEXT",
    int: "INTEGER",
    float: "REAL",
    Decimal: "TEXT",
    bool: "INTEGER",
    datetime: "TEXT",
    date: "TEXT",
    dict: "TEXT",
    list: "TEXT",
    bytes: "BLOB",
}


def generate_schema(document_class: type[Document], if_not_exists: bool = True) -> str:
    """
    Build the CREATE TABLE statement for ``document_class``.

    Columns follow model field order. Non-optional fields are NOT NULL;
    lists, dicts and nested models become JSON TEXT columns.
    """
    columns = ",\n    ".join(
        _column_sql(name, info) for name, info in document_class.model_fields.items()
    )
    guard = "IF NOT EXISTS " if if_not_exists else ""
    return f"CREATE TABLE {guard}{document_class.table_name()} (\n    {columns}\n);"


def generate_indexes(document_class: type[Document]) -> list[str]:
    """
    Generate CREATE INDEX statements for a Document class.

    Produces the soft delete index, one UNIQUE index per ``__unique__``
    field group, and any custom indexes from ``__indexes__``. SQLite
    treats NULLs as distinct in unique indexes, so a group with a NULL
    member never collides.

    Example:
        >>> class Inventory(Document):
        ...     __unique__ = (("variant_id", "seller_id"),)
        ...     __indexes__ = [{"fields": ["seller_id"]}]
        ...     variant_id: UUID
        ...     seller_id: UUID
        ...
        >>> for idx in generate_indexes(Inventory):
        ...     print(idx)
        CREATE INDEX IF NOT EXISTS idx_inventories_deleted ON inventories(deleted_at);
        CREATE UNIQUE INDEX IF NOT EXISTS uq_inventories_variant_id_seller_id ON inventories(variant_id, seller_id);
        CREATE INDEX IF NOT EXISTS idx_inventories_seller_id ON inventories(seller_id);
    """
    table_name = document_class.table_name()
    indexes = [
        f"CREATE INDEX IF NOT EXISTS idx_{table_name}_deleted ON {table_name}(deleted_at);"
    ]

    for group in document_class.unique_constraints():
        indexes.append(
            f"CREATE UNIQUE INDEX IF NOT EXISTS uq_{table_name}_{'_'.join(group)} "
            f"ON {table_name}({', '.join(group)});"
        )

    declared: list[dict[str, Any]] = getattr(document_class, "__indexes__", [])
    for entry in declared:
        columns = entry.get("fields") or []
        if columns:
            name = entry.get("name") or f"idx_{table_name}_{'_'.join(columns)}"
            indexes.append(
                f"CREATE INDEX IF NOT EXISTS {name} ON {table_name}({', '.join(columns)});"
            )

    return indexes


def generate_full_schema(document_class: type[Document]) -> list[str]:
    """
    Generate the table and index statements for a Document class.

    Returns:
        SQL statements to execute in order
    """
    return [generate_schema(document_class), *generate_indexes(document_class)]


def json_fields(document_class: type[Document]) -> frozenset[str]:
    """Names of fields stored as JSON text (lists, dicts, nested models)."""
    return frozenset(
        name
        for name, info in document_class.model_fields.items()
        if _is_json_type(info.annotation)
    )


def decimal_fields(document_class: type[Document]) -> frozenset[str]:
    """Names of Decimal fields, which need a numeric cast for ordering."""
    return frozenset(
        name
        for name, info in document_class.model_fields.items()
        if _extract_type(info.annotation) is Decimal
    )


def _column_sql(name: str, info: FieldInfo) -> str:
    annotation = info.annotation
    if _is_json_type(annotation):
        column_type = "TEXT"
    else:
        column_type = SQLITE_TYPE_MAP.get(_extract_type(annotation), "TEXT")

    if name == "id":
        return f"id {column_type} PRIMARY KEY"

    column = f"{name} {column_type}"
    if not _is_optional(annotation):
        column += " NOT NULL"
    literal = _format_default(info.default) if info.default is not None else None
    if literal is not None:
        column += f" DEFAULT {literal}"
    return column


def _extract_type(annotation: Any) -> type:
    """Unwrap ``T | None`` and generics down to the class stored in the column."""
    if annotation is None:
        return str

    origin = get_origin(annotation)
    if origin is not None:
        args = get_args(annotation)
        if origin is Union or origin is types.UnionType:
            for arg in args:
                if arg is not type(None):
                    return _extract_type(arg)
        if origin in (list, tuple, set, frozenset):
            return list
        if origin is dict:
            return dict
        if args and args[0] is not type(None):
            return _extract_type(args[0])
        return origin if isinstance(origin, type) else type(origin)

    return annotation if isinstance(annotation, type) else type(annotation)


def _is_json_type(annotation: Any) -> bool:
    """True for list, dict and nested-model annotations, optional or not."""
    base = _extract_type(annotation)
    if base in (list, dict):
        return True
    return isinstance(base, type) and issubclass(base, BaseModel)


def _is_optional(annotation: Any) -> bool:
    if get_origin(annotation) in (Union, types.UnionType):
        return type(None) in get_args(annotation)
    return False


def _format_default(value: Any) -> str | None:
    """SQLite literal for a field default, or None when it has no literal form."""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, str | Decimal):
        quoted = str(value).replace("'", "''")
        return f"'{quoted}'"
    return None


__all__ = [
    "generate_schema",
    "generate_indexes",
    "generate_full_schema",
    "json_fields",
    "decimal_fields",
    "SQLITE_TYPE_MAP",
]
