"""
SQLite implementation of the document repository.

Provides lightweight, embedded persistence using SQLite via aiosqlite.

SQLite-specific adaptations:
- UUIDs stored as TEXT (36-character hyphenated format)
- Datetimes stored as TEXT in one fixed-width UTC format, so text
  comparison orders them chronologically
- Decimals stored as TEXT so amounts round-trip exactly
- Lists, dicts and nested models stored as JSON TEXT, with set-style
  list updates done in SQL through the JSON1 functions
- Conditional updates use UPDATE ... RETURNING (SQLite 3.35+)
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections.abc import Sequence
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

import aiosqlite
from pydantic_core import to_jsonable_python

from shopcore.documents.base import Document, utcnow
from shopcore.documents.exceptions import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    OptimisticLockError,
)
from shopcore.documents.query import Filter, Query, Update
from shopcore.documents.schema import decimal_fields, generate_full_schema, json_fields
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_ID,
    ATTR_DOCUMENT_TYPE,
    ATTR_QUERY_FILTER_COUNT,
    ATTR_QUERY_LIMIT,
)

logger = logging.getLogger(__name__)

TDoc = TypeVar("TDoc", bound=Document)

_COMPARISONS = {"eq": "=", "ne": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}

# One lock per connection: a rollback must never discard another
# repository's uncommitted statement on the same connection.
_WRITE_LOCKS: weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def _write_lock(connection: aiosqlite.Connection) -> asyncio.Lock:
    lock = _WRITE_LOCKS.get(connection)
    if lock is None:
        lock = _WRITE_LOCKS[connection] = asyncio.Lock()
    return lock


def format_datetime(value: datetime) -> str:
    """Fixed-width UTC text form; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _scalar_to_db(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class SQLiteDocumentRepository(Generic[TDoc]):
    """
    SQLite implementation of DocumentRepository.

    Requirements:
        - SQLite 3.35+ with JSON1 (bundled with current CPython builds)
        - Table created with ``create_schema()`` or ``generate_full_schema()``

    Example:
        >>> import aiosqlite
        >>> async with aiosqlite.connect("shop.db") as db:
        ...     repo = SQLiteDocumentRepository(db, Coupon)
        ...     await repo.create_schema()
        ...     await repo.insert(Coupon(code="SAVE10", ...))
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        document_class: type[TDoc],
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite repository.

        Args:
            connection: aiosqlite database connection
            document_class: The Document subclass this repository will manage
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection
        self._document_class = document_class
        self._table_name = document_class.table_name()
        self._field_names = document_class.field_names()
        self._columns = ", ".join(self._field_names)
        self._json_fields = json_fields(document_class)
        self._decimal_fields = decimal_fields(document_class)

    async def create_schema(self) -> None:
        """Create the table and its indexes if they do not exist."""
        with self._tracer.span(
            "shopcore.document.create_schema",
            {
                ATTR_DOCUMENT_TYPE: self._document_class.__name__,
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_OPERATION: "CREATE",
            },
        ):
            for statement in generate_full_schema(self._document_class):
                await self._connection.execute(statement)
            await self._connection.commit()

    async def get(self, id: UUID) -> TDoc | None:
        with self._tracer.span(
            "shopcore.document.get",
            self._attributes("SELECT", {ATTR_DOCUMENT_ID: str(id)}),
        ):
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE id = ? AND deleted_at IS NULL
            """  # nosec B608 - table_name from trusted class

            cursor = await self._connection.execute(query, (str(id),))
            row = await cursor.fetchone()
            return None if row is None else self._row_to_document(row)

    async def get_many(self, ids: list[UUID]) -> list[TDoc]:
        if not ids:
            return []

        with self._tracer.span(
            "shopcore.document.get_many",
            self._attributes("SELECT", {ATTR_BATCH_SIZE: len(ids)}),
        ):
            placeholders = ",".join("?" * len(ids))
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE id IN ({placeholders}) AND deleted_at IS NULL
            """  # nosec B608 - table_name from trusted class

            cursor = await self._connection.execute(query, tuple(str(id_) for id_ in ids))
            rows = await cursor.fetchall()
            return [self._row_to_document(row) for row in rows]

    async def get_deleted(self, id: UUID) -> TDoc | None:
        with self._tracer.span(
            "shopcore.document.get_deleted",
            self._attributes("SELECT", {ATTR_DOCUMENT_ID: str(id)}),
        ):
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE id = ? AND deleted_at IS NOT NULL
            """  # nosec B608 - table_name from trusted class

            cursor = await self._connection.execute(query, (str(id),))
            row = await cursor.fetchone()
            return None if row is None else self._row_to_document(row)

    async def exists(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.exists",
            self._attributes("SELECT", {ATTR_DOCUMENT_ID: str(id)}),
        ):
            query = f"""
                SELECT 1 FROM {self._table_name}
                WHERE id = ? AND deleted_at IS NULL
                LIMIT 1
            """  # nosec B608 - table_name from trusted class

            cursor = await self._connection.execute(query, (str(id),))
            return await cursor.fetchone() is not None

    async def find(self, query: Query | None = None) -> list[TDoc]:
        """
        Find documents matching a query.

        Soft-deleted records are excluded unless `include_deleted=True`
        is set in the query.
        """
        if query is None:
            query = Query()

        with self._tracer.span(
            "shopcore.document.find",
            self._attributes(
                "SELECT",
                {
                    ATTR_QUERY_FILTER_COUNT: len(query.filters),
                    ATTR_QUERY_LIMIT: query.limit if query.limit is not None else -1,
                },
            ),
        ):
            where, params = self._build_where(query.filters, query.include_deleted)
            parts = [f"SELECT {self._columns} FROM {self._table_name} {where}"]  # nosec B608

            if query.order_by:
                column = self._column_expr(query.order_by)
                direction = "DESC" if query.order_direction == "desc" else "ASC"
                parts.append(f"ORDER BY {column} IS NULL, {column} {direction}")

            if query.limit is not None:
                parts.append("LIMIT ?")
                params.append(query.limit)
            elif query.offset:
                parts.append("LIMIT -1")
            if query.offset:
                parts.append("OFFSET ?")
                params.append(query.offset)

            cursor = await self._connection.execute(" ".join(parts), tuple(params))
            rows = await cursor.fetchall()
            return [self._row_to_document(row) for row in rows]

    async def find_one(self, filters: list[Filter]) -> TDoc | None:
        results = await self.find(Query(filters=filters, limit=1))
        return results[0] if results else None

    async def count(self, query: Query | None = None) -> int:
        if query is None:
            query = Query()

        with self._tracer.span(
            "shopcore.document.count",
            self._attributes("SELECT", {ATTR_QUERY_FILTER_COUNT: len(query.filters)}),
        ):
            where, params = self._build_where(query.filters, query.include_deleted)
            sql = f"SELECT COUNT(*) FROM {self._table_name} {where}"  # nosec B608

            cursor = await self._connection.execute(sql, tuple(params))
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def insert(self, document: TDoc) -> TDoc:
        """
        Insert a new document.

        Raises:
            DuplicateDocumentError: If the ID or a unique field group is taken
        """
        with self._tracer.span(
            "shopcore.document.insert",
            self._attributes("INSERT", {ATTR_DOCUMENT_ID: str(document.id)}),
        ):
            stored = document.model_copy(deep=True)
            stored.updated_at = utcnow()
            placeholders = ", ".join("?" * len(self._field_names))
            query = f"""
                INSERT INTO {self._table_name} ({self._columns})
                VALUES ({placeholders})
            """  # nosec B608 - table_name from trusted class

            await self._execute_write(query, self._document_to_values(stored))
            return stored

    async def save_with_version_check(self, document: TDoc) -> TDoc:
        """
        Overwrite a document if its version is still the stored version.

        Raises:
            OptimisticLockError: If the version in the database differs
            DocumentNotFoundError: If the document doesn't exist
        """
        with self._tracer.span(
            "shopcore.document.save_with_version_check",
            self._attributes("UPDATE", {ATTR_DOCUMENT_ID: str(document.id)}),
        ):
            stored = document.model_copy(deep=True)
            stored.updated_at = utcnow()
            update_fields = [
                f for f in self._field_names if f not in ("id", "created_at", "version")
            ]
            set_clause = ", ".join(f"{f} = ?" for f in update_fields)
            query = f"""
                UPDATE {self._table_name}
                SET {set_clause}, version = version + 1
                WHERE id = ? AND version = ?
            """  # nosec B608

            values = [self._to_db(f, getattr(stored, f)) for f in update_fields]
            values.extend([str(document.id), document.version])

            cursor = await self._execute_write(query, tuple(values))

            if cursor.rowcount == 0:
                # Either document doesn't exist or version mismatch - check which
                check_cursor = await self._connection.execute(
                    f"SELECT version FROM {self._table_name} WHERE id = ?",  # nosec B608
                    (str(document.id),),
                )
                check_row = await check_cursor.fetchone()

                if check_row is None:
                    raise DocumentNotFoundError(document.id)
                raise OptimisticLockError(
                    document.id,
                    expected_version=document.version,
                    actual_version=check_row[0],
                )

            stored.version = document.version + 1
            return stored

    async def find_one_and_update(
        self,
        filters: list[Filter],
        update: Update,
        include_deleted: bool = False,
    ) -> TDoc | None:
        """
        Atomically apply an update to one document matching all filters.

        Runs as a single UPDATE statement; SQLite holds the write lock for
        the whole statement, so the match and the write cannot interleave
        with another writer.
        """
        with self._tracer.span(
            "shopcore.document.find_one_and_update",
            self._attributes("UPDATE", {ATTR_QUERY_FILTER_COUNT: len(filters)}),
        ):
            set_clause, set_params = self._build_set(update)
            where, where_params = self._build_where(filters, include_deleted)
            query = f"""
                UPDATE {self._table_name}
                SET {set_clause}
                WHERE id IN (SELECT id FROM {self._table_name} {where} LIMIT 1)
                RETURNING {self._columns}
            """  # nosec B608

            rows = await self._execute_returning(query, tuple(set_params + where_params))
            return self._row_to_document(rows[0]) if rows else None

    async def update_many(self, filters: list[Filter], update: Update) -> int:
        with self._tracer.span(
            "shopcore.document.update_many",
            self._attributes("UPDATE", {ATTR_QUERY_FILTER_COUNT: len(filters)}),
        ):
            set_clause, set_params = self._build_set(update)
            where, where_params = self._build_where(filters, include_deleted=False)
            query = f"UPDATE {self._table_name} SET {set_clause} {where}"  # nosec B608

            cursor = await self._execute_write(query, tuple(set_params + where_params))
            return cursor.rowcount

    async def delete(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.delete",
            self._attributes("DELETE", {ATTR_DOCUMENT_ID: str(id)}),
        ):
            query = f"DELETE FROM {self._table_name} WHERE id = ?"  # nosec B608

            cursor = await self._execute_write(query, (str(id),))
            return cursor.rowcount > 0

    async def delete_many(self, filters: list[Filter]) -> int:
        with self._tracer.span(
            "shopcore.document.delete_many",
            self._attributes("DELETE", {ATTR_QUERY_FILTER_COUNT: len(filters)}),
        ):
            where, params = self._build_where(filters, include_deleted=True)
            query = f"DELETE FROM {self._table_name} {where}"  # nosec B608

            cursor = await self._execute_write(query, tuple(params))
            return cursor.rowcount

    async def soft_delete(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.soft_delete",
            self._attributes("UPDATE", {ATTR_DOCUMENT_ID: str(id)}),
        ):
            now = format_datetime(utcnow())
            query = f"""
                UPDATE {self._table_name}
                SET deleted_at = ?, updated_at = ?, version = version + 1
                WHERE id = ? AND deleted_at IS NULL
            """  # nosec B608 - table_name from trusted class

            cursor = await self._execute_write(query, (now, now, str(id)))
            return cursor.rowcount > 0

    async def restore(self, id: UUID) -> bool:
        with self._tracer.span(
            "shopcore.document.restore",
            self._attributes("UPDATE", {ATTR_DOCUMENT_ID: str(id)}),
        ):
            now = format_datetime(utcnow())
            query = f"""
                UPDATE {self._table_name}
                SET deleted_at = NULL, updated_at = ?, version = version + 1
                WHERE id = ? AND deleted_at IS NOT NULL
            """  # nosec B608 - table_name from trusted class

            cursor = await self._execute_write(query, (now, str(id)))
            return cursor.rowcount > 0

    async def truncate(self) -> int:
        with self._tracer.span(
            "shopcore.document.truncate",
            self._attributes("DELETE"),
        ):
            query = f"DELETE FROM {self._table_name}"  # nosec B608

            cursor = await self._execute_write(query, ())
            return cursor.rowcount

    async def _execute_write(self, sql: str, params: tuple[Any, ...]) -> aiosqlite.Cursor:
        """Execute and commit one write, translating unique violations."""
        async with _write_lock(self._connection):
            try:
                cursor = await self._connection.execute(sql, params)
            except aiosqlite.IntegrityError as e:
                await self._connection.rollback()
                raise self._duplicate_error(e) from e
            await self._connection.commit()
            return cursor

    async def _execute_returning(
        self, sql: str, params: tuple[Any, ...]
    ) -> list[aiosqlite.Row]:
        """Execute a write with RETURNING; rows are fetched before the commit."""
        async with _write_lock(self._connection):
            try:
                cursor = await self._connection.execute(sql, params)
                rows = list(await cursor.fetchall())
            except aiosqlite.IntegrityError as e:
                await self._connection.rollback()
                raise self._duplicate_error(e) from e
            await self._connection.commit()
            return rows

    def _duplicate_error(self, error: aiosqlite.IntegrityError) -> Exception:
        """
        Map SQLite's "UNIQUE constraint failed: table.a, table.b" message.

        Other integrity failures (NOT NULL, CHECK) are returned unchanged.
        """
        message = str(error)
        prefix = "UNIQUE constraint failed: "
        if not message.startswith(prefix):
            return error
        columns = tuple(
            column.strip().split(".")[-1] for column in message[len(prefix) :].split(",")
        )
        logger.debug(
            "Unique constraint violated on %s%s",
            self._table_name,
            columns,
            extra={"table": self._table_name, "columns": columns},
        )
        return DuplicateDocumentError(self._document_class.__name__, columns)

    def _build_where(
        self, filters: list[Filter], include_deleted: bool
    ) -> tuple[str, list[Any]]:
        """WHERE clause (possibly empty) and its parameters."""
        clauses: list[str] = []
        params: list[Any] = []
        if not include_deleted:
            clauses.append("deleted_at IS NULL")
        for filter_ in filters:
            clause, filter_params = self._filter_to_sql(filter_)
            clauses.append(clause)
            params.extend(filter_params)
        if not clauses:
            return "", params
        return "WHERE " + " AND ".join(clauses), params

    def _build_set(self, update: Update) -> tuple[str, list[Any]]:
        """
        SET clause for an Update, always bumping version and updated_at.

        All right-hand sides read the pre-update row.
        """
        assignments: list[str] = []
        params: list[Any] = []

        for field, value in update.changes.items():
            self._check_field(field)
            assignments.append(f"{field} = ?")
            params.append(self._to_db(field, value))

        for field, amount in update.inc.items():
            self._check_field(field)
            assignments.append(f"{field} = {field} + ?")
            params.append(amount)

        for field, value in update.add_to_set.items():
            self._check_field(field)
            element = to_jsonable_python(value)
            assignments.append(
                f"{field} = CASE WHEN EXISTS "
                f"(SELECT 1 FROM json_each(COALESCE({field}, '[]')) WHERE value = ?) "
                f"THEN {field} ELSE json_insert(COALESCE({field}, '[]'), '$[#]', ?) END"
            )
            params.extend([element, element])

        for field, value in update.pull.items():
            self._check_field(field)
            assignments.append(
                f"{field} = (SELECT json_group_array(value) "
                f"FROM json_each(COALESCE({field}, '[]')) WHERE value != ?)"
            )
            params.append(to_jsonable_python(value))

        assignments.append("version = version + 1")
        assignments.append("updated_at = ?")
        params.append(format_datetime(utcnow()))

        return ", ".join(assignments), params

    def _filter_to_sql(self, filter_: Filter) -> tuple[str, list[Any]]:
        """
        Convert a Filter to SQL clause with parameters.

        Raises:
            ValueError: If the field or operator is unknown
        """
        field = filter_.field
        column = self._column_expr(field)
        value = filter_.value

        if filter_.operator in _COMPARISONS:
            placeholder = "CAST(? AS REAL)" if field in self._decimal_fields else "?"
            return f"{column} {_COMPARISONS[filter_.operator]} {placeholder}", [
                _scalar_to_db(value)
            ]
        elif filter_.operator in ("in", "not_in"):
            keyword = "IN" if filter_.operator == "in" else "NOT IN"
            placeholders = ",".join("?" * len(value))
            return f"{field} {keyword} ({placeholders})", [_scalar_to_db(v) for v in value]
        elif filter_.operator in ("contains", "not_contains"):
            negation = "" if filter_.operator == "contains" else "NOT "
            return (
                f"{negation}EXISTS (SELECT 1 FROM json_each(COALESCE({field}, '[]')) "
                f"WHERE value = ?)",
                [to_jsonable_python(value)],
            )
        elif filter_.operator == "is_null":
            return f"{field} IS {'NULL' if value else 'NOT NULL'}", []
        else:
            raise ValueError(f"Unknown operator: {filter_.operator}")

    def _column_expr(self, field: str) -> str:
        """Column reference; Decimal text is cast so ordering is numeric."""
        self._check_field(field)
        if field in self._decimal_fields:
            return f"CAST({field} AS REAL)"
        return field

    def _check_field(self, field: str) -> None:
        if field not in self._field_names:
            raise ValueError(f"Unknown field for {self._document_class.__name__}: {field}")

    def _to_db(self, field: str, value: Any) -> Any:
        if value is None:
            return None
        if field in self._json_fields:
            return json.dumps(to_jsonable_python(value))
        return _scalar_to_db(value)

    def _document_to_values(self, document: TDoc) -> tuple[Any, ...]:
        return tuple(self._to_db(f, getattr(document, f)) for f in self._field_names)

    def _row_to_document(self, row: Sequence[Any]) -> TDoc:
        """
        Convert a database row to a document instance.

        Args:
            row: Database row with values in field_names order (tuple or aiosqlite.Row)
        """
        data: dict[str, Any] = {}
        for i, field_name in enumerate(self._field_names):
            value = row[i]
            if field_name in self._json_fields and isinstance(value, str):
                value = json.loads(value)
            data[field_name] = value
        return self._document_class.model_validate(data)

    def _attributes(self, operation: str, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            ATTR_DOCUMENT_TYPE: self._document_class.__name__,
            ATTR_DB_SYSTEM: "sqlite",
            ATTR_DB_OPERATION: operation,
        }
        if extra:
            attributes.update(extra)
        return attributes

    @property
    def document_class(self) -> type[TDoc]:
        """Get the document class this repository manages."""
        return self._document_class

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"SQLiteDocumentRepository("
            f"document={self._document_class.__name__}, "
            f"table={self._table_name}, "
            f"tracing={'enabled' if self._enable_tracing else 'disabled'})"
        )
