"""
SQLite relational store backend.

Each host store is a table with one column per field:
    - "_id" TEXT PRIMARY KEY
    - "_collection" TEXT (discriminator for inherited collections)
    - one column per declared field, added with ALTER TABLE when missing
    - a UNIQUE INDEX per unique field

Invariants:
    - One SQLite file per backend instance
    - Each write operation uses its own connection and transaction
    - Each cursor reserves a dedicated connection, closed on release
    - JSON values are stored as text; booleans as 0/1; dates as ISO strings
    - Constraint failures are raised as ConstraintViolationError subclasses

How to change safely:
    - Column additions must stay backward compatible (ALTER TABLE ADD only)
    - Keep value encoding symmetric with _decode_row
    - Test with both WAL and rollback journal modes
"""

from __future__ import annotations

import datetime
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from ..constants import DISCRIMINATOR_FIELD, ID_FIELD
from ..datatypes import PrimitiveDataType
from ..errors import (
    BackendConnectionError,
    ConstraintViolationError,
    StorageError,
    UniqueConstraintError,
)
from .base import ColumnSpec, ErrorListener, FindOptions

logger = logging.getLogger(__name__)

_SQL_TYPES = {
    PrimitiveDataType.INTEGER: "INTEGER",
    PrimitiveDataType.NUMBER: "REAL",
    PrimitiveDataType.BOOLEAN: "INTEGER",
}

_UNIQUE_PREFIX = "UNIQUE constraint failed:"


def quote_identifier(name: str) -> str:
    """Quote a table or column name for SQL."""
    return '"' + name.replace('"', '""') + '"'


def encode_value(data_type: Optional[PrimitiveDataType], value: Any) -> Any:
    """Convert a Python value to a SQLite parameter."""
    if value is None:
        return None
    if data_type == PrimitiveDataType.JSON:
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def decode_value(data_type: Optional[PrimitiveDataType], value: Any) -> Any:
    """Convert a SQLite column value back to a Python value."""
    if value is None:
        return None
    if data_type == PrimitiveDataType.JSON:
        return json.loads(value)
    if data_type == PrimitiveDataType.BOOLEAN:
        return bool(value)
    return value


class SQLiteCursor:
    """Cursor holding a dedicated SQLite connection until released."""

    def __init__(
        self,
        backend: SQLiteBackend,
        store: str,
        conn: sqlite3.Connection,
        result: sqlite3.Cursor,
    ) -> None:
        self._backend = backend
        self._store = store
        self._conn = conn
        self._result = result
        self._released = False
        self._listeners: list[ErrorListener] = []

    @property
    def released(self) -> bool:
        return self._released

    async def read(self, n: int) -> list[dict[str, Any]]:
        if self._released:
            raise StorageError("Cursor already released", store=self._store)
        try:
            rows = self._result.fetchmany(n)
        except sqlite3.Error as e:
            error = StorageError(f"Cursor read failed: {e}", store=self._store)
            for listener in self._listeners:
                listener(error)
            raise error from e
        return [self._backend._decode_row(self._store, row) for row in rows]

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._conn.close()
        finally:
            self._backend._release_cursor(self)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)


class SQLiteBackend:
    """SQLite implementation of the Backend protocol.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> backend = SQLiteBackend("/var/lib/recordmap/records.db")
        >>> await backend.connect()
        >>> await backend.ensure_store("employee", [ColumnSpec("name", PrimitiveDataType.STRING)])
    """

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the backend.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False
        self._columns: dict[str, dict[str, ColumnSpec]] = {}
        self._active_cursors: set[SQLiteCursor] = set()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def active_cursors(self) -> int:
        """Number of cursors not yet released."""
        return len(self._active_cursors)

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Raises:
            BackendConnectionError: If the backend is not connected
        """
        if not self._connected:
            raise BackendConnectionError("Not connected")
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _translate_errors(self, store: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as e:
            message = str(e)
            if message.startswith(_UNIQUE_PREFIX):
                column = message[len(_UNIQUE_PREFIX):].split(",")[0].strip().split(".")[-1]
                raise UniqueConstraintError(store, column) from e
            raise ConstraintViolationError(message, store=store) from e
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}", store=store) from e

    async def connect(self) -> None:
        """Open the database file and check it is usable.

        Raises:
            BackendConnectionError: If the file cannot be opened
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._open()
            conn.close()
        except (OSError, sqlite3.Error) as e:
            raise BackendConnectionError(f"Cannot open SQLite database {self.path}: {e}") from e
        self._connected = True
        logger.info(f"SQLiteBackend connected: {self.path}")

    async def close(self) -> None:
        for cursor in list(self._active_cursors):
            logger.warning(f"Releasing cursor on '{cursor._store}' left open at close")
            await cursor.release()
        self._connected = False
        logger.info("SQLiteBackend closed")

    async def ensure_store(self, store: str, columns: Sequence[ColumnSpec]) -> None:
        """Create the table for ``store`` or add its missing columns."""
        table = quote_identifier(store)
        with self._get_connection() as conn, self._translate_errors(store):
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} ("
                f"{quote_identifier(ID_FIELD)} TEXT PRIMARY KEY, "
                f"{quote_identifier(DISCRIMINATOR_FIELD)} TEXT)"
            )
            existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
            for column in columns:
                if column.name in (ID_FIELD, DISCRIMINATOR_FIELD):
                    continue
                if column.name not in existing:
                    sql_type = _SQL_TYPES.get(column.data_type, "TEXT")
                    conn.execute(
                        f"ALTER TABLE {table} ADD COLUMN {quote_identifier(column.name)} {sql_type}"
                    )
                    existing.add(column.name)
                if column.unique:
                    index = quote_identifier(f"ux_{store}_{column.name}")
                    conn.execute(
                        f"CREATE UNIQUE INDEX IF NOT EXISTS {index} "
                        f"ON {table} ({quote_identifier(column.name)})"
                    )

        declared = self._columns.setdefault(store, {})
        for column in columns:
            declared[column.name] = column
        logger.debug("Store ensured", extra={"store": store, "columns": len(columns)})

    async def drop_store(self, store: str) -> None:
        with self._get_connection() as conn, self._translate_errors(store):
            conn.execute(f"DROP TABLE IF EXISTS {quote_identifier(store)}")
        self._columns.pop(store, None)

    def _data_type(self, store: str, name: str) -> Optional[PrimitiveDataType]:
        column = self._columns.get(store, {}).get(name)
        return column.data_type if column else None

    def _decode_row(self, store: str, row: sqlite3.Row) -> dict[str, Any]:
        doc = {}
        for key in row.keys():
            value = decode_value(self._data_type(store, key), row[key])
            if value is not None:
                doc[key] = value
        return doc

    def _where(self, store: str, filter: Mapping[str, Any]) -> tuple[str, list[Any]]:
        clauses = []
        params: list[Any] = []
        for key, value in filter.items():
            if value is None:
                clauses.append(f"{quote_identifier(key)} IS NULL")
            else:
                clauses.append(f"{quote_identifier(key)} = ?")
                params.append(encode_value(self._data_type(store, key), value))
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _select_sql(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions],
    ) -> tuple[str, list[Any]]:
        options = options or FindOptions()
        where, params = self._where(store, filter)
        sql = f"SELECT * FROM {quote_identifier(store)}{where}"
        if options.sort:
            order = ", ".join(
                f"{quote_identifier(name)} {'DESC' if direction < 0 else 'ASC'} NULLS LAST"
                for name, direction in options.sort
            )
            sql += f" ORDER BY {order}"
        if options.limit is not None or options.skip:
            sql += " LIMIT ? OFFSET ?"
            params += [options.limit if options.limit is not None else -1, options.skip]
        return sql, params

    async def insert_one(self, store: str, doc: Mapping[str, Any]) -> Any:
        doc = dict(doc)
        identity = doc.get(ID_FIELD) or str(uuid.uuid4())
        doc[ID_FIELD] = identity

        names = list(doc.keys())
        columns = ", ".join(quote_identifier(n) for n in names)
        placeholders = ", ".join("?" for _ in names)
        params = [encode_value(self._data_type(store, n), doc[n]) for n in names]

        with self._get_connection() as conn, self._translate_errors(store):
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    f"INSERT INTO {quote_identifier(store)} ({columns}) VALUES ({placeholders})",
                    params,
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug("Row inserted", extra={"store": store, "identity": identity})
        return identity

    async def find_one(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions] = None,
    ) -> Optional[dict[str, Any]]:
        options = (options or FindOptions()).with_limit(1)
        sql, params = self._select_sql(store, filter, options)
        with self._get_connection() as conn, self._translate_errors(store):
            row = conn.execute(sql, params).fetchone()
        return self._decode_row(store, row) if row else None

    async def find(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions] = None,
    ) -> SQLiteCursor:
        if not self._connected:
            raise BackendConnectionError("Not connected", store=store)
        sql, params = self._select_sql(store, filter, options)
        with self._translate_errors(store):
            conn = self._open()
            try:
                result = conn.execute(sql, params)
            except sqlite3.Error:
                conn.close()
                raise
        cursor = SQLiteCursor(self, store, conn, result)
        self._active_cursors.add(cursor)
        return cursor

    def _release_cursor(self, cursor: SQLiteCursor) -> None:
        self._active_cursors.discard(cursor)

    async def update_one(self, store: str, identity: Any, values: Mapping[str, Any]) -> bool:
        values = {k: v for k, v in values.items() if k != ID_FIELD}
        table = quote_identifier(store)
        with self._get_connection() as conn, self._translate_errors(store):
            if not values:
                row = conn.execute(
                    f"SELECT 1 FROM {table} WHERE {quote_identifier(ID_FIELD)} = ?",
                    (identity,),
                ).fetchone()
                return row is not None

            assignments = ", ".join(f"{quote_identifier(n)} = ?" for n in values)
            params = [encode_value(self._data_type(store, n), v) for n, v in values.items()]
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE {quote_identifier(ID_FIELD)} = ?",
                    params + [identity],
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return result.rowcount > 0

    async def delete_one(self, store: str, identity: Any) -> bool:
        with self._get_connection() as conn, self._translate_errors(store):
            result = conn.execute(
                f"DELETE FROM {quote_identifier(store)} WHERE {quote_identifier(ID_FIELD)} = ?",
                (identity,),
            )
        return result.rowcount > 0

    async def count(self, store: str, filter: Mapping[str, Any]) -> int:
        where, params = self._where(store, filter)
        with self._get_connection() as conn, self._translate_errors(store):
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM {quote_identifier(store)}{where}", params
            ).fetchone()
        return int(row["n"])
