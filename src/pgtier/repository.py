"""Base repository with dialect-aware database access.

Provides :class:`BaseRepository`, which pairs a
:class:`~pgtier.protocols.Connection` with a :class:`~pgtier.dialect.Dialect`
so that the credential store and the tier registry write portable SQL
without referencing a specific driver.

Usage:
    >>> class MyRepo(BaseRepository):
    ...     def get_by_id(self, id: int):
    ...         return self.query_one(
    ...             f"SELECT * FROM source WHERE src_oid = {self.ph(1)}",
    ...             (id,),
    ...         )
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator

from pgtier.dialect import Dialect, dialect_for
from pgtier.protocols import Connection


class BaseRepository:
    """Dialect-aware base class for data-access repositories.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
        dialect: SQL dialect to use. Inferred from ``conn`` when omitted.
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or dialect_for(conn)
        # Serializes statements when one connection is shared by worker threads
        self._lock = threading.RLock()

    # -- Convenience shortcuts ---------------------------------------------

    def ph(self, count: int) -> str:
        """Shortcut for ``self.dialect.placeholders(count)``."""
        return self.dialect.placeholders(count)

    # -- Query helpers -----------------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a statement and return the raw cursor/result."""
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a SELECT and return rows as dicts."""
        cursor = self.conn.execute(sql, params)
        rows = cursor.fetchall()
        if not rows:
            return []

        # dict(row) works with sqlite3.Row and psycopg dict_row
        try:
            return [dict(row) for row in rows]
        except (TypeError, ValueError):
            pass

        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row, strict=False)) for row in rows]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Execute a SELECT and return the first row as a dict (or None)."""
        results = self.query(sql, params)
        return results[0] if results else None

    def update(self, sql: str, params: tuple = ()) -> int:
        """Execute an UPDATE/DELETE and return the affected row count."""
        cursor = self.conn.execute(sql, params)
        return cursor.rowcount

    # -- Insert helpers ----------------------------------------------------

    def insert(self, table: str, data: dict[str, Any]) -> Any:
        """Insert a single row from a dict."""
        columns = list(data.keys())
        values = list(data.values())
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({self.ph(len(values))})"
        return self.conn.execute(sql, tuple(values))

    # -- Transactions ------------------------------------------------------

    def commit(self) -> None:
        """Commit the current transaction."""
        self.conn.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.conn.rollback()

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Run a block atomically: commit on success, rollback on error."""
        with self._lock:
            try:
                yield
            except BaseException:
                self.conn.rollback()
                raise
            self.conn.commit()


__all__ = ["BaseRepository"]
