"""SQL dialect abstraction for the catalog tables.

The registry writes portable SQL and asks the dialect only for what differs
between backends: placeholder style.

    >>> get_dialect("postgresql").placeholders(2)
    '%s, %s'
    >>> get_dialect("sqlite").placeholders(2)
    '?, ?'
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract."""

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))


_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        ValueError: If ``db_type`` is not recognised.
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise ValueError(f"Unknown dialect {db_type!r}. Choose from: {sorted(_DIALECTS)}")
    return _DIALECTS[key]


def dialect_for(conn: Any) -> Dialect:
    """Pick the dialect matching a live DB-API connection."""
    module = type(conn).__module__
    if module.startswith("sqlite3"):
        return _DIALECTS["sqlite"]
    if module.startswith("psycopg"):
        return _DIALECTS["postgresql"]
    raise ValueError(f"Cannot infer SQL dialect for connection type {type(conn).__name__}")


__all__ = ["Dialect", "SQLiteDialect", "PostgreSQLDialect", "get_dialect", "dialect_for"]
