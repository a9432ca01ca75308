"""Protocol for the database connections the repositories accept.

``sqlite3.Connection`` and ``psycopg.Connection`` both satisfy it, so the
registry and the credential store run unchanged against either.
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal SYNCHRONOUS connection interface for database operations."""

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a SQL statement and return a cursor."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback the current transaction."""
        ...


__all__ = ["Connection"]
