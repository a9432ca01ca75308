"""UTC timestamp helpers.

Timestamps are written to the catalog as ISO-8601 strings so that the same
statements work on SQLite and PostgreSQL; PostgreSQL casts them to
``timestamptz`` and hands ``datetime`` objects back.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_db(value: datetime) -> str:
    """Serialize a datetime for a catalog column."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db(value: datetime | str | None) -> datetime | None:
    """Parse a catalog timestamp (datetime from psycopg, str from sqlite3)."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value
