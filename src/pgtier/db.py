"""PostgreSQL catalog access through a psycopg connection pool.

Production callers borrow one pooled connection per batch and bind the
repositories to it::

    init_db()
    with catalog() as (registry, credentials):
        worker = TierWorker(TierPipeline(registry, credentials))
        worker.run_batch()

The pool is sized from ``PGTIER_DATABASE_POOL_*`` and hands out connections
with ``dict_row`` rows, which :class:`~pgtier.repository.BaseRepository`
reads directly.
"""

from contextlib import contextmanager
from typing import Iterator

import structlog
from psycopg import Connection
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from pgtier.config import get_settings
from pgtier.credentials import CredentialStore
from pgtier.registry import TierRegistry
from pgtier.schema import create_tables

logger = structlog.get_logger()

_pool: ConnectionPool | None = None


def get_pool() -> ConnectionPool:
    """Get or create the catalog pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = ConnectionPool(
            settings.database_url,
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
            kwargs={"row_factory": dict_row},
        )
        logger.info(
            "catalog_pool_created",
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
        )
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.close()
        _pool = None


@contextmanager
def get_connection() -> Iterator[Connection]:
    """Borrow a connection; it returns to the pool on exit."""
    with get_pool().connection() as conn:
        yield conn


@contextmanager
def catalog() -> Iterator[tuple[TierRegistry, CredentialStore]]:
    """Registry and credential store sharing one pooled connection.

    Both repositories commit their own units of work; the connection's
    dialect is inferred from the driver.
    """
    with get_connection() as conn:
        yield TierRegistry(conn), CredentialStore(conn)


def init_db() -> None:
    """Create the catalog tables if missing."""
    with get_connection() as conn:
        create_tables(conn)
    logger.info("catalog_initialized")
