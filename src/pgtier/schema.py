"""
Catalog tables for tiered data.

Defines table names and DDL for the three tables the tiering pipeline reads
and writes:

    server_credential → single-row storage provider configuration
    source            → one row per relation eligible for tiering
    target            → one row per tiered artifact

The DDL sticks to types and constraints that PostgreSQL and SQLite both
accept, so the same statements back production catalogs and test fixtures.

Examples:
    >>> from pgtier.schema import TIER_TABLES, create_tables
    >>> TIER_TABLES["target"]
    'target'
    >>> create_tables(conn)
"""

from pgtier.protocols import Connection

TIER_TABLES = {
    "credential": "server_credential",
    "source": "source",
    "target": "target",
}

# The CHECK on cred_id pins the table to a single row.
CREDENTIAL_DDL = """
CREATE TABLE IF NOT EXISTS server_credential (
    cred_id INTEGER NOT NULL UNIQUE DEFAULT 1,
    created_on TIMESTAMPTZ NOT NULL,
    updated_on TIMESTAMPTZ,
    user_name TEXT NOT NULL,
    bucket TEXT NOT NULL,
    access_key TEXT NOT NULL,
    secret_key TEXT NOT NULL,
    region TEXT NOT NULL,
    fdw_server_name TEXT NOT NULL,
    fdw_server_user_created BOOLEAN NOT NULL,
    CONSTRAINT only_one_row_check CHECK (cred_id = 1)
)
"""

SOURCE_DDL = """
CREATE TABLE IF NOT EXISTS source (
    src_oid BIGINT NOT NULL UNIQUE,
    src_relnamespace BIGINT NOT NULL,
    src_inhparent BIGINT,
    src_orig_relname TEXT NOT NULL,
    src_new_relname TEXT NOT NULL,
    src_state TEXT NOT NULL,
    src_enabled BOOLEAN NOT NULL,
    src_dropped BOOLEAN NOT NULL,
    src_created_on TIMESTAMPTZ NOT NULL
)
"""

TARGET_DDL = """
CREATE TABLE IF NOT EXISTS target (
    tgt_oid BIGINT NOT NULL UNIQUE,
    tgt_relname TEXT NOT NULL,
    tgt_relnamespace BIGINT NOT NULL,
    tgt_src_oid BIGINT NOT NULL REFERENCES source (src_oid),
    tgt_tier_state TEXT NOT NULL,
    tgt_ddl TEXT NOT NULL,
    tgt_tier_dir TEXT NOT NULL,
    tgt_src_partition_bound TEXT,
    tgt_created_on TIMESTAMPTZ NOT NULL,
    tgt_artifact_name TEXT NOT NULL,
    tgt_attempts INTEGER NOT NULL DEFAULT 0,
    tgt_state_changed_on TIMESTAMPTZ NOT NULL,
    tgt_failure_kind TEXT,
    tgt_failure_message TEXT,
    tgt_bucket TEXT,
    tgt_bucket_status TEXT,
    tgt_etag TEXT,
    tgt_version_id TEXT,
    tgt_tiered_on TIMESTAMPTZ
)
"""

TARGET_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_target_src_oid ON target (tgt_src_oid)",
    "CREATE INDEX IF NOT EXISTS idx_target_state ON target (tgt_tier_state, tgt_state_changed_on)",
]

TIER_DDL = [CREDENTIAL_DDL, SOURCE_DDL, TARGET_DDL, *TARGET_INDEXES]


def create_tables(conn: Connection) -> None:
    """Create the catalog tables if they do not exist, then commit."""
    for statement in TIER_DDL:
        conn.execute(statement)
    conn.commit()


__all__ = ["TIER_TABLES", "TIER_DDL", "create_tables"]
