"""Credential store - the single-row storage provider configuration.

The credential is read by every tiering job and written only by the
storage-configuration subsystem. Reads are cached on the store instance;
``set()`` and ``invalidate()`` drop the cache so a rotated key is picked up
by the next batch.
"""

from __future__ import annotations

import structlog

from pgtier.dialect import Dialect
from pgtier.errors import MultipleConfiguredError, NotConfiguredError
from pgtier.models import Credential
from pgtier.protocols import Connection
from pgtier.repository import BaseRepository
from pgtier.timestamps import to_db, utc_now

logger = structlog.get_logger()

_COLUMNS = (
    "user_name, bucket, access_key, secret_key, region, fdw_server_name, "
    "fdw_server_user_created, created_on, updated_on"
)


def _is_singleton_violation(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in ("unique", "duplicate", "only_one_row_check", "check constraint"))


class CredentialStore(BaseRepository):
    """Repository for the ``server_credential`` singleton."""

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        super().__init__(conn, dialect)
        self._cached: Credential | None = None

    def get(self, *, use_cache: bool = True) -> Credential:
        """Return the active credential.

        Raises:
            NotConfiguredError: If no credential row exists.
        """
        with self._lock:
            if use_cache and self._cached is not None:
                return self._cached

            row = self.query_one(f"SELECT {_COLUMNS} FROM server_credential WHERE cred_id = 1")
            if row is None:
                raise NotConfiguredError()

            self._cached = Credential.from_row(row)
            return self._cached

    def exists(self) -> bool:
        with self._lock:
            return self.query_one("SELECT cred_id FROM server_credential WHERE cred_id = 1") is not None

    def set(self, credential: Credential, *, rotate: bool = False) -> Credential:
        """Persist the credential.

        Args:
            credential: New configuration. Validated before anything is written.
            rotate: Replace an existing row in place. Without it, an existing
                row makes the call fail.

        Raises:
            InvalidCredentialError: Empty field or malformed region.
            MultipleConfiguredError: A row exists and ``rotate`` is false.
        """
        credential.validate()
        now = to_db(utc_now())

        with self._lock:
            existing = self.exists()

            if existing and not rotate:
                raise MultipleConfiguredError()

            try:
                if not existing:
                    self.insert(
                        "server_credential",
                        {
                            "cred_id": 1,
                            "created_on": now,
                            "updated_on": None,
                            "user_name": credential.user_name,
                            "bucket": credential.bucket,
                            "access_key": credential.access_key,
                            "secret_key": credential.secret_key,
                            "region": credential.region,
                            "fdw_server_name": credential.fdw_server_name,
                            "fdw_server_user_created": credential.fdw_server_user_created,
                        },
                    )
                else:
                    p = self.dialect.placeholder(0)
                    self.execute(
                        f"""
                        UPDATE server_credential
                        SET updated_on = {p}, user_name = {p}, bucket = {p}, access_key = {p},
                            secret_key = {p}, region = {p}, fdw_server_name = {p},
                            fdw_server_user_created = {p}
                        WHERE cred_id = 1
                        """,
                        (
                            now,
                            credential.user_name,
                            credential.bucket,
                            credential.access_key,
                            credential.secret_key,
                            credential.region,
                            credential.fdw_server_name,
                            credential.fdw_server_user_created,
                        ),
                    )
                self.commit()
            except Exception as e:
                self.rollback()
                if not existing and _is_singleton_violation(e):
                    # Another writer configured the row first
                    raise MultipleConfiguredError(cause=e) from e
                raise

            self._cached = None
            stored = self.get()

        logger.info(
            "credential_rotated" if existing else "credential_configured",
            user_name=stored.user_name,
            bucket=stored.bucket,
            region=stored.region,
        )
        return stored

    def invalidate(self) -> None:
        """Drop the cached credential; the next ``get()`` re-reads the row."""
        with self._lock:
            self._cached = None
