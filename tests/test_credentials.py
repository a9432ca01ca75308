"""Tests for the credential store."""

import sqlite3

import pytest

from pgtier.credentials import CredentialStore
from pgtier.errors import (
    ConfigError,
    InvalidCredentialError,
    MultipleConfiguredError,
    NotConfiguredError,
)
from pgtier.models import Credential


def _row_count(conn) -> int:
    return conn.execute("SELECT COUNT(*) FROM server_credential").fetchone()[0]


class TestCredentialValidation:
    """Tests for Credential.validate."""

    @pytest.mark.parametrize("region", ["us-east-1", "eu-central-1", "ap-southeast-2", "us-gov-west-1"])
    def test_accepts_provider_regions(self, credential, region):
        credential.region = region
        credential.validate()

    @pytest.mark.parametrize("region", ["", "US-EAST-1", "useast1", "us-east", "us east 1"])
    def test_rejects_malformed_region(self, credential, region):
        credential.region = region
        with pytest.raises(InvalidCredentialError) as exc_info:
            credential.validate()
        assert exc_info.value.field == "region"

    @pytest.mark.parametrize("field", ["user_name", "bucket", "access_key", "secret_key", "fdw_server_name"])
    def test_rejects_empty_fields(self, credential, field):
        setattr(credential, field, "  ")
        with pytest.raises(InvalidCredentialError) as exc_info:
            credential.validate()
        assert exc_info.value.field == field

    def test_secret_not_in_repr(self, credential):
        assert "sk1" not in repr(credential)
        assert "ak1" in repr(credential)


class TestCredentialStore:
    """Tests for CredentialStore."""

    def test_get_when_not_configured(self, credential_store):
        assert credential_store.exists() is False
        with pytest.raises(NotConfiguredError):
            credential_store.get()

    def test_not_configured_is_config_error(self, credential_store):
        with pytest.raises(ConfigError) as exc_info:
            credential_store.get()
        assert exc_info.value.retryable is False

    def test_set_and_get(self, credential_store, credential):
        stored = credential_store.set(credential)

        assert stored.bucket == "cold-archive"
        assert stored.region == "us-east-1"
        assert stored.created_on is not None
        assert stored.updated_on is None
        assert stored.fdw_server_user_created is False
        assert credential_store.get().access_key == "ak1"
        assert credential_store.exists() is True

    def test_second_set_without_rotation_fails(self, conn, credential_store, credential):
        credential_store.set(credential)

        other = Credential(
            user_name="postgres",
            bucket="other-bucket",
            access_key="ak2",
            secret_key="sk2",
            region="eu-west-1",
            fdw_server_name="pg_tier_s3_srv",
        )
        with pytest.raises(MultipleConfiguredError):
            credential_store.set(other)

        assert _row_count(conn) == 1
        assert credential_store.get(use_cache=False).bucket == "cold-archive"

    def test_rotation_replaces_in_place(self, conn, credential_store, credential):
        first = credential_store.set(credential)

        rotated = Credential(
            user_name="postgres",
            bucket="cold-archive",
            access_key="ak2",
            secret_key="sk2",
            region="eu-west-1",
            fdw_server_name="pg_tier_s3_srv",
            fdw_server_user_created=True,
        )
        stored = credential_store.set(rotated, rotate=True)

        assert _row_count(conn) == 1
        assert stored.access_key == "ak2"
        assert stored.region == "eu-west-1"
        assert stored.fdw_server_user_created is True
        assert stored.created_on == first.created_on
        assert stored.updated_on is not None

    def test_invalid_credential_not_written(self, conn, credential_store, credential):
        credential.bucket = ""
        with pytest.raises(InvalidCredentialError):
            credential_store.set(credential)
        assert _row_count(conn) == 0

    def test_table_constraint_keeps_single_row(self, conn, configured):
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO server_credential (cred_id, created_on, user_name, bucket, access_key, "
                "secret_key, region, fdw_server_name, fdw_server_user_created) "
                "VALUES (2, '2026-01-01', 'u', 'b', 'a', 's', 'us-east-1', 'srv', 0)"
            )

    def test_concurrent_insert_reported_as_multiple(self, conn, credential_store, credential):
        """A row inserted by another writer after our existence check."""
        other_writer = CredentialStore(conn)
        original_query_one = credential_store.query_one

        def racing_query_one(sql, params=()):
            result = original_query_one(sql, params)
            if sql.startswith("SELECT cred_id FROM server_credential"):
                other_writer.set(credential)
            return result

        credential_store.query_one = racing_query_one

        with pytest.raises(MultipleConfiguredError) as exc_info:
            credential_store.set(credential)
        assert isinstance(exc_info.value.cause, sqlite3.IntegrityError)
        assert _row_count(conn) == 1


class TestCredentialCache:
    """Tests for credential caching and invalidation."""

    def test_get_is_cached(self, conn, credential_store, configured):
        first = credential_store.get()
        conn.execute("UPDATE server_credential SET access_key = 'changed'")
        conn.commit()

        assert credential_store.get() is first
        assert credential_store.get(use_cache=False).access_key == "changed"

    def test_invalidate_rereads(self, conn, credential_store, configured):
        credential_store.get()
        conn.execute("UPDATE server_credential SET access_key = 'changed'")
        conn.commit()

        credential_store.invalidate()

        assert credential_store.get().access_key == "changed"

    def test_rotation_invalidates_cache(self, credential_store, credential, configured):
        credential_store.get()
        credential.access_key = "ak-rotated"

        credential_store.set(credential, rotate=True)

        assert credential_store.get().access_key == "ak-rotated"
