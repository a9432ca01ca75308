"""Pytest configuration and fixtures.

The catalog runs on in-memory SQLite; the storage provider is either
botocore's Stubber (wire-level expectations) or :class:`FakeS3Client`
(stateful, for pipeline scenarios).
"""

import hashlib
import sqlite3
import threading
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from pgtier.config import TierSettings, reset_settings
from pgtier.credentials import CredentialStore
from pgtier.models import Credential
from pgtier.pipeline import TierPipeline
from pgtier.registry import TierRegistry
from pgtier.schema import create_tables


def client_error(code: str, status: int, operation: str, message: str = "") -> ClientError:
    """Build a botocore ClientError the way the S3 client raises it."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls pgtier makes.

    Queue errors in ``list_errors`` / ``create_errors`` / ``put_errors``;
    each call pops one before doing any work.
    """

    def __init__(self, buckets=(), versioned: bool = False):
        self.buckets: dict[str, str | None] = {name: None for name in buckets}
        self.objects: dict[tuple[str, str], bytes] = {}
        self.calls: list[str] = []
        self.list_errors: list[Exception] = []
        self.create_errors: list[Exception] = []
        self.put_errors: list[Exception] = []
        self.versioned = versioned
        self._versions = 0
        self._lock = threading.Lock()

    def list_buckets(self, **kwargs):
        with self._lock:
            self.calls.append("list_buckets")
            if self.list_errors:
                raise self.list_errors.pop(0)
            return {"Buckets": [{"Name": name} for name in sorted(self.buckets)]}

    def create_bucket(self, Bucket, CreateBucketConfiguration=None):
        with self._lock:
            self.calls.append("create_bucket")
            if self.create_errors:
                raise self.create_errors.pop(0)
            if Bucket in self.buckets:
                raise client_error("BucketAlreadyOwnedByYou", 409, "CreateBucket")
            self.buckets[Bucket] = (CreateBucketConfiguration or {}).get("LocationConstraint")
            return {"Location": f"/{Bucket}"}

    def put_object(self, Bucket, Key, Body, **kwargs):
        with self._lock:
            self.calls.append("put_object")
            if self.put_errors:
                raise self.put_errors.pop(0)
            if Bucket not in self.buckets:
                raise client_error("NoSuchBucket", 404, "PutObject")
            data = Body.read()
            self.objects[(Bucket, Key)] = data
            response = {"ETag": f'"{hashlib.md5(data).hexdigest()}"'}
            if self.versioned:
                self._versions += 1
                response["VersionId"] = f"v{self._versions}"
            return response


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Keep ambient PGTIER_* variables out of the tests."""
    monkeypatch.delenv("PGTIER_STORAGE_ENDPOINT_URL", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def conn():
    """In-memory SQLite catalog with the tier tables."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    c.row_factory = sqlite3.Row
    create_tables(c)
    yield c
    c.close()


@pytest.fixture
def registry(conn) -> TierRegistry:
    return TierRegistry(conn)


@pytest.fixture
def credential_store(conn) -> CredentialStore:
    return CredentialStore(conn)


@pytest.fixture
def credential() -> Credential:
    return Credential(
        user_name="postgres",
        bucket="cold-archive",
        access_key="ak1",
        secret_key="sk1",
        region="us-east-1",
        fdw_server_name="pg_tier_s3_srv",
    )


@pytest.fixture
def configured(credential_store, credential) -> Credential:
    """Credential row already stored."""
    return credential_store.set(credential)


@pytest.fixture
def settings() -> TierSettings:
    return TierSettings(
        provision_max_retries=2,
        upload_max_retries=2,
        retry_base_delay=0,
        retry_max_delay=0,
        stale_upload_seconds=600,
        requeue_max_attempts=3,
        worker_max_concurrent=4,
    )


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def pipeline(registry, credential_store, fake_s3, settings) -> TierPipeline:
    return TierPipeline(
        registry,
        credential_store,
        client_factory=lambda credential: fake_s3,
        settings=settings,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def export_dir(tmp_path) -> Path:
    """Directory holding exported artifacts."""
    path = tmp_path / "export"
    path.mkdir()
    return path


@pytest.fixture
def source(registry):
    return registry.register_source(
        identity=16384,
        namespace=2200,
        original_name="orders_2019",
        renamed_name="orders_2019_tiered",
    )


@pytest.fixture
def make_target(registry, source, export_dir):
    """Create a PENDING Target, writing its artifact unless ``write=False``."""

    def _make(identity: int = 20001, artifact_name: str = "part-0001.parquet", write: bool = True,
              content: bytes = b"PAR1\x00columnar\x00PAR1"):
        if write:
            (export_dir / artifact_name).write_bytes(content)
        return registry.create_target(
            identity=identity,
            source_identity=source.identity,
            relname="orders_2019",
            namespace=2200,
            ddl_snapshot="CREATE TABLE orders_2019 (id bigint, placed_at timestamptz)",
            tier_directory=str(export_dir),
            artifact_name=artifact_name,
        )

    return _make
