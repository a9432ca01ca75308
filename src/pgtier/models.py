"""Data model for the tiering catalog and storage outcomes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any

from pgtier.enums import BucketStatus, FailureKind, SourceState, TierState
from pgtier.errors import InvalidArtifactNameError, InvalidCredentialError
from pgtier.timestamps import from_db, utc_now

# us-east-1, eu-central-1, ap-southeast-2, us-gov-west-1, il-central-1
REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d{1,2}$")

_REQUIRED_TEXT = ("user_name", "bucket", "access_key", "secret_key", "region", "fdw_server_name")


def validate_artifact_name(name: str) -> str:
    """Check that ``name`` is a relative file name inside its tier directory.

    The name doubles as the storage key, so it must stay exactly as given.

    Raises:
        InvalidArtifactNameError: Empty, absolute, or containing ``..``
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidArtifactNameError(str(name), "must be a non-empty string")
    if name.startswith(("/", "\\")) or PureWindowsPath(name).drive:
        raise InvalidArtifactNameError(name, "must be relative to the tier directory")
    if ".." in PurePosixPath(name.replace("\\", "/")).parts:
        raise InvalidArtifactNameError(name, "must not contain '..'")
    return name


@dataclass
class Credential:
    """The single active storage provider configuration."""

    user_name: str
    bucket: str
    access_key: str
    secret_key: str = field(repr=False)
    region: str
    fdw_server_name: str
    fdw_server_user_created: bool = False
    created_on: datetime | None = None
    updated_on: datetime | None = None

    def validate(self) -> None:
        """Raise InvalidCredentialError on empty fields or a malformed region."""
        for name in _REQUIRED_TEXT:
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidCredentialError(name, "must be a non-empty string")
        if not REGION_PATTERN.match(self.region):
            raise InvalidCredentialError("region", f"{self.region!r} is not a provider region token")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Credential:
        return cls(
            user_name=row["user_name"],
            bucket=row["bucket"],
            access_key=row["access_key"],
            secret_key=row["secret_key"],
            region=row["region"],
            fdw_server_name=row["fdw_server_name"],
            fdw_server_user_created=bool(row["fdw_server_user_created"]),
            created_on=from_db(row["created_on"]),
            updated_on=from_db(row["updated_on"]),
        )


@dataclass
class Source:
    """A relation registered for tiering."""

    identity: int
    namespace: int
    original_name: str
    renamed_name: str
    state: SourceState = SourceState.UNTIERED
    enabled: bool = False
    dropped: bool = False
    parent_identity: int | None = None
    created_on: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Source:
        return cls(
            identity=row["src_oid"],
            namespace=row["src_relnamespace"],
            original_name=row["src_orig_relname"],
            renamed_name=row["src_new_relname"],
            state=SourceState(row["src_state"]),
            enabled=bool(row["src_enabled"]),
            dropped=bool(row["src_dropped"]),
            parent_identity=row["src_inhparent"],
            created_on=from_db(row["src_created_on"]),
        )


@dataclass
class Target:
    """One tiered artifact derived from a Source."""

    identity: int
    relname: str
    namespace: int
    source_identity: int
    tier_state: TierState
    ddl_snapshot: str
    tier_directory: str
    artifact_name: str
    partition_bound: str | None = None
    attempts: int = 0
    created_on: datetime | None = None
    state_changed_on: datetime | None = None
    failure_kind: FailureKind | None = None
    failure_message: str | None = None
    bucket: str | None = None
    bucket_status: BucketStatus | None = None
    etag: str | None = None
    version_id: str | None = None
    tiered_on: datetime | None = None

    @property
    def object_key(self) -> str:
        return self.artifact_name

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Target:
        return cls(
            identity=row["tgt_oid"],
            relname=row["tgt_relname"],
            namespace=row["tgt_relnamespace"],
            source_identity=row["tgt_src_oid"],
            tier_state=TierState(row["tgt_tier_state"]),
            ddl_snapshot=row["tgt_ddl"],
            tier_directory=row["tgt_tier_dir"],
            artifact_name=row["tgt_artifact_name"],
            partition_bound=row["tgt_src_partition_bound"],
            attempts=row["tgt_attempts"],
            created_on=from_db(row["tgt_created_on"]),
            state_changed_on=from_db(row["tgt_state_changed_on"]),
            failure_kind=FailureKind(row["tgt_failure_kind"]) if row["tgt_failure_kind"] else None,
            failure_message=row["tgt_failure_message"],
            bucket=row["tgt_bucket"],
            bucket_status=BucketStatus(row["tgt_bucket_status"]) if row["tgt_bucket_status"] else None,
            etag=row["tgt_etag"],
            version_id=row["tgt_version_id"],
            tiered_on=from_db(row["tgt_tiered_on"]),
        )


@dataclass(frozen=True)
class UploadAck:
    """Provider confirmation of a stored artifact.

    ``etag`` and ``version_id`` are only present when the provider returns
    them (``version_id`` requires a versioned bucket).
    """

    bucket: str
    key: str
    size_bytes: int
    etag: str | None = None
    version_id: str | None = None
    uploaded_at: datetime = field(default_factory=utc_now)

    @property
    def token(self) -> str | None:
        """Best integrity/version token available."""
        return self.version_id or self.etag

    def to_dict(self) -> dict[str, Any]:
        result = {f.name: getattr(self, f.name) for f in fields(self)}
        result["uploaded_at"] = self.uploaded_at.isoformat()
        return result
