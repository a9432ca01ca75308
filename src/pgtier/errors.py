"""
Structured error types for pgtier.

Every failure the tiering pipeline can meet is a :class:`TierError` carrying
a category, an explicit retry flag, structured context and the chained
provider exception. The pipeline decides between "retry", "record FAILED"
and "abort the job" by looking at the error type alone.

Hierarchy::

    TierError
    ├── ConfigError                 (CONFIG, never retryable, aborts the job)
    │   ├── NotConfiguredError
    │   ├── MultipleConfiguredError
    │   └── InvalidCredentialError
    ├── StorageError                (STORAGE)
    │   └── ProvisionError          kind=PROVISION, retryable by default
    ├── UploadError                 (STORAGE)
    │   ├── TransportError          kind=TRANSPORT, retryable
    │   └── LocalReadError          kind=LOCAL_READ, not retryable
    └── RegistryError               (DATABASE)
        ├── SourceNotFoundError     aborts the job
        ├── TargetNotFoundError     aborts the job
        ├── SourceExistsError
        ├── TargetExistsError
        ├── SourceDroppedError
        ├── InvalidArtifactNameError  name escapes the tier directory
        └── InvalidTransitionError
            └── StaleStateError     lost a compare-and-set race

Examples:
    >>> err = TransportError("put_object failed", cause=ConnectionError("reset"))
    >>> err.retryable, err.failure_kind
    (True, <FailureKind.TRANSPORT: 'TRANSPORT'>)
    >>> err.with_context(bucket="cold-archive").to_dict()["context"]
    {'bucket': 'cold-archive'}

Usage:
    try:
        client.put_object(Bucket=bucket, Key=key, Body=fh)
    except ClientError as e:
        raise TransportError(f"put_object failed for {key}", cause=e)
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pgtier.enums import FailureKind, TierState


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"
    STORAGE = "STORAGE"
    DATABASE = "DATABASE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


class TierError(Exception):
    """
    Base exception for all pgtier errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override ``retryable`` per instance when the provider tells them the
    failure is permanent.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TierError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (never retryable)
# =============================================================================


class ConfigError(TierError):
    """Credential row missing, duplicated or malformed."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class NotConfiguredError(ConfigError):
    """No storage credential has been configured."""

    def __init__(self, message: str = "No storage credential is configured", **kwargs: Any):
        super().__init__(message, **kwargs)


class MultipleConfiguredError(ConfigError):
    """A credential row already exists and the caller did not ask to rotate it."""

    def __init__(
        self,
        message: str = "A storage credential is already configured; pass rotate=True to replace it",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)


class InvalidCredentialError(ConfigError):
    """A credential field is empty or malformed."""

    def __init__(self, field: str, reason: str, **kwargs: Any):
        self.field = field
        super().__init__(f"Invalid credential field {field!r}: {reason}", **kwargs)


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(TierError):
    """Failure talking to the object storage provider."""

    default_category = ErrorCategory.STORAGE
    failure_kind: FailureKind | None = None


class ProvisionError(StorageError):
    """Bucket listing or creation failed (other than "already owned")."""

    default_retryable = True
    failure_kind = FailureKind.PROVISION


class UploadError(TierError):
    """Base class for artifact upload failures."""

    default_category = ErrorCategory.STORAGE
    failure_kind: FailureKind | None = None


class TransportError(UploadError):
    """Network, authorization or quota failure while uploading."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True
    failure_kind = FailureKind.TRANSPORT


class LocalReadError(UploadError):
    """The local artifact is missing or unreadable; it must be regenerated."""

    default_retryable = False
    failure_kind = FailureKind.LOCAL_READ

    def __init__(self, path: str, **kwargs: Any):
        self.path = path
        super().__init__(f"Cannot read artifact {path}", **kwargs)


# =============================================================================
# REGISTRY ERRORS
# =============================================================================


class RegistryError(TierError):
    """Catalog (Source/Target) contract violation."""

    default_category = ErrorCategory.DATABASE


class SourceNotFoundError(RegistryError):
    def __init__(self, identity: int, **kwargs: Any):
        self.identity = identity
        super().__init__(f"Source not found: {identity}", **kwargs)


class TargetNotFoundError(RegistryError):
    def __init__(self, identity: int, **kwargs: Any):
        self.identity = identity
        super().__init__(f"Target not found: {identity}", **kwargs)


class SourceExistsError(RegistryError):
    def __init__(self, identity: int, **kwargs: Any):
        self.identity = identity
        super().__init__(f"Source already registered: {identity}", **kwargs)


class TargetExistsError(RegistryError):
    def __init__(self, identity: int, **kwargs: Any):
        self.identity = identity
        super().__init__(f"Target already exists: {identity}", **kwargs)


class SourceDroppedError(RegistryError):
    """The Source was dropped; no further tiering is allowed."""

    failure_kind = FailureKind.SOURCE_DROPPED

    def __init__(self, identity: int, **kwargs: Any):
        self.identity = identity
        super().__init__(f"Source {identity} is dropped", **kwargs)


class InvalidArtifactNameError(RegistryError):
    """Artifact name would resolve outside its tier directory."""

    def __init__(self, name: str, reason: str, **kwargs: Any):
        self.name = name
        super().__init__(f"Invalid artifact name {name!r}: {reason}", **kwargs)


class InvalidTransitionError(RegistryError):
    """Requested Target edge is not allowed from the row's current state."""

    def __init__(
        self,
        identity: int,
        current: TierState,
        requested: TierState,
        message: str | None = None,
        **kwargs: Any,
    ):
        self.identity = identity
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Target {identity}: cannot move {current.value} -> {requested.value}",
            **kwargs,
        )


class StaleStateError(InvalidTransitionError):
    """Another writer changed the Target between read and compare-and-set."""


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable. Unknown exceptions are not."""
    if isinstance(error, TierError):
        return error.retryable
    return False


def failure_kind_of(error: BaseException) -> FailureKind | None:
    """Return the FailureKind an error records on a FAILED Target, if any."""
    return getattr(error, "failure_kind", None)


__all__ = [
    "ErrorCategory",
    "TierError",
    "ConfigError",
    "NotConfiguredError",
    "MultipleConfiguredError",
    "InvalidCredentialError",
    "StorageError",
    "ProvisionError",
    "UploadError",
    "TransportError",
    "LocalReadError",
    "RegistryError",
    "SourceNotFoundError",
    "TargetNotFoundError",
    "SourceExistsError",
    "TargetExistsError",
    "SourceDroppedError",
    "InvalidArtifactNameError",
    "InvalidTransitionError",
    "StaleStateError",
    "is_retryable",
    "failure_kind_of",
]
