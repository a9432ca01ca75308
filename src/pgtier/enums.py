"""Enumerations shared by the registry, the storage layer and the pipeline."""

from enum import Enum


class SourceState(str, Enum):
    """Tiering state of a source relation."""

    UNTIERED = "UNTIERED"  # Registered, nothing tiered yet
    ENABLED = "ENABLED"  # At least one artifact tiered
    DISABLED = "DISABLED"  # Operator switched tiering off


class TierState(str, Enum):
    """Lifecycle state of a tiered artifact (Target row)."""

    PENDING = "PENDING"
    UPLOADING = "UPLOADING"
    TIERED = "TIERED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is TierState.TIERED


# Every edge the registry may take. TIERED has no outgoing edge.
ALLOWED_TRANSITIONS: dict[TierState, frozenset[TierState]] = {
    TierState.PENDING: frozenset({TierState.UPLOADING, TierState.FAILED}),
    TierState.UPLOADING: frozenset({TierState.TIERED, TierState.FAILED}),
    TierState.FAILED: frozenset({TierState.PENDING, TierState.UPLOADING}),
    TierState.TIERED: frozenset(),
}


def can_transition(current: TierState, new: TierState) -> bool:
    """Check whether ``current -> new`` is an allowed Target edge."""
    return new in ALLOWED_TRANSITIONS[current]


class BucketStatus(str, Enum):
    """Outcome of ensuring a bucket exists."""

    ALREADY_PRESENT = "ALREADY_PRESENT"
    CREATED = "CREATED"


class FailureKind(str, Enum):
    """Why a Target landed in FAILED."""

    PROVISION = "PROVISION"
    TRANSPORT = "TRANSPORT"
    LOCAL_READ = "LOCAL_READ"
    SOURCE_DROPPED = "SOURCE_DROPPED"
    STALE = "STALE"

    @property
    def requeueable(self) -> bool:
        """Whether automatic requeue may send the Target back to PENDING."""
        return self in (FailureKind.PROVISION, FailureKind.TRANSPORT, FailureKind.STALE)
