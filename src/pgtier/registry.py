"""
Tier registry - the persisted Source/Target catalog and its state machine.

Target lifecycle::

    PENDING ──begin_upload──▶ UPLOADING ──complete_upload──▶ TIERED (terminal)
       │                        │
       │ source dropped         │ fail_upload / stale sweep
       ▼                        ▼
     FAILED ◀───────────────────┘
       │  ├──retry_target / requeue_failed──▶ PENDING
       │  └──begin_upload──────────────────▶ UPLOADING

Every edge is a single compare-and-set ``UPDATE ... WHERE tgt_tier_state IN
(expected)``. When the update touches no row the Target either does not
exist (:class:`TargetNotFoundError`) or another writer moved it first
(:class:`StaleStateError`); either way no row is left half-written.

A Target is only moved to TIERED with both a bucket status and an upload
acknowledgment for its own job, and re-tiering a relation creates a new
Target row rather than rewriting a TIERED one.

Dropping a Source is terminal: new Targets are refused and every PENDING or
UPLOADING Target of that Source is forced to FAILED with kind
SOURCE_DROPPED.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

import structlog

from pgtier.dialect import Dialect
from pgtier.enums import (
    BucketStatus,
    FailureKind,
    SourceState,
    TierState,
    can_transition,
)
from pgtier.errors import (
    InvalidTransitionError,
    SourceDroppedError,
    SourceExistsError,
    SourceNotFoundError,
    StaleStateError,
    TargetExistsError,
    TargetNotFoundError,
)
from pgtier.models import Source, Target, UploadAck, validate_artifact_name
from pgtier.protocols import Connection
from pgtier.repository import BaseRepository
from pgtier.timestamps import to_db, utc_now

logger = structlog.get_logger()

# Longest failure message kept on a Target row
MAX_FAILURE_MESSAGE = 2000


class TierRegistry(BaseRepository):
    """Repository and state machine for ``source`` and ``target`` rows."""

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        super().__init__(conn, dialect)

    # =========================================================================
    # Sources
    # =========================================================================

    def register_source(
        self,
        identity: int,
        namespace: int,
        original_name: str,
        renamed_name: str,
        parent_identity: int | None = None,
    ) -> Source:
        """Register a relation as eligible for tiering (state UNTIERED)."""
        with self.unit_of_work():
            if self._source_row(identity) is not None:
                raise SourceExistsError(identity)

            self.insert(
                "source",
                {
                    "src_oid": identity,
                    "src_relnamespace": namespace,
                    "src_inhparent": parent_identity,
                    "src_orig_relname": original_name,
                    "src_new_relname": renamed_name,
                    "src_state": SourceState.UNTIERED.value,
                    "src_enabled": False,
                    "src_dropped": False,
                    "src_created_on": to_db(utc_now()),
                },
            )

        logger.info("source_registered", source_id=identity, relname=original_name)
        return self.get_source(identity)

    def _source_row(self, identity: int) -> dict | None:
        return self.query_one(
            f"SELECT * FROM source WHERE src_oid = {self.ph(1)}",
            (identity,),
        )

    def get_source(self, identity: int) -> Source:
        with self._lock:
            row = self._source_row(identity)
        if row is None:
            raise SourceNotFoundError(identity)
        return Source.from_row(row)

    def list_sources(self, state: SourceState | None = None, include_dropped: bool = True) -> list[Source]:
        conditions = []
        params: list = []

        if state is not None:
            conditions.append(f"src_state = {self.ph(1)}")
            params.append(state.value)
        if not include_dropped:
            conditions.append(f"src_dropped = {self.ph(1)}")
            params.append(False)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        with self._lock:
            rows = self.query(
                f"SELECT * FROM source WHERE {where_clause} ORDER BY src_oid",
                tuple(params),
            )
        return [Source.from_row(row) for row in rows]

    def enable_source(self, identity: int) -> Source:
        """Switch tiering on. A source with tiered artifacts returns to ENABLED."""
        with self.unit_of_work():
            source = self.get_source(identity)
            if source.dropped:
                raise SourceDroppedError(identity)

            state = SourceState.ENABLED if self._has_tiered_targets(identity) else SourceState.UNTIERED
            self.execute(
                f"UPDATE source SET src_enabled = {self.ph(1)}, src_state = {self.ph(1)} "
                f"WHERE src_oid = {self.ph(1)}",
                (True, state.value, identity),
            )

        logger.info("source_enabled", source_id=identity, state=state.value)
        return self.get_source(identity)

    def disable_source(self, identity: int) -> Source:
        """Switch tiering off. Existing Targets are left untouched."""
        with self.unit_of_work():
            source = self.get_source(identity)
            if source.dropped:
                raise SourceDroppedError(identity)

            self.execute(
                f"UPDATE source SET src_enabled = {self.ph(1)}, src_state = {self.ph(1)} "
                f"WHERE src_oid = {self.ph(1)}",
                (False, SourceState.DISABLED.value, identity),
            )

        logger.info("source_disabled", source_id=identity)
        return self.get_source(identity)

    def mark_source_dropped(self, identity: int) -> list[Target]:
        """
        Mark a Source dropped and fail its in-flight Targets.

        Returns:
            The Targets forced from PENDING/UPLOADING to FAILED
        """
        with self.unit_of_work():
            self.get_source(identity)
            self.execute(
                f"UPDATE source SET src_dropped = {self.ph(1)}, src_enabled = {self.ph(1)} "
                f"WHERE src_oid = {self.ph(1)}",
                (True, False, identity),
            )

            in_flight = self._target_rows(
                f"tgt_src_oid = {self.ph(1)} AND tgt_tier_state IN ({self.ph(2)})",
                (identity, TierState.PENDING.value, TierState.UPLOADING.value),
            )
            forced = []
            for row in in_flight:
                target = Target.from_row(row)
                self._compare_and_set(
                    target.identity,
                    expected=(target.tier_state,),
                    new=TierState.FAILED,
                    failure_kind=FailureKind.SOURCE_DROPPED,
                    failure_message=f"source {identity} dropped",
                )
                forced.append(target.identity)

        logger.info("source_dropped", source_id=identity, forced_failed=forced)
        return [self.get_target(target_id) for target_id in forced]

    def _has_tiered_targets(self, source_identity: int) -> bool:
        row = self.query_one(
            f"SELECT COUNT(*) AS n FROM target WHERE tgt_src_oid = {self.ph(1)} "
            f"AND tgt_tier_state = {self.ph(1)}",
            (source_identity, TierState.TIERED.value),
        )
        return bool(row and row["n"])

    # =========================================================================
    # Targets
    # =========================================================================

    def create_target(
        self,
        identity: int,
        source_identity: int,
        relname: str,
        namespace: int,
        ddl_snapshot: str,
        tier_directory: str,
        partition_bound: str | None = None,
        artifact_name: str | None = None,
    ) -> Target:
        """
        Create a PENDING Target for a new artifact of ``source_identity``.

        Raises:
            SourceNotFoundError: Source is not registered
            SourceDroppedError: Source is dropped
            TargetExistsError: ``identity`` is already used
            InvalidArtifactNameError: ``artifact_name`` is absolute or contains ``..``
        """
        artifact_name = validate_artifact_name(artifact_name or f"{relname}.parquet")
        now = to_db(utc_now())

        with self.unit_of_work():
            source = self.get_source(source_identity)
            if source.dropped:
                raise SourceDroppedError(source_identity)
            if self._target_row(identity) is not None:
                raise TargetExistsError(identity)

            self.insert(
                "target",
                {
                    "tgt_oid": identity,
                    "tgt_relname": relname,
                    "tgt_relnamespace": namespace,
                    "tgt_src_oid": source_identity,
                    "tgt_tier_state": TierState.PENDING.value,
                    "tgt_ddl": ddl_snapshot,
                    "tgt_tier_dir": tier_directory,
                    "tgt_src_partition_bound": partition_bound,
                    "tgt_created_on": now,
                    "tgt_artifact_name": artifact_name,
                    "tgt_attempts": 0,
                    "tgt_state_changed_on": now,
                },
            )

        logger.info(
            "target_created",
            target_id=identity,
            source_id=source_identity,
            relname=relname,
        )
        return self.get_target(identity)

    def _target_row(self, identity: int) -> dict | None:
        return self.query_one(
            f"SELECT * FROM target WHERE tgt_oid = {self.ph(1)}",
            (identity,),
        )

    def _target_rows(self, where_clause: str, params: tuple) -> list[dict]:
        return self.query(
            f"SELECT * FROM target WHERE {where_clause} ORDER BY tgt_created_on, tgt_oid",
            params,
        )

    def get_target(self, identity: int) -> Target:
        with self._lock:
            row = self._target_row(identity)
        if row is None:
            raise TargetNotFoundError(identity)
        return Target.from_row(row)

    def list_targets(
        self,
        source_identity: int | None = None,
        state: TierState | None = None,
    ) -> list[Target]:
        conditions = []
        params: list = []

        if source_identity is not None:
            conditions.append(f"tgt_src_oid = {self.ph(1)}")
            params.append(source_identity)
        if state is not None:
            conditions.append(f"tgt_tier_state = {self.ph(1)}")
            params.append(state.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        with self._lock:
            rows = self._target_rows(where_clause, tuple(params))
        return [Target.from_row(row) for row in rows]

    def pending_targets(self, limit: int = 100) -> list[Target]:
        """PENDING Targets, oldest first."""
        with self._lock:
            rows = self.query(
                f"SELECT * FROM target WHERE tgt_tier_state = {self.ph(1)} "
                f"ORDER BY tgt_created_on, tgt_oid LIMIT {self.ph(1)}",
                (TierState.PENDING.value, limit),
            )
        return [Target.from_row(row) for row in rows]

    # =========================================================================
    # Transitions
    # =========================================================================

    def _compare_and_set(
        self,
        identity: int,
        expected: Iterable[TierState],
        new: TierState,
        increment_attempts: bool = False,
        **columns,
    ) -> None:
        """Move a Target from one of ``expected`` to ``new`` in one UPDATE.

        Extra ``columns`` (without the ``tgt_`` prefix) are written in the
        same statement. Caller holds the lock and commits.
        """
        expected = tuple(expected)
        for state in expected:
            if not can_transition(state, new):
                raise InvalidTransitionError(identity, state, new)

        assignments = [f"tgt_tier_state = {self.ph(1)}", f"tgt_state_changed_on = {self.ph(1)}"]
        params: list = [new.value, to_db(utc_now())]
        if increment_attempts:
            assignments.append("tgt_attempts = tgt_attempts + 1")
        for column, value in columns.items():
            if hasattr(value, "value"):
                value = value.value
            elif isinstance(value, datetime):
                value = to_db(value)
            assignments.append(f"tgt_{column} = {self.ph(1)}")
            params.append(value)

        updated = self.update(
            f"UPDATE target SET {', '.join(assignments)} "
            f"WHERE tgt_oid = {self.ph(1)} AND tgt_tier_state IN ({self.ph(len(expected))})",
            (*params, identity, *(state.value for state in expected)),
        )

        if updated == 0:
            row = self._target_row(identity)
            if row is None:
                raise TargetNotFoundError(identity)
            current = TierState(row["tgt_tier_state"])
            raise StaleStateError(
                identity,
                current,
                new,
                message=(
                    f"Target {identity} is {current.value}, expected one of "
                    f"{[state.value for state in expected]} to move to {new.value}"
                ),
            )

        logger.info(
            "target_state_changed",
            target_id=identity,
            to_state=new.value,
            from_states=[state.value for state in expected],
        )

    def begin_upload(self, identity: int) -> Target:
        """
        Move a PENDING or FAILED Target to UPLOADING and commit.

        Must be called before any storage call so an interrupted job leaves
        the row observably UPLOADING.

        Raises:
            SourceDroppedError: The Source was dropped; the Target is forced to FAILED
            StaleStateError: The Target is not PENDING/FAILED (another worker took it)
        """
        with self.unit_of_work():
            target = self.get_target(identity)
            source = self.get_source(target.source_identity)

            if source.dropped:
                if target.tier_state is TierState.PENDING:
                    self._compare_and_set(
                        identity,
                        expected=(TierState.PENDING,),
                        new=TierState.FAILED,
                        failure_kind=FailureKind.SOURCE_DROPPED,
                        failure_message=f"source {source.identity} dropped",
                    )
                    self.commit()
                raise SourceDroppedError(source.identity)

            self._compare_and_set(
                identity,
                expected=(TierState.PENDING, TierState.FAILED),
                new=TierState.UPLOADING,
                increment_attempts=True,
            )

        return self.get_target(identity)

    def complete_upload(
        self,
        identity: int,
        bucket: str,
        bucket_status: BucketStatus,
        ack: UploadAck,
    ) -> Target:
        """
        Move an UPLOADING Target to TIERED and stamp its Source.

        Requires the bucket status and the upload acknowledgment of this
        job. The Source becomes ENABLED on its first tiered artifact.

        Raises:
            InvalidTransitionError: Missing status/ack, or ack for another object
            SourceDroppedError: The Source was dropped mid-upload; the Target is forced to FAILED
            StaleStateError: The Target is no longer UPLOADING
        """
        if not isinstance(bucket_status, BucketStatus) or not isinstance(ack, UploadAck):
            raise InvalidTransitionError(
                identity,
                TierState.UPLOADING,
                TierState.TIERED,
                message=f"Target {identity}: TIERED requires a bucket status and an upload acknowledgment",
            )

        with self.unit_of_work():
            target = self.get_target(identity)
            if ack.bucket != bucket or ack.key != target.object_key:
                raise InvalidTransitionError(
                    identity,
                    target.tier_state,
                    TierState.TIERED,
                    message=(
                        f"Target {identity}: acknowledgment for {ack.bucket}/{ack.key} "
                        f"does not match {bucket}/{target.object_key}"
                    ),
                )

            source = self.get_source(target.source_identity)
            if source.dropped:
                if target.tier_state is TierState.UPLOADING:
                    self._compare_and_set(
                        identity,
                        expected=(TierState.UPLOADING,),
                        new=TierState.FAILED,
                        failure_kind=FailureKind.SOURCE_DROPPED,
                        failure_message=f"source {source.identity} dropped during upload",
                    )
                    self.commit()
                raise SourceDroppedError(source.identity)

            first_tiered = not self._has_tiered_targets(source.identity)
            tiered_on = utc_now()
            self._compare_and_set(
                identity,
                expected=(TierState.UPLOADING,),
                new=TierState.TIERED,
                bucket=bucket,
                bucket_status=bucket_status,
                etag=ack.etag,
                version_id=ack.version_id,
                tiered_on=tiered_on,
            )

            # First artifact enables the Source, even one disabled mid-upload
            if first_tiered:
                self.execute(
                    f"UPDATE source SET src_state = {self.ph(1)}, src_enabled = {self.ph(1)} "
                    f"WHERE src_oid = {self.ph(1)}",
                    (SourceState.ENABLED.value, True, source.identity),
                )

        if first_tiered:
            logger.info("source_first_tiered", source_id=source.identity, target_id=identity)
        logger.info(
            "target_tiered",
            target_id=identity,
            bucket=bucket,
            key=ack.key,
            bucket_status=bucket_status.value,
            token=ack.token,
        )
        return self.get_target(identity)

    def fail_upload(self, identity: int, kind: FailureKind, message: str | None = None) -> Target:
        """Move an UPLOADING Target to FAILED, recording why. Other fields are kept."""
        with self.unit_of_work():
            self._compare_and_set(
                identity,
                expected=(TierState.UPLOADING,),
                new=TierState.FAILED,
                failure_kind=kind,
                failure_message=(message or "")[:MAX_FAILURE_MESSAGE] or None,
            )

        logger.warning("target_failed", target_id=identity, failure_kind=kind.value, reason=message)
        return self.get_target(identity)

    def retry_target(self, identity: int) -> Target:
        """Re-queue a FAILED Target as PENDING. Dropped Sources cannot be retried."""
        with self.unit_of_work():
            target = self.get_target(identity)
            source = self.get_source(target.source_identity)
            if source.dropped:
                raise SourceDroppedError(source.identity)

            self._compare_and_set(identity, expected=(TierState.FAILED,), new=TierState.PENDING)

        return self.get_target(identity)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def sweep_stale_uploads(self, older_than: timedelta, now: datetime | None = None) -> list[Target]:
        """Fail UPLOADING Targets untouched for longer than ``older_than``.

        These are jobs that were abandoned or crashed after persisting
        UPLOADING. A row another writer moves in the meantime is skipped.
        """
        cutoff = to_db((now or utc_now()) - older_than)
        swept = []

        with self.unit_of_work():
            rows = self._target_rows(
                f"tgt_tier_state = {self.ph(1)} AND tgt_state_changed_on < {self.ph(1)}",
                (TierState.UPLOADING.value, cutoff),
            )
            for row in rows:
                try:
                    self._compare_and_set(
                        row["tgt_oid"],
                        expected=(TierState.UPLOADING,),
                        new=TierState.FAILED,
                        failure_kind=FailureKind.STALE,
                        failure_message=f"no progress since {row['tgt_state_changed_on']}",
                    )
                except StaleStateError:
                    continue
                swept.append(row["tgt_oid"])

        if swept:
            logger.warning("stale_uploads_failed", target_ids=swept, older_than=str(older_than))
        return [self.get_target(target_id) for target_id in swept]

    def requeue_failed(self, max_attempts: int, limit: int = 100) -> list[Target]:
        """Move retryable FAILED Targets back to PENDING.

        Only PROVISION, TRANSPORT and STALE failures are requeued, and only
        while the Target has been attempted fewer than ``max_attempts`` times.
        LOCAL_READ needs the artifact regenerated first; SOURCE_DROPPED is
        final.
        """
        kinds = [kind.value for kind in FailureKind if kind.requeueable]
        requeued = []

        with self.unit_of_work():
            rows = self.query(
                f"""
                SELECT t.tgt_oid FROM target t
                JOIN source s ON s.src_oid = t.tgt_src_oid
                WHERE t.tgt_tier_state = {self.ph(1)}
                  AND t.tgt_failure_kind IN ({self.ph(len(kinds))})
                  AND t.tgt_attempts < {self.ph(1)}
                  AND s.src_dropped = {self.ph(1)}
                ORDER BY t.tgt_state_changed_on, t.tgt_oid
                LIMIT {self.ph(1)}
                """,
                (TierState.FAILED.value, *kinds, max_attempts, False, limit),
            )
            for row in rows:
                try:
                    self._compare_and_set(
                        row["tgt_oid"], expected=(TierState.FAILED,), new=TierState.PENDING
                    )
                except StaleStateError:
                    continue
                requeued.append(row["tgt_oid"])

        if requeued:
            logger.info("failed_targets_requeued", target_ids=requeued)
        return [self.get_target(target_id) for target_id in requeued]


__all__ = ["TierRegistry"]
