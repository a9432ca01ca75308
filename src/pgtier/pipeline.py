"""
Tiering pipeline - runs tier jobs against the registry and the storage provider.

One job moves one Target::

    credential = credentials.get()               ConfigError aborts, row untouched
    registry.begin_upload(target)                PENDING|FAILED -> UPLOADING (committed)
    provisioner.ensure_bucket(bucket, region)    retried with backoff
    uploader.upload(bucket, path, key)           retried with backoff (transport only)
    registry.complete_upload(...)                UPLOADING -> TIERED
      or registry.fail_upload(kind, message)     UPLOADING -> FAILED

Provision and upload failures never escape a job: they become a FAILED
Target with the error's kind. Configuration errors and references to
missing Sources/Targets do escape; they are not something a retry fixes.

:class:`TierWorker` runs many jobs concurrently on a thread pool. Jobs are
independent; results come back in completion order.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

import structlog

from pgtier.config import TierSettings, get_settings
from pgtier.credentials import CredentialStore
from pgtier.enums import BucketStatus, FailureKind, TierState
from pgtier.errors import (
    LocalReadError,
    ProvisionError,
    SourceDroppedError,
    StaleStateError,
    UploadError,
    failure_kind_of,
)
from pgtier.logging import LogContext
from pgtier.models import Credential, Target, UploadAck
from pgtier.registry import TierRegistry
from pgtier.retry import ExponentialBackoff, RetryContext
from pgtier.storage.client import client_for_credential
from pgtier.storage.provisioner import BucketProvisioner
from pgtier.storage.uploader import ObjectUploader

logger = structlog.get_logger()

ClientFactory = Callable[[Credential], Any]


@dataclass
class JobResult:
    """Outcome of one tiering job."""

    target_id: int
    state: TierState
    bucket_status: BucketStatus | None = None
    ack: UploadAck | None = None
    failure_kind: FailureKind | None = None
    error: str | None = None
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.state is TierState.TIERED and not self.skipped


@dataclass
class ReconcileReport:
    """Targets touched by one reconciliation pass."""

    stale_failed: list[int] = field(default_factory=list)
    requeued: list[int] = field(default_factory=list)


class TierPipeline:
    """Runs single tiering jobs."""

    def __init__(
        self,
        registry: TierRegistry,
        credentials: CredentialStore,
        client_factory: ClientFactory | None = None,
        settings: TierSettings | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.registry = registry
        self.credentials = credentials
        self.settings = settings or get_settings()
        self.client_factory = client_factory or (
            lambda credential: client_for_credential(credential, self.settings.storage_endpoint_url)
        )
        self._sleep = sleep

    def _retry(self, max_retries: int) -> RetryContext:
        strategy = ExponentialBackoff(
            max_retries=max_retries,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
        )

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning(
                "storage_call_retry",
                attempt=attempt,
                delay=round(delay, 2),
                error=str(error),
            )

        ctx = RetryContext(strategy=strategy, on_retry=on_retry)
        if self._sleep is not None:
            ctx.sleep = self._sleep
        return ctx

    def run(self, target_id: int, credential: Credential | None = None) -> JobResult:
        """
        Run one tiering job for ``target_id``.

        Args:
            target_id: Target to tier (PENDING, or FAILED for a direct retry)
            credential: Credential to use; re-read from the catalog when omitted

        Raises:
            ConfigError: No usable credential
            TargetNotFoundError, SourceNotFoundError: Catalog contract violation
        """
        if credential is None:
            # Single jobs see a rotation made through any store instance
            credential = self.credentials.get(use_cache=False)

        with LogContext(target_id=target_id, bucket=credential.bucket):
            try:
                target = self.registry.begin_upload(target_id)
            except StaleStateError as e:
                logger.info("tier_job_skipped", current_state=e.current.value)
                return JobResult(target_id=target_id, state=e.current, skipped=True, error=str(e))
            except SourceDroppedError as e:
                current = self.registry.get_target(target_id).tier_state
                return JobResult(
                    target_id=target_id,
                    state=current,
                    failure_kind=FailureKind.SOURCE_DROPPED,
                    error=str(e),
                )

            logger.info("tier_job_started", attempt=target.attempts, key=target.object_key)
            return self._run_storage(target, credential)

    def _run_storage(self, target: Target, credential: Credential) -> JobResult:
        client = self.client_factory(credential)
        provisioner = BucketProvisioner(client, home_region=self.settings.storage_home_region)
        uploader = ObjectUploader(client)
        local_path = Path(target.tier_directory) / target.artifact_name

        try:
            bucket_status = self._retry(self.settings.provision_max_retries).run(
                provisioner.ensure_bucket, credential.bucket, credential.region
            )
            ack = self._retry(self.settings.upload_max_retries).run(
                uploader.upload, credential.bucket, local_path, target.object_key
            )
        except (ProvisionError, UploadError) as e:
            kind = failure_kind_of(e) or FailureKind.TRANSPORT
            return self._record_failure(target.identity, kind, e)

        try:
            tiered = self.registry.complete_upload(target.identity, credential.bucket, bucket_status, ack)
        except StaleStateError as e:
            # Swept or forced to FAILED while the upload ran
            logger.warning("tier_job_lost_target", current_state=e.current.value)
            return JobResult(
                target_id=target.identity,
                state=e.current,
                bucket_status=bucket_status,
                ack=ack,
                skipped=True,
                error=str(e),
            )
        except SourceDroppedError as e:
            return JobResult(
                target_id=target.identity,
                state=TierState.FAILED,
                bucket_status=bucket_status,
                ack=ack,
                failure_kind=FailureKind.SOURCE_DROPPED,
                error=str(e),
            )

        logger.info("tier_job_completed", bucket_status=bucket_status.value, key=ack.key)
        return JobResult(
            target_id=tiered.identity,
            state=tiered.tier_state,
            bucket_status=bucket_status,
            ack=ack,
        )

    def _record_failure(self, target_id: int, kind: FailureKind, error: Exception) -> JobResult:
        try:
            failed = self.registry.fail_upload(target_id, kind, str(error))
        except StaleStateError as e:
            logger.warning("tier_job_lost_target", current_state=e.current.value)
            return JobResult(
                target_id=target_id,
                state=e.current,
                failure_kind=kind,
                error=str(error),
                skipped=True,
            )

        log = logger.error if isinstance(error, LocalReadError) else logger.warning
        log("tier_job_failed", failure_kind=kind.value, error=str(error))
        return JobResult(
            target_id=target_id,
            state=failed.tier_state,
            failure_kind=kind,
            error=str(error),
        )


class TierWorker:
    """Runs batches of tiering jobs concurrently and reconciles the catalog."""

    def __init__(self, pipeline: TierPipeline, max_workers: int | None = None):
        self.pipeline = pipeline
        self.max_workers = max_workers or pipeline.settings.worker_max_concurrent

    @property
    def registry(self) -> TierRegistry:
        return self.pipeline.registry

    def run_batch(self, target_ids: list[int] | None = None, limit: int = 100) -> list[JobResult]:
        """
        Run one job per Target.

        Args:
            target_ids: Targets to run; defaults to the oldest PENDING ones
            limit: Maximum number of PENDING Targets picked when ``target_ids`` is omitted

        Raises:
            ConfigError: Before any job starts, if the credential is unusable
        """
        # A rotated credential must be picked up by the next batch
        self.pipeline.credentials.invalidate()
        credential = self.pipeline.credentials.get()

        if target_ids is None:
            target_ids = [target.identity for target in self.registry.pending_targets(limit=limit)]
        if not target_ids:
            logger.debug("tier_batch_empty")
            return []

        logger.info("tier_batch_started", count=len(target_ids), max_workers=self.max_workers)
        results: list[JobResult] = []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(target_ids))) as pool:
            futures = {
                pool.submit(self.pipeline.run, target_id, credential): target_id
                for target_id in target_ids
            }
            for future in as_completed(futures):
                results.append(future.result())

        logger.info(
            "tier_batch_completed",
            count=len(results),
            tiered=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if r.state is TierState.FAILED),
        )
        return results

    def reconcile(self) -> ReconcileReport:
        """Fail stale UPLOADING Targets, then requeue retryable FAILED ones."""
        settings = self.pipeline.settings
        stale = self.registry.sweep_stale_uploads(timedelta(seconds=settings.stale_upload_seconds))
        requeued = self.registry.requeue_failed(max_attempts=settings.requeue_max_attempts)

        report = ReconcileReport(
            stale_failed=[t.identity for t in stale],
            requeued=[t.identity for t in requeued],
        )
        logger.info("reconcile_completed", stale_failed=report.stale_failed, requeued=report.requeued)
        return report


__all__ = ["JobResult", "ReconcileReport", "TierPipeline", "TierWorker"]
