"""Idempotent bucket provisioning."""

from __future__ import annotations

from typing import Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from pgtier.enums import BucketStatus
from pgtier.errors import ProvisionError
from pgtier.storage.client import error_code, http_status

logger = structlog.get_logger()

DEFAULT_HOME_REGION = "us-east-1"

# Create-bucket answer meaning "it exists and it is yours"
ALREADY_OWNED_CODES = frozenset({"BucketAlreadyOwnedByYou"})

# Codes that will not change on retry
PERMANENT_CODES = frozenset(
    {
        "AccessDenied",
        "AllAccessDisabled",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "InvalidBucketName",
        "BucketAlreadyExists",
        "IllegalLocationConstraintException",
        "InvalidLocationConstraint",
    }
)

# Authentication/authorization answers, whatever the provider's code
PERMANENT_STATUSES = frozenset({401, 403})


class BucketProvisioner:
    """
    Guarantees a bucket exists, at most one create call per invocation.

    Safe to call repeatedly and from concurrent workers for the same bucket:
    a lost race comes back from the provider as ``BucketAlreadyOwnedByYou``,
    which is reported as ``ALREADY_PRESENT``.
    """

    def __init__(self, client: Any, home_region: str = DEFAULT_HOME_REGION):
        self.client = client
        self.home_region = home_region

    def list_bucket_names(self) -> set[str]:
        """Names of all buckets visible to the client's credentials."""
        names: set[str] = set()
        kwargs: dict[str, Any] = {}

        while True:
            response = self.client.list_buckets(**kwargs)
            for bucket in response.get("Buckets", []):
                if bucket.get("Name"):
                    names.add(bucket["Name"])

            token = response.get("ContinuationToken")
            if not token:
                return names
            kwargs["ContinuationToken"] = token

    def ensure_bucket(self, name: str, region: str) -> BucketStatus:
        """
        Make sure ``name`` exists.

        Returns:
            ``ALREADY_PRESENT`` if listed or already owned, ``CREATED`` otherwise.

        Raises:
            ProvisionError: Listing or creation failed for any other reason.
        """
        try:
            present = name in self.list_bucket_names()
        except (ClientError, BotoCoreError) as e:
            raise self._provision_error(f"Listing buckets failed while looking for {name}", e, name, region)

        if present:
            logger.info("bucket_already_present", bucket=name, region=region)
            return BucketStatus.ALREADY_PRESENT

        params: dict[str, Any] = {"Bucket": name}
        # The home region must not be sent as a location constraint
        if region != self.home_region:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            self.client.create_bucket(**params)
        except ClientError as e:
            if error_code(e) in ALREADY_OWNED_CODES:
                logger.info("bucket_already_owned", bucket=name, region=region)
                return BucketStatus.ALREADY_PRESENT
            raise self._provision_error(f"Creating bucket {name} failed", e, name, region)
        except BotoCoreError as e:
            raise self._provision_error(f"Creating bucket {name} failed", e, name, region)

        logger.info("bucket_created", bucket=name, region=region)
        return BucketStatus.CREATED

    def _provision_error(
        self, message: str, cause: Exception, name: str, region: str
    ) -> ProvisionError:
        code = status = None
        if isinstance(cause, ClientError):
            code, status = error_code(cause), http_status(cause)
        error = ProvisionError(
            f"{message}: {cause}",
            retryable=code not in PERMANENT_CODES and status not in PERMANENT_STATUSES,
            cause=cause,
        ).with_context(bucket=name, region=region)
        if code:
            error.with_context(error_code=code, http_status=status)
        logger.warning("bucket_provision_failed", **error.to_dict())
        return error
