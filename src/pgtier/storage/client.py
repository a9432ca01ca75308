"""S3-compatible client construction and provider error helpers.

Works with AWS S3, MinIO, LocalStack, and other S3-compatible services.
"""

from __future__ import annotations

from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

from pgtier.models import Credential

logger = structlog.get_logger()


def build_s3_client(
    access_key: str,
    secret_key: str,
    region: str,
    endpoint_url: str | None = None,
) -> Any:
    """Build a boto3 S3 client bound to explicit credentials.

    The client never falls back to ambient AWS credentials: the catalog's
    credential row is the only source of keys.
    """
    client_kwargs: dict[str, Any] = {
        "service_name": "s3",
        "region_name": region,
        "aws_access_key_id": access_key,
        "aws_secret_access_key": secret_key,
        "config": Config(signature_version="s3v4"),
    }

    if endpoint_url:
        client_kwargs["endpoint_url"] = endpoint_url

    client = boto3.client(**client_kwargs)
    logger.debug("s3_client_created", region=region, endpoint=endpoint_url)
    return client


def client_for_credential(credential: Credential, endpoint_url: str | None = None) -> Any:
    """Build a client from the stored credential."""
    return build_s3_client(
        access_key=credential.access_key,
        secret_key=credential.secret_key,
        region=credential.region,
        endpoint_url=endpoint_url,
    )


def error_code(error: ClientError) -> str:
    """Provider error code of a ClientError (e.g. ``'BucketAlreadyOwnedByYou'``)."""
    return error.response.get("Error", {}).get("Code", "")


def http_status(error: ClientError) -> int | None:
    return error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
