"""Entry points invoked by the host database's catalog layer.

Both functions take raw credentials, build a short-lived client and return
plain values, so they can be wrapped by whatever runtime hosts them.

    >>> provision_bucket("cold-archive", "AK...", "SK...", "us-east-1")
    True
    >>> tier_upload("cold-archive", "AK...", "SK...", "us-east-1",
    ...             "/data/export", "part-0001.parquet")
    UploadAck(bucket='cold-archive', key='part-0001.parquet', ...)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pgtier.config import get_settings
from pgtier.models import UploadAck, validate_artifact_name
from pgtier.storage.client import build_s3_client
from pgtier.storage.provisioner import BucketProvisioner
from pgtier.storage.uploader import ObjectUploader


def _client(
    access_key: str,
    secret_key: str,
    region: str,
    endpoint_url: str | None,
    client: Any | None,
) -> Any:
    if client is not None:
        return client
    return build_s3_client(
        access_key=access_key,
        secret_key=secret_key,
        region=region,
        endpoint_url=endpoint_url or get_settings().storage_endpoint_url,
    )


def provision_bucket(
    bucket_name: str,
    access_key: str,
    secret_key: str,
    region: str,
    *,
    endpoint_url: str | None = None,
    client: Any | None = None,
) -> bool:
    """Ensure ``bucket_name`` exists; True when created or already present.

    Raises:
        ProvisionError: Listing or creation failed
    """
    provisioner = BucketProvisioner(
        _client(access_key, secret_key, region, endpoint_url, client),
        home_region=get_settings().storage_home_region,
    )
    provisioner.ensure_bucket(bucket_name, region)
    return True


def tier_upload(
    bucket_name: str,
    access_key: str,
    secret_key: str,
    region: str,
    artifact_directory: str,
    artifact_file_name: str,
    *,
    endpoint_url: str | None = None,
    client: Any | None = None,
) -> UploadAck:
    """Upload ``artifact_directory/artifact_file_name`` as key ``artifact_file_name``.

    Raises:
        InvalidArtifactNameError: ``artifact_file_name`` is absolute or contains ``..``
        LocalReadError: Artifact missing or unreadable
        TransportError: Network, authorization or quota failure
    """
    validate_artifact_name(artifact_file_name)
    uploader = ObjectUploader(_client(access_key, secret_key, region, endpoint_url, client))
    return uploader.upload(
        bucket_name,
        Path(artifact_directory) / artifact_file_name,
        artifact_file_name,
    )
