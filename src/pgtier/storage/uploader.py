"""Artifact upload to object storage."""

from __future__ import annotations

import mimetypes
import os
from pathlib import Path
from typing import Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from pgtier.errors import LocalReadError, TransportError
from pgtier.models import UploadAck
from pgtier.storage.client import error_code

logger = structlog.get_logger()

# mimetypes has no entry for parquet
_CONTENT_TYPES = {".parquet": "application/vnd.apache.parquet"}


class ObjectUploader:
    """
    Uploads a local artifact under a storage key.

    Local read failures and transport failures are reported as different
    error types: a missing artifact must be regenerated before any retry can
    help, a transport failure may clear on its own.

    Re-uploading an existing key overwrites it. The key is sent and
    acknowledged exactly as given.
    """

    def __init__(self, client: Any):
        self.client = client

    def _content_type(self, path: Path) -> str | None:
        if path.suffix in _CONTENT_TYPES:
            return _CONTENT_TYPES[path.suffix]
        content_type, _ = mimetypes.guess_type(path.name)
        return content_type

    def upload(self, bucket: str, local_path: str | os.PathLike[str], key: str) -> UploadAck:
        """
        Upload ``local_path`` to ``bucket/key``.

        Returns:
            UploadAck with the provider's ETag/VersionId when returned

        Raises:
            LocalReadError: Artifact missing, not a file, or unreadable
            TransportError: Network, authorization or quota failure
        """
        path = Path(local_path)

        try:
            if not path.is_file():
                raise FileNotFoundError(f"No such artifact file: {path}")
            size_bytes = path.stat().st_size
            fh = path.open("rb")
        except OSError as e:
            logger.warning("artifact_unreadable", path=str(path), error=str(e))
            raise LocalReadError(str(path), cause=e).with_context(bucket=bucket, key=key)

        extra_args: dict[str, Any] = {}
        content_type = self._content_type(path)
        if content_type:
            extra_args["ContentType"] = content_type

        with fh:
            try:
                response = self.client.put_object(Bucket=bucket, Key=key, Body=fh, **extra_args)
            except ClientError as e:
                logger.warning(
                    "artifact_upload_failed", bucket=bucket, key=key, error_code=error_code(e)
                )
                raise TransportError(f"put_object failed for {bucket}/{key}: {e}", cause=e).with_context(
                    bucket=bucket, key=key, error_code=error_code(e)
                )
            except BotoCoreError as e:
                logger.warning("artifact_upload_failed", bucket=bucket, key=key, error=str(e))
                raise TransportError(f"put_object failed for {bucket}/{key}: {e}", cause=e).with_context(
                    bucket=bucket, key=key
                )
            except OSError as e:
                # Body stream failed mid-upload
                logger.warning("artifact_unreadable", path=str(path), error=str(e))
                raise LocalReadError(str(path), cause=e).with_context(bucket=bucket, key=key)

        etag = response.get("ETag")
        ack = UploadAck(
            bucket=bucket,
            key=key,
            size_bytes=size_bytes,
            etag=etag.strip('"') if etag else None,
            version_id=response.get("VersionId"),
        )

        logger.info(
            "artifact_uploaded",
            bucket=bucket,
            key=key,
            size=size_bytes,
            etag=ack.etag,
            version_id=ack.version_id,
        )
        return ack
