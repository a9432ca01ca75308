"""Object storage access: client construction, bucket provisioning and uploads."""

from pgtier.storage.client import build_s3_client, client_for_credential
from pgtier.storage.provisioner import BucketProvisioner
from pgtier.storage.uploader import ObjectUploader

__all__ = ["build_s3_client", "client_for_credential", "BucketProvisioner", "ObjectUploader"]
