"""pgtier - tier cold relational data into object storage and track it.

Public surface:

- :func:`provision_bucket`, :func:`tier_upload` - entry points for the host catalog
- :class:`CredentialStore` - the single-row storage configuration
- :class:`TierRegistry` - Source/Target catalog and state machine
- :class:`TierPipeline`, :class:`TierWorker` - tiering jobs
"""

from pgtier.credentials import CredentialStore
from pgtier.entrypoints import provision_bucket, tier_upload
from pgtier.enums import BucketStatus, FailureKind, SourceState, TierState
from pgtier.models import Credential, Source, Target, UploadAck
from pgtier.pipeline import JobResult, TierPipeline, TierWorker
from pgtier.registry import TierRegistry

__version__ = "0.1.0"

__all__ = [
    "BucketStatus",
    "Credential",
    "CredentialStore",
    "FailureKind",
    "JobResult",
    "Source",
    "SourceState",
    "Target",
    "TierPipeline",
    "TierRegistry",
    "TierState",
    "TierWorker",
    "UploadAck",
    "provision_bucket",
    "tier_upload",
]
