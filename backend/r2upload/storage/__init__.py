"""
Storage module for S3-compatible object storage (Cloudflare R2).

Files go directly from the client to storage using presigned URLs issued
by the broker; the broker never receives file bytes.

Client side: BatchUploadOrchestrator (entry point), PresignedUrlClient,
DirectUploadExecutor, MultipartUploadCoordinator, key and validation policy.
Broker side: R2Client.
"""
from r2upload.storage.broker_client import PresignedUrlClient
from r2upload.storage.direct import DirectUploadExecutor
from r2upload.storage.errors import (
    BrokerError,
    BrokerRejected,
    BrokerUnavailable,
    FileValidationError,
    GrantExpired,
    MultipartStateError,
    TransportError,
    UploadAborted,
    UploadError,
)
from r2upload.storage.keys import build_key, unique_prefix
from r2upload.storage.models import (
    JobState,
    MultipartSession,
    PresignedUrlGrant,
    UploadFailure,
    UploadJob,
    UploadResult,
    UploadSource,
)
from r2upload.storage.multipart import MultipartUploadCoordinator
from r2upload.storage.orchestrator import BatchUploadOrchestrator
from r2upload.storage.progress import BatchProgress, UploadProgress
from r2upload.storage.r2_client import R2Client, get_r2_client
from r2upload.storage.validation import ValidationOptions, validate_file

__all__ = [
    "BatchUploadOrchestrator",
    "PresignedUrlClient",
    "DirectUploadExecutor",
    "MultipartUploadCoordinator",
    "build_key",
    "unique_prefix",
    "validate_file",
    "ValidationOptions",
    "UploadSource",
    "UploadJob",
    "JobState",
    "PresignedUrlGrant",
    "MultipartSession",
    "UploadResult",
    "UploadFailure",
    "UploadProgress",
    "BatchProgress",
    "UploadError",
    "FileValidationError",
    "BrokerError",
    "BrokerUnavailable",
    "BrokerRejected",
    "TransportError",
    "GrantExpired",
    "UploadAborted",
    "MultipartStateError",
    "get_r2_client",
    "R2Client",
]
