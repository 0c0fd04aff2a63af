"""
Upload error taxonomy.

- FileValidationError: rejected before any network call, never retried
- BrokerUnavailable / BrokerRejected: a presign/create/sign/complete call failed
- TransportError: the byte PUT to storage failed; a retry needs a new grant
- UploadAborted: caller-initiated cancellation, not a failure
"""
from typing import Optional


class UploadError(Exception):
    """Base class for all upload client errors."""


class FileValidationError(UploadError):
    """File failed the client-side size/type policy."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class BrokerError(UploadError):
    """A call to the presigning broker failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class BrokerUnavailable(BrokerError):
    """Network error or timeout talking to the broker."""


class BrokerRejected(BrokerError):
    """Broker answered with a non-2xx status (or an unreadable body)."""

    def __init__(self, operation: str, status_code: int, body: str = ""):
        message = f"HTTP {status_code}"
        if body:
            message = f"{message}: {body}"
        super().__init__(operation, message)
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class TransportError(UploadError):
    """The raw byte PUT to storage failed or returned non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GrantExpired(TransportError):
    """A presigned grant was already used or is past its expiry."""


class UploadAborted(UploadError):
    """The upload was cancelled by the caller."""


class MultipartStateError(UploadError):
    """A multipart session invariant was violated."""


class JobStateError(UploadError):
    """An upload job was moved out of a terminal state."""
