"""
Upload client data model.

Lifecycle of an UploadJob:
1. Created when a caller submits a file -> state="pending"
2. Validated against the client-side policy -> "validating"
3. Grant (or multipart session) requested from the broker -> "awaiting_grant"
4. Bytes moved to storage -> "uploading"
5. Multipart completion call -> "completing"
6. Terminal: "completed", "failed" or "aborted"

A retry never reuses a job: it creates a new one with the same key.
"""
import enum
import mimetypes
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from r2upload.storage.errors import (
    GrantExpired,
    JobStateError,
    MultipartStateError,
    UploadAborted,
    UploadError,
)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadSource:
    """A local file selected for upload: name, size, declared type and bytes."""

    name: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    path: Optional[Path] = None
    data: Optional[bytes] = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: Union[str, Path], content_type: Optional[str] = None) -> "UploadSource":
        path = Path(path)
        if content_type is None:
            content_type = mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE
        return cls(name=path.name, size=path.stat().st_size, content_type=content_type, path=path)

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> "UploadSource":
        return cls(name=name, size=len(data), content_type=content_type, data=data)

    def read_range(self, offset: int, length: int) -> bytes:
        """Return `length` bytes starting at `offset` (fewer at end of file)."""
        if self.data is not None:
            return self.data[offset:offset + length]
        if self.path is None:
            raise ValueError(f"Upload source {self.name!r} has no byte source")
        with open(self.path, "rb") as fh:
            fh.seek(offset)
            return fh.read(length)


class JobState(str, enum.Enum):
    """State of an upload job."""
    PENDING = "pending"
    VALIDATING = "validating"
    AWAITING_GRANT = "awaiting_grant"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.ABORTED)


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only view of an upload job, safe to hand to UI code."""
    job_id: str
    filename: str
    size: int
    key: Optional[str]
    bucket: Optional[str]
    state: JobState
    progress: float
    error: Optional[str]


@dataclass
class UploadJob:
    """One file's end-to-end upload attempt."""

    source: UploadSource
    key: Optional[str] = None
    bucket: Optional[str] = None
    state: JobState = JobState.PENDING
    progress: float = 0.0
    error: Optional[UploadError] = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, state: JobState) -> None:
        if self.is_terminal:
            raise JobStateError(
                f"Job {self.job_id} is {self.state.value}, cannot move to {state.value}"
            )
        self.state = state

    def advance(self, fraction: float) -> None:
        """Record progress; lower values than the current one are ignored."""
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction > self.progress:
            self.progress = fraction

    def complete(self) -> None:
        self.transition(JobState.COMPLETED)
        self.progress = 1.0

    def fail(self, error: UploadError) -> None:
        state = JobState.ABORTED if isinstance(error, UploadAborted) else JobState.FAILED
        self.transition(state)
        self.error = error

    def retry(self) -> "UploadJob":
        """New job for another attempt at the same file and key."""
        return UploadJob(source=self.source, key=self.key)

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.job_id,
            filename=self.source.name,
            size=self.source.size,
            key=self.key,
            bucket=self.bucket,
            state=self.state,
            progress=self.progress,
            error=str(self.error) if self.error else None,
        )


@dataclass
class PresignedUrlGrant:
    """
    A short-lived capability authorizing exactly one storage operation.

    consume() must be called before the grant is used; a second use or an
    expired grant raises GrantExpired so the caller asks for a fresh one.
    """

    url: str
    key: str
    bucket: Optional[str] = None
    content_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    consumed: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def consume(self) -> None:
        if self.consumed:
            raise GrantExpired(f"Presigned grant for {self.key} was already used")
        if self.is_expired():
            raise GrantExpired(f"Presigned grant for {self.key} expired at {self.expires_at.isoformat()}")
        self.consumed = True


class PartStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADED = "uploaded"


@dataclass
class UploadPart:
    part_number: int
    size: int = 0
    etag: Optional[str] = None
    status: PartStatus = PartStatus.PENDING


class SessionState(str, enum.Enum):
    OPEN = "open"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class MultipartSession:
    """
    A multipart upload in progress.

    Part numbers are contiguous from 1 in creation order. Completion needs
    every part uploaded; a completed or aborted session accepts nothing more.
    """

    upload_id: str
    key: str
    bucket: Optional[str] = None
    parts: list[UploadPart] = field(default_factory=list)
    state: SessionState = SessionState.OPEN

    def _require_open(self) -> None:
        if self.state != SessionState.OPEN:
            raise MultipartStateError(
                f"Multipart session {self.upload_id} is {self.state.value}"
            )

    def add_part(self, size: int = 0) -> UploadPart:
        self._require_open()
        part = UploadPart(part_number=len(self.parts) + 1, size=size)
        self.parts.append(part)
        return part

    def mark_uploaded(self, part_number: int, etag: str) -> None:
        self._require_open()
        if not 1 <= part_number <= len(self.parts):
            raise MultipartStateError(f"Unknown part number {part_number}")
        part = self.parts[part_number - 1]
        part.etag = etag
        part.status = PartStatus.UPLOADED

    @property
    def all_uploaded(self) -> bool:
        return bool(self.parts) and all(p.status == PartStatus.UPLOADED for p in self.parts)

    def completed_parts(self) -> list[UploadPart]:
        if not self.all_uploaded:
            pending = [p.part_number for p in self.parts if p.status != PartStatus.UPLOADED]
            raise MultipartStateError(
                f"Cannot complete {self.upload_id}: parts not uploaded {pending or 'none created'}"
            )
        return list(self.parts)

    def close(self, state: SessionState) -> None:
        self._require_open()
        self.state = state


@dataclass(frozen=True)
class UploadResult:
    """A successfully stored file."""
    key: str
    bucket: Optional[str]
    size: int
    content_type: str
    uploaded_at: datetime

    ok = True


@dataclass(frozen=True)
class UploadFailure:
    """A file that did not upload (failed or aborted)."""
    filename: str
    error: UploadError
    key: Optional[str] = None

    ok = False

    @property
    def aborted(self) -> bool:
        return isinstance(self.error, UploadAborted)

    @property
    def reason(self) -> str:
        return str(self.error)


UploadOutcome = Union[UploadResult, UploadFailure]
