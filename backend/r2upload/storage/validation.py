"""
Client-side file validation.

Runs before any network call: a rejected file never reaches the broker.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

from r2upload.storage.errors import FileValidationError
from r2upload.storage.models import UploadSource

DOCUMENT_TYPES = frozenset({
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'text/plain',
})

_SIZE_UNITS = ['Bytes', 'KB', 'MB', 'GB', 'TB']


@dataclass(frozen=True)
class ValidationOptions:
    """Size ceiling and allowed MIME types. Empty allowed_types means any type."""
    max_size_bytes: Optional[int] = None
    allowed_types: Sequence[str] = ()

    @classmethod
    def from_megabytes(cls, max_size_mb: float, allowed_types: Sequence[str] = ()) -> "ValidationOptions":
        return cls(max_size_bytes=int(max_size_mb * 1024 * 1024), allowed_types=tuple(allowed_types))


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[str] = None

    def raise_for_rejection(self) -> None:
        if not self.ok:
            raise FileValidationError(self.reason or "File rejected")


def format_file_size(size_bytes: int) -> str:
    """
    Format a byte count for display.

    Examples: 0 -> "0 Bytes", 1536 -> "1.5 KB", 10485760 -> "10 MB"
    """
    if size_bytes <= 0:
        return '0 Bytes'
    i = 0
    while size_bytes >= 1024 ** (i + 1) and i < len(_SIZE_UNITS) - 1:
        i += 1
    value = round(size_bytes / (1024 ** i), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_SIZE_UNITS[i]}"


def file_extension(filename: str) -> str:
    """Extension without the dot; empty when there is none (or only a leading dot)."""
    dot = filename.rfind('.')
    if dot <= 0:
        return ''
    return filename[dot + 1:]


def is_image(source: UploadSource) -> bool:
    return source.content_type.lower().startswith('image/')


def is_video(source: UploadSource) -> bool:
    return source.content_type.lower().startswith('video/')


def is_document(source: UploadSource) -> bool:
    return source.content_type.lower() in DOCUMENT_TYPES


def type_allowed(content_type: str, allowed_types: Sequence[str]) -> bool:
    """
    Check a MIME type against an allow list.

    Entries match exactly or by category wildcard ("image/*" matches any
    image/...). An empty list allows everything.
    """
    if not allowed_types:
        return True
    content_type = (content_type or '').lower()
    for allowed in allowed_types:
        allowed = allowed.strip().lower()
        if allowed.endswith('/*'):
            if content_type.startswith(allowed[:-1]):
                return True
        elif content_type == allowed:
            return True
    return False


def validate_file(source: UploadSource, options: ValidationOptions) -> ValidationResult:
    """
    Validate a file against size and type policy.

    Args:
        source: The file to check
        options: Size ceiling and allowed types

    Returns:
        ValidationResult (ok, or rejected with a human-readable reason)
    """
    if options.max_size_bytes is not None and source.size > options.max_size_bytes:
        return ValidationResult(
            ok=False,
            reason=(
                f"File '{source.name}' is too large: {source.size} bytes exceeds "
                f"the {format_file_size(options.max_size_bytes)} limit"
            ),
        )

    if not type_allowed(source.content_type, options.allowed_types):
        return ValidationResult(
            ok=False,
            reason=(
                f"File type '{source.content_type or 'unknown'}' is not allowed for '{source.name}'; "
                f"allowed: {', '.join(options.allowed_types)}"
            ),
        )

    return ValidationResult(ok=True)
