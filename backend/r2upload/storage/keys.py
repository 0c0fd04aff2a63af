"""
Object key naming.

build_key() sanitizes a user-supplied filename into a safe object key.
It does not make keys unique; callers that need collision-freedom put a
unique_prefix() in front.
"""
import re
import uuid
from datetime import datetime, timezone
from typing import Optional

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


def sanitize_filename(filename: str) -> str:
    sanitized = _INVALID_CHARS.sub("_", filename)
    sanitized = _REPEATED_UNDERSCORES.sub("_", sanitized)
    return sanitized.lower() or "_"


def build_key(filename: str, prefix: Optional[str] = None) -> str:
    """
    Build an object key from a filename and an optional logical path.

    Pattern: {prefix}/{sanitized_name} or {sanitized_name}

    Args:
        filename: User-supplied filename (any characters)
        prefix: Optional logical path, used as-is

    Returns:
        Object key string (never empty)
    """
    name = sanitize_filename(filename)
    if prefix:
        prefix = prefix.rstrip("/")
    return f"{prefix}/{name}" if prefix else name


def unique_prefix(base: Optional[str] = None) -> str:
    """
    Generate a collision-resistant prefix.

    Pattern: [{base}/]{utc timestamp}-{random hex}
    """
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    segment = f"{stamp}-{uuid.uuid4().hex[:8]}"
    if base:
        base = base.strip("/")
    return f"{base}/{segment}" if base else segment
