"""
Pydantic schemas for the presigning broker's /s3 endpoints.

Field names are snake_case in Python and camelCase on the wire. The same
models are used by the broker routes and by the upload client to parse
broker responses.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Requests
# ============================================================================

class PresignPutRequest(CamelModel):
    """Request schema for a single-PUT grant."""
    key: str = Field(..., min_length=1, description="Object key in the bucket")
    content_type: str = Field("application/octet-stream", description="MIME type the PUT will send")
    expires: Optional[int] = Field(None, description="Requested lifetime in seconds (clamped)")


class PresignGetRequest(CamelModel):
    """Request schema for a read-back grant."""
    key: str = Field(..., min_length=1)
    method: Literal["GET"] = "GET"
    expires: Optional[int] = None


class CreateMultipartRequest(CamelModel):
    key: str = Field(..., min_length=1)
    content_type: str = "application/octet-stream"


class SignPartRequest(CamelModel):
    key: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)
    part_number: int = Field(..., gt=0, le=10000)


class PartETag(CamelModel):
    part_number: int = Field(..., gt=0, le=10000)
    etag: str = Field(..., min_length=1)


class CompleteMultipartRequest(CamelModel):
    key: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)
    parts: List[PartETag] = Field(..., min_length=1)


class AbortMultipartRequest(CamelModel):
    key: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)


class DeleteObjectRequest(CamelModel):
    key: str = Field(..., min_length=1)


# ============================================================================
# Responses
# ============================================================================

class PresignPutResponse(CamelModel):
    """Single-PUT grant as returned by the broker."""
    url: str
    key: str
    bucket: Optional[str] = None
    content_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    expires_in: Optional[int] = None


class UrlResponse(CamelModel):
    url: str
    expires_in: Optional[int] = None


class CreateMultipartResponse(CamelModel):
    upload_id: str
    key: str
    bucket: Optional[str] = None

    @field_validator("upload_id")
    @classmethod
    def validate_upload_id(cls, v):
        if not v.strip():
            raise ValueError("uploadId must not be empty")
        return v


class OkResponse(CamelModel):
    ok: bool = True
