"""
Presigning broker endpoints.

Issues short-lived presigned URLs so clients can upload directly to R2:
1. POST /s3/presign-put - Grant for a single PUT
2. POST /s3/presign     - Read-back (GET) URL
3. POST /s3/create      - Start a multipart upload
4. POST /s3/sign        - URL for one part
5. POST /s3/complete    - Assemble the object from uploaded parts
6. POST /s3/abort       - Discard a multipart upload
7. POST /s3/delete      - Delete an object

The broker never receives file bytes and never exposes storage credentials.
Errors are returned as {"error": "..."}: 400 invalid body, 503 storage not
configured, 502 storage call failed.
"""
import asyncio
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status

from r2upload.config import settings
from r2upload.schemas.broker import (
    AbortMultipartRequest,
    CompleteMultipartRequest,
    CreateMultipartRequest,
    CreateMultipartResponse,
    DeleteObjectRequest,
    OkResponse,
    PresignGetRequest,
    PresignPutRequest,
    PresignPutResponse,
    SignPartRequest,
    UrlResponse,
)
from r2upload.storage.models import utcnow
from r2upload.storage.r2_client import (
    GET_EXPIRATION_BOUNDS,
    PUT_EXPIRATION_BOUNDS,
    R2Client,
    clamp_expiration,
    get_r2_client,
)
from r2upload.utils.metrics import presigned_urls_total

logger = logging.getLogger(__name__)

router = APIRouter()


def require_storage(r2: R2Client = Depends(get_r2_client)) -> R2Client:
    """Dependency: the configured R2 client, or 503."""
    if not r2.is_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage service not configured"
        )
    return r2


def storage_failed(operation: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Storage failed to {operation}"
    )


# ============================================================================
# Single-object grants
# ============================================================================

@router.post("/presign-put", response_model=PresignPutResponse, response_model_by_alias=True)
async def presign_put(request: PresignPutRequest, r2: R2Client = Depends(require_storage)):
    """
    Issue a presigned PUT URL for one object.

    The client must send the same Content-Type it requested here.
    """
    expires_in = clamp_expiration(
        request.expires or settings.r2_presign_expiration, PUT_EXPIRATION_BOUNDS
    )
    url = r2.generate_presigned_upload_url(request.key, request.content_type, expires_in)
    if not url:
        raise storage_failed("generate upload URL")

    presigned_urls_total.labels(operation="put").inc()
    logger.info(f"Issued PUT grant for {request.key} (expires in {expires_in}s)")

    return PresignPutResponse(
        url=url,
        key=request.key,
        bucket=r2.bucket,
        content_type=request.content_type,
        expires_at=utcnow() + timedelta(seconds=expires_in),
        expires_in=expires_in,
    )


@router.post("/presign", response_model=UrlResponse, response_model_by_alias=True)
async def presign_get(request: PresignGetRequest, r2: R2Client = Depends(require_storage)):
    """Issue a presigned GET URL for reading an object back."""
    expires_in = clamp_expiration(
        request.expires or settings.r2_download_expiration, GET_EXPIRATION_BOUNDS
    )
    url = r2.get_presigned_read_url(request.key, expires_in)
    if not url:
        raise storage_failed("generate read URL")

    presigned_urls_total.labels(operation="get").inc()
    return UrlResponse(url=url, expires_in=expires_in)


@router.post("/delete", response_model=OkResponse)
async def delete_object(request: DeleteObjectRequest, r2: R2Client = Depends(require_storage)):
    if not await asyncio.to_thread(r2.delete_object, request.key):
        raise storage_failed("delete object")
    return OkResponse()


# ============================================================================
# Multipart
# ============================================================================

@router.post("/create", response_model=CreateMultipartResponse, response_model_by_alias=True)
async def create_multipart(request: CreateMultipartRequest, r2: R2Client = Depends(require_storage)):
    """Start a multipart upload and return its uploadId."""
    upload_id = await asyncio.to_thread(r2.create_multipart_upload, request.key, request.content_type)
    if not upload_id:
        raise storage_failed("create multipart upload")
    return CreateMultipartResponse(upload_id=upload_id, key=request.key, bucket=r2.bucket)


@router.post("/sign", response_model=UrlResponse, response_model_by_alias=True, response_model_exclude_none=True)
async def sign_part(request: SignPartRequest, r2: R2Client = Depends(require_storage)):
    url = r2.generate_presigned_part_url(request.key, request.upload_id, request.part_number)
    if not url:
        raise storage_failed("sign part")

    presigned_urls_total.labels(operation="part").inc()
    return UrlResponse(url=url)


@router.post("/complete", response_model=OkResponse)
async def complete_multipart(request: CompleteMultipartRequest, r2: R2Client = Depends(require_storage)):
    """
    Assemble the object.

    Parts may arrive in any order; they are sorted by part number before
    being passed to storage.
    """
    parts = [{"part_number": p.part_number, "etag": p.etag} for p in request.parts]
    if not await asyncio.to_thread(r2.complete_multipart_upload, request.key, request.upload_id, parts):
        raise storage_failed("complete multipart upload")
    return OkResponse()


@router.post("/abort", response_model=OkResponse)
async def abort_multipart(request: AbortMultipartRequest, r2: R2Client = Depends(require_storage)):
    if not await asyncio.to_thread(r2.abort_multipart_upload, request.key, request.upload_id):
        raise storage_failed("abort multipart upload")
    return OkResponse()
