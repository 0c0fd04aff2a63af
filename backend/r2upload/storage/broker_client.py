"""
HTTP client for the presigning broker.

This is the only component that talks to the broker. It holds no state
between calls apart from the HTTP connection pool.

Broker surface (all POST, JSON bodies):
- /s3/presign-put  single-PUT grant
- /s3/presign      read-back (GET) grant
- /s3/create       start a multipart session
- /s3/sign         per-part PUT grant
- /s3/complete     finalize a multipart object
- /s3/abort        discard a multipart session
- /s3/delete       remove an object
"""
import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Dict, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from r2upload.config import UploaderConfig
from r2upload.schemas.broker import (
    CreateMultipartResponse,
    PresignPutResponse,
    UrlResponse,
)
from r2upload.storage.errors import (
    BrokerError,
    BrokerRejected,
    BrokerUnavailable,
    MultipartStateError,
)
from r2upload.storage.models import MultipartSession, PresignedUrlGrant, UploadPart, utcnow
from r2upload.utils.logging import log_broker_failure, log_broker_request
from r2upload.utils.metrics import (
    broker_failures_total,
    broker_latency_seconds,
    broker_requests_total,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _error_body(response: httpx.Response) -> str:
    """Extract the broker's error message: JSON `error` field, else raw text."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    if isinstance(data, dict) and data.get("detail"):
        return str(data["detail"])
    return response.text.strip()


class PresignedUrlClient:
    """
    Client for the presigning broker.

    Usage:
        async with PresignedUrlClient(config) as broker:
            grant = await broker.presign_put("docs/report.pdf", "application/pdf")
    """

    def __init__(self, config: UploaderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_seconds)
        )

    @property
    def base_url(self) -> str:
        return self._config.broker_base_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "PresignedUrlClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post_once(self, path: str, operation: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self._http.post(
                f"{self.base_url}{path}",
                json=payload,
                timeout=self._config.request_timeout_seconds,
            )
        except httpx.RequestError as e:
            raise BrokerUnavailable(operation, str(e) or e.__class__.__name__) from e

        if not response.is_success:
            raise BrokerRejected(operation, response.status_code, _error_body(response))
        return response

    async def _post(self, path: str, operation: str, payload: Dict[str, Any]) -> httpx.Response:
        """POST to the broker, retrying per the configured policy."""
        retry = self._config.retry
        attempt = 0
        while True:
            attempt += 1
            broker_requests_total.labels(operation=operation).inc()
            start = time.monotonic()
            try:
                response = await self._post_once(path, operation, payload)
            except BrokerError as e:
                broker_failures_total.labels(operation=operation).inc()
                log_broker_failure(
                    logger,
                    operation=operation,
                    error=str(e),
                    key=payload.get("key"),
                    status_code=getattr(e, "status_code", None),
                    attempt=attempt,
                )
                retryable = isinstance(e, BrokerUnavailable) or (
                    isinstance(e, BrokerRejected) and e.retryable
                )
                if not retryable or not retry.should_retry(attempt):
                    raise
                await asyncio.sleep(retry.calculate_delay(attempt))
                continue

            duration = time.monotonic() - start
            broker_latency_seconds.labels(operation=operation).observe(duration)
            log_broker_request(
                logger,
                operation=operation,
                key=payload.get("key"),
                duration_ms=duration * 1000,
            )
            return response

    @staticmethod
    def _parse(response: httpx.Response, operation: str, model: Type[M], defaults: Optional[Dict[str, Any]] = None) -> M:
        try:
            data = response.json()
        except ValueError:
            raise BrokerRejected(operation, response.status_code, "response body is not JSON")
        if not isinstance(data, dict):
            raise BrokerRejected(operation, response.status_code, "response body is not an object")
        try:
            return model.model_validate({**(defaults or {}), **data})
        except ValidationError as e:
            raise BrokerRejected(
                operation, response.status_code, f"unexpected response body: {e.error_count()} invalid field(s)"
            )

    # ------------------------------------------------------------------
    # Single-object grants
    # ------------------------------------------------------------------

    async def presign_put(self, key: str, content_type: str) -> PresignedUrlGrant:
        """
        Request a presigned PUT URL for a whole-file upload.

        Args:
            key: Object key
            content_type: MIME type the PUT will carry

        Returns:
            Single-use PresignedUrlGrant

        Raises:
            BrokerUnavailable: network error or timeout
            BrokerRejected: non-2xx response (message carries the broker's error)
        """
        response = await self._post(
            "/s3/presign-put", "presign_put", {"key": key, "contentType": content_type}
        )
        received_at = utcnow()
        data = self._parse(
            response, "presign_put", PresignPutResponse,
            defaults={"key": key, "contentType": content_type},
        )

        expires_at = data.expires_at
        if expires_at is None and data.expires_in is not None:
            expires_at = received_at + timedelta(seconds=data.expires_in)
        elif expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=received_at.tzinfo)

        return PresignedUrlGrant(
            url=data.url,
            key=data.key,
            bucket=data.bucket,
            content_type=data.content_type,
            expires_at=expires_at,
        )

    async def presign_get(self, key: str) -> str:
        """Request a presigned GET URL for reading an object back."""
        response = await self._post("/s3/presign", "presign_get", {"key": key, "method": "GET"})
        return self._parse(response, "presign_get", UrlResponse).url

    async def delete_object(self, key: str) -> None:
        await self._post("/s3/delete", "delete", {"key": key})

    # ------------------------------------------------------------------
    # Multipart
    # ------------------------------------------------------------------

    async def create_multipart(self, key: str, content_type: str) -> MultipartSession:
        response = await self._post(
            "/s3/create", "create_multipart", {"key": key, "contentType": content_type}
        )
        data = self._parse(response, "create_multipart", CreateMultipartResponse, defaults={"key": key})
        return MultipartSession(upload_id=data.upload_id, key=data.key, bucket=data.bucket)

    async def sign_part(self, key: str, upload_id: str, part_number: int) -> str:
        """
        Request a presigned PUT URL for exactly one part.

        Call once per part, right before transferring it: part grants are
        short-lived.
        """
        if part_number < 1:
            raise ValueError(f"part_number must be >= 1, got {part_number}")
        response = await self._post(
            "/s3/sign",
            "sign_part",
            {"key": key, "uploadId": upload_id, "partNumber": part_number},
        )
        return self._parse(response, "sign_part", UrlResponse).url

    async def complete_multipart(self, key: str, upload_id: str, parts: Sequence[UploadPart]) -> None:
        """
        Finalize a multipart upload.

        Parts must be in ascending, contiguous order starting at 1, each with
        an ETag; anything else is rejected before contacting the broker.
        """
        if not parts:
            raise MultipartStateError(f"Cannot complete {upload_id} without parts")
        for expected, part in enumerate(parts, start=1):
            if part.part_number != expected:
                raise MultipartStateError(
                    f"Parts for {upload_id} must be ordered 1..N; got {part.part_number} at position {expected}"
                )
            if not part.etag:
                raise MultipartStateError(f"Part {part.part_number} of {upload_id} has no ETag")

        await self._post(
            "/s3/complete",
            "complete_multipart",
            {
                "key": key,
                "uploadId": upload_id,
                "parts": [{"partNumber": p.part_number, "etag": p.etag} for p in parts],
            },
        )

    async def abort_multipart(self, key: str, upload_id: str) -> None:
        await self._post("/s3/abort", "abort_multipart", {"key": key, "uploadId": upload_id})
