"""
Direct (single PUT) upload to a presigned URL.

The executor performs no retries: a failed PUT surfaces as one
TransportError and the caller decides whether to request a new grant.
"""
import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx

from r2upload.storage.errors import TransportError, UploadAborted, UploadError
from r2upload.storage.models import PresignedUrlGrant, UploadSource
from r2upload.storage.progress import ProgressCallback, ProgressTracker

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class DirectUploadExecutor:
    """
    Streams bytes to presigned PUT URLs with byte-level progress.

    Cancellation: set the `cancel_event` passed to upload()/put_range().
    The transfer stops, no more progress is reported, and UploadAborted
    is raised.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = 30.0,
    ):
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._chunk_size = chunk_size
        self._timeout = timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def upload(
        self,
        source: UploadSource,
        grant: PresignedUrlGrant,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> httpx.Response:
        """
        Upload a whole file to a presigned PUT URL.

        Args:
            source: File to upload
            grant: Single-use grant from the broker (consumed here)
            on_progress: Called with UploadProgress, loaded never decreasing
            cancel_event: Set to abort the transfer

        Returns:
            The storage response (2xx)

        Raises:
            GrantExpired: grant already used or expired
            TransportError: non-2xx, network error, timeout or unreadable source
            UploadAborted: cancel_event was set
        """
        grant.consume()
        return await self.put_range(
            grant.url,
            source,
            offset=0,
            length=source.size,
            content_type=source.content_type,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )

    async def put_range(
        self,
        url: str,
        source: UploadSource,
        offset: int,
        length: int,
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> httpx.Response:
        """PUT `length` bytes of `source` starting at `offset` to `url`."""
        tracker = ProgressTracker(length, on_progress)
        headers = {"Content-Length": str(length)}
        if content_type:
            headers["Content-Type"] = content_type

        if cancel_event is not None and cancel_event.is_set():
            raise UploadAborted(f"Upload of {source.name} cancelled before start")

        try:
            response = await self._race_cancel(
                self._http.put(
                    url,
                    content=self._iter_body(source, offset, length, tracker, cancel_event),
                    headers=headers,
                    timeout=self._timeout,
                ),
                cancel_event,
                source,
            )
        except (UploadError, asyncio.CancelledError):
            tracker.close()
            raise
        except httpx.RequestError as e:
            tracker.close()
            raise TransportError(f"PUT {source.name} failed: {str(e) or e.__class__.__name__}") from e

        if not response.is_success:
            tracker.close()
            body = response.text.strip()[:500]
            raise TransportError(
                f"PUT {source.name} failed with status {response.status_code}"
                + (f": {body}" if body else ""),
                status_code=response.status_code,
            )

        tracker.finish()
        return response

    async def _iter_body(
        self,
        source: UploadSource,
        offset: int,
        length: int,
        tracker: ProgressTracker,
        cancel_event: Optional[asyncio.Event],
    ) -> AsyncIterator[bytes]:
        sent = 0
        while sent < length:
            if cancel_event is not None and cancel_event.is_set():
                raise UploadAborted(f"Upload of {source.name} cancelled")
            size = min(self._chunk_size, length - sent)
            try:
                if source.data is not None:
                    chunk = source.read_range(offset + sent, size)
                else:
                    chunk = await asyncio.to_thread(source.read_range, offset + sent, size)
            except OSError as e:
                raise TransportError(f"cannot read {source.name}: {e}") from e
            if not chunk:
                raise TransportError(f"{source.name} ended after {sent} of {length} bytes")
            yield chunk
            sent += len(chunk)
            tracker.update(sent)

    @staticmethod
    async def _race_cancel(request, cancel_event: Optional[asyncio.Event], source: UploadSource) -> httpx.Response:
        """Await the request, abandoning it if cancel_event fires first."""
        if cancel_event is None:
            return await request

        request_task = asyncio.ensure_future(request)
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({request_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
            if request_task.done():
                return request_task.result()
            request_task.cancel()
            try:
                await request_task
            except (asyncio.CancelledError, UploadAborted, httpx.RequestError):
                pass
            raise UploadAborted(f"Upload of {source.name} cancelled")
        finally:
            for task in (request_task, cancel_task):
                if not task.done():
                    task.cancel()
