"""
Multipart upload coordinator for large files.

Per-file state machine:
    created -> parts in flight -> all parts uploaded -> completed
    created | parts in flight -> aborted (on any error or cancellation)

Parts are signed and uploaded one at a time, in ascending part number
order. Completion is only requested once every part has an ETag. On any
failure the session is aborted (best-effort) and the original error is
re-raised; earlier parts are never retried here.
"""
import asyncio
import logging
from typing import Iterator, Optional, Tuple

from r2upload.storage.broker_client import PresignedUrlClient
from r2upload.storage.direct import DirectUploadExecutor
from r2upload.storage.errors import TransportError, UploadAborted, UploadError
from r2upload.storage.models import JobState, MultipartSession, SessionState, UploadJob
from r2upload.storage.progress import ProgressCallback, ProgressTracker
from r2upload.utils.logging import log_multipart_aborted
from r2upload.utils.metrics import multipart_aborts_total, multipart_parts_uploaded_total

logger = logging.getLogger(__name__)

# S3/R2 reject parts below 5 MiB, except the last one
MIN_PART_SIZE = 5 * 1024 * 1024


def partition(size: int, part_size: int) -> Iterator[Tuple[int, int]]:
    """Yield (offset, length) slices covering `size` bytes; an empty file is one empty part."""
    if size == 0:
        yield 0, 0
        return
    for offset in range(0, size, part_size):
        yield offset, min(part_size, size - offset)


class MultipartUploadCoordinator:
    """Uploads one large file as an ordered sequence of presigned part PUTs."""

    def __init__(
        self,
        broker: PresignedUrlClient,
        executor: DirectUploadExecutor,
        part_size_bytes: int,
    ):
        if part_size_bytes <= 0:
            raise ValueError("part_size_bytes must be positive")
        if part_size_bytes < MIN_PART_SIZE:
            logger.warning(
                f"Multipart part size {part_size_bytes} is below the storage minimum "
                f"of {MIN_PART_SIZE} bytes; uploads with more than one part may be rejected"
            )
        self._broker = broker
        self._executor = executor
        self._part_size = part_size_bytes

    async def upload(
        self,
        job: UploadJob,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MultipartSession:
        """
        Upload job.source to job.key as a multipart object.

        The job moves awaiting_grant -> uploading -> completing; the caller
        marks it terminal.

        Returns:
            The completed MultipartSession

        Raises:
            BrokerError: create/sign/complete failed (session aborted)
            TransportError: a part PUT failed (session aborted)
            UploadAborted: cancel_event was set (session aborted)
        """
        source = job.source
        job.transition(JobState.AWAITING_GRANT)
        session = await self._broker.create_multipart(job.key, source.content_type)
        job.bucket = session.bucket

        tracker = ProgressTracker(source.size, on_progress)
        job.transition(JobState.UPLOADING)

        try:
            for offset, length in partition(source.size, self._part_size):
                if cancel_event is not None and cancel_event.is_set():
                    raise UploadAborted(f"Multipart upload of {source.name} cancelled")

                part = session.add_part(length)
                url = await self._broker.sign_part(session.key, session.upload_id, part.part_number)

                def report(progress, base=offset):
                    tracker.update(base + progress.loaded)

                response = await self._executor.put_range(
                    url,
                    source,
                    offset=offset,
                    length=length,
                    on_progress=report,
                    cancel_event=cancel_event,
                )
                etag = response.headers.get("etag")
                if not etag:
                    raise TransportError(
                        f"Storage returned no ETag for part {part.part_number} of {source.name}"
                    )
                session.mark_uploaded(part.part_number, etag)
                multipart_parts_uploaded_total.inc()

            parts = session.completed_parts()
            job.transition(JobState.COMPLETING)
            await self._broker.complete_multipart(session.key, session.upload_id, parts)
            session.close(SessionState.COMPLETED)
        except BaseException as e:
            # any exit before complete leaves an open session on storage
            tracker.close()
            await self._abort(session, e)
            raise

        tracker.finish()
        return session

    async def _abort(self, session: MultipartSession, reason: BaseException) -> None:
        """Best-effort abort; failures are logged and never replace the original error."""
        if session.state != SessionState.OPEN:
            return
        session.close(SessionState.ABORTED)
        multipart_aborts_total.inc()
        reason_text = str(reason) or reason.__class__.__name__
        try:
            await self._broker.abort_multipart(session.key, session.upload_id)
        except UploadError as e:
            log_multipart_aborted(
                logger, key=session.key, upload_id=session.upload_id,
                reason=reason_text, cleanup_error=str(e),
            )
            return
        log_multipart_aborted(logger, key=session.key, upload_id=session.upload_id, reason=reason_text)
