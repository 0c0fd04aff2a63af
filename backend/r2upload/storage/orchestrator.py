"""
Batch upload orchestrator: the public entry point for forms and UI code.

Flow per file (strictly one file at a time, in input order):
1. Validate size/type client-side (no network on rejection)
2. Build the object key from the filename and prefix
3. Small files: presign PUT -> single PUT
   Large files (> multipart threshold): multipart coordinator
4. Record an UploadResult, or an UploadFailure and move on to the next file
"""
import asyncio
import logging
import time
from typing import List, Optional, Sequence

import httpx

from r2upload.config import UploaderConfig
from r2upload.storage.broker_client import PresignedUrlClient
from r2upload.storage.direct import DirectUploadExecutor
from r2upload.storage.errors import (
    BrokerError,
    FileValidationError,
    TransportError,
    UploadAborted,
    UploadError,
)
from r2upload.storage.keys import build_key
from r2upload.storage.models import (
    JobSnapshot,
    JobState,
    UploadFailure,
    UploadJob,
    UploadOutcome,
    UploadResult,
    UploadSource,
    utcnow,
)
from r2upload.storage.multipart import MultipartUploadCoordinator
from r2upload.storage.progress import (
    BatchProgress,
    BatchProgressCallback,
    ProgressCallback,
    ProgressStream,
    ProgressTracker,
    UploadProgress,
)
from r2upload.storage.validation import ValidationOptions, validate_file
from r2upload.utils.logging import log_upload_completed, log_upload_failed, log_upload_started
from r2upload.utils.metrics import (
    upload_bytes_total,
    upload_duration_seconds,
    uploads_completed_total,
    uploads_failed_total,
    uploads_started_total,
)

logger = logging.getLogger(__name__)

DIRECT = "direct"
MULTIPART = "multipart"


class BatchUploadOrchestrator:
    """
    Uploads lists of files through the presigning broker.

    One bad file never aborts the batch: its failure is recorded and the
    next file starts. cancel() stops the in-flight transfer and prevents
    any further file from starting.

    Usage:
        async with BatchUploadOrchestrator(settings.uploader_config()) as uploader:
            results = await uploader.upload_all(files, prefix="orders/42")
    """

    def __init__(
        self,
        config: UploaderConfig,
        broker: Optional[PresignedUrlClient] = None,
        executor: Optional[DirectUploadExecutor] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config
        self._owns_client = http_client is None and (broker is None or executor is None)
        if self._owns_client:
            http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.request_timeout_seconds))
        self._http = http_client
        self.broker = broker or PresignedUrlClient(config, http_client=http_client)
        self.executor = executor or DirectUploadExecutor(
            http_client=http_client,
            chunk_size=config.chunk_size_bytes,
            timeout=config.request_timeout_seconds,
        )
        self.multipart = MultipartUploadCoordinator(
            self.broker, self.executor, part_size_bytes=config.part_size_bytes
        )
        self._jobs: List[UploadJob] = []
        self._cancel_event = asyncio.Event()

    async def aclose(self) -> None:
        if self._owns_client and self._http is not None:
            await self._http.aclose()

    async def __aenter__(self) -> "BatchUploadOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def jobs(self) -> List[JobSnapshot]:
        """Read-only snapshots of every job (attempt) of the current batch."""
        return [job.snapshot() for job in self._jobs]

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """
        Abort the in-flight upload and stop issuing new ones.

        Cancellation is scoped to the running batch: upload_all() starts
        with a fresh cancel state, so a cancel() issued while no batch is
        running does not carry over to the next one.
        """
        self._cancel_event.set()

    def strategy_for(self, source: UploadSource) -> str:
        return MULTIPART if source.size > self._config.multipart_threshold_bytes else DIRECT

    # ------------------------------------------------------------------
    # Batch API
    # ------------------------------------------------------------------

    async def upload_all(
        self,
        files: Sequence[UploadSource],
        prefix: Optional[str] = None,
        validation: Optional[ValidationOptions] = None,
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> List[UploadOutcome]:
        """
        Upload files sequentially, in the order given.

        Args:
            files: Files to upload
            prefix: Optional logical path prepended to every key
            validation: Optional size/type policy applied before any network call
            on_progress: Called with BatchProgress snapshots

        Returns:
            One UploadResult or UploadFailure per input file, in input order
        """
        self._jobs = []
        self._cancel_event = asyncio.Event()
        total = len(files)
        results: List[UploadOutcome] = []

        for index, source in enumerate(files):
            completed = len(results)

            def report(progress: UploadProgress, index=index, completed=completed, source=source):
                if on_progress is not None:
                    on_progress(BatchProgress(
                        file_index=index,
                        total_files=total,
                        completed_files=completed,
                        filename=source.name,
                        file_progress=progress,
                    ))

            if self.cancelled:
                outcome = self._skip(source, prefix)
            else:
                outcome = await self._upload_one(source, prefix, validation, report)
            results.append(outcome)

            if on_progress is not None:
                on_progress(BatchProgress(
                    file_index=index,
                    total_files=total,
                    completed_files=len(results),
                    filename=source.name,
                ))

        return results

    def stream(
        self,
        files: Sequence[UploadSource],
        prefix: Optional[str] = None,
        validation: Optional[ValidationOptions] = None,
    ) -> "ProgressStream[BatchProgress, List[UploadOutcome]]":
        """
        Run upload_all() and expose its progress as an async iterator.

        Usage:
            stream = uploader.stream(files)
            async for event in stream:
                render(event.percentage)
            results = await stream.results()
        """
        return ProgressStream(
            lambda emit: self.upload_all(files, prefix=prefix, validation=validation, on_progress=emit)
        )

    async def upload_file(
        self,
        source: UploadSource,
        prefix: Optional[str] = None,
        validation: Optional[ValidationOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Upload a single file.

        Raises:
            FileValidationError, BrokerError, TransportError, UploadAborted
        """
        outcome = await self._upload_one(source, prefix, validation, on_progress)
        if isinstance(outcome, UploadFailure):
            raise outcome.error
        return outcome

    async def presign_get(self, key: str) -> str:
        """Presigned GET URL for reading an uploaded object back."""
        return await self.broker.presign_get(key)

    async def delete(self, key: str) -> None:
        await self.broker.delete_object(key)

    # ------------------------------------------------------------------
    # Per-file execution
    # ------------------------------------------------------------------

    def _skip(self, source: UploadSource, prefix: Optional[str]) -> UploadFailure:
        job = UploadJob(source=source, key=build_key(source.name, prefix))
        self._jobs.append(job)
        error = UploadAborted("Batch cancelled before this file started")
        job.fail(error)
        uploads_failed_total.labels(error_type="UploadAborted").inc()
        return UploadFailure(filename=source.name, key=job.key, error=error)

    async def _upload_one(
        self,
        source: UploadSource,
        prefix: Optional[str],
        validation: Optional[ValidationOptions],
        on_progress: Optional[ProgressCallback],
    ) -> UploadOutcome:
        job = UploadJob(source=source)
        self._jobs.append(job)

        job.transition(JobState.VALIDATING)
        if validation is not None:
            result = validate_file(source, validation)
            if not result.ok:
                return self._record_failure(job, FileValidationError(result.reason or "File rejected"), None)
        job.key = build_key(source.name, prefix)

        strategy = self.strategy_for(source)
        retry = self._config.retry
        # one tracker per file, shared by every attempt
        file_tracker = ProgressTracker(source.size, on_progress)
        attempt = 0
        while True:
            attempt += 1
            start = time.monotonic()
            try:
                await self._execute(job, strategy, lambda progress: file_tracker.update(progress.loaded))
            except UploadError as e:
                retryable = isinstance(e, (TransportError, BrokerError)) and not self.cancelled
                if retryable and retry.should_retry(attempt):
                    self._record_failure(job, e, time.monotonic() - start, attempt=attempt)
                    await asyncio.sleep(retry.calculate_delay(attempt))
                    job = job.retry()
                    self._jobs.append(job)
                    continue
                return self._record_failure(job, e, time.monotonic() - start, attempt=attempt)

            duration = time.monotonic() - start
            job.complete()
            uploads_completed_total.labels(strategy=strategy).inc()
            upload_bytes_total.labels(strategy=strategy).inc(source.size)
            upload_duration_seconds.labels(strategy=strategy).observe(duration)
            log_upload_completed(
                logger, job_id=job.job_id, key=job.key, size=source.size,
                duration_ms=duration * 1000, strategy=strategy, attempt=attempt,
            )
            return UploadResult(
                key=job.key,
                bucket=job.bucket,
                size=source.size,
                content_type=source.content_type,
                uploaded_at=utcnow(),
            )

    async def _execute(self, job: UploadJob, strategy: str, on_progress: Optional[ProgressCallback]) -> None:
        source = job.source

        def report(progress: UploadProgress) -> None:
            job.advance(progress.fraction)
            if on_progress is not None:
                on_progress(progress)

        uploads_started_total.labels(strategy=strategy).inc()
        log_upload_started(logger, job_id=job.job_id, key=job.key, size=source.size, strategy=strategy)

        if strategy == MULTIPART:
            await self.multipart.upload(job, on_progress=report, cancel_event=self._cancel_event)
            return

        job.transition(JobState.AWAITING_GRANT)
        grant = await self.broker.presign_put(job.key, source.content_type)
        job.bucket = grant.bucket
        job.transition(JobState.UPLOADING)
        await self.executor.upload(source, grant, on_progress=report, cancel_event=self._cancel_event)

    def _record_failure(
        self,
        job: UploadJob,
        error: UploadError,
        duration: Optional[float],
        attempt: Optional[int] = None,
    ) -> UploadFailure:
        job.fail(error)
        uploads_failed_total.labels(error_type=error.__class__.__name__).inc()
        extra = {"attempt": attempt} if attempt is not None else {}
        log_upload_failed(
            logger,
            job_id=job.job_id,
            filename=job.source.name,
            error=str(error),
            key=job.key,
            aborted=job.state == JobState.ABORTED,
            duration_ms=duration * 1000 if duration is not None else None,
            **extra,
        )
        return UploadFailure(filename=job.source.name, key=job.key, error=error)
