"""
Production logging utility for structured JSON logging.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- job_id
- key
- upload_id
- duration_ms

Usage:
    from r2upload.utils.logging import configure_logging, log_upload_completed

    configure_logging('r2-upload-broker', 'INFO')
    log_upload_completed(logger, job_id='abc', key='docs/a.pdf', size=1024, duration_ms=45.2)
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier (r2-upload-broker or r2-upload-cli)
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if cls._configured:
            return  # Already configured

        cls._service_name = service_name

        # Remove default handlers
        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )

        # Console handler (for docker logs)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        # Add service name to all log records via filter
        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())
        cls._configured = True


def _build_log_extra(
    event: str,
    job_id: Optional[str] = None,
    key: Optional[str] = None,
    upload_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build extra fields for structured logging.

    Args:
        event: Event name (mandatory)
        job_id: Optional upload job ID
        key: Optional object key
        upload_id: Optional multipart upload ID
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields

    Returns:
        Dictionary of extra fields
    """
    extra = {
        "event": event,
        **kwargs
    }

    if job_id:
        extra["job_id"] = job_id
    if key:
        extra["key"] = key
    if upload_id:
        extra["upload_id"] = upload_id
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


# Upload event functions

def log_upload_started(
    logger: logging.Logger,
    job_id: str,
    key: str,
    size: int,
    strategy: str,
    **kwargs
):
    """
    Log upload start event.

    Args:
        logger: Logger instance
        job_id: Upload job ID (required)
        key: Object key (required)
        size: File size in bytes
        strategy: "direct" or "multipart"
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_started",
        job_id=job_id,
        key=key,
        size=size,
        strategy=strategy,
        **kwargs
    )
    logger.info(f"Upload started: {key} ({strategy})", extra=extra)


def log_upload_completed(
    logger: logging.Logger,
    job_id: str,
    key: str,
    size: int,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """
    Log upload completion event.

    Args:
        logger: Logger instance
        job_id: Upload job ID (required)
        key: Object key (required)
        size: File size in bytes
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_completed",
        job_id=job_id,
        key=key,
        duration_ms=duration_ms,
        size=size,
        **kwargs
    )
    logger.info(f"Upload completed: {key}", extra=extra)


def log_upload_failed(
    logger: logging.Logger,
    job_id: str,
    filename: str,
    error: str,
    key: Optional[str] = None,
    aborted: bool = False,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """
    Log upload failure (or abort) event.

    Aborts are logged at INFO level since they are caller-initiated.

    Args:
        logger: Logger instance
        job_id: Upload job ID (required)
        filename: Source file name (required)
        error: Error message (required)
        key: Optional object key (absent when validation failed early)
        aborted: Whether the upload was cancelled rather than failed
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_aborted" if aborted else "upload_failed",
        job_id=job_id,
        key=key,
        duration_ms=duration_ms,
        source_file=filename,
        error=str(error),
        **kwargs
    )

    if aborted:
        logger.info(f"Upload aborted: {filename} - {error}", extra=extra)
    else:
        logger.error(f"Upload failed: {filename} - {error}", extra=extra)


# Broker event functions

def log_broker_request(
    logger: logging.Logger,
    operation: str,
    key: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """
    Log a successful presigning broker request.

    Args:
        logger: Logger instance
        operation: Broker operation (presign_put, sign_part, complete, ...)
        key: Optional object key
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="broker_request",
        key=key,
        duration_ms=duration_ms,
        operation=operation,
        **kwargs
    )
    logger.debug(f"Broker request: {operation}", extra=extra)


def log_broker_failure(
    logger: logging.Logger,
    operation: str,
    error: str,
    key: Optional[str] = None,
    status_code: Optional[int] = None,
    attempt: Optional[int] = None,
    **kwargs
):
    """
    Log a failed presigning broker request.

    Args:
        logger: Logger instance
        operation: Broker operation (required)
        error: Error message (required)
        key: Optional object key
        status_code: HTTP status when the broker answered
        attempt: Attempt number when retries are enabled
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="broker_failure",
        key=key,
        operation=operation,
        error=str(error),
        **kwargs
    )
    if status_code is not None:
        extra["status_code"] = status_code
    if attempt is not None:
        extra["attempt"] = attempt

    logger.warning(f"Broker failure: {operation} - {error}", extra=extra)


def log_multipart_aborted(
    logger: logging.Logger,
    key: str,
    upload_id: str,
    reason: str,
    cleanup_error: Optional[str] = None,
    **kwargs
):
    """
    Log a multipart session abort.

    Args:
        logger: Logger instance
        key: Object key (required)
        upload_id: Multipart upload ID (required)
        reason: The error that caused the abort
        cleanup_error: Set when the abort call itself failed (ignored)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="multipart_aborted",
        key=key,
        upload_id=upload_id,
        reason=str(reason),
        **kwargs
    )
    if cleanup_error:
        extra["cleanup_error"] = cleanup_error
        logger.warning(
            f"Multipart abort failed for {key} (ignored): {cleanup_error}",
            extra=extra
        )
    else:
        logger.info(f"Multipart upload aborted: {key}", extra=extra)


# Convenience alias for backward compatibility
def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level)
