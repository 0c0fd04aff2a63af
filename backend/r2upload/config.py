"""
Application configuration using Pydantic Settings.
All environment variables are loaded here with sensible defaults.

The upload client itself never reads these settings: it receives an
explicit UploaderConfig built by `settings.uploader_config()` (or by hand).
"""
from dataclasses import dataclass, field
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from r2upload.utils.retry import RetryPolicy

MB = 1024 * 1024


def normalize_broker_url(url: str) -> str:
    """Strip trailing slashes and a trailing `/s3` segment from a broker base URL."""
    normalized = url.strip().rstrip("/")
    if normalized.endswith("/s3"):
        normalized = normalized[:-3]
    return normalized


@dataclass
class UploaderConfig:
    """Explicit configuration passed to the upload client constructors."""

    broker_base_url: str
    multipart_threshold_bytes: int = 100 * MB
    part_size_bytes: int = 10 * MB
    request_timeout_seconds: float = 30.0
    chunk_size_bytes: int = 64 * 1024
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        self.broker_base_url = normalize_broker_url(self.broker_base_url)
        if self.part_size_bytes <= 0:
            raise ValueError("part_size_bytes must be positive")
        if self.chunk_size_bytes <= 0:
            raise ValueError("chunk_size_bytes must be positive")
        if self.multipart_threshold_bytes < 0:
            raise ValueError("multipart_threshold_bytes must be non-negative")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = "dev"
    log_level: str = "INFO"

    # Upload client
    upload_broker_url: str = "http://localhost:8787"
    upload_multipart_threshold_mb: int = 100  # Files above this use multipart
    upload_part_size_mb: int = 10  # S3 minimum is 5 MB (except the last part)
    upload_request_timeout: float = 30.0  # Seconds, per HTTP call
    upload_max_retries: int = 0  # 0 = single attempt
    upload_retry_backoff_ms: int = 500

    # Client-side validation defaults
    upload_max_size_mb: Optional[int] = None
    upload_allowed_types: str = ""  # Comma separated, e.g. "image/*,application/pdf"

    # Cloudflare R2 / S3-compatible storage (broker only)
    r2_endpoint: Optional[str] = None  # e.g., https://<account_id>.r2.cloudflarestorage.com
    r2_bucket: str = "uploads"
    r2_access_key: Optional[str] = None
    r2_secret_key: Optional[str] = None
    r2_region: str = "auto"  # R2 uses "auto" for region
    r2_presign_expiration: int = 900  # PUT/part URL expiration in seconds (15 min)
    r2_download_expiration: int = 300  # GET URL expiration in seconds

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def allowed_types(self) -> list[str]:
        return [t.strip() for t in self.upload_allowed_types.split(",") if t.strip()]

    def uploader_config(self) -> UploaderConfig:
        """Build the explicit client configuration from the environment."""
        return UploaderConfig(
            broker_base_url=self.upload_broker_url,
            multipart_threshold_bytes=self.upload_multipart_threshold_mb * MB,
            part_size_bytes=self.upload_part_size_mb * MB,
            request_timeout_seconds=self.upload_request_timeout,
            retry=RetryPolicy(
                max_retries=self.upload_max_retries,
                initial_delay_ms=self.upload_retry_backoff_ms,
                max_delay_ms=max(self.upload_retry_backoff_ms, 10000),
            ),
        )

    def validation_options(self):
        """Build default client-side validation options from the environment."""
        from r2upload.storage.validation import ValidationOptions

        max_bytes = self.upload_max_size_mb * MB if self.upload_max_size_mb else None
        return ValidationOptions(max_size_bytes=max_bytes, allowed_types=tuple(self.allowed_types))


# Global settings instance
settings = Settings()
