"""
Cloudflare R2 / S3-compatible storage client (broker side).

Uses boto3 with the S3-compatible API. Only the presigning broker holds
storage credentials; upload clients receive presigned URLs and never see
them.

Operations:
- Presigned PUT / GET URLs for whole objects
- Multipart: create, presigned part URLs, complete, abort
- Delete
"""
import logging
from typing import Optional
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from r2upload.config import settings

logger = logging.getLogger(__name__)

# Presigned URL lifetime bounds in seconds
PUT_EXPIRATION_BOUNDS = (60, 900)
GET_EXPIRATION_BOUNDS = (60, 3600)


def clamp_expiration(expiration: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    return min(max(expiration, low), high)


class R2Client:
    """
    S3-compatible client for Cloudflare R2.

    Methods return None/False on storage errors (after logging) so the API
    layer can turn them into error responses.
    """

    def __init__(self):
        """
        Initialize R2 client with boto3.

        Uses environment variables for configuration.
        Fails gracefully if not configured (returns None client).
        """
        self._client = None
        self._configured = False

        if not all([
            settings.r2_endpoint,
            settings.r2_access_key,
            settings.r2_secret_key
        ]):
            logger.warning(
                "R2 storage not configured. "
                "Set R2_ENDPOINT, R2_ACCESS_KEY, and R2_SECRET_KEY."
            )
            return

        try:
            # signature_version='s3v4' and path-style addressing for R2
            self._client = boto3.client(
                's3',
                endpoint_url=settings.r2_endpoint,
                aws_access_key_id=settings.r2_access_key,
                aws_secret_access_key=settings.r2_secret_key,
                region_name=settings.r2_region,
                config=Config(
                    signature_version='s3v4',
                    s3={'addressing_style': 'path'}
                )
            )
            self._configured = True
            logger.info(f"R2 client initialized for bucket: {settings.r2_bucket}")

        except NoCredentialsError:
            logger.error("R2 credentials not found or invalid")
        except (BotoCoreError, ValueError) as e:
            logger.error(f"Failed to initialize R2 client: {e}")

    @property
    def is_configured(self) -> bool:
        """Check if R2 client is properly configured."""
        return self._configured and self._client is not None

    @property
    def bucket(self) -> str:
        """Get configured bucket name."""
        return settings.r2_bucket

    def _presign(self, client_method: str, params: dict, expiration: int) -> Optional[str]:
        if not self.is_configured:
            logger.error("Cannot generate presigned URL: R2 not configured")
            return None

        try:
            return self._client.generate_presigned_url(
                ClientMethod=client_method,
                Params={'Bucket': self.bucket, **params},
                ExpiresIn=expiration
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned {client_method} URL: {e}")
            return None

    def generate_presigned_upload_url(
        self,
        object_key: str,
        content_type: str,
        expiration: Optional[int] = None
    ) -> Optional[str]:
        """
        Generate a presigned PUT URL for direct upload.

        Args:
            object_key: The S3 object key (path in bucket)
            content_type: MIME type of the file (e.g., application/pdf)
            expiration: URL expiration in seconds (clamped to 60-900)

        Returns:
            Presigned URL string, or None if generation fails

        Security:
            - URL expires after specified time
            - Only allows PUT (upload), not GET
            - Content-Type must match what was signed
        """
        if expiration is None:
            expiration = settings.r2_presign_expiration

        url = self._presign(
            'put_object',
            {'Key': object_key, 'ContentType': content_type},
            clamp_expiration(expiration, PUT_EXPIRATION_BOUNDS)
        )
        if url:
            logger.debug(f"Generated presigned URL for {object_key}")
        return url

    def get_presigned_read_url(self, object_key: str, expiration: Optional[int] = None) -> Optional[str]:
        """
        Generate a presigned GET URL for reading an object.

        The bucket stays private: the URL is the only way to read the object
        and it expires (clamped to 60-3600 seconds).

        Args:
            object_key: The S3 object key (path in bucket)
            expiration: URL expiration in seconds (default from settings)

        Returns:
            Presigned URL string, or None if generation fails
        """
        if expiration is None:
            expiration = settings.r2_download_expiration

        expiration = clamp_expiration(expiration, GET_EXPIRATION_BOUNDS)
        url = self._presign('get_object', {'Key': object_key}, expiration)
        if url:
            logger.debug(f"Generated presigned read URL for {object_key} (expires in {expiration}s)")
        return url

    def create_multipart_upload(self, object_key: str, content_type: str) -> Optional[str]:
        """
        Start a multipart upload.

        Returns:
            The storage-assigned UploadId, or None on failure
        """
        if not self.is_configured:
            logger.error("Cannot create multipart upload: R2 not configured")
            return None

        try:
            response = self._client.create_multipart_upload(
                Bucket=self.bucket,
                Key=object_key,
                ContentType=content_type,
            )
            upload_id = response['UploadId']
            logger.info(f"Created multipart upload {upload_id} for {object_key}")
            return upload_id
        except (ClientError, BotoCoreError, KeyError) as e:
            logger.error(f"Failed to create multipart upload for {object_key}: {e}")
            return None

    def generate_presigned_part_url(
        self,
        object_key: str,
        upload_id: str,
        part_number: int,
        expiration: Optional[int] = None
    ) -> Optional[str]:
        """Generate a presigned PUT URL scoped to one part of a multipart upload."""
        if expiration is None:
            expiration = settings.r2_presign_expiration

        return self._presign(
            'upload_part',
            {'Key': object_key, 'UploadId': upload_id, 'PartNumber': part_number},
            clamp_expiration(expiration, PUT_EXPIRATION_BOUNDS)
        )

    def complete_multipart_upload(self, object_key: str, upload_id: str, parts: list[dict]) -> bool:
        """
        Assemble the final object from uploaded parts.

        Args:
            object_key: The S3 object key
            upload_id: Multipart upload ID
            parts: [{part_number, etag}] in any order (sorted here)

        Returns:
            True if the object was assembled, False otherwise
        """
        if not self.is_configured:
            logger.error("Cannot complete multipart upload: R2 not configured")
            return False

        # ETags are passed exactly as the client received them (quotes included)
        part_list = sorted(
            ({'ETag': p['etag'], 'PartNumber': int(p['part_number'])} for p in parts),
            key=lambda p: p['PartNumber']
        )
        try:
            self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=object_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': part_list},
            )
            logger.info(f"Completed multipart upload {upload_id} ({len(part_list)} parts) for {object_key}")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to complete multipart upload {upload_id}: {e}")
            return False

    def abort_multipart_upload(self, object_key: str, upload_id: str) -> bool:
        """
        Abort a multipart upload, discarding uploaded parts.

        An unknown upload (already aborted or completed) counts as success.
        """
        if not self.is_configured:
            logger.warning(f"Cannot abort multipart upload {upload_id}: R2 not configured")
            return False

        try:
            self._client.abort_multipart_upload(Bucket=self.bucket, Key=object_key, UploadId=upload_id)
            logger.info(f"Aborted multipart upload {upload_id} for {object_key}")
            return True
        except ClientError as e:
            if e.response['Error']['Code'] in ('NoSuchUpload', '404'):
                logger.debug(f"Multipart upload {upload_id} not found (already gone)")
                return True
            logger.error(f"Failed to abort multipart upload {upload_id}: {e}")
            return False
        except BotoCoreError as e:
            logger.error(f"Unexpected error aborting multipart upload {upload_id}: {e}")
            return False

    def delete_object(self, object_key: str) -> bool:
        """
        Delete an object from the bucket.

        Args:
            object_key: The S3 object key to delete

        Returns:
            True if deletion was successful, False otherwise
        """
        if not self.is_configured:
            logger.warning(f"Cannot delete object {object_key}: R2 not configured")
            return False

        try:
            self._client.delete_object(Bucket=self.bucket, Key=object_key)
            logger.debug(f"Deleted object {object_key} from R2")
            return True
        except ClientError as e:
            # If object doesn't exist, consider it a success (idempotent)
            if e.response['Error']['Code'] == '404':
                logger.debug(f"Object {object_key} not found in R2 (already deleted)")
                return True
            logger.error(f"Failed to delete object {object_key} from R2: {e}")
            return False
        except BotoCoreError as e:
            logger.error(f"Unexpected error deleting object {object_key} from R2: {e}")
            return False


# Singleton instance
_r2_client: Optional[R2Client] = None


def get_r2_client() -> R2Client:
    """
    Get the singleton R2 client instance.

    Returns:
        R2Client instance (may or may not be configured)
    """
    global _r2_client
    if _r2_client is None:
        _r2_client = R2Client()
    return _r2_client
