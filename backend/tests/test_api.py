"""
Tests for the presigning broker endpoints.
Uses httpx AsyncClient over ASGITransport with the R2 client overridden.
"""
import threading
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient

from r2upload.config import settings
from r2upload.storage.r2_client import R2Client

from conftest import BUCKET


class TestRootEndpoints:
    """Tests for root, health and metrics."""

    @pytest.mark.asyncio
    async def test_root_returns_info(self, client: AsyncClient):
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "R2 Upload Broker"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_health_configured(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["storage"] == "configured"

    @pytest.mark.asyncio
    async def test_health_unconfigured(self, client: AsyncClient, mock_r2: MagicMock):
        mock_r2.is_configured = False

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient):
        await client.post("/s3/presign-put", json={"key": "a.txt", "contentType": "text/plain"})

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "presigned_urls_total" in response.text
        assert "http_requests_total" in response.text


class TestPresignEndpoints:
    """Tests for single-object grants."""

    @pytest.mark.asyncio
    async def test_presign_put(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/presign-put", json={"key": "docs/a.pdf", "contentType": "application/pdf"})

        assert response.status_code == 200
        data = response.json()
        assert data["url"].startswith("http://storage.test/")
        assert data["key"] == "docs/a.pdf"
        assert data["bucket"] == BUCKET
        assert data["contentType"] == "application/pdf"
        assert data["expiresIn"] == settings.r2_presign_expiration
        assert "expiresAt" in data
        mock_r2.generate_presigned_upload_url.assert_called_once_with(
            "docs/a.pdf", "application/pdf", settings.r2_presign_expiration
        )

    @pytest.mark.asyncio
    async def test_presign_put_defaults_content_type(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/presign-put", json={"key": "blob"})

        assert response.json()["contentType"] == "application/octet-stream"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested,granted", [(5, 60), (300, 300), (100000, 900)])
    async def test_presign_put_expiry_is_clamped(self, client: AsyncClient, requested, granted):
        response = await client.post("/s3/presign-put", json={"key": "a", "expires": requested})

        assert response.json()["expiresIn"] == granted

    @pytest.mark.asyncio
    async def test_presign_put_missing_key(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/presign-put", json={"contentType": "text/plain"})

        assert response.status_code == 400
        assert "key" in response.json()["error"]
        mock_r2.generate_presigned_upload_url.assert_not_called()

    @pytest.mark.asyncio
    async def test_presign_put_invalid_json(self, client: AsyncClient):
        response = await client.post(
            "/s3/presign-put", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_storage_not_configured(self, client: AsyncClient, mock_r2: MagicMock):
        mock_r2.is_configured = False

        response = await client.post("/s3/presign-put", json={"key": "a"})

        assert response.status_code == 503
        assert response.json() == {"error": "Storage service not configured"}

    @pytest.mark.asyncio
    async def test_storage_failure(self, client: AsyncClient, mock_r2: MagicMock):
        mock_r2.generate_presigned_upload_url.return_value = None

        response = await client.post("/s3/presign-put", json={"key": "a"})

        assert response.status_code == 502
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_presign_get(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/presign", json={"key": "a.txt", "method": "GET"})

        assert response.status_code == 200
        assert response.json()["expiresIn"] == settings.r2_download_expiration
        mock_r2.get_presigned_read_url.assert_called_once_with("a.txt", settings.r2_download_expiration)

    @pytest.mark.asyncio
    async def test_presign_get_expiry_is_clamped(self, client: AsyncClient):
        response = await client.post("/s3/presign", json={"key": "a.txt", "expires": 7200})

        assert response.json()["expiresIn"] == 3600

    @pytest.mark.asyncio
    async def test_presign_only_supports_get(self, client: AsyncClient):
        response = await client.post("/s3/presign", json={"key": "a.txt", "method": "PUT"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/delete", json={"key": "a.txt"})

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        mock_r2.delete_object.assert_called_once_with("a.txt")

    @pytest.mark.asyncio
    async def test_delete_failure(self, client: AsyncClient, mock_r2: MagicMock):
        mock_r2.delete_object.return_value = False

        response = await client.post("/s3/delete", json={"key": "a.txt"})

        assert response.status_code == 502


class TestMultipartEndpoints:
    """Tests for multipart endpoints."""

    @pytest.mark.asyncio
    async def test_create(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/create", json={"key": "big.bin", "contentType": "application/zip"})

        assert response.status_code == 200
        assert response.json() == {"uploadId": "upload-1", "key": "big.bin", "bucket": BUCKET}
        mock_r2.create_multipart_upload.assert_called_once_with("big.bin", "application/zip")

    @pytest.mark.asyncio
    async def test_create_failure(self, client: AsyncClient, mock_r2: MagicMock):
        mock_r2.create_multipart_upload.return_value = None

        response = await client.post("/s3/create", json={"key": "big.bin"})

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_sign(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/sign", json={"key": "big.bin", "uploadId": "u1", "partNumber": 2})

        assert response.status_code == 200
        assert set(response.json()) == {"url"}
        mock_r2.generate_presigned_part_url.assert_called_once_with("big.bin", "u1", 2)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("part_number", [0, -1, 10001])
    async def test_sign_invalid_part_number(self, client: AsyncClient, part_number):
        response = await client.post(
            "/s3/sign", json={"key": "big.bin", "uploadId": "u1", "partNumber": part_number}
        )

        assert response.status_code == 400
        assert "partNumber" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_complete(self, client: AsyncClient, mock_r2: MagicMock):
        parts = [{"partNumber": 2, "etag": '"b"'}, {"partNumber": 1, "etag": '"a"'}]

        response = await client.post("/s3/complete", json={"key": "big.bin", "uploadId": "u1", "parts": parts})

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        mock_r2.complete_multipart_upload.assert_called_once_with(
            "big.bin", "u1", [{"part_number": 2, "etag": '"b"'}, {"part_number": 1, "etag": '"a"'}]
        )

    @pytest.mark.asyncio
    async def test_complete_requires_parts(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/complete", json={"key": "big.bin", "uploadId": "u1", "parts": []})

        assert response.status_code == 400
        mock_r2.complete_multipart_upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_complete_requires_etags(self, client: AsyncClient):
        response = await client.post(
            "/s3/complete",
            json={"key": "big.bin", "uploadId": "u1", "parts": [{"partNumber": 1, "etag": ""}]},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_complete_failure(self, client: AsyncClient, mock_r2: MagicMock):
        mock_r2.complete_multipart_upload.return_value = False

        response = await client.post(
            "/s3/complete",
            json={"key": "big.bin", "uploadId": "u1", "parts": [{"partNumber": 1, "etag": '"a"'}]},
        )

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_abort(self, client: AsyncClient, mock_r2: MagicMock):
        response = await client.post("/s3/abort", json={"key": "big.bin", "uploadId": "u1"})

        assert response.status_code == 200
        mock_r2.abort_multipart_upload.assert_called_once_with("big.bin", "u1")

    @pytest.mark.asyncio
    async def test_storage_round_trips_run_in_worker_threads(self, client: AsyncClient, mock_r2: MagicMock):
        """Test blocking storage calls never run on the event loop thread."""
        loop_thread = threading.get_ident()
        threads = []

        def record(result):
            def call(*args):
                threads.append(threading.get_ident())
                return result
            return call

        mock_r2.create_multipart_upload.side_effect = record("upload-1")
        mock_r2.complete_multipart_upload.side_effect = record(True)
        mock_r2.abort_multipart_upload.side_effect = record(True)
        mock_r2.delete_object.side_effect = record(True)

        await client.post("/s3/create", json={"key": "big.bin"})
        await client.post(
            "/s3/complete",
            json={"key": "big.bin", "uploadId": "u1", "parts": [{"partNumber": 1, "etag": '"a"'}]},
        )
        await client.post("/s3/abort", json={"key": "big.bin", "uploadId": "u1"})
        await client.post("/s3/delete", json={"key": "big.bin"})

        assert len(threads) == 4
        assert loop_thread not in threads


class TestR2Client:
    """Tests for the boto3-backed storage client (no network needed to presign)."""

    @pytest.fixture
    def configured(self, monkeypatch):
        monkeypatch.setattr(settings, "r2_endpoint", "https://account.r2.cloudflarestorage.com")
        monkeypatch.setattr(settings, "r2_access_key", "test-access-key")
        monkeypatch.setattr(settings, "r2_secret_key", "test-secret-key")
        monkeypatch.setattr(settings, "r2_bucket", BUCKET)
        return R2Client()

    def test_unconfigured(self, monkeypatch):
        monkeypatch.setattr(settings, "r2_endpoint", None)

        r2 = R2Client()

        assert not r2.is_configured
        assert r2.generate_presigned_upload_url("a", "text/plain") is None
        assert r2.create_multipart_upload("a", "text/plain") is None
        assert r2.delete_object("a") is False

    def test_presigned_put_url(self, configured):
        url = configured.generate_presigned_upload_url("docs/a.pdf", "application/pdf")

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.netloc == "account.r2.cloudflarestorage.com"
        assert parsed.path == f"/{BUCKET}/docs/a.pdf"
        assert query["X-Amz-Expires"] == [str(settings.r2_presign_expiration)]
        assert "X-Amz-Signature" in query

    @pytest.mark.parametrize("requested,granted", [(1, 60), (600, 600), (86400, 900)])
    def test_put_expiry_is_clamped(self, configured, requested, granted):
        url = configured.generate_presigned_upload_url("a", "text/plain", requested)

        assert parse_qs(urlparse(url).query)["X-Amz-Expires"] == [str(granted)]

    def test_read_url_expiry_is_clamped(self, configured):
        url = configured.get_presigned_read_url("a", 86400)

        assert parse_qs(urlparse(url).query)["X-Amz-Expires"] == ["3600"]

    def test_part_url_is_scoped_to_part(self, configured):
        url = configured.generate_presigned_part_url("big.bin", "u1", 3)

        query = parse_qs(urlparse(url).query)
        assert query["partNumber"] == ["3"]
        assert query["uploadId"] == ["u1"]

    def test_complete_sorts_parts(self, configured):
        configured._client = MagicMock()

        ok = configured.complete_multipart_upload(
            "big.bin", "u1", [{"part_number": 2, "etag": '"b"'}, {"part_number": 1, "etag": '"a"'}]
        )

        assert ok
        configured._client.complete_multipart_upload.assert_called_once_with(
            Bucket=BUCKET,
            Key="big.bin",
            UploadId="u1",
            MultipartUpload={"Parts": [{"ETag": '"a"', "PartNumber": 1}, {"ETag": '"b"', "PartNumber": 2}]},
        )

    def test_create_returns_upload_id(self, configured):
        configured._client = MagicMock()
        configured._client.create_multipart_upload.return_value = {"UploadId": "abc"}

        assert configured.create_multipart_upload("big.bin", "application/zip") == "abc"
