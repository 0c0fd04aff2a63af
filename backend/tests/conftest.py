"""
Test configuration and fixtures.

The upload client is exercised against an in-memory broker + object store
served through httpx.MockTransport, so no network or R2 account is needed.
The broker app is tested separately through ASGITransport with the R2
client dependency overridden.
"""
import os

# Set test environment before any imports
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("R2_ENDPOINT", None)

import asyncio
import hashlib
import itertools
import json
from typing import AsyncGenerator, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from r2upload.config import UploaderConfig
from r2upload.storage.broker_client import PresignedUrlClient
from r2upload.storage.direct import DirectUploadExecutor
from r2upload.storage.orchestrator import BatchUploadOrchestrator
from r2upload.storage.r2_client import R2Client
from r2upload.utils.retry import RetryPolicy

BROKER_URL = "http://broker.test"
STORAGE_URL = "http://storage.test"
BUCKET = "test-bucket"


def _etag(data: bytes) -> str:
    return f'"{hashlib.md5(data).hexdigest()}"'


class FakeObjectStore:
    """
    In-memory presigning broker and S3-like object store.

    Broker routes live on broker.test (/s3/*), presigned URLs point at
    storage.test and carry an opaque token that maps back to the signed
    operation. Every broker call is recorded in `calls` as (operation, body).
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.uploads: Dict[str, Dict[int, Tuple[bytes, str]]] = {}
        self.calls: List[Tuple[str, dict]] = []
        self.storage_requests: List[httpx.Request] = []
        self._grants: Dict[str, dict] = {}
        self._tokens = itertools.count(1)
        self._upload_ids = itertools.count(1)

        # Failure injection
        self.broker_failures: Dict[str, List[Tuple[int, str]]] = {}
        self.put_failures: Dict[str, List[int]] = {}
        self.part_failures: Dict[int, int] = {}
        self.omit_etag = False
        self.presign_expires_in: Optional[int] = 900

        # Blocks the PUT of this part number until `release` is set
        self.block_part: Optional[int] = None
        self.blocked = asyncio.Event()
        self.release = asyncio.Event()

    # ------------------------------------------------------------------
    # Failure injection helpers
    # ------------------------------------------------------------------

    def fail_broker(self, operation: str, status: int = 500, error: str = "boom", times: int = 1):
        self.broker_failures.setdefault(operation, []).extend([(status, error)] * times)

    def fail_put(self, key: str, status: int = 500, times: int = 1):
        self.put_failures.setdefault(key, []).extend([status] * times)

    def fail_part(self, part_number: int, status: int = 500):
        self.part_failures[part_number] = status

    def operations(self, name: Optional[str] = None) -> List[str]:
        ops = [op for op, _ in self.calls]
        return [op for op in ops if op == name] if name else ops

    def bodies(self, operation: str) -> List[dict]:
        return [body for op, body in self.calls if op == operation]

    # ------------------------------------------------------------------
    # Transport entry point
    # ------------------------------------------------------------------

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "broker.test":
            return self._broker(request)
        if request.url.host == "storage.test":
            self.storage_requests.append(request)
            return await self._storage(request)
        raise httpx.ConnectError(f"unknown host {request.url.host}", request=request)

    def _grant(self, **grant) -> str:
        token = f"tok{next(self._tokens)}"
        self._grants[token] = grant
        return f"{STORAGE_URL}/{BUCKET}/{grant['key']}?X-Amz-Signature={token}"

    # ------------------------------------------------------------------
    # Broker
    # ------------------------------------------------------------------

    def _broker(self, request: httpx.Request) -> httpx.Response:
        operation = request.url.path.rsplit("/", 1)[-1]
        try:
            body = json.loads(request.content or b"{}")
        except ValueError:
            return httpx.Response(400, json={"error": "Invalid JSON body"})
        self.calls.append((operation, body))

        pending = self.broker_failures.get(operation)
        if pending:
            status, error = pending.pop(0)
            return httpx.Response(status, json={"error": error})

        key = body.get("key")
        if not key:
            return httpx.Response(400, json={"error": "Missing key"})

        if operation == "presign-put":
            content_type = body.get("contentType") or "application/octet-stream"
            url = self._grant(kind="put", key=key, content_type=content_type)
            return httpx.Response(200, json={
                "url": url,
                "key": key,
                "bucket": BUCKET,
                "contentType": content_type,
                "expiresIn": self.presign_expires_in,
            })

        if operation == "presign":
            return httpx.Response(200, json={"url": self._grant(kind="get", key=key), "expiresIn": 300})

        if operation == "create":
            upload_id = f"upload-{next(self._upload_ids)}"
            self.uploads[upload_id] = {}
            self.content_types[key] = body.get("contentType") or "application/octet-stream"
            return httpx.Response(200, json={"uploadId": upload_id, "key": key, "bucket": BUCKET})

        if operation == "sign":
            part_number = body.get("partNumber")
            if not isinstance(part_number, int) or part_number < 1:
                return httpx.Response(400, json={"error": "Invalid partNumber"})
            url = self._grant(kind="part", key=key, upload_id=body.get("uploadId"), part_number=part_number)
            return httpx.Response(200, json={"url": url})

        if operation == "complete":
            return self._complete(key, body)

        if operation == "abort":
            self.uploads.pop(body.get("uploadId"), None)
            return httpx.Response(200, json={"ok": True})

        if operation == "delete":
            self.objects.pop(key, None)
            return httpx.Response(200, json={"ok": True})

        return httpx.Response(404, json={"error": "Not found"})

    def _complete(self, key: str, body: dict) -> httpx.Response:
        upload = self.uploads.get(body.get("uploadId"))
        if upload is None:
            return httpx.Response(404, json={"error": "NoSuchUpload"})
        parts = sorted(body.get("parts") or [], key=lambda p: p["partNumber"])
        if not parts:
            return httpx.Response(400, json={"error": "Missing parts"})
        chunks = []
        for part in parts:
            stored = upload.get(part["partNumber"])
            if stored is None or stored[1] != part["etag"]:
                return httpx.Response(400, json={"error": f"InvalidPart {part['partNumber']}"})
            chunks.append(stored[0])
        self.objects[key] = b"".join(chunks)
        del self.uploads[body["uploadId"]]
        return httpx.Response(200, json={"ok": True})

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _storage(self, request: httpx.Request) -> httpx.Response:
        grant = self._grants.get(request.url.params.get("X-Amz-Signature", ""))
        if grant is None:
            return httpx.Response(403, text="<Error><Code>AccessDenied</Code></Error>")

        if request.method == "GET" and grant["kind"] == "get":
            data = self.objects.get(grant["key"])
            if data is None:
                return httpx.Response(404, text="<Error><Code>NoSuchKey</Code></Error>")
            return httpx.Response(200, content=data)

        if request.method != "PUT":
            return httpx.Response(405)

        data = await request.aread()

        if grant["kind"] == "put":
            failures = self.put_failures.get(grant["key"])
            if failures:
                return httpx.Response(failures.pop(0), text="<Error><Code>InternalError</Code></Error>")
            if request.headers.get("content-type") != grant["content_type"]:
                return httpx.Response(403, text="<Error><Code>SignatureDoesNotMatch</Code></Error>")
            self.objects[grant["key"]] = data
            self.content_types[grant["key"]] = grant["content_type"]
            return httpx.Response(200, headers={"ETag": _etag(data)})

        if grant["kind"] == "part":
            part_number = grant["part_number"]
            if part_number == self.block_part:
                self.blocked.set()
                await self.release.wait()
            if part_number in self.part_failures:
                return httpx.Response(self.part_failures[part_number], text="<Error><Code>InternalError</Code></Error>")
            upload = self.uploads.get(grant["upload_id"])
            if upload is None:
                return httpx.Response(404, text="<Error><Code>NoSuchUpload</Code></Error>")
            etag = _etag(data)
            upload[part_number] = (data, etag)
            return httpx.Response(200, headers={} if self.omit_etag else {"ETag": etag})

        return httpx.Response(403, text="<Error><Code>AccessDenied</Code></Error>")


# ============================================================================
# Client fixtures
# ============================================================================

@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
async def http_client(store: FakeObjectStore) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(store.handler)) as client:
        yield client


@pytest.fixture
def uploader_config() -> UploaderConfig:
    """Small thresholds so multipart paths run with a few hundred bytes."""
    return UploaderConfig(
        broker_base_url=f"{BROKER_URL}/s3/",
        multipart_threshold_bytes=1024,
        part_size_bytes=256,
        chunk_size_bytes=64,
        request_timeout_seconds=5.0,
    )


@pytest.fixture
def retrying_config(uploader_config: UploaderConfig) -> UploaderConfig:
    uploader_config.retry = RetryPolicy(max_retries=1, initial_delay_ms=0, max_delay_ms=0, jitter=False)
    return uploader_config


@pytest.fixture
def broker(uploader_config: UploaderConfig, http_client: httpx.AsyncClient) -> PresignedUrlClient:
    return PresignedUrlClient(uploader_config, http_client=http_client)


@pytest.fixture
def executor(http_client: httpx.AsyncClient) -> DirectUploadExecutor:
    return DirectUploadExecutor(http_client=http_client, chunk_size=64)


@pytest.fixture
def orchestrator(uploader_config: UploaderConfig, http_client: httpx.AsyncClient) -> BatchUploadOrchestrator:
    return BatchUploadOrchestrator(uploader_config, http_client=http_client)


# ============================================================================
# Broker app fixtures
# ============================================================================

@pytest.fixture
def mock_r2() -> MagicMock:
    """Configured R2 client double; storage calls succeed by default."""
    r2 = MagicMock(spec=R2Client)
    r2.is_configured = True
    r2.bucket = BUCKET
    r2.generate_presigned_upload_url.return_value = f"{STORAGE_URL}/{BUCKET}/obj?X-Amz-Signature=put"
    r2.get_presigned_read_url.return_value = f"{STORAGE_URL}/{BUCKET}/obj?X-Amz-Signature=get"
    r2.create_multipart_upload.return_value = "upload-1"
    r2.generate_presigned_part_url.return_value = f"{STORAGE_URL}/{BUCKET}/obj?partNumber=1"
    r2.complete_multipart_upload.return_value = True
    r2.abort_multipart_upload.return_value = True
    r2.delete_object.return_value = True
    return r2


def get_test_app(r2: MagicMock) -> FastAPI:
    """Create the broker app with the storage client overridden."""
    from r2upload.main import app
    from r2upload.storage.r2_client import get_r2_client

    app.dependency_overrides[get_r2_client] = lambda: r2
    return app


@pytest.fixture
async def client(mock_r2: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for broker API testing."""
    app = get_test_app(mock_r2)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()
