"""Tests for upload validation, BlobStore retries and POST /api/v1/uploads."""

import httpx
import pytest

from citypulse.config import settings
from citypulse.exceptions import UpstreamTimeout, UpstreamUnavailable, ValidationError
from citypulse.main import app
from citypulse.middleware.rate_limiter import CHAT_SCOPE, UPLOAD_SCOPE, FixedWindowRateLimiter
from citypulse.services.blob_store import (
    BlobStore,
    is_safe_filename,
    storage_filename,
    validate_upload,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def blob_settings(monkeypatch):
    monkeypatch.setattr(settings, "blob_store_url", "https://blob.test/uploads")
    monkeypatch.setattr(settings, "blob_store_token", "secret-token")
    monkeypatch.setattr(settings, "upload_backoff_base_seconds", 0.0)


def _store(handler) -> BlobStore:
    return BlobStore(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestValidateUpload:
    def test_accepts_png(self):
        assert validate_upload("photo.PNG", "image/png", 100) == "png"

    @pytest.mark.parametrize(
        "filename, content_type, size, message",
        [
            ("doc.pdf", "application/pdf", 100, "Invalid file type"),
            ("big.jpg", "image/jpeg", 5 * 1024 * 1024 + 1, "File size must be less than 5MB"),
            ("empty.jpg", "image/jpeg", 0, "File is empty"),
            ("../etc/passwd.png", "image/png", 100, "Invalid filename"),
            (".hidden.png", "image/png", 100, "Invalid filename"),
            ("photo.png.", "image/png", 100, "Invalid filename"),
            ("photo.exe", "image/png", 100, "Invalid file extension"),
            ("noextension", "image/png", 100, "Invalid file extension"),
        ],
    )
    def test_rejections(self, filename, content_type, size, message):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload(filename, content_type, size)
        assert exc_info.value.message.startswith(message)

    def test_reserved_device_names_are_unsafe(self):
        assert is_safe_filename("photo.png")
        assert not is_safe_filename("CON")
        assert not is_safe_filename('bad"name.png')

    def test_storage_filename_format(self):
        name = storage_filename("webp", now=1_700_000_000.0)
        assert name.startswith("report-1700000000000-")
        assert name.endswith(".webp")
        assert len(name.split("-")[2].split(".")[0]) == 6


class TestBlobStore:
    @pytest.mark.asyncio
    async def test_put_with_bearer_token(self, blob_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"url": "https://cdn.test/stored.png"})

        stored = await _store(handler).store("photo.png", "image/png", PNG_BYTES)

        assert stored.url == "https://cdn.test/stored.png"
        assert stored.size == len(PNG_BYTES)
        assert seen["method"] == "PUT"
        assert seen["url"] == f"https://blob.test/uploads/{stored.filename}"
        assert seen["auth"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_url_falls_back_to_put_path(self, blob_settings):
        stored = await _store(lambda request: httpx.Response(201)).store(
            "photo.gif", "image/gif", PNG_BYTES
        )
        assert stored.url == f"https://blob.test/uploads/{stored.filename}"

    @pytest.mark.asyncio
    async def test_timeouts_retried_then_reported(self, blob_settings):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(UpstreamTimeout):
            await _store(handler).store("photo.png", "image/png", PNG_BYTES)
        assert calls["count"] == 1 + settings.upload_max_retries

    @pytest.mark.asyncio
    async def test_transient_network_error_recovers(self, blob_settings):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json={"url": "https://cdn.test/ok.png"})

        stored = await _store(handler).store("photo.png", "image/png", PNG_BYTES)
        assert stored.url == "https://cdn.test/ok.png"
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_http_error_status_not_retried(self, blob_settings):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(500)

        with pytest.raises(UpstreamUnavailable):
            await _store(handler).store("photo.png", "image/png", PNG_BYTES)
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_unconfigured_store_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(settings, "blob_store_url", "")
        with pytest.raises(UpstreamUnavailable):
            await BlobStore().store("photo.png", "image/png", PNG_BYTES)

    @pytest.mark.asyncio
    async def test_validation_happens_before_any_request(self, blob_settings):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(200)

        with pytest.raises(ValidationError):
            await _store(handler).store("photo.png", "image/png", b"")
        assert calls["count"] == 0


class TestUploadEndpoint:
    @pytest.mark.asyncio
    async def test_upload_success(self, client, blob_settings):
        app.state.blob_store = _store(
            lambda request: httpx.Response(200, json={"url": "https://cdn.test/a.png"})
        )

        response = await client.post(
            "/api/v1/uploads", files={"file": ("street.png", PNG_BYTES, "image/png")}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["url"] == "https://cdn.test/a.png"
        assert body["filename"].startswith("report-")
        assert body["size"] == len(PNG_BYTES)
        assert body["type"] == "image/png"

    @pytest.mark.asyncio
    async def test_upload_without_file_is_400(self, client, blob_settings):
        response = await client.post("/api/v1/uploads", data={"note": "nothing"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_upload_wrong_type_is_400(self, client, blob_settings):
        app.state.blob_store = _store(lambda request: httpx.Response(200))
        response = await client.post(
            "/api/v1/uploads", files={"file": ("notes.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid file type")

    @pytest.mark.asyncio
    async def test_upload_store_failure_is_503(self, client, blob_settings):
        app.state.blob_store = _store(lambda request: httpx.Response(502))
        response = await client.post(
            "/api/v1/uploads", files={"file": ("street.jpg", PNG_BYTES, "image/jpeg")}
        )
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_upload_rate_limit(self, client, blob_settings):
        app.state.blob_store = _store(lambda request: httpx.Response(200))
        app.state.rate_limiters = {
            CHAT_SCOPE: FixedWindowRateLimiter(10, 60),
            UPLOAD_SCOPE: FixedWindowRateLimiter(1, 3600),
        }

        first = await client.post(
            "/api/v1/uploads", files={"file": ("a.png", PNG_BYTES, "image/png")}
        )
        second = await client.post(
            "/api/v1/uploads", files={"file": ("b.png", PNG_BYTES, "image/png")}
        )

        assert first.status_code == 201
        assert second.status_code == 429
        assert second.json()["error"] == "Upload limit exceeded. Please try again later."
        assert "Retry-After" in second.headers
