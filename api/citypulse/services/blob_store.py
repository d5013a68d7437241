"""Image upload validation and storage in the configured blob store.

Files are renamed to report-<millis>-<random>.<ext> before storage; the
client's filename is only validated, never used as a storage key.

Storage is an HTTP PUT to {blob_store_url}/{filename} with a bearer token.
Timeouts and network errors are retried (upload_max_retries, exponential
backoff); an HTTP error status from the store is not.
"""
import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from citypulse.config import settings
from citypulse.exceptions import UpstreamTimeout, UpstreamUnavailable, ValidationError
from citypulse.metrics import uploads
from citypulse.services.retry import retry_with_backoff

log = structlog.get_logger(__name__)

ALLOWED_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")
ALLOWED_EXTENSIONS = {content_type.split("/")[1] for content_type in ALLOWED_TYPES}

DANGEROUS_FILENAME_PATTERNS = (
    re.compile(r"\.\."),  # path traversal
    re.compile(r'[<>:"|?*]'),
    re.compile(r"^(con|prn|aux|nul|com[1-9]|lpt[1-9])$", re.IGNORECASE),  # reserved device names
    re.compile(r"^\."),
    re.compile(r"\.$"),
)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class StoredFile:
    url: str
    filename: str
    size: int
    content_type: str


def is_safe_filename(filename: str) -> bool:
    return not any(pattern.search(filename) for pattern in DANGEROUS_FILENAME_PATTERNS)


def validate_upload(filename: Optional[str], content_type: Optional[str], size: int) -> str:
    """Check one upload and return its lower-cased extension.

    Raises:
        ValidationError: wrong type, too large, empty, unsafe name, or an
            extension that is not an allowed image extension.
    """
    if not filename:
        raise ValidationError("No file provided")
    if (content_type or "").lower() not in ALLOWED_TYPES:
        raise ValidationError(f"Invalid file type. Allowed types: {', '.join(ALLOWED_TYPES)}")
    if size > settings.upload_max_bytes:
        raise ValidationError(
            f"File size must be less than {settings.upload_max_bytes // (1024 * 1024)}MB"
        )
    if size == 0:
        raise ValidationError("File is empty")
    if not is_safe_filename(filename):
        raise ValidationError("Invalid filename")

    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension not in ALLOWED_EXTENSIONS:
        raise ValidationError("Invalid file extension")
    return extension


def storage_filename(extension: str, now: Optional[float] = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"report-{millis}-{suffix}.{extension}"


class BlobStore:
    """Thin async client for the blob store's PUT endpoint."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(settings.blob_store_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.upload_timeout_seconds)
        return self._client

    async def _put(self, filename: str, data: bytes, content_type: str) -> str:
        client = self._get_client()
        base_url = settings.blob_store_url.rstrip("/")
        headers = {"Content-Type": content_type}
        if settings.blob_store_token:
            headers["Authorization"] = f"Bearer {settings.blob_store_token}"

        response = await client.put(
            f"{base_url}/{filename}",
            content=data,
            headers=headers,
            timeout=settings.upload_timeout_seconds,
        )
        response.raise_for_status()

        # Stores that return JSON report the public URL; others serve at the PUT path
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("url"), str):
            return body["url"]
        return f"{base_url}/{filename}"

    async def store(self, filename: Optional[str], content_type: Optional[str], data: bytes) -> StoredFile:
        """Validate and store one image, returning its public URL.

        Raises:
            ValidationError: see validate_upload.
            UpstreamUnavailable: store not configured, rejected the upload,
                or unreachable after retries.
            UpstreamTimeout: every attempt timed out.
        """
        try:
            extension = validate_upload(filename, content_type, len(data))
        except ValidationError:
            uploads.labels(outcome="rejected").inc()
            raise

        if not self.configured:
            uploads.labels(outcome="unavailable").inc()
            log.warning("blob_store_not_configured")
            raise UpstreamUnavailable("File storage is temporarily unavailable. Please try again later.")

        stored_name = storage_filename(extension)
        try:
            url = await retry_with_backoff(
                lambda: self._put(stored_name, data, content_type.lower()),
                retry_on=(httpx.TimeoutException, httpx.TransportError),
                max_retries=settings.upload_max_retries,
                base_delay=settings.upload_backoff_base_seconds,
                operation_name="blob_upload",
            )
        except httpx.TimeoutException as exc:
            uploads.labels(outcome="timeout").inc()
            log.warning("blob_upload_timeout", filename=stored_name)
            raise UpstreamTimeout("Upload timeout. Please try again.") from exc
        except httpx.HTTPError as exc:
            uploads.labels(outcome="unavailable").inc()
            log.error("blob_upload_failed", filename=stored_name, error=str(exc))
            raise UpstreamUnavailable("Failed to store file. Please try again.") from exc

        uploads.labels(outcome="success").inc()
        log.info("file_uploaded", filename=stored_name, size=len(data))
        return StoredFile(url=url, filename=stored_name, size=len(data), content_type=content_type)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
