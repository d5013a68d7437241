"""Rate-limited image upload.

POST /api/v1/uploads -- multipart field "file"; 20 uploads per hour per client
"""

from typing import Optional

from fastapi import APIRouter, File, UploadFile

from citypulse.config import settings
from citypulse.dependencies import Blobs
from citypulse.exceptions import ValidationError
from citypulse.middleware.rate_limiter import UploadRateLimit
from citypulse.schemas.upload import UploadResponse

router = APIRouter(prefix="/api/v1", tags=["uploads"])


@router.post("/uploads", response_model=UploadResponse, status_code=201)
async def upload_file(
    store: Blobs,
    _rate: UploadRateLimit,
    file: Optional[UploadFile] = File(None),
) -> UploadResponse:
    if file is None:
        raise ValidationError("No file provided")

    # One byte past the limit is enough to reject without buffering the rest
    data = await file.read(settings.upload_max_bytes + 1)
    stored = await store.store(file.filename, file.content_type, data)
    return UploadResponse(
        url=stored.url,
        filename=stored.filename,
        size=stored.size,
        type=stored.content_type,
    )
