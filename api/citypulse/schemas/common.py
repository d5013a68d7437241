"""Common shared schema types used across the API."""

from typing import Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: str
    detail: Optional[str] = None
