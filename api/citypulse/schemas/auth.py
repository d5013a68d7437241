"""Schemas for binding a citizen or admin account to an X-API-Key."""

import uuid
from typing import Optional

from pydantic import BaseModel, Field


class APIKeyCreate(BaseModel):
    """Registers a citizen account. Both fields are optional; display_name is
    what the leaderboard and the admin ledger feed show."""

    email: Optional[str] = Field(None, max_length=255)
    display_name: Optional[str] = Field(None, max_length=100)


class APIKeyResponse(BaseModel):
    """The raw key is returned once; only its SHA-256 hash is kept."""

    api_key: str
    user_id: uuid.UUID
    message: str = (
        "Keep this key safe. Credits and redemptions are tied to it "
        "and it cannot be shown again."
    )


class KeyVerification(BaseModel):
    valid: bool = True
    user_id: uuid.UUID
    is_admin: bool
