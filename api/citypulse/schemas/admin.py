"""Pydantic schemas for admin ledger operations."""

import uuid
from typing import Optional

from pydantic import BaseModel, Field

from citypulse.schemas.ledger import LedgerEntryResponse


class AdjustmentCreate(BaseModel):
    user_id: uuid.UUID
    amount: int
    reason: str = Field(min_length=1, max_length=500)


class ReconcileResponse(BaseModel):
    repaired: int


class AdminLedgerItem(LedgerEntryResponse):
    user_id: uuid.UUID
    display_name: Optional[str] = None


class AdminLedgerResponse(BaseModel):
    """Cross-user feed for the admin console.

    total_credits_issued is the absolute credit volume of the listed entries.
    """

    items: list[AdminLedgerItem]
    total_credits_issued: int
