"""Pydantic schemas for credit balance, history and leaderboard reads."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    amount: int
    reason: str
    type: str
    related_report_id: Optional[uuid.UUID] = None
    created_at: datetime


class CreditsResponse(BaseModel):
    """balance is clamped at zero for display; raw_balance is the true sum."""

    user_id: uuid.UUID
    balance: int
    raw_balance: int
    entries: list[LedgerEntryResponse]


class LeaderboardItem(BaseModel):
    rank: int
    user_id: uuid.UUID
    display_name: Optional[str] = None
    credits: int


class LeaderboardResponse(BaseModel):
    items: list[LeaderboardItem]
