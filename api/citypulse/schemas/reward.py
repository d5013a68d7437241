"""Pydantic schemas for the reward catalogue and redemptions."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from citypulse.models.reward import RedemptionStatus


class RewardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str
    category: str
    image_url: Optional[str] = None
    cost: int
    stock_quantity: int
    is_active: bool


class RedeemRequest(BaseModel):
    """Optional body for POST /rewards/{id}/redeem.

    The Idempotency-Key header takes precedence over idempotency_key here.
    """

    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=120)


class RedemptionResponse(BaseModel):
    id: uuid.UUID
    reward_id: uuid.UUID
    reward_title: str
    credits_spent: int
    status: str
    redemption_code: str
    created_at: datetime


class RedeemResponse(BaseModel):
    redemption: RedemptionResponse
    balance: int
    message: str


class RedemptionStatusUpdate(BaseModel):
    status: RedemptionStatus
