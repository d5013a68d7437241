"""Pydantic schemas for report submission."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from citypulse.models.report import ReportPriority


class ReportCreate(BaseModel):
    """Request schema for submitting a new report.

    photos holds URLs returned by POST /api/v1/uploads. The per-report photo
    cap is enforced by the award policy so the error message names it.
    """

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    category: str = Field(min_length=1, max_length=50)
    priority: ReportPriority = ReportPriority.medium
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = None
    photos: list[str] = Field(default_factory=list)


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    description: str
    category: str
    priority: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    status: str
    photos: list[str]
    upvotes: int
    downvotes: int
    created_at: datetime


class ReportSubmitted(BaseModel):
    report: ReportResponse
    credits_awarded: int
    message: str
