"""Pydantic schemas for voting on reports."""

import uuid
from typing import Optional

from pydantic import BaseModel

from citypulse.models.vote import VoteTransition, VoteType


class VoteCreate(BaseModel):
    """One vote click. Repeating the held type retracts it."""

    vote_type: VoteType


class VoteStateResponse(BaseModel):
    report_id: uuid.UUID
    user_vote: Optional[VoteType] = None
    upvotes: int
    downvotes: int


class VoteResultResponse(VoteStateResponse):
    transition: VoteTransition
    credits_awarded: int = 0
