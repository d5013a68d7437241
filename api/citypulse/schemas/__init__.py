"""CityPulse Pydantic schemas package.

Re-exports all request and response schemas for convenient importing:

    from citypulse.schemas import ReportCreate, VoteCreate, RedeemResponse, ...
"""

from citypulse.schemas.admin import (
    AdjustmentCreate,
    AdminLedgerItem,
    AdminLedgerResponse,
    ReconcileResponse,
)
from citypulse.schemas.auth import APIKeyCreate, APIKeyResponse, KeyVerification
from citypulse.schemas.chat import ChatRequest, ChatResponse
from citypulse.schemas.common import ErrorResponse
from citypulse.schemas.ledger import (
    CreditsResponse,
    LeaderboardItem,
    LeaderboardResponse,
    LedgerEntryResponse,
)
from citypulse.schemas.report import ReportCreate, ReportResponse, ReportSubmitted
from citypulse.schemas.reward import (
    RedeemRequest,
    RedeemResponse,
    RedemptionResponse,
    RedemptionStatusUpdate,
    RewardResponse,
)
from citypulse.schemas.upload import UploadResponse
from citypulse.schemas.vote import VoteCreate, VoteResultResponse, VoteStateResponse

__all__ = [
    # Report
    "ReportCreate",
    "ReportResponse",
    "ReportSubmitted",
    # Vote
    "VoteCreate",
    "VoteStateResponse",
    "VoteResultResponse",
    # Ledger
    "CreditsResponse",
    "LedgerEntryResponse",
    "LeaderboardItem",
    "LeaderboardResponse",
    # Rewards
    "RewardResponse",
    "RedeemRequest",
    "RedeemResponse",
    "RedemptionResponse",
    "RedemptionStatusUpdate",
    # Admin
    "AdjustmentCreate",
    "AdminLedgerItem",
    "AdminLedgerResponse",
    "ReconcileResponse",
    # Chat / uploads
    "ChatRequest",
    "ChatResponse",
    "UploadResponse",
    # Auth
    "APIKeyCreate",
    "APIKeyResponse",
    "KeyVerification",
    # Common
    "ErrorResponse",
]
