"""Credit balance and leaderboard endpoints.

GET /api/v1/credits     -- caller's balance and recent ledger history
GET /api/v1/leaderboard -- users ranked by credits
"""

from fastapi import APIRouter, Query

from citypulse.dependencies import CurrentUser, DbSession
from citypulse.schemas.ledger import (
    CreditsResponse,
    LeaderboardItem,
    LeaderboardResponse,
    LedgerEntryResponse,
)
from citypulse.services.ledger import display_balance, get_balance, leaderboard, list_entries

router = APIRouter(prefix="/api/v1", tags=["credits"])


@router.get("/credits", response_model=CreditsResponse)
async def get_credits(
    user: CurrentUser,
    db: DbSession,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> CreditsResponse:
    raw = await get_balance(db, user.id)
    entries = await list_entries(db, user.id, limit=limit, offset=offset)
    return CreditsResponse(
        user_id=user.id,
        balance=display_balance(raw),
        raw_balance=raw,
        entries=[LedgerEntryResponse.model_validate(entry) for entry in entries],
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    _user: CurrentUser,
    db: DbSession,
    limit: int = Query(20, ge=1, le=100),
) -> LeaderboardResponse:
    ranked = await leaderboard(db, limit=limit)
    return LeaderboardResponse(
        items=[
            LeaderboardItem(
                rank=position,
                user_id=ranked_user.id,
                display_name=ranked_user.display_name,
                credits=display_balance(total),
            )
            for position, (ranked_user, total) in enumerate(ranked, start=1)
        ]
    )
