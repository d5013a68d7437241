"""Reward catalogue and redemption endpoints.

GET  /api/v1/rewards                     -- active rewards
POST /api/v1/rewards/{reward_id}/redeem  -- spend credits on a reward
GET  /api/v1/redemptions                 -- caller's redemption history
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Header, Response

from citypulse.dependencies import CurrentUser, DbSession
from citypulse.models.reward import Redemption
from citypulse.schemas.reward import (
    RedeemRequest,
    RedeemResponse,
    RedemptionResponse,
    RewardResponse,
)
from citypulse.services.ledger import display_balance
from citypulse.services.redemption import list_redemptions, list_rewards, redeem_reward

router = APIRouter(prefix="/api/v1", tags=["rewards"])


def _redemption_response(redemption: Redemption, reward_title: str) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        reward_id=redemption.reward_id,
        reward_title=reward_title,
        credits_spent=redemption.credits_spent,
        status=redemption.status,
        redemption_code=redemption.redemption_code,
        created_at=redemption.created_at,
    )


@router.get("/rewards", response_model=list[RewardResponse])
async def get_rewards(_user: CurrentUser, db: DbSession) -> list[RewardResponse]:
    rewards = await list_rewards(db)
    return [RewardResponse.model_validate(reward) for reward in rewards]


@router.post("/rewards/{reward_id}/redeem", response_model=RedeemResponse, status_code=201)
async def redeem(
    reward_id: uuid.UUID,
    user: CurrentUser,
    db: DbSession,
    response: Response,
    body: Optional[RedeemRequest] = None,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=120),
) -> RedeemResponse:
    """Redeem one unit of a reward.

    Debit, stock decrement and redemption record commit together or not at
    all. Resubmitting with the same Idempotency-Key returns the original
    redemption (200) instead of spending again.
    """
    key = idempotency_key or (body.idempotency_key if body else None)
    result = await redeem_reward(db, user.id, reward_id, idempotency_key=key)

    if result.replayed:
        response.status_code = 200
        message = "This redemption was already processed."
    else:
        message = f"Successfully redeemed {result.reward_title}!"

    return RedeemResponse(
        redemption=_redemption_response(result.redemption, result.reward_title),
        balance=display_balance(result.balance),
        message=message,
    )


@router.get("/redemptions", response_model=list[RedemptionResponse])
async def get_redemptions(user: CurrentUser, db: DbSession) -> list[RedemptionResponse]:
    rows = await list_redemptions(db, user.id)
    return [_redemption_response(redemption, title) for redemption, title in rows]
