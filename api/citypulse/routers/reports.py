"""Report submission and voting endpoints.

POST /api/v1/reports                 -- submit a report, earn credits
GET  /api/v1/reports/{report_id}/vote -- caller's vote and the counters
POST /api/v1/reports/{report_id}/vote -- one vote click (cast/switch/retract)
"""

import uuid

from fastapi import APIRouter

from citypulse.dependencies import CurrentUser, DbSession
from citypulse.schemas.report import ReportCreate, ReportResponse, ReportSubmitted
from citypulse.schemas.vote import VoteCreate, VoteResultResponse, VoteStateResponse
from citypulse.services.report_rewards import submit_report
from citypulse.services.voting import cast_vote, get_vote_state

router = APIRouter(prefix="/api/v1", tags=["reports"])


@router.post("/reports", response_model=ReportSubmitted, status_code=201)
async def create_report(body: ReportCreate, user: CurrentUser, db: DbSession) -> ReportSubmitted:
    """Submit a report. The award is posted in the same transaction."""
    report, entry = await submit_report(
        db,
        user_id=user.id,
        title=body.title,
        description=body.description,
        category=body.category,
        priority=body.priority.value,
        latitude=body.latitude,
        longitude=body.longitude,
        address=body.address,
        photos=body.photos,
    )
    return ReportSubmitted(
        report=ReportResponse.model_validate(report),
        credits_awarded=entry.amount,
        message=f"Report submitted! You earned {entry.amount} credits.",
    )


@router.get("/reports/{report_id}/vote", response_model=VoteStateResponse)
async def read_vote(report_id: uuid.UUID, user: CurrentUser, db: DbSession) -> VoteStateResponse:
    user_vote, upvotes, downvotes = await get_vote_state(db, user.id, report_id)
    return VoteStateResponse(
        report_id=report_id, user_vote=user_vote, upvotes=upvotes, downvotes=downvotes
    )


@router.post("/reports/{report_id}/vote", response_model=VoteResultResponse)
async def vote_on_report(
    report_id: uuid.UUID,
    body: VoteCreate,
    user: CurrentUser,
    db: DbSession,
) -> VoteResultResponse:
    """Apply one vote click.

    Clicking the type you already hold retracts it; clicking the other type
    switches. Counters in the response are the committed post-transition
    values. The first vote a user ever casts earns a one-time bonus.
    """
    outcome = await cast_vote(db, user.id, report_id, body.vote_type)
    return VoteResultResponse(
        report_id=outcome.report_id,
        user_vote=outcome.vote_type,
        upvotes=outcome.upvotes,
        downvotes=outcome.downvotes,
        transition=outcome.transition,
        credits_awarded=outcome.credits_awarded,
    )
