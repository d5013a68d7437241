"""Admin ledger operations (is_admin users only).

GET   /api/v1/admin/ledger                      -- recent entries across all users
POST  /api/v1/admin/adjustments                 -- post a credit correction
PATCH /api/v1/admin/redemptions/{redemption_id} -- fulfil or reject
POST  /api/v1/admin/reconcile                   -- repair vote counters now
"""

import uuid

import structlog
from fastapi import APIRouter, Query

from citypulse.dependencies import DbSession, RequireAdmin
from citypulse.schemas.admin import (
    AdjustmentCreate,
    AdminLedgerItem,
    AdminLedgerResponse,
    ReconcileResponse,
)
from citypulse.schemas.ledger import LedgerEntryResponse
from citypulse.schemas.reward import RedemptionStatusUpdate
from citypulse.services.ledger import post_adjustment, recent_activity
from citypulse.services.redemption import set_redemption_status
from citypulse.services.voting import reconcile_report_counters

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/ledger", response_model=AdminLedgerResponse)
async def get_ledger_activity(
    _admin: RequireAdmin,
    db: DbSession,
    limit: int = Query(50, ge=1, le=200),
) -> AdminLedgerResponse:
    rows, total = await recent_activity(db, limit=limit)
    return AdminLedgerResponse(
        items=[
            AdminLedgerItem.model_validate(entry).model_copy(update={"display_name": name})
            for entry, name in rows
        ],
        total_credits_issued=total,
    )


@router.post("/adjustments", response_model=LedgerEntryResponse, status_code=201)
async def create_adjustment(
    body: AdjustmentCreate, admin: RequireAdmin, db: DbSession
) -> LedgerEntryResponse:
    entry = await post_adjustment(db, body.user_id, body.amount, body.reason)
    log.info(
        "admin_adjustment_posted",
        admin_id=str(admin.id),
        user_id=str(body.user_id),
        amount=body.amount,
    )
    return LedgerEntryResponse.model_validate(entry)


@router.patch("/redemptions/{redemption_id}")
async def update_redemption_status(
    redemption_id: uuid.UUID,
    body: RedemptionStatusUpdate,
    _admin: RequireAdmin,
    db: DbSession,
) -> dict:
    redemption = await set_redemption_status(db, redemption_id, body.status)
    return {"id": str(redemption.id), "status": redemption.status}


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(_admin: RequireAdmin, db: DbSession) -> ReconcileResponse:
    repaired = await reconcile_report_counters(db)
    await db.commit()
    return ReconcileResponse(repaired=repaired)
