"""Per-(user, report) vote state machine and denormalized counter maintenance.

States: no vote, upvoted, downvoted. Clicking the held vote type retracts it;
clicking the other type switches in place; clicking from no vote casts.

Design notes:
- The report row is locked (SELECT ... FOR UPDATE) at the start of the
  transaction, so concurrent votes on one report are linearized and a
  duplicate click always observes the effect of the first.
- Counters change only through one column-expression UPDATE per transition
  (upvotes = upvotes + :delta). No code path writes an absolute counter value
  computed from a previously read one, except reconcile_report_counters(),
  which recomputes from the vote table under the same lock.
- The first-vote bonus is decided from vote_events history, which survives
  retraction, and is additionally guarded by a ledger idempotency key. A
  concurrent first vote on a different report surfaces as an IntegrityError;
  the transition is then re-run against fresh state (bounded attempts).
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import and_, case, delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from citypulse.config import settings
from citypulse.exceptions import CityPulseError, PersistenceError, ReportNotFound
from citypulse.metrics import counter_drift_repaired, vote_transitions
from citypulse.models.ledger import EntryType
from citypulse.models.report import Report
from citypulse.models.vote import Vote, VoteEvent, VoteTransition, VoteType
from citypulse.services.ledger import post_entry

log = structlog.get_logger(__name__)

MAX_VOTE_ATTEMPTS = 3
FIRST_VOTE_REASON = "voted on report"


def first_vote_key(user_id: uuid.UUID) -> str:
    return f"first-vote:{user_id}"


@dataclass
class VoteOutcome:
    report_id: uuid.UUID
    vote_type: Optional[VoteType]  # None once the vote is retracted
    transition: VoteTransition
    upvotes: int
    downvotes: int
    credits_awarded: int = 0


def counter_deltas(
    current: Optional[VoteType], requested: VoteType
) -> tuple[Optional[VoteType], VoteTransition, int, int]:
    """Pure transition table: (new_state, transition, d_upvotes, d_downvotes)."""
    if current is None:
        if requested == VoteType.upvote:
            return VoteType.upvote, VoteTransition.cast, 1, 0
        return VoteType.downvote, VoteTransition.cast, 0, 1
    if current == requested:
        if requested == VoteType.upvote:
            return None, VoteTransition.retract, -1, 0
        return None, VoteTransition.retract, 0, -1
    if requested == VoteType.downvote:
        return VoteType.downvote, VoteTransition.switch, -1, 1
    return VoteType.upvote, VoteTransition.switch, 1, -1


async def _lock_report(db: AsyncSession, report_id: uuid.UUID) -> None:
    result = await db.execute(
        select(Report.id).where(Report.id == report_id).with_for_update()
    )
    if result.scalar_one_or_none() is None:
        raise ReportNotFound(report_id)


async def _has_vote_history(db: AsyncSession, user_id: uuid.UUID) -> bool:
    result = await db.execute(select(exists().where(VoteEvent.user_id == user_id)))
    return bool(result.scalar())


async def _apply_vote(
    db: AsyncSession,
    user_id: uuid.UUID,
    report_id: uuid.UUID,
    vote_type: VoteType,
) -> VoteOutcome:
    await _lock_report(db, report_id)

    result = await db.execute(
        select(Vote)
        .where(Vote.user_id == user_id, Vote.report_id == report_id)
        .execution_options(populate_existing=True)
    )
    existing = result.scalar_one_or_none()
    current = VoteType(existing.vote_type) if existing is not None else None

    new_state, transition, d_up, d_down = counter_deltas(current, vote_type)

    first_vote = False
    if transition == VoteTransition.cast:
        first_vote = not await _has_vote_history(db, user_id)
        db.add(Vote(user_id=user_id, report_id=report_id, vote_type=vote_type.value))
    elif transition == VoteTransition.retract:
        await db.execute(delete(Vote).where(Vote.id == existing.id))
    else:
        existing.vote_type = vote_type.value

    db.add(
        VoteEvent(
            user_id=user_id,
            report_id=report_id,
            transition=transition.value,
            vote_type=vote_type.value,
        )
    )
    await db.flush()

    # Both counters in one atomic UPDATE
    counters = await db.execute(
        update(Report)
        .where(Report.id == report_id)
        .values(upvotes=Report.upvotes + d_up, downvotes=Report.downvotes + d_down)
        .returning(Report.upvotes, Report.downvotes)
        .execution_options(synchronize_session=False)
    )
    upvotes, downvotes = counters.one()

    credits_awarded = 0
    if first_vote:
        await post_entry(
            db,
            user_id=user_id,
            amount=settings.first_vote_bonus,
            reason=FIRST_VOTE_REASON,
            entry_type=EntryType.earned,
            related_report_id=report_id,
            idempotency_key=first_vote_key(user_id),
        )
        credits_awarded = settings.first_vote_bonus

    return VoteOutcome(
        report_id=report_id,
        vote_type=new_state,
        transition=transition,
        upvotes=upvotes,
        downvotes=downvotes,
        credits_awarded=credits_awarded,
    )


async def cast_vote(
    db: AsyncSession,
    user_id: uuid.UUID,
    report_id: uuid.UUID,
    vote_type: VoteType,
) -> VoteOutcome:
    """Apply one vote click and commit it together with counters and any bonus.

    Raises:
        ReportNotFound: the report does not exist.
        PersistenceError: the transition could not be committed; nothing was
            applied and the caller may resubmit.
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, MAX_VOTE_ATTEMPTS + 1):
        try:
            outcome = await _apply_vote(db, user_id, report_id, vote_type)
            await db.commit()
        except IntegrityError as exc:
            # Lost a race on a unique key; re-read state and decide again
            await db.rollback()
            last_error = exc
            log.warning(
                "vote_conflict_retry",
                user_id=str(user_id),
                report_id=str(report_id),
                attempt=attempt,
            )
            continue
        except CityPulseError:
            await db.rollback()
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            log.error("vote_failed", user_id=str(user_id), report_id=str(report_id), error=str(exc))
            raise PersistenceError("vote", exc) from exc

        vote_transitions.labels(
            transition=outcome.transition.value, vote_type=vote_type.value
        ).inc()
        log.info(
            "vote_applied",
            user_id=str(user_id),
            report_id=str(report_id),
            transition=outcome.transition.value,
            vote_type=vote_type.value,
            upvotes=outcome.upvotes,
            downvotes=outcome.downvotes,
            credits_awarded=outcome.credits_awarded,
        )
        return outcome

    raise PersistenceError("vote", last_error)


async def get_vote_state(
    db: AsyncSession, user_id: uuid.UUID, report_id: uuid.UUID
) -> tuple[Optional[VoteType], int, int]:
    """Return (user's current vote or None, upvotes, downvotes)."""
    result = await db.execute(
        select(Report.upvotes, Report.downvotes).where(Report.id == report_id)
    )
    row = result.one_or_none()
    if row is None:
        raise ReportNotFound(report_id)

    vote_result = await db.execute(
        select(Vote.vote_type).where(Vote.user_id == user_id, Vote.report_id == report_id)
    )
    held = vote_result.scalar_one_or_none()
    return (VoteType(held) if held else None), row.upvotes, row.downvotes


async def reconcile_report_counters(
    db: AsyncSession, report_id: Optional[uuid.UUID] = None
) -> int:
    """Recompute vote counters from the vote table and repair any drift.

    Each drifted report is locked and corrected individually. Returns the
    number of reports repaired. The caller commits.
    """
    up_count = func.count(case((Vote.vote_type == VoteType.upvote.value, 1)))
    down_count = func.count(case((Vote.vote_type == VoteType.downvote.value, 1)))
    tallies = (
        select(
            Report.id.label("report_id"),
            up_count.label("actual_up"),
            down_count.label("actual_down"),
            Report.upvotes,
            Report.downvotes,
        )
        .outerjoin(Vote, Vote.report_id == Report.id)
        .group_by(Report.id, Report.upvotes, Report.downvotes)
    )
    if report_id is not None:
        tallies = tallies.where(Report.id == report_id)

    result = await db.execute(tallies)
    drifted = [
        row.report_id
        for row in result.all()
        if row.actual_up != row.upvotes or row.actual_down != row.downvotes
    ]

    repaired = 0
    for drifted_id in drifted:
        await _lock_report(db, drifted_id)
        # Recount under the lock; the earlier tally may be stale by now
        fresh = await db.execute(
            select(up_count, down_count).where(Vote.report_id == drifted_id)
        )
        actual_up, actual_down = fresh.one()
        outcome = await db.execute(
            update(Report)
            .where(
                and_(
                    Report.id == drifted_id,
                    (Report.upvotes != actual_up) | (Report.downvotes != actual_down),
                )
            )
            .values(upvotes=actual_up, downvotes=actual_down)
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount:
            repaired += 1
            counter_drift_repaired.inc()
            log.warning(
                "vote_counter_drift_repaired",
                report_id=str(drifted_id),
                upvotes=actual_up,
                downvotes=actual_down,
            )
    return repaired
