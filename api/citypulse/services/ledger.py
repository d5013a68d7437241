"""Append-only credit ledger.

Design notes:
- Balance is never stored. get_balance() sums the user's entries, so it is
  consistent with the ledger by construction.
- post_entry() only adds and flushes; the caller owns the transaction, so an
  award or debit commits or rolls back together with the state change that
  caused it.
- Entries are never updated or deleted. A correction is a new entry with
  type=adjustment.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from citypulse.exceptions import PersistenceError, ValidationError
from citypulse.metrics import ledger_entries_posted
from citypulse.models.ledger import EntryType, LedgerEntry
from citypulse.models.user import User

log = structlog.get_logger(__name__)


def display_balance(raw_balance: int) -> int:
    """Clamp a raw balance for display. Never use this for spend checks."""
    return max(0, raw_balance)


async def post_entry(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    reason: str,
    entry_type: EntryType,
    related_report_id: Optional[uuid.UUID] = None,
    idempotency_key: Optional[str] = None,
) -> LedgerEntry:
    """Append a signed credit entry to the caller's transaction.

    Raises:
        ValidationError: amount is zero or its sign contradicts entry_type.
        IntegrityError: idempotency_key was already used. Propagated so that
            callers running an optimistic-concurrency loop can react to it.
        PersistenceError: the row could not be written.
    """
    if amount == 0:
        raise ValidationError("Ledger entries must have a non-zero amount")
    if entry_type == EntryType.redeemed and amount > 0:
        raise ValidationError("Redemption entries must be debits")
    if entry_type in (EntryType.earned, EntryType.bonus) and amount < 0:
        raise ValidationError("Earned and bonus entries must be credits")

    entry = LedgerEntry(
        user_id=user_id,
        amount=amount,
        reason=reason,
        type=entry_type.value,
        related_report_id=related_report_id,
        idempotency_key=idempotency_key,
    )
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        log.error("ledger_post_failed", user_id=str(user_id), error=str(exc))
        raise PersistenceError("ledger post", exc) from exc

    ledger_entries_posted.labels(type=entry_type.value).inc()
    log.info(
        "ledger_entry_posted",
        entry_id=str(entry.id),
        user_id=str(user_id),
        amount=amount,
        type=entry_type.value,
    )
    return entry


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Unclamped sum of all ledger entries for the user."""
    result = await db.execute(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
            LedgerEntry.user_id == user_id
        )
    )
    return int(result.scalar_one())


async def list_entries(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def post_adjustment(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    reason: str,
) -> LedgerEntry:
    """Post an administrative correction as its own committed unit.

    A negative adjustment may take the raw balance below zero; that is the
    honest result of a correction and is shown as 0 by display_balance().
    """
    result = await db.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        raise ValidationError(f"Unknown user: {user_id}")

    try:
        entry = await post_entry(db, user_id, amount, reason, EntryType.adjustment)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError("ledger adjustment", exc) from exc
    except Exception:
        await db.rollback()
        raise
    return entry


async def leaderboard(db: AsyncSession, limit: int = 20) -> list[tuple[User, int]]:
    """Users ranked by total credits (raw sum), highest first."""
    total = func.coalesce(func.sum(LedgerEntry.amount), 0).label("total")
    result = await db.execute(
        select(User, total)
        .outerjoin(LedgerEntry, LedgerEntry.user_id == User.id)
        .group_by(User.id)
        .order_by(total.desc(), User.created_at)
        .limit(limit)
    )
    return [(row[0], int(row[1])) for row in result.all()]


async def recent_activity(
    db: AsyncSession, limit: int = 50
) -> tuple[list[tuple[LedgerEntry, Optional[str]]], int]:
    """Newest entries across all users, each with its owner's display name.

    Also returns sum(abs(amount)) over those entries: the credit volume moved
    in the window, counting debits and credits alike.
    """
    result = await db.execute(
        select(LedgerEntry, User.display_name)
        .join(User, User.id == LedgerEntry.user_id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
        .limit(limit)
    )
    rows = [(row[0], row[1]) for row in result.all()]
    return rows, sum(abs(entry.amount) for entry, _ in rows)
