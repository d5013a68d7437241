"""Reward redemption workflow.

A redemption is three effects that must land together or not at all:
1. a ledger debit of -cost (type=redeemed),
2. stock_quantity - 1 on the reward,
3. a reward_redemptions row with a fresh code and status=pending.

All three run inside one database transaction. There is exactly one path;
any failure rolls the whole unit back.

Concurrency:
- The user row is locked first (SELECT ... FOR UPDATE), serializing balance
  checks and debits for one user. Two tabs redeeming at once cannot both pass
  the balance check against the same credits.
- Stock is decremented by a conditional UPDATE (WHERE stock_quantity > 0)
  that re-reads stock in the same statement. When N requests race for the
  last unit, exactly one UPDATE matches a row; the rest see OutOfStock.
"""

import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from citypulse.exceptions import (
    CityPulseError,
    InsufficientCredits,
    InvalidStatusTransition,
    OutOfStock,
    PersistenceError,
    RedemptionNotFound,
    RewardNotFound,
    RewardUnavailable,
)
from citypulse.metrics import redemptions
from citypulse.models.ledger import EntryType
from citypulse.models.reward import Redemption, RedemptionStatus, Reward
from citypulse.models.user import User
from citypulse.services.ledger import get_balance, post_entry

log = structlog.get_logger(__name__)

CODE_PREFIX = "CP"
# No 0/O or 1/I so codes can be read out over the phone
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_RANDOM_LENGTH = 6
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_redemption_code(now: Optional[float] = None) -> str:
    """Short, human-typeable claim code: CP-<base36 millis>-<6 random chars>.

    The random part comes from the secrets module (32**6 ~ 1e9 values per
    millisecond); the table's unique constraint is the final guard.
    """
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_RANDOM_LENGTH))
    return f"{CODE_PREFIX}-{_to_base36(millis)}-{suffix}"


@dataclass
class RedemptionResult:
    redemption: Redemption
    reward_title: str
    balance: int
    replayed: bool = False


async def redeem_reward(
    db: AsyncSession,
    user_id: uuid.UUID,
    reward_id: uuid.UUID,
    idempotency_key: Optional[str] = None,
) -> RedemptionResult:
    """Exchange credits for one unit of a reward, atomically.

    Preconditions are checked against the same transaction that applies the
    effects: reward exists and is active, stock > 0, unclamped balance >= cost.

    When idempotency_key is given and this user already redeemed with it, the
    original redemption is returned and nothing new is written.

    Raises:
        RewardNotFound, RewardUnavailable, OutOfStock, InsufficientCredits:
            rejected before any write.
        PersistenceError: the unit could not be committed; nothing was applied.
    """
    try:
        result = await db.execute(
            select(User.id).where(User.id == user_id).with_for_update()
        )
        if result.scalar_one_or_none() is None:
            raise PersistenceError("redemption")

        if idempotency_key:
            prior = await db.execute(
                select(Redemption, Reward.title)
                .join(Reward, Reward.id == Redemption.reward_id)
                .where(
                    Redemption.user_id == user_id,
                    Redemption.idempotency_key == idempotency_key,
                )
            )
            prior_row = prior.one_or_none()
            if prior_row is not None:
                balance = await get_balance(db, user_id)
                # Nothing written; commit only releases the user lock
                await db.commit()
                redemptions.labels(outcome="replayed").inc()
                log.info(
                    "redemption_replayed",
                    user_id=str(user_id),
                    redemption_id=str(prior_row[0].id),
                )
                return RedemptionResult(
                    redemption=prior_row[0],
                    reward_title=prior_row[1],
                    balance=balance,
                    replayed=True,
                )

        reward_result = await db.execute(
            select(Reward)
            .where(Reward.id == reward_id)
            .execution_options(populate_existing=True)
        )
        reward = reward_result.scalar_one_or_none()
        if reward is None:
            raise RewardNotFound(reward_id)
        if not reward.is_active:
            raise RewardUnavailable(reward.title)
        if reward.stock_quantity <= 0:
            raise OutOfStock(reward.title)

        balance = await get_balance(db, user_id)
        if balance < reward.cost:
            raise InsufficientCredits(required=reward.cost, available=balance)

        # Conditional decrement re-reads stock inside the same statement
        decremented = await db.execute(
            update(Reward)
            .where(
                Reward.id == reward_id,
                Reward.is_active.is_(True),
                Reward.stock_quantity > 0,
            )
            .values(stock_quantity=Reward.stock_quantity - 1)
            .returning(Reward.cost, Reward.title)
            .execution_options(synchronize_session=False)
        )
        row = decremented.one_or_none()
        if row is None:
            raise OutOfStock(reward.title)
        cost, title = row
        if balance < cost:
            raise InsufficientCredits(required=cost, available=balance)

        await post_entry(
            db,
            user_id=user_id,
            amount=-cost,
            reason=f"Redeemed: {title}",
            entry_type=EntryType.redeemed,
        )

        redemption = Redemption(
            user_id=user_id,
            reward_id=reward_id,
            credits_spent=cost,
            status=RedemptionStatus.pending.value,
            redemption_code=generate_redemption_code(),
            idempotency_key=idempotency_key,
        )
        db.add(redemption)
        await db.flush()
        await db.commit()
    except InsufficientCredits:
        await db.rollback()
        redemptions.labels(outcome="insufficient_credits").inc()
        raise
    except OutOfStock:
        await db.rollback()
        redemptions.labels(outcome="out_of_stock").inc()
        raise
    except (RewardNotFound, RewardUnavailable):
        await db.rollback()
        redemptions.labels(outcome="unavailable").inc()
        raise
    except CityPulseError:
        await db.rollback()
        redemptions.labels(outcome="error").inc()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        redemptions.labels(outcome="error").inc()
        log.error(
            "redemption_failed",
            user_id=str(user_id),
            reward_id=str(reward_id),
            error=str(exc),
        )
        raise PersistenceError("redemption", exc) from exc

    redemptions.labels(outcome="success").inc()
    log.info(
        "reward_redeemed",
        user_id=str(user_id),
        reward_id=str(reward_id),
        redemption_id=str(redemption.id),
        credits_spent=cost,
    )
    return RedemptionResult(
        redemption=redemption,
        reward_title=title,
        balance=balance - cost,
    )


async def list_rewards(db: AsyncSession) -> list[Reward]:
    result = await db.execute(
        select(Reward).where(Reward.is_active.is_(True)).order_by(Reward.cost, Reward.title)
    )
    return list(result.scalars().all())


async def list_redemptions(
    db: AsyncSession, user_id: uuid.UUID
) -> list[tuple[Redemption, str]]:
    """The user's redemptions, newest first, paired with the reward title."""
    result = await db.execute(
        select(Redemption, Reward.title)
        .join(Reward, Reward.id == Redemption.reward_id)
        .where(Redemption.user_id == user_id)
        .order_by(Redemption.created_at.desc(), Redemption.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def set_redemption_status(
    db: AsyncSession,
    redemption_id: uuid.UUID,
    status: RedemptionStatus,
) -> Redemption:
    """Admin fulfilment: pending -> fulfilled | rejected.

    Rejecting refunds the frozen credits_spent as an adjustment entry and puts
    the unit back in stock, in the same transaction as the status change.
    """
    try:
        result = await db.execute(
            select(Redemption)
            .where(Redemption.id == redemption_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        redemption = result.scalar_one_or_none()
        if redemption is None:
            raise RedemptionNotFound(redemption_id)
        if redemption.status != RedemptionStatus.pending.value or status == RedemptionStatus.pending:
            raise InvalidStatusTransition(redemption.status, status.value)

        redemption.status = status.value

        if status == RedemptionStatus.rejected:
            restocked = await db.execute(
                update(Reward)
                .where(Reward.id == redemption.reward_id)
                .values(stock_quantity=Reward.stock_quantity + 1)
                .returning(Reward.title)
                .execution_options(synchronize_session=False)
            )
            title = restocked.scalar_one()
            await post_entry(
                db,
                user_id=redemption.user_id,
                amount=redemption.credits_spent,
                reason=f"Refund: {title}",
                entry_type=EntryType.adjustment,
            )

        await db.flush()
        await db.commit()
    except CityPulseError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError("redemption status update", exc) from exc

    log.info(
        "redemption_status_changed",
        redemption_id=str(redemption_id),
        status=status.value,
    )
    return redemption
