import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .user import User


class RewardCategory(str, enum.Enum):
    digital = "digital"
    physical = "physical"
    experience = "experience"
    discount = "discount"


class RedemptionStatus(str, enum.Enum):
    pending = "pending"
    fulfilled = "fulfilled"
    rejected = "rejected"


class Reward(Base):
    __tablename__ = "rewards"
    __table_args__ = (
        CheckConstraint("cost > 0", name="cost_positive"),
        CheckConstraint("stock_quantity >= 0", name="stock_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    category: Mapped[str] = mapped_column(
        String(20), default=RewardCategory.digital, nullable=False
    )
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Redemption(Base):
    """A completed exchange of credits for a reward.

    credits_spent freezes the reward cost at redemption time. Rows are only
    ever created together with their ledger debit and stock decrement.
    """

    __tablename__ = "reward_redemptions"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_reward_redemptions_user_id_idempotency_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    reward_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rewards.id"), nullable=False, index=True
    )
    credits_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=RedemptionStatus.pending, nullable=False
    )
    redemption_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    reward: Mapped["Reward"] = relationship("Reward", lazy="raise")
    user: Mapped["User"] = relationship("User", lazy="raise")
