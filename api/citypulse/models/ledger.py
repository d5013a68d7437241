"""LedgerEntry ORM model.

The credit ledger is append-only: rows are inserted once and never updated or
deleted. A user's balance is always computed as SUM(amount) over their rows.
Corrections are new rows with type=adjustment.

idempotency_key is optional; when present the unique constraint turns a
duplicate award (e.g. the one-time first-vote bonus) into an IntegrityError
instead of a second credit.
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .user import User


class EntryType(str, enum.Enum):
    earned = "earned"
    bonus = "bonus"
    redeemed = "redeemed"
    adjustment = "adjustment"


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="amount_nonzero"),
        Index("ix_ledger_entries_user_id_created_at", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Back-reference only; the ledger does not own reports
    related_report_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("reports.id"), nullable=True
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(120), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="ledger_entries", lazy="raise")
