import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .report import Report
    from .user import User

# Named so the unique-pair violation is recognizable in database errors
VOTE_UNIQUE_CONSTRAINT = "uq_report_votes_user_id_report_id"


class VoteType(str, enum.Enum):
    upvote = "upvote"
    downvote = "downvote"


class VoteTransition(str, enum.Enum):
    cast = "cast"
    switch = "switch"
    retract = "retract"


class Vote(Base):
    """The single active vote a user holds on a report (at most one row per pair)."""

    __tablename__ = "report_votes"
    __table_args__ = (
        UniqueConstraint("user_id", "report_id", name=VOTE_UNIQUE_CONSTRAINT),
        Index("ix_report_votes_report_id_vote_type", "report_id", "vote_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("reports.id"), nullable=False
    )
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    report: Mapped["Report"] = relationship("Report", back_populates="votes", lazy="raise")
    user: Mapped["User"] = relationship("User", back_populates="votes", lazy="raise")


class VoteEvent(Base):
    """Append-only history of vote transitions.

    Survives vote deletion, so "has this user ever voted" is answered from
    here rather than from the mutable report_votes table.
    """

    __tablename__ = "vote_events"
    __table_args__ = (Index("ix_vote_events_user_id", "user_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("reports.id"), nullable=False
    )
    transition: Mapped[str] = mapped_column(String(10), nullable=False)
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
