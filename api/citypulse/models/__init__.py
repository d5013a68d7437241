from .base import Base
from .user import User
from .report import Report, ReportPriority, ReportStatus
from .vote import Vote, VoteEvent, VoteTransition, VoteType
from .ledger import EntryType, LedgerEntry
from .reward import Redemption, RedemptionStatus, Reward, RewardCategory

__all__ = [
    "Base",
    "User",
    "Report",
    "ReportPriority",
    "ReportStatus",
    "Vote",
    "VoteEvent",
    "VoteTransition",
    "VoteType",
    "EntryType",
    "LedgerEntry",
    "Redemption",
    "RedemptionStatus",
    "Reward",
    "RewardCategory",
]
