"""Credit award for submitting a report.

award = base + per_photo * photo_count, computed once from the photo count at
submission time. Later photo edits never adjust the award, and deleting a
report does not claw credits back.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from citypulse.config import settings
from citypulse.exceptions import CityPulseError, PersistenceError, ValidationError
from citypulse.models.ledger import EntryType, LedgerEntry
from citypulse.models.report import Report, ReportStatus
from citypulse.services.ledger import post_entry

log = structlog.get_logger(__name__)


def compute_submission_award(
    photo_count: int,
    base: Optional[int] = None,
    per_photo: Optional[int] = None,
    max_photos: Optional[int] = None,
) -> int:
    """Credits earned for a new report with photo_count photos.

    Raises:
        ValidationError: photo_count is negative or above the per-report cap.
    """
    base = settings.report_base_credits if base is None else base
    per_photo = settings.report_photo_credits if per_photo is None else per_photo
    max_photos = settings.max_photos_per_report if max_photos is None else max_photos

    if photo_count < 0:
        raise ValidationError("Photo count cannot be negative")
    if photo_count > max_photos:
        raise ValidationError(f"You can only upload up to {max_photos} photos per report.")
    return base + per_photo * photo_count


def submission_reason(title: str, photo_count: int, per_photo: Optional[int] = None) -> str:
    per_photo = settings.report_photo_credits if per_photo is None else per_photo
    reason = f"Report submitted: {title}"
    if photo_count > 0:
        reason += f" (+{per_photo * photo_count} photo bonus)"
    return reason


async def submit_report(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    description: str,
    category: str,
    priority: str,
    latitude: float,
    longitude: float,
    address: Optional[str],
    photos: list[str],
) -> tuple[Report, LedgerEntry]:
    """Create the report and post its award in one transaction.

    Either both the report and its ledger entry exist afterwards, or neither.
    """
    award = compute_submission_award(len(photos))

    try:
        report = Report(
            user_id=user_id,
            title=title,
            description=description,
            category=category,
            priority=priority,
            latitude=latitude,
            longitude=longitude,
            address=address,
            status=ReportStatus.pending.value,
            photos=list(photos),
        )
        db.add(report)
        # Flush to get report.id for the ledger back-reference
        await db.flush()

        entry = await post_entry(
            db,
            user_id=user_id,
            amount=award,
            reason=submission_reason(title, len(photos)),
            entry_type=EntryType.earned,
            related_report_id=report.id,
        )
        await db.commit()
    except CityPulseError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        log.error("report_submission_failed", user_id=str(user_id), error=str(exc))
        raise PersistenceError("report submission", exc) from exc

    log.info(
        "report_submitted",
        report_id=str(report.id),
        user_id=str(user_id),
        photo_count=len(photos),
        credits_awarded=award,
    )
    return report, entry
