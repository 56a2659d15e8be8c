"""Append-only change history for student profiles."""
from datetime import datetime
from typing import Optional

from app.core.logging import get_logger
from app.domain.profile import ChangeEvent, ChangedBy, ChangeType, ProfileEntry
from app.infrastructure.repository import ProfileRepository
from app.services.merger import MergeOutcome

logger = get_logger(__name__)


class ChangeHistoryLogger:
    """Writes one ChangeEvent per profile mutation.

    ``previous_state`` is the entry before the change (None on creation)
    and ``new_state`` is the entry as stored after it.
    """

    def __init__(self, repository: ProfileRepository):
        self.repository = repository

    def record(
        self,
        change_type: ChangeType,
        stored: ProfileEntry,
        previous: Optional[ProfileEntry],
        report_id: Optional[int],
        now: datetime,
        changed_by: ChangedBy = ChangedBy.AI,
        teacher_approved: bool = False,
        note: Optional[str] = None,
    ) -> ChangeEvent:
        event = ChangeEvent(
            student_id=stored.student_id,
            report_id=report_id,
            change_type=change_type,
            attribute_type=stored.attribute_type,
            attribute_id=stored.id,
            previous_state=previous.snapshot() if previous is not None else None,
            new_state=stored.snapshot(),
            changed_by=changed_by,
            teacher_approved=teacher_approved,
            note=note,
            created_at=now,
        )
        appended = self.repository.append_change_event(event)
        logger.debug(
            f"Logged {change_type.value} for {stored.attribute_type.value} {stored.id}",
            extra={"student_id": stored.student_id, "change_type": change_type.value},
        )
        return appended

    def record_merge(self, outcome: MergeOutcome, stored: ProfileEntry, report_id: int, now: datetime) -> ChangeEvent:
        """Log an engine (AI) merge; never pre-approved."""
        return self.record(outcome.change_type, stored, outcome.previous, report_id, now)
