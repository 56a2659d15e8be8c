"""Teacher-initiated profile actions.

These live outside the extraction engine: only a teacher may resolve a
weakness or approve an AI-generated change. Both are logged with
``changed_by='teacher'``.
"""
from datetime import datetime, timezone
from typing import Optional

from app.core.logging import get_logger
from app.domain.profile import (
    AttributeType,
    ChangedBy,
    ChangeEvent,
    ChangeType,
    Weakness,
    WeaknessStatus,
)
from app.infrastructure.repository import EntryNotFoundError, ProfileRepository
from app.services.history import ChangeHistoryLogger

logger = get_logger(__name__)


def resolve_weakness(
    repository: ProfileRepository,
    student_id: int,
    weakness_id: int,
    report_id: Optional[int] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Weakness:
    """Mark a student's weakness as resolved and log ``weakness_resolved``.

    Resolving an already-resolved weakness is a no-op and logs nothing.

    Args:
        repository: Profile repository
        student_id: Owner of the weakness
        weakness_id: Weakness to resolve
        report_id: Report that justified the decision, if any
        note: Optional teacher note stored on the entry and the event
        now: Timestamp override (defaults to current UTC time)

    Returns:
        The stored weakness

    Raises:
        EntryNotFoundError: If the weakness does not exist for this student
    """
    now = now or datetime.now(timezone.utc)
    with repository.student_lock(student_id):
        existing = repository.get_entry(AttributeType.WEAKNESS, weakness_id)
        if existing is None or existing.student_id != student_id:
            raise EntryNotFoundError(f"No weakness {weakness_id} for student {student_id}")
        if existing.status == WeaknessStatus.RESOLVED:
            return existing

        with repository.atomic():
            stored = repository.mark_weakness_resolved(weakness_id, report_id=report_id, now=now, note=note)
            ChangeHistoryLogger(repository).record(
                ChangeType.WEAKNESS_RESOLVED,
                stored,
                existing,
                report_id,
                now,
                changed_by=ChangedBy.TEACHER,
                teacher_approved=True,
                note=note,
            )

    logger.info(
        f"Weakness {weakness_id} resolved by teacher",
        extra={"student_id": student_id, "change_type": ChangeType.WEAKNESS_RESOLVED.value},
    )
    return stored


def approve_change(repository: ProfileRepository, event_id: int) -> ChangeEvent:
    """Record teacher approval of a change event."""
    event = repository.get_change_event(event_id)
    if event is None:
        raise EntryNotFoundError(f"No change event with id {event_id}")
    if event.teacher_approved:
        return event
    return repository.set_change_event_approval(event_id, True)
