"""Merging of candidate observations into profile entries.

Pure functions: given a candidate and the matched entry (or None), they
compute the next entry state and the change type to log. Nothing here
touches storage.

Weakness status transitions on a match:

    resolved                          -> recurring (sets recurred_at)
    candidate severity < stored       -> improving
    improving                         -> improving
    anything else                     -> active

``resolved`` is only ever read here; setting it is a teacher action.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.domain.candidates import PatternCandidate, StrengthCandidate, WeaknessCandidate
from app.domain.profile import (
    AttributeType,
    ChangeType,
    Pattern,
    PatternStatus,
    ProfileEntry,
    Strength,
    StrengthStatus,
    Weakness,
    WeaknessStatus,
)


@dataclass(frozen=True)
class MergeOutcome:
    """Result of merging one candidate."""
    change_type: ChangeType
    entry: ProfileEntry
    previous: Optional[ProfileEntry] = None

    @property
    def is_creation(self) -> bool:
        return self.previous is None

    @property
    def attribute_type(self) -> AttributeType:
        return self.entry.attribute_type

    def patch(self) -> Dict[str, Any]:
        """Fields that differ from the previous state (all fields on creation)."""
        after = self.entry.model_dump(exclude={"id"})
        if self.previous is None:
            return after
        before = self.previous.model_dump(exclude={"id"})
        return {field: value for field, value in after.items() if before.get(field) != value}


def with_report(report_ids: List[int], report_id: int) -> List[int]:
    """Append a report id unless already present; never drops ids."""
    ids = list(report_ids or [])
    if report_id not in ids:
        ids.append(report_id)
    return ids


def next_weakness_status(existing: Weakness, candidate_severity: int) -> WeaknessStatus:
    if existing.status == WeaknessStatus.RESOLVED:
        return WeaknessStatus.RECURRING
    if candidate_severity < existing.severity:
        return WeaknessStatus.IMPROVING
    if existing.status == WeaknessStatus.IMPROVING:
        return WeaknessStatus.IMPROVING
    return WeaknessStatus.ACTIVE


def merge_weakness(
    candidate: WeaknessCandidate,
    existing: Optional[Weakness],
    student_id: int,
    report_id: int,
    now: datetime,
) -> MergeOutcome:
    if existing is None:
        entry = Weakness(
            student_id=student_id,
            concept=candidate.concept,
            category=candidate.category,
            severity=candidate.severity,
            status=WeaknessStatus.ACTIVE,
            occurrence_count=1,
            first_detected_at=now,
            first_detected_report_id=report_id,
            last_detected_at=now,
            last_detected_report_id=report_id,
            related_report_ids=[report_id],
            is_manually_added=False,
            created_at=now,
            updated_at=now,
        )
        return MergeOutcome(ChangeType.WEAKNESS_ADDED, entry)

    status = next_weakness_status(existing, candidate.severity)
    recurred = existing.status == WeaknessStatus.RESOLVED
    update = {
        "severity": max(existing.severity, candidate.severity),
        "status": status,
        "occurrence_count": existing.occurrence_count + 1,
        "last_detected_at": now,
        "last_detected_report_id": report_id,
        "related_report_ids": with_report(existing.related_report_ids, report_id),
        "updated_at": now,
    }
    if recurred:
        update["recurred_at"] = now

    change_type = ChangeType.WEAKNESS_RECURRED if recurred else ChangeType.WEAKNESS_UPDATED
    return MergeOutcome(change_type, existing.model_copy(update=update), previous=existing)


def merge_strength(
    candidate: StrengthCandidate,
    existing: Optional[Strength],
    student_id: int,
    report_id: int,
    now: datetime,
) -> MergeOutcome:
    if existing is None:
        entry = Strength(
            student_id=student_id,
            concept=candidate.concept,
            category=candidate.category,
            level=candidate.level,
            status=StrengthStatus.ACTIVE,
            confirmation_count=1,
            first_detected_at=now,
            first_detected_report_id=report_id,
            last_confirmed_at=now,
            last_confirmed_report_id=report_id,
            related_report_ids=[report_id],
            is_manually_added=False,
            created_at=now,
            updated_at=now,
        )
        return MergeOutcome(ChangeType.STRENGTH_ADDED, entry)

    entry = existing.model_copy(update={
        "level": max(existing.level, candidate.level),
        "status": StrengthStatus.ACTIVE,
        "confirmation_count": existing.confirmation_count + 1,
        "last_confirmed_at": now,
        "last_confirmed_report_id": report_id,
        "related_report_ids": with_report(existing.related_report_ids, report_id),
        "updated_at": now,
    })
    return MergeOutcome(ChangeType.STRENGTH_UPDATED, entry, previous=existing)


def merge_pattern(
    candidate: PatternCandidate,
    existing: Optional[Pattern],
    student_id: int,
    report_id: int,
    now: datetime,
) -> MergeOutcome:
    if existing is None:
        entry = Pattern(
            student_id=student_id,
            pattern_type=candidate.pattern_type,
            description=candidate.description,
            is_positive=candidate.is_positive,
            frequency=candidate.frequency,
            status=PatternStatus.ACTIVE,
            occurrence_count=1,
            first_detected_at=now,
            last_detected_at=now,
            related_report_ids=[report_id],
            created_at=now,
            updated_at=now,
        )
        return MergeOutcome(ChangeType.PATTERN_ADDED, entry)

    entry = existing.model_copy(update={
        "frequency": candidate.frequency,
        "status": PatternStatus.ACTIVE,
        "occurrence_count": existing.occurrence_count + 1,
        "last_detected_at": now,
        "related_report_ids": with_report(existing.related_report_ids, report_id),
        "updated_at": now,
    })
    return MergeOutcome(ChangeType.PATTERN_CHANGED, entry, previous=existing)


_MERGERS = {
    AttributeType.WEAKNESS: merge_weakness,
    AttributeType.STRENGTH: merge_strength,
    AttributeType.PATTERN: merge_pattern,
}


def merge(candidate, existing: Optional[ProfileEntry], student_id: int, report_id: int, now: datetime) -> MergeOutcome:
    """Merge any candidate kind with its match (or None)."""
    return _MERGERS[candidate.attribute_type](candidate, existing, student_id, report_id, now)
