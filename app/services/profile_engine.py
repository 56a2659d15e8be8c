"""Student profile extraction and evolution engine.

Takes the analysis payload produced after an assessment, extracts
candidate weaknesses, strengths and patterns, and merges each one into
the student's longitudinal profile:

    extract -> (for each candidate, in order) match -> merge -> write -> log

All ingestions for one student run under that student's lock. Different
students proceed in parallel.
"""
from datetime import datetime, timezone
from itertools import chain
from typing import Any, Callable, List, Optional

from app.core.logging import LogTimer, get_logger
from app.domain.profile import ChangeEvent, IngestResult, StudentProfile
from app.infrastructure.repository import (
    LockUnavailableError,
    ProfileRepository,
    RepositoryError,
)
from app.services.extractors import UnsupportedReportKind, get_extractor
from app.services.history import ChangeHistoryLogger
from app.services.matching import ConceptMatcher, build_matcher
from app.services.merger import MergeOutcome, merge

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProfileEngine:
    """Public ingestion boundary.

    Example:
        >>> engine = ProfileEngine(InMemoryProfileRepository())
        >>> result = engine.ingest(7, 42, "test", analysis_payload)
        >>> result.success, result.created
        (True, 5)
    """

    def __init__(
        self,
        repository: ProfileRepository,
        matcher: Optional[ConceptMatcher] = None,
        history: Optional[ChangeHistoryLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.matcher = matcher or build_matcher()
        self.history = history or ChangeHistoryLogger(repository)
        self.clock = clock or utc_now

    def ingest(self, student_id: int, report_id: int, report_kind: str, payload: Any) -> IngestResult:
        """Merge one analysis payload into a student's profile.

        Never raises. A failed write skips only that candidate and makes
        the result unsuccessful; all other candidates are still applied.

        Args:
            student_id: Student whose profile is updated
            report_id: Report the payload belongs to
            report_kind: test, level_test, weekly, monthly or consolidated
            payload: Raw analysis payload

        Returns:
            IngestResult with created/updated/failed counts
        """
        kind = getattr(report_kind, "value", report_kind)
        log = get_logger(__name__, {"student_id": student_id, "report_id": report_id, "report_kind": kind})

        try:
            extractor = get_extractor(report_kind)
        except UnsupportedReportKind as exc:
            log.warning(str(exc))
            return IngestResult(success=False, error=str(exc))

        try:
            extraction = extractor.extract(payload)
            with self.repository.student_lock(student_id):
                with LogTimer(log, "profile_ingest"):
                    return self._apply(student_id, report_id, chain(
                        extraction.weaknesses, extraction.strengths, extraction.patterns,
                    ), log)
        except LockUnavailableError as exc:
            log.warning(f"Profile ingestion not started: {exc}")
            return IngestResult(success=False, error=str(exc))
        except Exception as exc:
            log.error(f"Profile ingestion failed: {exc}", exc_info=True)
            return IngestResult(success=False, error=str(exc) or type(exc).__name__)

    def _apply(self, student_id: int, report_id: int, candidates, log) -> IngestResult:
        now = self.clock()
        created = updated = 0
        failures: List[str] = []

        for candidate in candidates:
            try:
                outcome = self._process(student_id, report_id, candidate, now)
            except RepositoryError as exc:
                message = f"{candidate.attribute_type.value} '{candidate.text}': {exc}"
                log.error(f"Skipping candidate after repository error: {message}", exc_info=True)
                failures.append(message)
                continue

            if outcome.is_creation:
                created += 1
            else:
                updated += 1
            log.debug(f"{outcome.change_type.value}: {candidate.text}")

        log.info(f"Profile ingested: {created} created, {updated} updated, {len(failures)} failed")
        return IngestResult(
            success=not failures,
            error="; ".join(failures) or None,
            created=created,
            updated=updated,
            failed=len(failures),
        )

    def _process(self, student_id: int, report_id: int, candidate, now: datetime) -> MergeOutcome:
        existing = self.repository.list_entries(student_id, candidate.attribute_type)
        match = self.matcher.find_match(candidate, existing)
        outcome = merge(candidate, match, student_id, report_id, now)

        # The entry write and its change event land together or not at all.
        with self.repository.atomic():
            if outcome.is_creation:
                stored = self.repository.insert(outcome.entry)
            else:
                stored = self.repository.update(candidate.attribute_type, match.id, outcome.patch())
            self.history.record_merge(outcome, stored, report_id, now)
        return outcome

    def get_profile(self, student_id: int) -> StudentProfile:
        """Active weaknesses, strengths and patterns, most significant first."""
        return StudentProfile(
            student_id=student_id,
            weaknesses=self.repository.get_active_weaknesses(student_id),
            strengths=self.repository.get_active_strengths(student_id),
            patterns=self.repository.get_active_patterns(student_id),
        )

    def get_history(self, student_id: int) -> List[ChangeEvent]:
        """Change events for a student in chronological order."""
        return sorted(
            self.repository.list_change_events(student_id),
            key=lambda event: (event.created_at, event.id or 0),
        )
