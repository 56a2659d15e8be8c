"""Extractors that turn analysis payloads into candidate observations.

One extractor exists per payload shape. Each produces three ordered
candidate lists (weaknesses, strengths, patterns); within one call a list
never holds two candidates whose text is equal ignoring case.
"""
from abc import ABC, abstractmethod
from collections import Counter
from functools import reduce
from typing import Any, Dict, Iterable, Iterator, List, Sequence, TypeVar

from app.core.logging import get_logger
from app.domain.candidates import (
    Extraction,
    PatternCandidate,
    StrengthCandidate,
    WeaknessCandidate,
)
from app.domain.payloads import (
    CAPABILITY_AXES,
    EVALUATION_EXCELLENT,
    EVALUATION_NOT_GOOD,
    PRESCRIPTION_CONCEPT,
    PRESCRIPTION_HABIT,
    STRATEGY_CREATIVE,
    STRATEGY_OPTIMAL,
    ConsolidatedReport,
    MonthlyReport,
    Prescription,
    ProblemAnalysis,
    ReviewProblem,
    TestAnalysis,
    WeeklyReport,
)
from app.domain.profile import (
    PatternFrequency,
    PatternType,
    ReportKind,
    StrengthCategory,
    WeaknessCategory,
)
from app.services.categorizer import (
    categorize_strength,
    categorize_strength_text,
    categorize_weakness,
    categorize_weakness_text,
    map_error_type_to_category,
)
from app.utils.text import sanitize_text, segment_concepts

logger = get_logger(__name__)

CandidateT = TypeVar("CandidateT", WeaknessCandidate, StrengthCandidate, PatternCandidate)

# Thresholds for item-level promotion
ERROR_TYPE_WEAKNESS_MIN = 2
ERROR_TYPE_PATTERN_MIN = 3
ERROR_TYPE_ALWAYS_MIN = 5
OPTIMAL_STRATEGY_MIN = 2
REVIEW_CONCEPT_MIN = 2
REVIEW_CONCEPT_SEVERE = 3
WEEKLY_REVIEW_AGGREGATE_MIN = 3
CAPABILITY_MIN = 70

CAPABILITY_STRENGTHS = {
    "calculationSpeed": ("계산 속도", StrengthCategory.CALCULATION),
    "calculationAccuracy": ("계산 정확도", StrengthCategory.CALCULATION),
    "applicationAbility": ("응용력", StrengthCategory.APPLICATION),
    "logic": ("논리적 사고", StrengthCategory.CONCEPT),
    "anxietyControl": ("시험 불안 조절", StrengthCategory.CONCEPT),
}

RISK_SEVERITY = {"high": 5, "medium": 3, "low": 2}
DEFAULT_RISK_SEVERITY = 2


class UnsupportedReportKind(ValueError):
    """No extractor is registered for the requested report kind."""


def dedupe_by_text(candidates: Iterable[CandidateT]) -> List[CandidateT]:
    """Keep the first candidate for each case-insensitive text."""
    def add_if_unseen(kept: List[CandidateT], candidate: CandidateT) -> List[CandidateT]:
        key = candidate.text.lower()
        if any(existing.text.lower() == key for existing in kept):
            return kept
        return kept + [candidate]

    return reduce(add_if_unseen, candidates, [])


def severity_from_priority(priority) -> int:
    if priority == 1:
        return 5
    if priority == 2:
        return 4
    return 3


def capability_level(score: float) -> int:
    if score >= 90:
        return 5
    if score >= 80:
        return 4
    return 3


def _clean(text: Any) -> str:
    return sanitize_text(text) if isinstance(text, str) else ""


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _segment_weaknesses(text, severity: int, use_context: bool) -> Iterator[WeaknessCandidate]:
    for concept in segment_concepts(text):
        category = categorize_weakness(concept, text) if use_context else categorize_weakness_text(concept)
        yield WeaknessCandidate(concept=concept, category=category, severity=severity)


def _segment_strengths(text, level: int, use_context: bool) -> Iterator[StrengthCandidate]:
    for concept in segment_concepts(text):
        category = categorize_strength(concept, text) if use_context else categorize_strength_text(concept)
        yield StrengthCandidate(concept=concept, category=category, level=level)


def _concept_corrections(prescriptions: Sequence[Prescription]) -> Iterator[WeaknessCandidate]:
    for item in prescriptions:
        title = _clean(item.title)
        if item.type == PRESCRIPTION_CONCEPT and title:
            yield WeaknessCandidate(
                concept=title,
                category=WeaknessCategory.CONCEPT,
                severity=severity_from_priority(item.priority),
            )


def _review_concepts(problems: Sequence[ReviewProblem]) -> Iterator[WeaknessCandidate]:
    counts = Counter(problem.concept for problem in problems if problem.concept)
    for concept, count in counts.items():
        if count >= REVIEW_CONCEPT_MIN:
            yield WeaknessCandidate(
                concept=f"복습 필요: {concept}",
                category=WeaknessCategory.CONCEPT,
                severity=4 if count >= REVIEW_CONCEPT_SEVERE else 3,
            )


class Extractor(ABC):
    """Base class: parse a raw payload, then emit ordered candidates."""

    report_kinds: Sequence[ReportKind] = ()

    @abstractmethod
    def parse(self, payload: Any):
        """Build the typed report from a raw payload (tolerant)."""

    @abstractmethod
    def weaknesses(self, report) -> Iterable[WeaknessCandidate]:
        ...

    @abstractmethod
    def strengths(self, report) -> Iterable[StrengthCandidate]:
        ...

    def patterns(self, report) -> Iterable[PatternCandidate]:
        return ()

    def extract(self, payload: Any) -> Extraction:
        """Produce the de-duplicated candidate lists for one payload.

        Args:
            payload: Raw analysis payload (any JSON-like value)

        Returns:
            Extraction with weaknesses, strengths and patterns in order
        """
        report = self.parse(payload)
        extraction = Extraction(
            weaknesses=dedupe_by_text(self.weaknesses(report)),
            strengths=dedupe_by_text(self.strengths(report)),
            patterns=dedupe_by_text(self.patterns(report)),
        )
        logger.debug(
            f"{type(self).__name__} produced {len(extraction.weaknesses)} weakness, "
            f"{len(extraction.strengths)} strength and {len(extraction.patterns)} pattern candidate(s)"
        )
        return extraction


class TestExtractor(Extractor):
    """Test and level-test analysis payloads."""

    __test__ = False
    report_kinds = (ReportKind.TEST, ReportKind.LEVEL_TEST)

    def parse(self, payload: Any) -> TestAnalysis:
        return TestAnalysis.from_payload(payload)

    @staticmethod
    def _error_tally(problems: Sequence[ProblemAnalysis]) -> Dict[str, List[str]]:
        """Concepts per error type over incorrect/partial items, one entry per item."""
        tally: Dict[str, List[str]] = {}
        for problem in problems:
            error_type = problem.counted_error_type
            if problem.is_wrong and error_type:
                tally.setdefault(error_type, []).append(problem.key_concept or "")
        return tally

    def weaknesses(self, report: TestAnalysis) -> Iterator[WeaknessCandidate]:
        yield from _segment_weaknesses(report.macro.weaknesses, severity=3, use_context=True)

        for error_type, concepts in self._error_tally(report.problems).items():
            count = len(concepts)
            if count < ERROR_TYPE_WEAKNESS_MIN:
                continue
            related = [concept for concept in _unique(concepts) if concept][:2]
            yield WeaknessCandidate(
                concept=f"{error_type} ({', '.join(related) or '다수 문항'})",
                category=map_error_type_to_category(error_type),
                severity=min(5, count + 2),
            )

        yield from _concept_corrections(report.prescriptions)

        for risk in report.risk_factors:
            factor = _clean(risk.factor)
            if factor:
                yield WeaknessCandidate(
                    concept=factor,
                    category=WeaknessCategory.HABIT,
                    severity=RISK_SEVERITY.get((risk.severity or "").lower(), DEFAULT_RISK_SEVERITY),
                )

    def strengths(self, report: TestAnalysis) -> Iterator[StrengthCandidate]:
        yield from _segment_strengths(report.macro.strengths, level=3, use_context=True)

        solved = [problem for problem in report.problems if problem.is_right and problem.key_concept]
        optimal = Counter(p.key_concept for p in solved if p.solution_strategy == STRATEGY_OPTIMAL)
        for concept, count in optimal.items():
            if count >= OPTIMAL_STRATEGY_MIN:
                yield StrengthCandidate(
                    concept=f"{concept} 숙달",
                    category=StrengthCategory.CONCEPT,
                    level=min(5, count + 2),
                )

        creative = _unique(p.key_concept for p in solved if p.solution_strategy == STRATEGY_CREATIVE)
        if creative:
            yield StrengthCandidate(
                concept=f"창의적 문제 접근 ({', '.join(creative[:2])})",
                category=StrengthCategory.CREATIVITY,
                level=4,
            )

        scores = report.macro.math_capability
        for axis in CAPABILITY_AXES:
            score = scores.get(axis)
            if score is not None and score >= CAPABILITY_MIN:
                name, category = CAPABILITY_STRENGTHS[axis]
                yield StrengthCandidate(concept=name, category=category, level=capability_level(score))

    def patterns(self, report: TestAnalysis) -> Iterator[PatternCandidate]:
        for habit in report.habits:
            description = _clean(habit.description)
            if description:
                yield PatternCandidate(
                    pattern_type=PatternType.HABIT,
                    description=description,
                    is_positive=habit.is_good,
                    frequency=habit.frequency,
                )

        if report.macro.error_pattern:
            yield PatternCandidate(
                pattern_type=PatternType.ERROR,
                description=report.macro.error_pattern,
                is_positive=False,
                frequency=PatternFrequency.OFTEN,
            )

        for error_type, concepts in self._error_tally(report.problems).items():
            count = len(concepts)
            if count >= ERROR_TYPE_PATTERN_MIN:
                yield PatternCandidate(
                    pattern_type=PatternType.ERROR,
                    description=f"반복적 {error_type} 발생",
                    is_positive=False,
                    frequency=PatternFrequency.ALWAYS if count >= ERROR_TYPE_ALWAYS_MIN else PatternFrequency.OFTEN,
                )

        for item in report.prescriptions:
            title = _clean(item.title)
            if item.type == PRESCRIPTION_HABIT and title:
                yield PatternCandidate(
                    pattern_type=PatternType.HABIT,
                    description=title,
                    is_positive=False,
                    frequency=PatternFrequency.OFTEN,
                )


class PeriodicExtractor(Extractor):
    """Shared rules for weekly and monthly reports.

    Subclasses set the baseline values and say where the free-text
    improvement / achievement lists live on the parsed report.
    """

    topic_severity: int
    topic_level: int
    improvement_severity = 2
    achievement_level = 3

    @abstractmethod
    def improvement_texts(self, report) -> List[str]:
        ...

    @abstractmethod
    def achievement_texts(self, report) -> List[str]:
        ...

    def weaknesses(self, report) -> Iterator[WeaknessCandidate]:
        for item in report.learning_content:
            topic = _clean(item.topic)
            if item.evaluation == EVALUATION_NOT_GOOD and topic:
                yield WeaknessCandidate(concept=topic, category=WeaknessCategory.CONCEPT, severity=self.topic_severity)

        for text in self.improvement_texts(report):
            yield WeaknessCandidate(
                concept=text,
                category=categorize_weakness_text(text),
                severity=self.improvement_severity,
            )

        yield from _review_concepts(report.review_problems)

    def strengths(self, report) -> Iterator[StrengthCandidate]:
        for item in report.learning_content:
            topic = _clean(item.topic)
            if item.evaluation == EVALUATION_EXCELLENT and topic:
                yield StrengthCandidate(concept=topic, category=StrengthCategory.CONCEPT, level=self.topic_level)

        for text in self.achievement_texts(report):
            yield StrengthCandidate(concept=text, category=categorize_strength_text(text), level=self.achievement_level)


class MonthlyExtractor(PeriodicExtractor):
    report_kinds = (ReportKind.MONTHLY,)
    topic_severity = 3
    topic_level = 4

    def parse(self, payload: Any) -> MonthlyReport:
        return MonthlyReport.from_payload(payload)

    def improvement_texts(self, report: MonthlyReport) -> List[str]:
        return report.needs_improvement

    def achievement_texts(self, report: MonthlyReport) -> List[str]:
        return report.what_went_well


class WeeklyExtractor(PeriodicExtractor):
    report_kinds = (ReportKind.WEEKLY,)
    topic_severity = 2
    topic_level = 3

    def parse(self, payload: Any) -> WeeklyReport:
        return WeeklyReport.from_payload(payload)

    def improvement_texts(self, report: WeeklyReport) -> List[str]:
        return report.improvements

    def achievement_texts(self, report: WeeklyReport) -> List[str]:
        return report.achievements

    def weaknesses(self, report: WeeklyReport) -> Iterator[WeaknessCandidate]:
        yield from super().weaknesses(report)
        if len(report.review_problems) >= WEEKLY_REVIEW_AGGREGATE_MIN:
            yield WeaknessCandidate(
                concept=f"이번 주 복습 필요 문제 {len(report.review_problems)}개",
                category=WeaknessCategory.CONCEPT,
                severity=2,
            )


class ConsolidatedExtractor(Extractor):
    """Teacher-curated consolidated reviews; baseline severity/level is 4."""

    report_kinds = (ReportKind.CONSOLIDATED,)

    def parse(self, payload: Any) -> ConsolidatedReport:
        return ConsolidatedReport.from_payload(payload)

    def weaknesses(self, report: ConsolidatedReport) -> Iterator[WeaknessCandidate]:
        yield from _segment_weaknesses(report.macro.weaknesses, severity=4, use_context=False)
        yield from _concept_corrections(report.prescriptions)

    def strengths(self, report: ConsolidatedReport) -> Iterator[StrengthCandidate]:
        yield from _segment_strengths(report.macro.strengths, level=4, use_context=False)


_EXTRACTORS: Dict[ReportKind, Extractor] = {
    kind: extractor
    for extractor in (TestExtractor(), MonthlyExtractor(), WeeklyExtractor(), ConsolidatedExtractor())
    for kind in extractor.report_kinds
}


def get_extractor(report_kind) -> Extractor:
    """Return the extractor registered for a report kind.

    Raises:
        UnsupportedReportKind: If the kind is unknown
    """
    try:
        return _EXTRACTORS[ReportKind(report_kind)]
    except (ValueError, KeyError):
        raise UnsupportedReportKind(f"Unsupported report kind: {report_kind}") from None
