"""Analysis payload shapes consumed by the extractors.

Payloads come from an upstream report generator and are only loosely
structured. Every section is parsed item by item: an item that fails
validation is dropped on its own and the rest of the payload is still
used.
"""
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar
from pydantic import BaseModel, Field, ValidationError, field_validator

from app.core.logging import get_logger
from app.domain.profile import PatternFrequency

logger = get_logger(__name__)

# Item-level correctness labels
CORRECT = "O"
INCORRECT = "X"
PARTIAL = "△"
UNATTEMPTED = "-"
NOT_APPLICABLE = "N/A"

# Solution strategy labels
STRATEGY_OPTIMAL = "최적 풀이"
STRATEGY_CREATIVE = "창의적 접근"

# Prescription type labels
PRESCRIPTION_CONCEPT = "개념 교정"
PRESCRIPTION_HABIT = "습관 교정"

# Topic evaluation labels
EVALUATION_EXCELLENT = "excellent"
EVALUATION_NOT_GOOD = "not_good"

CAPABILITY_AXES = (
    "calculationSpeed",
    "calculationAccuracy",
    "applicationAbility",
    "logic",
    "anxietyControl",
)

ItemT = TypeVar("ItemT", bound=BaseModel)


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _text_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_items(model: Type[ItemT], raw_items: Any, section: str) -> List[ItemT]:
    """Validate a list section one item at a time.

    Args:
        model: Pydantic model for a single item
        raw_items: Raw section value (anything)
        section: Section name used in log messages

    Returns:
        The items that validated, in input order
    """
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        logger.debug(f"Ignoring section '{section}': expected a list, got {type(raw_items).__name__}")
        return []

    items: List[ItemT] = []
    for index, raw in enumerate(raw_items):
        try:
            items.append(model.model_validate(raw))
        except ValidationError as exc:
            logger.debug(f"Skipping malformed {section}[{index}]: {exc.error_count()} validation error(s)")
    return items


def parse_texts(raw_items: Any, section: str) -> List[str]:
    """Keep the non-blank strings of a free-text list section."""
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        logger.debug(f"Ignoring section '{section}': expected a list, got {type(raw_items).__name__}")
        return []
    return [text for text in (_text_or_none(item) for item in raw_items) if text]


class PayloadItem(BaseModel):
    class Config:
        populate_by_name = True
        extra = "ignore"


class ProblemAnalysis(PayloadItem):
    """Item-level result for one test question."""
    key_concept: Optional[str] = Field(default=None, alias="keyConcept")
    is_correct: str = Field(alias="isCorrect")
    error_type: Optional[str] = Field(default=None, alias="errorType")
    solution_strategy: Optional[str] = Field(default=None, alias="solutionStrategy")

    @field_validator("is_correct", mode="before")
    @classmethod
    def _normalize_correctness(cls, value):
        if isinstance(value, bool):
            return CORRECT if value else INCORRECT
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("key_concept", "error_type", "solution_strategy", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return _text_or_none(value)

    @property
    def is_wrong(self) -> bool:
        """Incorrect or partially correct."""
        return self.is_correct in (INCORRECT, PARTIAL)

    @property
    def is_right(self) -> bool:
        return self.is_correct == CORRECT

    @property
    def counted_error_type(self) -> Optional[str]:
        if self.error_type and self.error_type != NOT_APPLICABLE:
            return self.error_type
        return None


class Prescription(PayloadItem):
    priority: Optional[int] = None
    type: str
    title: str = Field(min_length=1)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value):
        return value.strip() if isinstance(value, str) else value


class RiskFactor(PayloadItem):
    factor: str = Field(min_length=1)
    severity: Optional[str] = None


class LearningHabit(PayloadItem):
    type: str
    description: str = Field(min_length=1)
    frequency: PatternFrequency = PatternFrequency.SOMETIMES

    @property
    def is_good(self) -> bool:
        return self.type == "good"


class MacroAnalysis(PayloadItem):
    """Free-text summaries plus the five-axis capability scores."""
    summary: Optional[str] = None
    strengths: Optional[str] = None
    weaknesses: Optional[str] = None
    error_pattern: Optional[str] = Field(default=None, alias="errorPattern")
    math_capability: Dict[str, float] = Field(default_factory=dict, alias="mathCapability")

    @field_validator("summary", "strengths", "weaknesses", "error_pattern", mode="before")
    @classmethod
    def _text_fields(cls, value):
        return _text_or_none(value)

    @field_validator("math_capability", mode="before")
    @classmethod
    def _numeric_scores(cls, value):
        scores = {}
        for axis, score in _as_mapping(value).items():
            if isinstance(score, (int, float)) and not isinstance(score, bool):
                scores[axis] = float(score)
        return scores


class TopicEvaluation(PayloadItem):
    topic: str = Field(min_length=1)
    evaluation: str


class ReviewProblem(PayloadItem):
    concept: Optional[str] = None
    source: Optional[Any] = None
    page: Optional[Any] = None
    number: Optional[Any] = None

    @field_validator("concept", mode="before")
    @classmethod
    def _concept_text(cls, value):
        return _text_or_none(value)


def _parse_macro(raw: Any) -> MacroAnalysis:
    try:
        return MacroAnalysis.model_validate(_as_mapping(raw))
    except ValidationError as exc:
        logger.debug(f"Ignoring malformed macroAnalysis: {exc.error_count()} validation error(s)")
        return MacroAnalysis()


class TestAnalysis(BaseModel):
    """Test (and level test) analysis payload."""
    macro: MacroAnalysis = Field(default_factory=MacroAnalysis)
    problems: List[ProblemAnalysis] = Field(default_factory=list)
    prescriptions: List[Prescription] = Field(default_factory=list)
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    habits: List[LearningHabit] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Any) -> "TestAnalysis":
        data = _as_mapping(raw)
        return cls(
            macro=_parse_macro(data.get("macroAnalysis")),
            problems=parse_items(ProblemAnalysis, data.get("detailedAnalysis"), "detailedAnalysis"),
            prescriptions=parse_items(Prescription, data.get("actionablePrescription"), "actionablePrescription"),
            risk_factors=parse_items(RiskFactor, data.get("riskFactors"), "riskFactors"),
            habits=parse_items(LearningHabit, data.get("learningHabits"), "learningHabits"),
        )


class MonthlyReport(BaseModel):
    learning_content: List[TopicEvaluation] = Field(default_factory=list)
    what_went_well: List[str] = Field(default_factory=list)
    needs_improvement: List[str] = Field(default_factory=list)
    review_problems: List[ReviewProblem] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Any) -> "MonthlyReport":
        data = _as_mapping(raw)
        return cls(
            learning_content=parse_items(TopicEvaluation, data.get("learningContent"), "learningContent"),
            what_went_well=parse_texts(data.get("whatWentWell"), "whatWentWell"),
            needs_improvement=parse_texts(data.get("needsImprovement"), "needsImprovement"),
            review_problems=parse_items(ReviewProblem, data.get("reviewProblems"), "reviewProblems"),
        )


class WeeklyReport(BaseModel):
    learning_content: List[TopicEvaluation] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    review_problems: List[ReviewProblem] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Any) -> "WeeklyReport":
        data = _as_mapping(raw)
        return cls(
            learning_content=parse_items(TopicEvaluation, data.get("learningContent"), "learningContent"),
            achievements=parse_texts(data.get("achievements"), "achievements"),
            improvements=parse_texts(data.get("improvements"), "improvements"),
            review_problems=parse_items(ReviewProblem, data.get("reviewProblems"), "reviewProblems"),
        )


class ConsolidatedReport(BaseModel):
    """Teacher-curated comparison across several earlier reports."""
    macro: MacroAnalysis = Field(default_factory=MacroAnalysis)
    prescriptions: List[Prescription] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Any) -> "ConsolidatedReport":
        qualitative = _as_mapping(_as_mapping(raw).get("consolidatedQualitative"))
        return cls(
            macro=_parse_macro(qualitative.get("macroAnalysis")),
            prescriptions=parse_items(
                Prescription,
                qualitative.get("actionablePrescription"),
                "consolidatedQualitative.actionablePrescription",
            ),
        )
