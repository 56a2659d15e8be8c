"""Domain models for longitudinal student profiles.

A profile is made of three kinds of entries (weaknesses, strengths and
behavioral patterns) plus an append-only log of change events that
explains every mutation made to them.
"""
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional
from pydantic import BaseModel, Field


class AttributeType(str, Enum):
    WEAKNESS = "weakness"
    STRENGTH = "strength"
    PATTERN = "pattern"


class ReportKind(str, Enum):
    """Source analysis payload kind; selects the extractor."""
    TEST = "test"
    LEVEL_TEST = "level_test"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CONSOLIDATED = "consolidated"


class WeaknessCategory(str, Enum):
    CONCEPT = "concept"
    CALCULATION = "calculation"
    APPLICATION = "application"
    READING = "reading"
    HABIT = "habit"


class WeaknessStatus(str, Enum):
    ACTIVE = "active"
    IMPROVING = "improving"
    RECURRING = "recurring"
    RESOLVED = "resolved"


class StrengthCategory(str, Enum):
    CONCEPT = "concept"
    CALCULATION = "calculation"
    APPLICATION = "application"
    READING = "reading"
    CREATIVITY = "creativity"


class StrengthStatus(str, Enum):
    ACTIVE = "active"
    DECLINING = "declining"
    INACTIVE = "inactive"


class PatternType(str, Enum):
    HABIT = "habit"
    ERROR = "error"
    SOLVING = "solving"
    TIME_MANAGEMENT = "time_management"


class PatternFrequency(str, Enum):
    RARE = "rare"
    SOMETIMES = "sometimes"
    OFTEN = "often"
    ALWAYS = "always"

    @classmethod
    def _missing_(cls, value):
        # analysis payloads label the lowest frequency "rarely"
        if isinstance(value, str) and value.strip().lower() == "rarely":
            return cls.RARE
        return None


class PatternStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ChangeType(str, Enum):
    WEAKNESS_ADDED = "weakness_added"
    WEAKNESS_UPDATED = "weakness_updated"
    WEAKNESS_RECURRED = "weakness_recurred"
    WEAKNESS_RESOLVED = "weakness_resolved"
    STRENGTH_ADDED = "strength_added"
    STRENGTH_UPDATED = "strength_updated"
    PATTERN_ADDED = "pattern_added"
    PATTERN_CHANGED = "pattern_changed"


class ChangedBy(str, Enum):
    AI = "ai"
    TEACHER = "teacher"


class ProfileEntry(BaseModel):
    """Fields shared by every profile entry.

    ``id`` is assigned by the repository on insert and is unique per
    attribute type. Each entry type exposes ``match_text``, the text the
    matcher compares candidates against.
    """
    attribute_type: ClassVar[AttributeType]

    id: Optional[int] = None
    student_id: int
    related_report_ids: List[int] = Field(default_factory=list)
    teacher_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy of the entry for change events."""
        return self.model_dump(mode="json")


class Weakness(ProfileEntry):
    """A concept or habit the student repeatedly struggles with."""
    attribute_type: ClassVar[AttributeType] = AttributeType.WEAKNESS

    concept: str
    category: WeaknessCategory = WeaknessCategory.CONCEPT
    severity: int = Field(ge=1, le=5, description="Severity 1-5")
    status: WeaknessStatus = WeaknessStatus.ACTIVE
    occurrence_count: int = Field(default=1, ge=1)
    first_detected_at: datetime
    first_detected_report_id: Optional[int] = None
    last_detected_at: datetime
    last_detected_report_id: Optional[int] = None
    recurred_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_report_id: Optional[int] = None
    is_manually_added: bool = False

    @property
    def match_text(self) -> str:
        return self.concept

    @property
    def rank_key(self) -> tuple:
        return (self.severity, self.occurrence_count)


class Strength(ProfileEntry):
    """A concept or ability the student has demonstrated mastery of."""
    attribute_type: ClassVar[AttributeType] = AttributeType.STRENGTH

    concept: str
    category: StrengthCategory = StrengthCategory.CONCEPT
    level: int = Field(ge=1, le=5, description="Level 1-5")
    status: StrengthStatus = StrengthStatus.ACTIVE
    confirmation_count: int = Field(default=1, ge=1)
    first_detected_at: datetime
    first_detected_report_id: Optional[int] = None
    last_confirmed_at: datetime
    last_confirmed_report_id: Optional[int] = None
    is_manually_added: bool = False

    @property
    def match_text(self) -> str:
        return self.concept

    @property
    def rank_key(self) -> tuple:
        return (self.level, self.confirmation_count)


class Pattern(ProfileEntry):
    """A recurring habit or error behaviour, positive or negative."""
    attribute_type: ClassVar[AttributeType] = AttributeType.PATTERN

    pattern_type: PatternType
    description: str
    is_positive: bool = False
    frequency: PatternFrequency = PatternFrequency.SOMETIMES
    status: PatternStatus = PatternStatus.ACTIVE
    occurrence_count: int = Field(default=1, ge=1)
    first_detected_at: datetime
    last_detected_at: datetime
    improvement_plan: Optional[str] = None

    @property
    def match_text(self) -> str:
        return self.description

    @property
    def rank_key(self) -> tuple:
        return (self.occurrence_count,)


ENTRY_MODELS = {
    AttributeType.WEAKNESS: Weakness,
    AttributeType.STRENGTH: Strength,
    AttributeType.PATTERN: Pattern,
}


class ChangeEvent(BaseModel):
    """Immutable audit record of one create/update of a profile entry."""
    id: Optional[int] = None
    student_id: int
    report_id: Optional[int] = None
    change_type: ChangeType
    attribute_type: AttributeType
    attribute_id: int
    previous_state: Optional[Dict[str, Any]] = None
    new_state: Dict[str, Any]
    changed_by: ChangedBy = ChangedBy.AI
    teacher_approved: bool = False
    note: Optional[str] = None
    created_at: datetime

    class Config:
        frozen = True


class IngestResult(BaseModel):
    """Aggregate outcome of one ingestion.

    ``success`` is False only when at least one candidate could not be
    written (or the ingestion could not start at all); every other
    candidate is still applied.
    """
    success: bool
    error: Optional[str] = None
    created: int = 0
    updated: int = 0
    failed: int = 0


class StudentProfile(BaseModel):
    """Active view of a student's profile."""
    student_id: int
    weaknesses: List[Weakness] = Field(default_factory=list)
    strengths: List[Strength] = Field(default_factory=list)
    patterns: List[Pattern] = Field(default_factory=list)
