"""Candidate observations extracted from a single analysis payload.

Candidates are normalized facts that have not yet been merged into a
student's profile. They carry only what the payload said; the merger
decides how they change the stored entries.
"""
from typing import ClassVar, List
from pydantic import BaseModel, Field

from app.domain.profile import (
    AttributeType,
    PatternFrequency,
    PatternType,
    StrengthCategory,
    WeaknessCategory,
)


class WeaknessCandidate(BaseModel):
    attribute_type: ClassVar[AttributeType] = AttributeType.WEAKNESS

    concept: str
    category: WeaknessCategory = WeaknessCategory.CONCEPT
    severity: int = Field(ge=1, le=5)

    class Config:
        frozen = True

    @property
    def text(self) -> str:
        return self.concept


class StrengthCandidate(BaseModel):
    attribute_type: ClassVar[AttributeType] = AttributeType.STRENGTH

    concept: str
    category: StrengthCategory = StrengthCategory.CONCEPT
    level: int = Field(ge=1, le=5)

    class Config:
        frozen = True

    @property
    def text(self) -> str:
        return self.concept


class PatternCandidate(BaseModel):
    attribute_type: ClassVar[AttributeType] = AttributeType.PATTERN

    pattern_type: PatternType
    description: str
    is_positive: bool = False
    frequency: PatternFrequency = PatternFrequency.OFTEN

    class Config:
        frozen = True

    @property
    def text(self) -> str:
        return self.description


class Extraction(BaseModel):
    """Everything one extractor produced from one payload, in order."""
    weaknesses: List[WeaknessCandidate] = Field(default_factory=list)
    strengths: List[StrengthCandidate] = Field(default_factory=list)
    patterns: List[PatternCandidate] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.weaknesses) + len(self.strengths) + len(self.patterns)
