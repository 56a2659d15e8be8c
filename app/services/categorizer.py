"""Keyword-based categorization of free-text observations.

Two rule sets exist. The context rules classify phrases segmented from
a test report and also look at the sentence the phrase came from. The
text rules classify whole free-text lines from periodic and
consolidated reports and use a wider vocabulary.

Every function here is total: unknown text falls back to the most
generic category rather than failing.
"""
from typing import Optional, Sequence, Tuple

from app.domain.profile import StrengthCategory, WeaknessCategory

# (category, keywords matched against the concept, keywords matched against the context)
# Checked in order; the first hit wins.
WEAKNESS_RULES: Sequence[Tuple[WeaknessCategory, Tuple[str, ...], Tuple[str, ...]]] = (
    (WeaknessCategory.CALCULATION, ("계산",), ("계산",)),
    (WeaknessCategory.APPLICATION, ("응용", "활용"), ("응용",)),
    (WeaknessCategory.READING, ("문제 해석", "독해"), ("오독",)),
    (WeaknessCategory.HABIT, ("습관", "부주의"), ("습관",)),
)

STRENGTH_RULES: Sequence[Tuple[StrengthCategory, Tuple[str, ...], Tuple[str, ...]]] = (
    (StrengthCategory.CALCULATION, ("계산",), ("계산",)),
    (StrengthCategory.APPLICATION, ("응용", "활용"), ("응용",)),
    (StrengthCategory.READING, ("문제 이해", "독해"), ()),
    (StrengthCategory.CREATIVITY, ("창의",), ("창의",)),
)

# (category, keywords matched against the whole text)
WEAKNESS_TEXT_RULES: Sequence[Tuple[WeaknessCategory, Tuple[str, ...]]] = (
    (WeaknessCategory.CALCULATION, ("계산", "연산", "calculation", "arithmetic")),
    (WeaknessCategory.APPLICATION, ("응용", "활용", "문장제", "application", "word problem")),
    (WeaknessCategory.READING, ("독해", "이해", "해석", "reading", "misread")),
    (WeaknessCategory.HABIT, ("습관", "태도", "집중", "habit", "careless", "attention")),
)

STRENGTH_TEXT_RULES: Sequence[Tuple[StrengthCategory, Tuple[str, ...]]] = (
    (StrengthCategory.CALCULATION, ("계산", "연산", "calculation", "arithmetic")),
    (StrengthCategory.APPLICATION, ("응용", "활용", "application")),
    (StrengthCategory.READING, ("독해", "이해", "reading", "comprehension")),
    (StrengthCategory.CREATIVITY, ("창의", "새로운", "creative", "creativity")),
)

ERROR_TYPE_CATEGORIES = {
    "계산 오류": WeaknessCategory.CALCULATION,
    "개념 오류": WeaknessCategory.CONCEPT,
    "절차 오류": WeaknessCategory.CONCEPT,
    "문제 오독": WeaknessCategory.READING,
    "기타/부주의": WeaknessCategory.HABIT,
}


def _first_match(rules, text: str, context: Optional[str], default):
    lowered = (text or "").lower()
    lowered_context = (context or "").lower()
    for category, keywords, context_keywords in rules:
        if any(keyword in lowered for keyword in keywords):
            return category
        if lowered_context and any(keyword in lowered_context for keyword in context_keywords):
            return category
    return default


def _first_text_match(rules, text: str, default):
    lowered = (text or "").lower()
    for category, keywords in rules:
        if any(keyword in lowered for keyword in keywords):
            return category
    return default


def categorize_weakness(text: str, context: Optional[str] = None) -> WeaknessCategory:
    """Classify a weakness phrase segmented from a test report.

    Args:
        text: The concept phrase
        context: Optional surrounding text the phrase was segmented from

    Returns:
        Matching category, ``concept`` when nothing matches
    """
    return _first_match(WEAKNESS_RULES, text, context, WeaknessCategory.CONCEPT)


def categorize_strength(text: str, context: Optional[str] = None) -> StrengthCategory:
    """Classify a strength phrase segmented from a test report; ``concept`` when nothing matches."""
    return _first_match(STRENGTH_RULES, text, context, StrengthCategory.CONCEPT)


def categorize_weakness_text(text: str) -> WeaknessCategory:
    """Classify a free-text weakness line from a periodic or consolidated report."""
    return _first_text_match(WEAKNESS_TEXT_RULES, text, WeaknessCategory.CONCEPT)


def categorize_strength_text(text: str) -> StrengthCategory:
    return _first_text_match(STRENGTH_TEXT_RULES, text, StrengthCategory.CONCEPT)


def map_error_type_to_category(error_type: str) -> WeaknessCategory:
    """Map an item-level error-type label to a weakness category."""
    return ERROR_TYPE_CATEGORIES.get((error_type or "").strip(), WeaknessCategory.CONCEPT)
