"""Text utilities for sanitization and concept segmentation."""
import re
from typing import List

MIN_CONCEPT_LENGTH = 2
MAX_CONCEPT_LENGTH = 50
MAX_CONCEPTS = 5

# Commas, semicolons (ASCII and full-width), newlines and "1." style enumerators
_SEGMENT_SPLIT = re.compile(r"[,;，；\n]|\d+\.\s*")
_PARENTHETICAL = re.compile(r"\([^)]*\)|（[^）]*）")


def sanitize_text(text: str) -> str:
    """Clean and normalize text for storage and matching.

    Removes control characters, collapses runs of spaces and trims each
    line while keeping UTF-8 content (Korean labels included) intact.

    Args:
        text: Input text to sanitize

    Returns:
        Cleaned text

    Examples:
        >>> sanitize_text("  계산   실수\\x07 ")
        '계산 실수'
        >>> sanitize_text(None)
        ''
    """
    if text is None:
        return ""

    text = str(text)
    text = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F-\x9F]', '', text)
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return '\n'.join(line.strip() for line in text.split('\n')).strip()


def segment_concepts(text: str) -> List[str]:
    """Split a block of descriptive text into short concept phrases.

    Splits on commas, semicolons, newlines and ``N.`` enumerators, strips
    parenthetical asides, and keeps items of 2-50 characters. At most
    five phrases are returned, in input order. Never raises.

    Args:
        text: Free-text summary, e.g. a list of weaknesses

    Returns:
        Up to five concept phrases

    Examples:
        >>> segment_concepts("계산 실수가 잦음, 도형 개념 부족")
        ['계산 실수가 잦음', '도형 개념 부족']
        >>> segment_concepts("   ")
        []
    """
    if not isinstance(text, str) or not text.strip():
        return []

    concepts = []
    for item in _SEGMENT_SPLIT.split(text):
        cleaned = sanitize_text(_PARENTHETICAL.sub("", item))
        if MIN_CONCEPT_LENGTH <= len(cleaned) <= MAX_CONCEPT_LENGTH:
            concepts.append(cleaned)
        if len(concepts) == MAX_CONCEPTS:
            break
    return concepts
