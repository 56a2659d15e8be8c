"""Matching of candidate observations against stored profile entries.

The matcher returns the first stored entry a strategy accepts. There is
no ranking and no score: the default prefix-substring strategy is a
deliberately simple heuristic. It can merge two distinct concepts that
share a prefix and miss synonyms phrased differently.
"""
import re
from abc import ABC, abstractmethod
from difflib import SequenceMatcher
from typing import Iterable, Optional, TypeVar

from app.core.config import settings
from app.domain.profile import AttributeType, ProfileEntry

EntryT = TypeVar("EntryT", bound=ProfileEntry)

DEFAULT_CONCEPT_PREFIX = 10
DEFAULT_PATTERN_PREFIX = 20


def normalize(text: str) -> str:
    """Lower-case and collapse whitespace."""
    return re.sub(r"\s+", " ", (text or "").strip()).lower()


class SimilarityStrategy(ABC):
    """Decides whether a candidate text and a stored text name the same thing."""

    name: str = ""

    @abstractmethod
    def matches(self, candidate_text: str, stored_text: str, prefix_length: int) -> bool:
        ...


class PrefixSubstringStrategy(SimilarityStrategy):
    """Stored text contains the candidate's first N characters, or vice versa."""

    name = "prefix"

    def matches(self, candidate_text: str, stored_text: str, prefix_length: int) -> bool:
        candidate = (candidate_text or "").lower()
        stored = (stored_text or "").lower()
        if not candidate or not stored:
            return False
        return candidate[:prefix_length] in stored or stored[:prefix_length] in candidate


class ExactNormalizedStrategy(SimilarityStrategy):
    """Equal after lower-casing and whitespace collapsing."""

    name = "exact"

    def matches(self, candidate_text: str, stored_text: str, prefix_length: int) -> bool:
        candidate = normalize(candidate_text)
        return bool(candidate) and candidate == normalize(stored_text)


class EditDistanceStrategy(SimilarityStrategy):
    """Similarity ratio (difflib) at or above a cutoff."""

    name = "edit_distance"

    def __init__(self, cutoff: float = 0.8):
        self.cutoff = cutoff

    def matches(self, candidate_text: str, stored_text: str, prefix_length: int) -> bool:
        candidate = normalize(candidate_text)
        stored = normalize(stored_text)
        if not candidate or not stored:
            return False
        return SequenceMatcher(None, candidate, stored).ratio() >= self.cutoff


class ConceptMatcher:
    """Finds at most one existing entry for a candidate observation.

    Example:
        >>> matcher = ConceptMatcher()
        >>> matcher.find_match(candidate, repository.list_entries(7, AttributeType.WEAKNESS))
    """

    def __init__(
        self,
        strategy: Optional[SimilarityStrategy] = None,
        concept_prefix: int = DEFAULT_CONCEPT_PREFIX,
        pattern_prefix: int = DEFAULT_PATTERN_PREFIX,
    ):
        self.strategy = strategy or PrefixSubstringStrategy()
        self.concept_prefix = concept_prefix
        self.pattern_prefix = pattern_prefix

    def prefix_length(self, attribute_type: AttributeType) -> int:
        if attribute_type == AttributeType.PATTERN:
            return self.pattern_prefix
        return self.concept_prefix

    def match_text(
        self,
        text: str,
        attribute_type: AttributeType,
        entries: Iterable[EntryT],
    ) -> Optional[EntryT]:
        """Return the first entry of ``attribute_type`` whose text matches ``text``."""
        prefix_length = self.prefix_length(attribute_type)
        for entry in entries:
            if entry.attribute_type != attribute_type:
                continue
            if self.strategy.matches(text, entry.match_text, prefix_length):
                return entry
        return None

    def find_match(self, candidate, entries: Iterable[EntryT]) -> Optional[EntryT]:
        """Return the first stored entry matching a candidate, or None."""
        return self.match_text(candidate.text, candidate.attribute_type, entries)


def build_strategy(name: str, cutoff: float = 0.8) -> SimilarityStrategy:
    """Create a similarity strategy by its configured name."""
    if name == PrefixSubstringStrategy.name:
        return PrefixSubstringStrategy()
    if name == ExactNormalizedStrategy.name:
        return ExactNormalizedStrategy()
    if name == EditDistanceStrategy.name:
        return EditDistanceStrategy(cutoff=cutoff)
    raise ValueError(f"Unknown match strategy: {name}")


def build_matcher() -> ConceptMatcher:
    """Create the matcher described by application settings."""
    return ConceptMatcher(
        strategy=build_strategy(settings.match_strategy, settings.edit_distance_cutoff),
        concept_prefix=settings.concept_match_prefix,
        pattern_prefix=settings.pattern_match_prefix,
    )
