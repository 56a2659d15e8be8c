"""Tests for concept segmentation and keyword categorization."""
import pytest

from app.domain.profile import StrengthCategory, WeaknessCategory
from app.services.categorizer import (
    categorize_strength,
    categorize_strength_text,
    categorize_weakness,
    categorize_weakness_text,
    map_error_type_to_category,
)
from app.utils.text import sanitize_text, segment_concepts


class TestSanitizeText:
    """Test text sanitization."""

    def test_collapses_spaces_and_control_characters(self):
        assert sanitize_text("  계산   실수\x07 ") == "계산 실수"

    def test_none_becomes_empty(self):
        assert sanitize_text(None) == ""


class TestSegmentConcepts:
    """Test splitting free text into concept phrases."""

    def test_comma_separated_korean_text(self):
        """Two comma-separated phrases yield exactly two concepts."""
        concepts = segment_concepts("계산 실수가 잦음, 도형 개념 부족")

        assert concepts == ["계산 실수가 잦음", "도형 개념 부족"]
        assert all(len(concept) >= 2 for concept in concepts)

    def test_numbered_list_and_parentheticals(self):
        concepts = segment_concepts("1. 분수 2. 소수점 계산(자릿수) 3. 도")

        assert concepts == ["분수", "소수점 계산"]

    def test_newlines_and_full_width_separators(self):
        concepts = segment_concepts("일차함수；연립방정식\n부등식，확률")

        assert concepts == ["일차함수", "연립방정식", "부등식", "확률"]

    def test_at_most_five_concepts(self):
        concepts = segment_concepts("aa, bb, cc, dd, ee, ff, gg")

        assert concepts == ["aa", "bb", "cc", "dd", "ee"]

    def test_drops_items_outside_length_bounds(self):
        long_item = "가" * 51
        concepts = segment_concepts(f"a, {long_item}, 방정식")

        assert concepts == ["방정식"]

    @pytest.mark.parametrize("value", [None, "", "   ", 42, ["a"]])
    def test_never_raises_on_odd_input(self, value):
        assert segment_concepts(value) == []


class TestCategorizeWeakness:
    """Test weakness categorization."""

    @pytest.mark.parametrize("text,expected", [
        ("계산 실수가 잦음", WeaknessCategory.CALCULATION),
        ("응용 문제 풀이", WeaknessCategory.APPLICATION),
        ("문제 해석 연습", WeaknessCategory.READING),
        ("부주의한 풀이", WeaknessCategory.HABIT),
        ("도형 개념 부족", WeaknessCategory.CONCEPT),
    ])
    def test_keyword_priority(self, text, expected):
        assert categorize_weakness(text) == expected

    def test_context_keywords_apply(self):
        """A phrase segmented from calculation-heavy text is a calculation weakness."""
        context = "계산 실수가 잦음, 도형 개념 부족"

        assert categorize_weakness("도형 개념 부족", context) == WeaknessCategory.CALCULATION

    def test_first_rule_wins(self):
        assert categorize_weakness("계산 습관") == WeaknessCategory.CALCULATION


class TestCategorizeStrength:
    """Test strength categorization."""

    @pytest.mark.parametrize("text,expected", [
        ("계산이 정확함", StrengthCategory.CALCULATION),
        ("활용 능력", StrengthCategory.APPLICATION),
        ("문제 이해가 빠름", StrengthCategory.READING),
        ("창의적인 풀이", StrengthCategory.CREATIVITY),
        ("일차함수", StrengthCategory.CONCEPT),
    ])
    def test_keyword_priority(self, text, expected):
        assert categorize_strength(text) == expected

    def test_understanding_alone_is_a_concept_strength(self):
        assert categorize_strength("개념 이해가 뛰어남", "개념 이해가 뛰어남") == StrengthCategory.CONCEPT


class TestCategorizeWeaknessPhrase:
    """Test the narrow vocabulary used for test-report phrases."""

    @pytest.mark.parametrize("text", ["개념 이해 부족", "함수 해석 미흡", "연산 순서 혼동", "수업 태도", "문장제 풀이"])
    def test_wide_keywords_do_not_apply(self, text):
        assert categorize_weakness(text, text) == WeaknessCategory.CONCEPT

    def test_misreading_in_context(self):
        assert categorize_weakness("도형 개념 부족", "문제 오독, 도형 개념 부족") == WeaknessCategory.READING

    def test_utilization_only_counts_in_the_phrase(self):
        assert categorize_weakness("도형 개념 부족", "활용, 도형 개념 부족") == WeaknessCategory.CONCEPT


class TestCategorizeText:
    """Test the wide vocabulary used for periodic and consolidated free text."""

    @pytest.mark.parametrize("text,expected", [
        ("연산 순서 혼동", WeaknessCategory.CALCULATION),
        ("문장제 풀이", WeaknessCategory.APPLICATION),
        ("개념 이해 부족", WeaknessCategory.READING),
        ("그래프 해석", WeaknessCategory.READING),
        ("수업 집중력", WeaknessCategory.HABIT),
        ("부주의한 실수", WeaknessCategory.CONCEPT),
        ("도형 개념 부족", WeaknessCategory.CONCEPT),
    ])
    def test_weakness_text(self, text, expected):
        assert categorize_weakness_text(text) == expected

    @pytest.mark.parametrize("text,expected", [
        ("연산이 빠름", StrengthCategory.CALCULATION),
        ("활용 능력", StrengthCategory.APPLICATION),
        ("개념 이해가 뛰어남", StrengthCategory.READING),
        ("새로운 풀이 시도", StrengthCategory.CREATIVITY),
        ("일차함수", StrengthCategory.CONCEPT),
    ])
    def test_strength_text(self, text, expected):
        assert categorize_strength_text(text) == expected

    def test_empty_text(self):
        assert categorize_weakness_text(None) == WeaknessCategory.CONCEPT
        assert categorize_strength_text("") == StrengthCategory.CONCEPT


class TestErrorTypeMapping:
    """Test error-type label mapping."""

    @pytest.mark.parametrize("label,expected", [
        ("계산 오류", WeaknessCategory.CALCULATION),
        ("개념 오류", WeaknessCategory.CONCEPT),
        ("절차 오류", WeaknessCategory.CONCEPT),
        ("문제 오독", WeaknessCategory.READING),
        ("기타/부주의", WeaknessCategory.HABIT),
        ("알 수 없음", WeaknessCategory.CONCEPT),
    ])
    def test_labels(self, label, expected):
        assert map_error_type_to_category(label) == expected
