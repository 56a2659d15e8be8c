"""Pytest configuration and shared fixtures."""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PROFILE_BACKEND", "memory")

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import Mock
from fastapi.testclient import TestClient

from app.infrastructure.repository import InMemoryProfileRepository
from app.services.matching import ConceptMatcher
from app.services.profile_engine import ProfileEngine


class FixedClock:
    """Deterministic clock; each call can be advanced manually."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock fixed at 2026-03-02 09:00 UTC."""
    return FixedClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository():
    """Fresh in-memory repository with the default matcher."""
    return InMemoryProfileRepository(matcher=ConceptMatcher(), lock_wait_seconds=5)


@pytest.fixture
def engine(repository, clock):
    """Profile engine over the in-memory repository."""
    return ProfileEngine(repository, matcher=ConceptMatcher(), clock=clock)


@pytest.fixture
def test_payload():
    """Test analysis payload covering every section."""
    return {
        "macroAnalysis": {
            "summary": "전반적으로 양호하나 계산 실수가 있음",
            "strengths": "도형의 성질 이해",
            "weaknesses": "계산 실수가 잦음, 도형 개념 부족",
            "errorPattern": "부호 처리에서 실수가 반복됨",
            "mathCapability": {
                "calculationSpeed": 85,
                "calculationAccuracy": 65,
                "applicationAbility": 92,
                "logic": 70,
                "anxietyControl": 40,
            },
        },
        "detailedAnalysis": [
            {"problemNumber": 1, "keyConcept": "분수의 덧셈", "isCorrect": "X", "errorType": "계산 오류"},
            {"problemNumber": 2, "keyConcept": "일차방정식", "isCorrect": "△", "errorType": "계산 오류"},
            {"problemNumber": 3, "keyConcept": "삼각형의 넓이", "isCorrect": "O", "solutionStrategy": "최적 풀이"},
            {"problemNumber": 4, "keyConcept": "삼각형의 넓이", "isCorrect": "O", "solutionStrategy": "최적 풀이"},
            {"problemNumber": 5, "keyConcept": "비례식", "isCorrect": "O", "solutionStrategy": "창의적 접근"},
            {"problemNumber": 6, "keyConcept": "확률", "isCorrect": "X", "errorType": "개념 오류"},
        ],
        "actionablePrescription": [
            {"priority": 1, "type": "개념 교정", "title": "분수 개념 재정리"},
            {"priority": 2, "type": "습관 교정", "title": "검산하는 습관 들이기"},
        ],
        "riskFactors": [
            {"factor": "시간 부족으로 후반부 미응답", "severity": "high"},
        ],
        "learningHabits": [
            {"type": "good", "description": "풀이 과정을 꼼꼼히 기록함", "frequency": "always"},
            {"type": "bad", "description": "문제를 끝까지 읽지 않음", "frequency": "often"},
        ],
    }


@pytest.fixture
def monthly_payload():
    """Monthly report payload."""
    return {
        "learningContent": [
            {"topic": "일차함수", "evaluation": "excellent"},
            {"topic": "연립방정식", "evaluation": "not_good"},
            {"topic": "부등식", "evaluation": "good"},
        ],
        "whatWentWell": ["계산 속도가 빨라짐"],
        "needsImprovement": ["응용 문제 풀이"],
        "reviewProblems": [
            {"concept": "연립방정식", "source": "교재", "page": 12, "number": 3},
            {"concept": "연립방정식", "source": "교재", "page": 13, "number": 1},
            {"concept": "연립방정식", "source": "교재", "page": 14, "number": 2},
            {"concept": "일차함수", "source": "교재", "page": 20, "number": 5},
        ],
    }


@pytest.fixture
def weekly_payload():
    """Weekly report payload."""
    return {
        "learningContent": [
            {"topic": "피타고라스 정리", "evaluation": "excellent"},
            {"topic": "원의 넓이", "evaluation": "not_good"},
        ],
        "achievements": ["숙제를 모두 완료함"],
        "improvements": ["문제 해석 연습"],
        "reviewProblems": [
            {"concept": "원의 넓이", "number": 1},
            {"concept": "원의 넓이", "number": 2},
            {"concept": "부채꼴", "number": 3},
        ],
    }


@pytest.fixture
def consolidated_payload():
    """Consolidated teacher-curated review payload."""
    return {
        "consolidatedQualitative": {
            "macroAnalysis": {
                "strengths": "논리적 서술, 그래프 해석",
                "weaknesses": "계산 실수가 잦음",
            },
            "actionablePrescription": [
                {"priority": 3, "type": "개념 교정", "title": "함수 개념 보강"},
            ],
        }
    }


@pytest.fixture
def mock_redis_client():
    """Mock Redis client; individual tests configure return values."""
    client = Mock()
    client.ping.return_value = True
    return client


@pytest.fixture
def test_client(repository):
    """FastAPI test client bound to the in-memory repository."""
    from main import app
    from app.api.routes import get_repository

    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()
