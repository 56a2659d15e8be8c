"""Tests for the Redis-backed repository using a mocked client."""
import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import redis

from app.domain.profile import AttributeType, ChangeEvent, ChangeType, Weakness
from app.infrastructure.redis import RedisProfileRepository
from app.infrastructure.repository import (
    EntryNotFoundError,
    LockUnavailableError,
    RepositoryError,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _weakness(**overrides):
    fields = dict(
        student_id=7, concept="확률", severity=3,
        first_detected_at=NOW, last_detected_at=NOW, related_report_ids=[100],
    )
    fields.update(overrides)
    return Weakness(**fields)


@pytest.fixture
def redis_repository(mock_redis_client):
    return RedisProfileRepository(mock_redis_client, key_prefix="profile:", lock_timeout=30, lock_wait=2)


class TestEntries:
    """Test entry storage."""

    def test_insert_assigns_id_and_indexes_student(self, redis_repository, mock_redis_client):
        mock_redis_client.incr.return_value = 3
        pipe = mock_redis_client.pipeline.return_value

        stored = redis_repository.insert(_weakness())

        assert stored.id == 3
        mock_redis_client.incr.assert_called_once_with("profile:weakness:next_id")
        key, field, document = pipe.hset.call_args[0]
        assert (key, field) == ("profile:weakness:entries", "3")
        assert json.loads(document)["concept"] == "확률"
        pipe.zadd.assert_called_once_with("profile:weakness:student:7", {"3": 3})
        pipe.execute.assert_called_once()

    def test_list_entries(self, redis_repository, mock_redis_client):
        mock_redis_client.zrange.return_value = ["1", "2"]
        mock_redis_client.hmget.return_value = [
            _weakness(id=1).model_dump_json(),
            _weakness(id=2, concept="일차함수").model_dump_json(),
        ]

        entries = redis_repository.list_entries(7, AttributeType.WEAKNESS)

        assert [entry.concept for entry in entries] == ["확률", "일차함수"]
        mock_redis_client.zrange.assert_called_once_with("profile:weakness:student:7", 0, -1)

    def test_list_entries_empty(self, redis_repository, mock_redis_client):
        mock_redis_client.zrange.return_value = []

        assert redis_repository.list_entries(7, AttributeType.STRENGTH) == []
        mock_redis_client.hmget.assert_not_called()

    def test_update_applies_patch(self, redis_repository, mock_redis_client):
        mock_redis_client.hget.return_value = _weakness(id=1).model_dump_json()
        pipe = mock_redis_client.pipeline.return_value

        stored = redis_repository.update(AttributeType.WEAKNESS, 1, {"severity": 5, "occurrence_count": 2})

        assert stored.id == 1
        assert stored.severity == 5
        key, field, document = pipe.hset.call_args[0]
        assert (key, field) == ("profile:weakness:entries", "1")
        assert json.loads(document)["occurrence_count"] == 2
        pipe.execute.assert_called_once()

    def test_invalid_patch_is_repository_error(self, redis_repository, mock_redis_client):
        mock_redis_client.hget.return_value = _weakness(id=1).model_dump_json()

        with pytest.raises(RepositoryError):
            redis_repository.update(AttributeType.WEAKNESS, 1, {"severity": 9})

        mock_redis_client.pipeline.return_value.execute.assert_not_called()

    def test_update_missing_entry(self, redis_repository, mock_redis_client):
        mock_redis_client.hget.return_value = None

        with pytest.raises(EntryNotFoundError):
            redis_repository.update(AttributeType.WEAKNESS, 1, {"severity": 5})

    def test_redis_errors_become_repository_errors(self, redis_repository, mock_redis_client):
        mock_redis_client.incr.side_effect = redis.ConnectionError("down")

        with pytest.raises(RepositoryError):
            redis_repository.insert(_weakness())

    def test_corrupt_document(self, redis_repository, mock_redis_client):
        mock_redis_client.hget.return_value = "{not json"

        with pytest.raises(RepositoryError):
            redis_repository.get_entry(AttributeType.WEAKNESS, 1)


class TestChangeEvents:
    """Test change event storage."""

    def test_append(self, redis_repository, mock_redis_client):
        mock_redis_client.incr.return_value = 11
        pipe = mock_redis_client.pipeline.return_value
        event = ChangeEvent(
            student_id=7, report_id=100, change_type=ChangeType.WEAKNESS_ADDED,
            attribute_type=AttributeType.WEAKNESS, attribute_id=1,
            new_state=_weakness(id=1).snapshot(), created_at=NOW,
        )

        stored = redis_repository.append_change_event(event)

        assert stored.id == 11
        pipe.rpush.assert_called_once_with("profile:history:student:7", "11")

    def test_approval_of_missing_event(self, redis_repository, mock_redis_client):
        mock_redis_client.hget.return_value = None

        with pytest.raises(EntryNotFoundError):
            redis_repository.set_change_event_approval(5, True)


class TestStudentLock:
    """Test the Redis-backed per-student lock."""

    def test_acquire_and_release(self, redis_repository, mock_redis_client):
        lock = mock_redis_client.lock.return_value
        lock.acquire.return_value = True

        with redis_repository.student_lock(7):
            lock.release.assert_not_called()

        mock_redis_client.lock.assert_called_once_with(
            "profile:lock:student:7", timeout=30, blocking_timeout=2,
        )
        lock.release.assert_called_once()

    def test_not_acquired(self, redis_repository, mock_redis_client):
        mock_redis_client.lock.return_value.acquire.return_value = False

        with pytest.raises(LockUnavailableError):
            with redis_repository.student_lock(7):
                pass

    def test_expired_lock_on_release_is_tolerated(self, redis_repository, mock_redis_client):
        lock = mock_redis_client.lock.return_value
        lock.acquire.return_value = True
        lock.release.side_effect = redis.exceptions.LockError("expired")

        with redis_repository.student_lock(7):
            pass


class TestUnitOfWork:
    """Test grouping writes into one Redis transaction."""

    def _event(self):
        return ChangeEvent(
            student_id=7, report_id=100, change_type=ChangeType.WEAKNESS_ADDED,
            attribute_type=AttributeType.WEAKNESS, attribute_id=1,
            new_state=_weakness(id=1).snapshot(), created_at=NOW,
        )

    def test_writes_share_one_transaction(self, redis_repository, mock_redis_client):
        mock_redis_client.incr.side_effect = [1, 1]
        pipe = mock_redis_client.pipeline.return_value

        with redis_repository.atomic():
            redis_repository.insert(_weakness())
            redis_repository.append_change_event(self._event())
            pipe.execute.assert_not_called()

        mock_redis_client.pipeline.assert_called_once_with(transaction=True)
        assert pipe.hset.call_count == 2
        pipe.rpush.assert_called_once_with("profile:history:student:7", "1")
        pipe.execute.assert_called_once()

    def test_failure_discards_queued_writes(self, redis_repository, mock_redis_client):
        mock_redis_client.incr.side_effect = [1, redis.ConnectionError("down")]
        pipe = mock_redis_client.pipeline.return_value

        with pytest.raises(RepositoryError):
            with redis_repository.atomic():
                redis_repository.insert(_weakness())
                redis_repository.append_change_event(self._event())

        pipe.reset.assert_called_once()
        pipe.execute.assert_not_called()

    def test_commit_error_is_repository_error(self, redis_repository, mock_redis_client):
        mock_redis_client.incr.return_value = 1
        mock_redis_client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")

        with pytest.raises(RepositoryError):
            with redis_repository.atomic():
                redis_repository.insert(_weakness())


def test_unavailable_redis():
    with patch("app.infrastructure.redis.get_redis_client", return_value=None):
        with pytest.raises(RepositoryError):
            RedisProfileRepository()


def _redis_engine(mock_redis_client, clock):
    from app.services.matching import ConceptMatcher
    from app.services.profile_engine import ProfileEngine

    mock_redis_client.zrange.return_value = []
    mock_redis_client.lock.return_value.acquire.return_value = True
    repository = RedisProfileRepository(mock_redis_client, key_prefix="profile:")
    return ProfileEngine(repository, matcher=ConceptMatcher(), clock=clock)


def test_engine_over_redis_repository(mock_redis_client, clock):
    """Each candidate's entry and change event go out in one transaction."""
    mock_redis_client.incr.return_value = 1
    engine = _redis_engine(mock_redis_client, clock)

    result = engine.ingest(7, 100, "test", {"macroAnalysis": {"weaknesses": "확률"}})

    assert result.success is True
    assert result.created == 1
    pipe = mock_redis_client.pipeline.return_value
    assert pipe.execute.call_count == 1
    assert [call.args[0] for call in pipe.hset.call_args_list] == ["profile:weakness:entries", "profile:history:events"]


def test_engine_over_redis_history_failure(mock_redis_client, clock):
    """A failed history write sends nothing for that candidate."""
    mock_redis_client.incr.side_effect = [1, redis.ConnectionError("down")]
    engine = _redis_engine(mock_redis_client, clock)

    result = engine.ingest(7, 100, "test", {"macroAnalysis": {"weaknesses": "확률"}})

    assert (result.created, result.failed) == (0, 1)
    pipe = mock_redis_client.pipeline.return_value
    pipe.reset.assert_called_once()
    pipe.execute.assert_not_called()
