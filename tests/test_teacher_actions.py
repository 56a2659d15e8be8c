"""Tests for teacher-initiated profile actions."""
from unittest.mock import patch

import pytest

from app.domain.profile import AttributeType, ChangedBy, ChangeType, WeaknessStatus
from app.infrastructure.repository import EntryNotFoundError, RepositoryError
from app.services.teacher_actions import approve_change, resolve_weakness


@pytest.fixture
def weakness(engine, repository):
    engine.ingest(7, 100, "test", {"macroAnalysis": {"weaknesses": "확률"}})
    return repository.list_entries(7, AttributeType.WEAKNESS)[0]


class TestResolveWeakness:
    """Test resolving a weakness."""

    def test_sets_resolved_state_and_logs_event(self, repository, weakness, clock):
        stored = resolve_weakness(repository, 7, weakness.id, report_id=105, note="retest passed", now=clock())

        assert stored.status == WeaknessStatus.RESOLVED
        assert stored.resolved_at == clock()
        assert stored.resolved_report_id == 105
        assert stored.teacher_note == "retest passed"

        event = repository.list_change_events(7)[-1]
        assert event.change_type == ChangeType.WEAKNESS_RESOLVED
        assert event.changed_by == ChangedBy.TEACHER
        assert event.teacher_approved is True
        assert event.previous_state["status"] == "active"
        assert event.new_state["status"] == "resolved"

    def test_already_resolved_is_a_no_op(self, repository, weakness):
        resolve_weakness(repository, 7, weakness.id)
        event_count = len(repository.list_change_events(7))

        resolve_weakness(repository, 7, weakness.id)

        assert len(repository.list_change_events(7)) == event_count

    def test_unknown_weakness(self, repository):
        with pytest.raises(EntryNotFoundError):
            resolve_weakness(repository, 7, 999)

    def test_other_students_weakness(self, repository, weakness):
        with pytest.raises(EntryNotFoundError):
            resolve_weakness(repository, 8, weakness.id)


class TestApproveChange:
    """Test approving AI-generated change events."""

    def test_approve(self, repository, weakness):
        event = repository.list_change_events(7)[0]
        assert event.teacher_approved is False

        approved = approve_change(repository, event.id)

        assert approved.teacher_approved is True
        assert repository.get_change_event(event.id).teacher_approved is True

    def test_unknown_event(self, repository):
        with pytest.raises(EntryNotFoundError):
            approve_change(repository, 999)


class TestResolveAtomicity:
    """Test that a resolve and its change event are stored together."""

    def test_failed_event_leaves_weakness_active(self, repository, weakness):
        event_count = len(repository.list_change_events(7))

        with patch.object(repository, "append_change_event", side_effect=RepositoryError("history unavailable")):
            with pytest.raises(RepositoryError):
                resolve_weakness(repository, 7, weakness.id, report_id=105, note="retest passed")

        stored = repository.get_entry(AttributeType.WEAKNESS, weakness.id)
        assert stored.status == WeaknessStatus.ACTIVE
        assert stored.resolved_at is None
        assert stored.teacher_note is None
        assert len(repository.list_change_events(7)) == event_count
