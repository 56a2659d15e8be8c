"""Profile repository interface and the in-memory backend.

The repository owns persistence of profile entries and change events.
It also hands out the per-student lock that serializes ingestions: a
match-then-write sequence is only safe while the student's lock is held.
"""
import threading
import weakref
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional

from pydantic import ValidationError

from app.core.logging import get_logger
from app.domain.profile import (
    ENTRY_MODELS,
    AttributeType,
    ChangeEvent,
    Pattern,
    PatternStatus,
    ProfileEntry,
    Strength,
    StrengthStatus,
    Weakness,
    WeaknessStatus,
)
from app.services.matching import ConceptMatcher

logger = get_logger(__name__)

ACTIVE_WEAKNESS_STATUSES = (WeaknessStatus.ACTIVE, WeaknessStatus.RECURRING)


class RepositoryError(Exception):
    """A create, update or append against the store failed."""


class LockUnavailableError(RepositoryError):
    """The per-student lock could not be acquired in time."""


class EntryNotFoundError(RepositoryError):
    """No entry (or change event) with the requested id exists."""


class StudentLockRegistry:
    """In-process per-student reentrant locks.

    Locks are created on demand and dropped once nobody holds a
    reference, so idle students cost nothing.
    """

    def __init__(self, wait_seconds: Optional[float] = None):
        self.wait_seconds = wait_seconds
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._registry_lock = threading.Lock()

    def _lock_for(self, student_id: int) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(student_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[student_id] = lock
            return lock

    @contextmanager
    def hold(self, student_id: int) -> Iterator[None]:
        lock = self._lock_for(student_id)
        timeout = self.wait_seconds if self.wait_seconds is not None else -1
        if not lock.acquire(timeout=timeout):
            raise LockUnavailableError(f"Timed out waiting for profile lock of student {student_id}")
        try:
            yield
        finally:
            lock.release()


class ProfileRepository(ABC):
    """Storage collaborator for weaknesses, strengths, patterns and history.

    Entry ids are unique per attribute type. ``list_entries`` returns
    entries in insertion order, which is the order the matcher scans.
    """

    def __init__(self, matcher: Optional[ConceptMatcher] = None):
        self.matcher = matcher or ConceptMatcher()

    # --- storage primitives -------------------------------------------------

    @abstractmethod
    def list_entries(self, student_id: int, attribute_type: AttributeType) -> List[ProfileEntry]:
        ...

    @abstractmethod
    def get_entry(self, attribute_type: AttributeType, entry_id: int) -> Optional[ProfileEntry]:
        ...

    @abstractmethod
    def insert(self, entry: ProfileEntry) -> ProfileEntry:
        """Store a new entry and return it with its assigned id."""

    @abstractmethod
    def update(self, attribute_type: AttributeType, entry_id: int, patch: Dict[str, Any]) -> ProfileEntry:
        """Apply a field patch and return the stored entry."""

    @abstractmethod
    def append_change_event(self, event: ChangeEvent) -> ChangeEvent:
        """Append a change event and return it with its assigned id."""

    @abstractmethod
    def list_change_events(self, student_id: int) -> List[ChangeEvent]:
        """Change events for a student, oldest first."""

    @abstractmethod
    def get_change_event(self, event_id: int) -> Optional[ChangeEvent]:
        ...

    @abstractmethod
    def set_change_event_approval(self, event_id: int, approved: bool) -> ChangeEvent:
        ...

    @abstractmethod
    def student_lock(self, student_id: int) -> ContextManager[None]:
        """Context manager serializing all profile writes for one student."""

    @abstractmethod
    def atomic(self) -> ContextManager[None]:
        """Context manager grouping writes into one unit.

        Inserts, updates and change-event appends issued inside the block
        are kept together: when the block raises, none of them remain
        stored. Nested blocks join the outermost unit.
        """

    # --- queries built on the primitives -------------------------------------

    def find_similar(self, student_id: int, attribute_type: AttributeType, text: str) -> Optional[ProfileEntry]:
        """First stored entry the matcher considers the same as ``text``."""
        return self.matcher.match_text(text, attribute_type, self.list_entries(student_id, attribute_type))

    def get_active_weaknesses(self, student_id: int) -> List[Weakness]:
        entries = [
            entry for entry in self.list_entries(student_id, AttributeType.WEAKNESS)
            if entry.status in ACTIVE_WEAKNESS_STATUSES
        ]
        return sorted(entries, key=lambda entry: entry.rank_key, reverse=True)

    def get_active_strengths(self, student_id: int) -> List[Strength]:
        entries = [
            entry for entry in self.list_entries(student_id, AttributeType.STRENGTH)
            if entry.status == StrengthStatus.ACTIVE
        ]
        return sorted(entries, key=lambda entry: entry.rank_key, reverse=True)

    def get_active_patterns(self, student_id: int) -> List[Pattern]:
        entries = [
            entry for entry in self.list_entries(student_id, AttributeType.PATTERN)
            if entry.status == PatternStatus.ACTIVE
        ]
        return sorted(entries, key=lambda entry: entry.rank_key, reverse=True)

    def mark_weakness_resolved(
        self,
        weakness_id: int,
        report_id: Optional[int] = None,
        now: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> Weakness:
        """Set a weakness to ``resolved``.

        This is a teacher capability; the extraction engine never calls it.
        """
        now = now or datetime.now(timezone.utc)
        patch: Dict[str, Any] = {
            "status": WeaknessStatus.RESOLVED,
            "resolved_at": now,
            "resolved_report_id": report_id,
            "updated_at": now,
        }
        if note:
            patch["teacher_note"] = note
        return self.update(AttributeType.WEAKNESS, weakness_id, patch)


def apply_patch(entry: ProfileEntry, patch: Dict[str, Any]) -> ProfileEntry:
    """Return a validated copy of ``entry`` with ``patch`` applied.

    Raises:
        RepositoryError: If the patched entry fails validation
    """
    model = type(entry)
    try:
        return model.model_validate({**entry.model_dump(), **patch, "id": entry.id})
    except ValidationError as exc:
        raise RepositoryError(f"Invalid patch for {entry.attribute_type.value} {entry.id}: {exc}") from exc


class InMemoryProfileRepository(ProfileRepository):
    """Process-local repository for development and tests.

    An ``atomic`` block records an undo action for each write; the
    actions run in reverse when the block raises.
    """

    def __init__(self, matcher: Optional[ConceptMatcher] = None, lock_wait_seconds: Optional[float] = None):
        super().__init__(matcher)
        self._entries: Dict[AttributeType, Dict[int, ProfileEntry]] = {kind: {} for kind in ENTRY_MODELS}
        self._events: Dict[int, ChangeEvent] = {}
        self._next_ids: Dict[str, int] = {}
        self._write_lock = threading.Lock()
        self._student_locks = StudentLockRegistry(wait_seconds=lock_wait_seconds)
        self._unit = threading.local()

    def _allocate_id(self, sequence: str) -> int:
        self._next_ids[sequence] = self._next_ids.get(sequence, 0) + 1
        return self._next_ids[sequence]

    def _journal(self, undo: Callable[[], Any]) -> None:
        actions = getattr(self._unit, "undo", None)
        if actions is not None:
            actions.append(undo)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._unit, "undo", None) is not None:
            yield
            return
        self._unit.undo = []
        try:
            yield
        except Exception:
            with self._write_lock:
                for undo in reversed(self._unit.undo):
                    undo()
            logger.debug(f"Rolled back {len(self._unit.undo)} profile write(s)")
            raise
        finally:
            self._unit.undo = None

    def list_entries(self, student_id: int, attribute_type: AttributeType) -> List[ProfileEntry]:
        with self._write_lock:
            entries = list(self._entries[AttributeType(attribute_type)].values())
        return [entry.model_copy(deep=True) for entry in entries if entry.student_id == student_id]

    def get_entry(self, attribute_type: AttributeType, entry_id: int) -> Optional[ProfileEntry]:
        with self._write_lock:
            entry = self._entries[AttributeType(attribute_type)].get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    def insert(self, entry: ProfileEntry) -> ProfileEntry:
        entries = self._entries[entry.attribute_type]
        with self._write_lock:
            stored = entry.model_copy(update={"id": self._allocate_id(entry.attribute_type.value)}, deep=True)
            entries[stored.id] = stored
            self._journal(lambda: entries.pop(stored.id, None))
        logger.debug(f"Inserted {stored.attribute_type.value} {stored.id} for student {stored.student_id}")
        return stored.model_copy(deep=True)

    def update(self, attribute_type: AttributeType, entry_id: int, patch: Dict[str, Any]) -> ProfileEntry:
        entries = self._entries[AttributeType(attribute_type)]
        with self._write_lock:
            current = entries.get(entry_id)
            if current is None:
                raise EntryNotFoundError(f"No {AttributeType(attribute_type).value} with id {entry_id}")
            stored = apply_patch(current, patch)
            entries[entry_id] = stored
            self._journal(lambda: entries.__setitem__(entry_id, current))
        return stored.model_copy(deep=True)

    def append_change_event(self, event: ChangeEvent) -> ChangeEvent:
        with self._write_lock:
            stored = event.model_copy(update={"id": self._allocate_id("history")})
            self._events[stored.id] = stored
            self._journal(lambda: self._events.pop(stored.id, None))
        return stored

    def list_change_events(self, student_id: int) -> List[ChangeEvent]:
        with self._write_lock:
            events = list(self._events.values())
        return [event for event in events if event.student_id == student_id]

    def get_change_event(self, event_id: int) -> Optional[ChangeEvent]:
        with self._write_lock:
            return self._events.get(event_id)

    def set_change_event_approval(self, event_id: int, approved: bool) -> ChangeEvent:
        with self._write_lock:
            event = self._events.get(event_id)
            if event is None:
                raise EntryNotFoundError(f"No change event with id {event_id}")
            stored = event.model_copy(update={"teacher_approved": approved})
            self._events[event_id] = stored
            self._journal(lambda: self._events.__setitem__(event_id, event))
        return stored

    def student_lock(self, student_id: int) -> ContextManager[None]:
        return self._student_locks.hold(student_id)
