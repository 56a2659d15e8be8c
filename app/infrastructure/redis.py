"""Redis-backed profile repository.

Stores profile entries and change events as JSON documents and uses
Redis locks for per-student serialization, so several API workers can
ingest reports safely.

Key layout (``{p}`` is REDIS_KEY_PREFIX):
- ``{p}{attribute}:entries``            hash  id -> entry JSON
- ``{p}{attribute}:student:{sid}``      zset  entry ids scored by id (insertion order)
- ``{p}{attribute}:next_id``            counter
- ``{p}history:events``                 hash  id -> change event JSON
- ``{p}history:student:{sid}``          list  change event ids, oldest first
- ``{p}history:next_id``                counter
- ``{p}lock:student:{sid}``             lock
"""
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import redis
from pydantic import ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.domain.profile import ENTRY_MODELS, AttributeType, ChangeEvent, ProfileEntry
from app.infrastructure.repository import (
    EntryNotFoundError,
    LockUnavailableError,
    ProfileRepository,
    RepositoryError,
    apply_patch,
)
from app.services.matching import ConceptMatcher

logger = get_logger(__name__)

# Redis connection pool (lazy initialization)
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def get_redis_client(
    host: Optional[str] = None,
    port: Optional[int] = None,
    db: Optional[int] = None,
    password: Optional[str] = None,
) -> Optional[redis.Redis]:
    """Get or create Redis client with connection pooling.

    Uses settings from environment variables if not explicitly provided.
    Returns None if Redis is not available.

    Args:
        host: Redis host (default from REDIS_HOST env)
        port: Redis port (default from REDIS_PORT env)
        db: Redis database number (default from REDIS_DB env)
        password: Redis password (default from REDIS_PASSWORD env)

    Returns:
        Redis client instance or None if unavailable
    """
    global _redis_pool, _redis_client

    host = host or settings.redis_host
    port = port or settings.redis_port
    db = db if db is not None else settings.redis_db
    password = password or settings.redis_password

    if _redis_client is None:
        logger.info(f"Initializing Redis connection pool: {host}:{port}")

        try:
            _redis_pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                max_connections=50,
                socket_connect_timeout=5,
                socket_timeout=5,
            )

            _redis_client = redis.Redis(connection_pool=_redis_pool)
            _redis_client.ping()
            logger.info("Redis connection established successfully")

        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            _redis_client = None
            return None
        except redis.RedisError as e:
            logger.error(f"Redis initialization error: {e}", exc_info=True)
            _redis_client = None
            return None

    return _redis_client


class RedisProfileRepository(ProfileRepository):
    """Profile repository on top of a Redis client.

    Example:
        >>> repository = RedisProfileRepository(get_redis_client())
        >>> engine = ProfileEngine(repository)
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        key_prefix: Optional[str] = None,
        matcher: Optional[ConceptMatcher] = None,
        lock_timeout: Optional[float] = None,
        lock_wait: Optional[float] = None,
    ):
        super().__init__(matcher)
        self.redis = redis_client or get_redis_client()
        if self.redis is None:
            raise RepositoryError("Redis is not available")
        self.key_prefix = key_prefix if key_prefix is not None else settings.redis_key_prefix
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.student_lock_timeout_seconds
        self.lock_wait = lock_wait if lock_wait is not None else settings.student_lock_wait_seconds
        self._unit = threading.local()

        logger.info(f"RedisProfileRepository initialized with prefix '{self.key_prefix}'")

    # --- keys -----------------------------------------------------------------

    def _entries_key(self, attribute_type: AttributeType) -> str:
        return f"{self.key_prefix}{attribute_type.value}:entries"

    def _student_key(self, attribute_type: AttributeType, student_id: int) -> str:
        return f"{self.key_prefix}{attribute_type.value}:student:{student_id}"

    def _sequence_key(self, name: str) -> str:
        return f"{self.key_prefix}{name}:next_id"

    def _events_key(self) -> str:
        return f"{self.key_prefix}history:events"

    def _student_events_key(self, student_id: int) -> str:
        return f"{self.key_prefix}history:student:{student_id}"

    def _lock_key(self, student_id: int) -> str:
        return f"{self.key_prefix}lock:student:{student_id}"

    # --- decoding -------------------------------------------------------------

    @staticmethod
    def _load_entry(attribute_type: AttributeType, raw: Optional[str]) -> Optional[ProfileEntry]:
        if raw is None:
            return None
        try:
            return ENTRY_MODELS[attribute_type].model_validate_json(raw)
        except ValidationError as exc:
            raise RepositoryError(f"Corrupt {attribute_type.value} document: {exc}") from exc

    @staticmethod
    def _load_event(raw: Optional[str]) -> Optional[ChangeEvent]:
        if raw is None:
            return None
        try:
            return ChangeEvent.model_validate_json(raw)
        except ValidationError as exc:
            raise RepositoryError(f"Corrupt change event document: {exc}") from exc

    # --- units of work --------------------------------------------------------

    def _write(self, queue: Callable[[redis.client.Pipeline], Any], description: str) -> None:
        """Queue writes on the open unit, or run them in their own transaction."""
        pipe = getattr(self._unit, "pipeline", None)
        if pipe is not None:
            queue(pipe)
            return
        try:
            pipe = self.redis.pipeline(transaction=True)
            queue(pipe)
            pipe.execute()
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to {description}: {exc}") from exc

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Collect writes into one MULTI/EXEC transaction sent on exit.

        Ids are still allocated with INCR as the writes are issued, so a
        discarded unit leaves a gap in the sequence and nothing else.
        """
        if getattr(self._unit, "pipeline", None) is not None:
            yield
            return
        pipe = self.redis.pipeline(transaction=True)
        self._unit.pipeline = pipe
        try:
            yield
        except Exception:
            pipe.reset()
            raise
        finally:
            self._unit.pipeline = None
        try:
            pipe.execute()
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to commit profile changes: {exc}") from exc

    # --- entries --------------------------------------------------------------

    def list_entries(self, student_id: int, attribute_type: AttributeType) -> List[ProfileEntry]:
        attribute_type = AttributeType(attribute_type)
        try:
            ids = self.redis.zrange(self._student_key(attribute_type, student_id), 0, -1)
            if not ids:
                return []
            documents = self.redis.hmget(self._entries_key(attribute_type), ids)
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to list {attribute_type.value} entries: {exc}") from exc
        return [entry for entry in (self._load_entry(attribute_type, raw) for raw in documents) if entry]

    def get_entry(self, attribute_type: AttributeType, entry_id: int) -> Optional[ProfileEntry]:
        attribute_type = AttributeType(attribute_type)
        try:
            raw = self.redis.hget(self._entries_key(attribute_type), str(entry_id))
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to read {attribute_type.value} {entry_id}: {exc}") from exc
        return self._load_entry(attribute_type, raw)

    def _next_id(self, sequence: str) -> int:
        try:
            return int(self.redis.incr(self._sequence_key(sequence)))
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to allocate {sequence} id: {exc}") from exc

    def insert(self, entry: ProfileEntry) -> ProfileEntry:
        attribute_type = entry.attribute_type
        entry_id = self._next_id(attribute_type.value)
        stored = entry.model_copy(update={"id": entry_id})

        def queue(pipe):
            pipe.hset(self._entries_key(attribute_type), str(entry_id), stored.model_dump_json())
            pipe.zadd(self._student_key(attribute_type, entry.student_id), {str(entry_id): entry_id})

        self._write(queue, f"insert {attribute_type.value}")
        logger.debug(f"Inserted {attribute_type.value} {entry_id} for student {entry.student_id}")
        return stored

    def update(self, attribute_type: AttributeType, entry_id: int, patch: Dict[str, Any]) -> ProfileEntry:
        attribute_type = AttributeType(attribute_type)
        current = self.get_entry(attribute_type, entry_id)
        if current is None:
            raise EntryNotFoundError(f"No {attribute_type.value} with id {entry_id}")
        stored = apply_patch(current, patch)
        self._write(
            lambda pipe: pipe.hset(self._entries_key(attribute_type), str(entry_id), stored.model_dump_json()),
            f"update {attribute_type.value} {entry_id}",
        )
        return stored

    # --- history --------------------------------------------------------------

    def append_change_event(self, event: ChangeEvent) -> ChangeEvent:
        event_id = self._next_id("history")
        stored = event.model_copy(update={"id": event_id})

        def queue(pipe):
            pipe.hset(self._events_key(), str(event_id), stored.model_dump_json())
            pipe.rpush(self._student_events_key(event.student_id), str(event_id))

        self._write(queue, "append change event")
        return stored

    def list_change_events(self, student_id: int) -> List[ChangeEvent]:
        try:
            ids = self.redis.lrange(self._student_events_key(student_id), 0, -1)
            if not ids:
                return []
            documents = self.redis.hmget(self._events_key(), ids)
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to list change events: {exc}") from exc
        return [event for event in (self._load_event(raw) for raw in documents) if event]

    def get_change_event(self, event_id: int) -> Optional[ChangeEvent]:
        try:
            raw = self.redis.hget(self._events_key(), str(event_id))
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to read change event {event_id}: {exc}") from exc
        return self._load_event(raw)

    def set_change_event_approval(self, event_id: int, approved: bool) -> ChangeEvent:
        event = self.get_change_event(event_id)
        if event is None:
            raise EntryNotFoundError(f"No change event with id {event_id}")
        stored = event.model_copy(update={"teacher_approved": approved})
        self._write(
            lambda pipe: pipe.hset(self._events_key(), str(event_id), stored.model_dump_json()),
            f"update change event {event_id}",
        )
        return stored

    # --- locking --------------------------------------------------------------

    @contextmanager
    def student_lock(self, student_id: int) -> Iterator[None]:
        lock = self.redis.lock(
            self._lock_key(student_id),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_wait,
        )
        try:
            acquired = lock.acquire()
        except redis.RedisError as exc:
            raise RepositoryError(f"Failed to acquire profile lock of student {student_id}: {exc}") from exc
        if not acquired:
            raise LockUnavailableError(f"Timed out waiting for profile lock of student {student_id}")

        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError:
                logger.warning(f"Profile lock of student {student_id} expired before release")
