"""Repository selection by PROFILE_BACKEND."""
from typing import Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.infrastructure.repository import InMemoryProfileRepository, ProfileRepository, RepositoryError
from app.services.matching import ConceptMatcher, build_matcher

logger = get_logger(__name__)


def build_repository(backend: Optional[str] = None, matcher: Optional[ConceptMatcher] = None) -> ProfileRepository:
    """Create the configured profile repository.

    Args:
        backend: ``memory`` or ``redis`` (default from PROFILE_BACKEND env)
        matcher: Matcher used by ``find_similar`` (default from settings)

    Returns:
        ProfileRepository instance

    Raises:
        RepositoryError: If the redis backend is selected but unreachable
        ValueError: If the backend name is unknown
    """
    backend = backend or settings.profile_backend
    matcher = matcher or build_matcher()

    if backend == "memory":
        logger.info("Using in-memory profile repository")
        return InMemoryProfileRepository(matcher=matcher, lock_wait_seconds=settings.student_lock_wait_seconds)

    if backend == "redis":
        from app.infrastructure.redis import RedisProfileRepository, get_redis_client

        client = get_redis_client()
        if client is None:
            raise RepositoryError(f"Redis backend selected but {settings.redis_host}:{settings.redis_port} is unreachable")
        return RedisProfileRepository(client, matcher=matcher)

    raise ValueError(f"Unknown profile backend: {backend}")
