"""
Location cache port.

The resolver never touches browser storage or the filesystem directly; it talks to
a `LocationCache` with `get` / `set` / `clear`. Two adapters ship here:
- `MemoryLocationCache` for tests and single-process use,
- `FileLocationCache` backed by `FileCache` for the API and CLI.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from pydantic import ValidationError

from workkar.config.settings import Settings
from workkar.core.cache import FileCache
from workkar.core.env import resolve_project_path
from workkar.core.geo import GeoPoint

logger = logging.getLogger(__name__)

NAMESPACE = "location"


def viewer_key(user_id: str) -> str:
    return f"viewer:{user_id}"


def pending_key(user_id: str | None, token: str | None = None) -> str | None:
    """Signed-in viewers own `pending:{id}`; anonymous ones need their own token, else no slot."""
    if user_id:
        return f"pending:{user_id}"
    if token:
        return f"pending:anonymous:{token}"
    return None


class LocationCache(Protocol):
    def get(self, key: str) -> GeoPoint | None: ...

    def set(self, key: str, point: GeoPoint, ttl_seconds: int | None = None) -> None: ...

    def clear(self, key: str) -> None: ...


class MemoryLocationCache:
    """In-process cache with monotonic-clock expiry."""

    def __init__(self, default_ttl_seconds: int = 600, clock: Callable[[], float] = time.monotonic):
        self._default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[GeoPoint, float]] = {}

    def get(self, key: str) -> GeoPoint | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        point, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return point

    def set(self, key: str, point: GeoPoint, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl_seconds
        self._entries[key] = (point, self._clock() + ttl)

    def clear(self, key: str) -> None:
        self._entries.pop(key, None)


class FileLocationCache:
    """`LocationCache` adapter storing points as JSON via `FileCache`."""

    def __init__(self, cache: FileCache, default_ttl_seconds: int = 600):
        self._cache = cache
        self._default_ttl_seconds = default_ttl_seconds

    def get(self, key: str) -> GeoPoint | None:
        raw = self._cache.get(NAMESPACE, key)
        if not isinstance(raw, dict):
            return None
        try:
            return GeoPoint.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding corrupt cached location for %s", key)
            self._cache.delete(NAMESPACE, key)
            return None

    def set(self, key: str, point: GeoPoint, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl_seconds
        self._cache.set(NAMESPACE, key, point.model_dump(mode="json"), ttl_seconds=ttl)

    def clear(self, key: str) -> None:
        self._cache.delete(NAMESPACE, key)


def build_file_cache(settings: Settings) -> FileCache:
    return FileCache(
        resolve_project_path(settings.cache.dir),
        enabled=settings.cache.enabled,
        default_ttl_seconds=settings.cache.default_ttl_seconds,
    )


def build_location_cache(settings: Settings, file_cache: FileCache | None = None) -> LocationCache:
    """Build the configured location cache adapter."""
    ttl = settings.location_cache.pending_ttl_seconds
    if settings.location_cache.backend == "memory":
        return MemoryLocationCache(default_ttl_seconds=ttl)
    return FileLocationCache(file_cache or build_file_cache(settings), default_ttl_seconds=ttl)
