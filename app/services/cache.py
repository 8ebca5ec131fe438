"""In-process TTL caches shared by every external API client."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal

logger = logging.getLogger(__name__)

CacheId = Literal["tmdb", "radarr", "sonarr"]

DEFAULT_TTL = 300


@dataclass(slots=True)
class CacheEntry:
    """A cached value together with the moment it was stored."""

    key: str
    value: Any
    stored_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl


@dataclass(slots=True)
class CacheStats:
    hits: int
    misses: int
    keys: int

    def to_payload(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "keys": self.keys}


class CacheStore:
    """Keyed store with per-entry time-to-live."""

    def __init__(
        self,
        cache_id: str,
        name: str,
        *,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.id = cache_id
        self.name = name
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def now(self) -> float:
        return self._clock()

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key``, evicting it when expired."""

        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self._misses += 1
            logger.debug("[%s] Cache expired: %s", self.name, key)
            return None
        self._hits += 1
        return entry

    def get(self, key: str) -> Any | None:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: float | None = None) -> CacheEntry:
        resolved_ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=resolved_ttl)
        self._entries[key] = entry
        return entry

    def ttl_remaining(self, key: str) -> float | None:
        """Return the seconds left before ``key`` expires, if it is cached."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry.expires_at - self._clock()
        if remaining <= 0:
            del self._entries[key]
            return None
        return remaining

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def flush(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        logger.info("[%s] Flushed %s cache entries", self.name, count)

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, keys=len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


class CacheManager:
    """Registry of the logical cache pools used by the integrations."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._caches: dict[str, CacheStore] = {
            "tmdb": CacheStore(
                "tmdb", "The Movie Database API", default_ttl=21_600, clock=clock
            ),
            "radarr": CacheStore("radarr", "Radarr API", clock=clock),
            "sonarr": CacheStore("sonarr", "Sonarr API", clock=clock),
        }

    def get_cache(self, cache_id: CacheId) -> CacheStore:
        try:
            return self._caches[cache_id]
        except KeyError as exc:
            raise KeyError(f"Unknown cache {cache_id}") from exc

    def get_all_caches(self) -> dict[str, CacheStore]:
        return dict(self._caches)

    def flush_all(self) -> None:
        for cache in self._caches.values():
            cache.flush()


cache_manager = CacheManager()
