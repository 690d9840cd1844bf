"""Cache tool - outcome-aware result cache with bounded memory."""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable

from pydantic import BaseModel

from ..config.loader import CacheConfig
from ..models.cache_entry import CacheEntry, CacheStats, MemoryUsage, ResultClass

logger = logging.getLogger(__name__)

# Entries are evicted before the estimated footprint crosses this share of the budget
HIGH_WATER_MARK = 0.9


def _estimate_size(key: str, value: Any) -> int:
    if isinstance(value, BaseModel):
        payload = value.model_dump_json()
    else:
        payload = repr(value)
    return len(key) + len(payload.encode("utf-8"))


class ResultCache:
    """
    Keyed store of prior validation/discovery outcomes.
    TTL depends on the outcome class. Expired entries read as misses.
    Never raises: faults are logged and treated as a miss.
    """

    def __init__(self, config: CacheConfig | None = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._total_size = 0
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(url: str, purpose: str) -> str:
        return f"{purpose}:{url}"

    def ttl_for(self, result_class: ResultClass) -> float:
        if result_class is ResultClass.SUCCESS:
            return self.config.success_ttl_seconds
        if result_class is ResultClass.DISCOVERY:
            return self.config.discovery_ttl_seconds
        return self.config.failure_ttl_seconds

    def get(self, key: str) -> Any | None:
        try:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                self._remove(key)
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value
        except Exception:
            logger.exception("Cache read failed for %s; treating as miss", key)
            return None

    def set(self, key: str, value: Any, result_class: ResultClass) -> bool:
        """Store value. Returns False if it could not be stored."""
        try:
            size = _estimate_size(key, value)
            budget = int(self.config.max_memory_bytes * HIGH_WATER_MARK)
            if size > budget:
                logger.warning("Cache entry %s too large (%d bytes); not cached", key, size)
                return False
            if key in self._entries:
                self._remove(key)
            self._make_room(size, budget)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl_seconds=self.ttl_for(result_class),
                result_class=result_class,
                size_bytes=size,
            )
            self._total_size += size
            return True
        except Exception:
            logger.exception("Cache write failed for %s", key)
            return False

    def _make_room(self, size: int, budget: int) -> None:
        if self._total_size + size <= budget and len(self._entries) < self.config.max_entries:
            return
        self.cleanup()
        while self._entries and (
            self._total_size + size > budget or len(self._entries) >= self.config.max_entries
        ):
            oldest_key = next(iter(self._entries))
            logger.debug("Evicting least recently used cache entry %s", oldest_key)
            self._remove(oldest_key)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total_size -= entry.size_bytes

    def delete(self, key: str) -> bool:
        try:
            existed = key in self._entries
            self._remove(key)
            return existed
        except Exception:
            logger.exception("Cache delete failed for %s", key)
            return False

    def delete_matching(self, fragment: str) -> int:
        """Remove every entry whose key contains fragment."""
        keys = [k for k in self._entries if fragment in k]
        for key in keys:
            self._remove(key)
        return len(keys)

    def cleanup(self) -> int:
        """Purge expired entries. Returns the number removed."""
        try:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                self._remove(key)
            if expired:
                logger.debug("Cache cleanup removed %d expired entries", len(expired))
            return len(expired)
        except Exception:
            logger.exception("Cache cleanup failed")
            return 0

    def clear(self) -> None:
        self._entries.clear()
        self._total_size = 0
        self._hits = 0
        self._misses = 0

    def get_stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        distribution = {rc.value: 0 for rc in ResultClass}
        for entry in self._entries.values():
            distribution[entry.result_class.value] += 1
        max_bytes = self.config.max_memory_bytes
        return CacheStats(
            total_entries=len(self._entries),
            total_size=self._total_size,
            hit_count=self._hits,
            miss_count=self._misses,
            hit_rate=self._hits / lookups if lookups else 0.0,
            memory_usage=MemoryUsage(
                used_bytes=self._total_size,
                max_bytes=max_bytes,
                percentage=round(self._total_size / max_bytes * 100, 2),
            ),
            ttl_distribution=distribution,
        )

    def __len__(self) -> int:
        return len(self._entries)
