"""Result cache records."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ResultClass(str, Enum):
    """Outcome class; decides the entry's TTL."""

    SUCCESS = "success"
    FAILURE = "failure"
    DISCOVERY = "discovery"


class CacheEntry(BaseModel):
    """A cached outcome. Treated as absent once created_at + ttl_seconds has passed."""

    key: str
    value: Any
    created_at: float
    ttl_seconds: float = Field(..., gt=0)
    result_class: ResultClass
    size_bytes: int = Field(0, ge=0)

    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at()


class MemoryUsage(BaseModel):
    used_bytes: int = 0
    max_bytes: int = 0
    percentage: float = 0.0


class CacheStats(BaseModel):
    """Snapshot of cache health."""

    total_entries: int = 0
    total_size: int = 0
    hit_count: int = 0
    miss_count: int = 0
    hit_rate: float = 0.0
    memory_usage: MemoryUsage = Field(default_factory=MemoryUsage)
    ttl_distribution: dict[str, int] = Field(
        default_factory=lambda: {rc.value: 0 for rc in ResultClass}
    )
