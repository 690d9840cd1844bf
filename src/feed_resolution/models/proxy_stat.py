"""Relay reliability statistics."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ProxyStat(BaseModel):
    """Per-relay reliability record. Mutated after every relay attempt."""

    name: str
    total_requests: int = Field(0, ge=0)
    successes: int = Field(0, ge=0)
    failures: int = Field(0, ge=0)
    avg_response_time_ms: float = Field(0.0, ge=0)
    consecutive_failures: int = Field(0, ge=0)
    last_used: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    health_score: float = Field(1.0, ge=0.0, le=1.0)
    healthy: bool = True

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 1.0
        return self.successes / self.total_requests


class OverallProxyStats(BaseModel):
    """Aggregate statistics across every relay."""

    total_proxies: int = 0
    healthy_proxies: int = 0
    total_requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    average_response_time_ms: float = 0.0
