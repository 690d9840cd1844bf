"""Relay tool - fetch a resource through third-party relays with failover."""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from ..config.loader import RelayConfig, RelayEndpoint
from ..errors import (
    AllRelaysFailedError,
    ErrorKind,
    FeedResolutionError,
    FetchError,
    NoRelaysAvailableError,
)
from ..models.proxy_stat import OverallProxyStats, ProxyStat
from .fetch_tool import fetch_tool

logger = logging.getLogger(__name__)


@dataclass
class RelayAttempt:
    """One relay tried during a failover pass."""

    relay: str
    success: bool
    duration_ms: float
    error: FeedResolutionError | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RelayResult:
    content: str
    relay_used: str
    attempts: list[RelayAttempt] = field(default_factory=list)
    accepted: Any = None


class RelayManager:
    """
    Sends requests through an ordered list of relays until one succeeds.
    Tracks per-relay reliability; statistics survive relay reconfiguration.
    """

    def __init__(self, client: httpx.AsyncClient, config: RelayConfig | None = None):
        self.client = client
        self.config = config or RelayConfig()
        self._relays: tuple[RelayEndpoint, ...] = tuple(self.config.endpoints)
        self._stats: dict[str, ProxyStat] = {}
        for relay in self._relays:
            self._stats[relay.name] = ProxyStat(name=relay.name)

    def configure_relays(self, endpoints: list[RelayEndpoint]) -> None:
        """Swap the relay list. Runs already in progress keep the old list."""
        self._relays = tuple(endpoints)
        for relay in self._relays:
            self._stats.setdefault(relay.name, ProxyStat(name=relay.name))

    def get_relay(self, name: str) -> RelayEndpoint | None:
        return next((r for r in self._relays if r.name == name), None)

    def get_available_proxies(self) -> list[RelayEndpoint]:
        """Enabled, healthy relays: best health first, then configured priority."""
        available = [r for r in self._relays if r.enabled and self._is_usable(self._stats[r.name])]
        if self.config.reorder_by_success:
            return sorted(available, key=lambda r: (-self._stats[r.name].health_score, r.priority))
        return sorted(available, key=lambda r: r.priority)

    def _is_usable(self, stat: ProxyStat) -> bool:
        if stat.healthy:
            return True
        # Unhealthy relays get another chance once the recovery window has passed
        if stat.last_failure is None:
            return False
        elapsed = (datetime.now(timezone.utc) - stat.last_failure).total_seconds()
        return elapsed >= self.config.recovery_seconds

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        relay = self.get_relay(name)
        if relay is None:
            return False
        self._relays = tuple(
            r.model_copy(update={"enabled": enabled}) if r.name == name else r
            for r in self._relays
        )
        return True

    def enable_proxy(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable_proxy(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def mark_proxy_status(self, name: str, healthy: bool) -> None:
        """Manually mark a relay healthy or unhealthy."""
        stat = self._stats.get(name)
        if stat is None:
            return
        stat.healthy = healthy
        if healthy:
            stat.consecutive_failures = 0
            stat.health_score = max(stat.health_score, 0.5)
        else:
            stat.health_score = min(stat.health_score, 0.1)

    def _record(self, name: str, success: bool, duration_ms: float) -> None:
        # No await in here: updates are atomic with respect to other tasks
        stat = self._stats.setdefault(name, ProxyStat(name=name))
        now = datetime.now(timezone.utc)
        stat.total_requests += 1
        stat.avg_response_time_ms += (duration_ms - stat.avg_response_time_ms) / stat.total_requests
        stat.last_used = now
        if success:
            stat.successes += 1
            stat.consecutive_failures = 0
            stat.last_success = now
            stat.healthy = True
        else:
            stat.failures += 1
            stat.consecutive_failures += 1
            stat.last_failure = now
            if stat.consecutive_failures >= self.config.failure_threshold:
                stat.healthy = False
        stat.health_score = self._health_score(stat)

    def _health_score(self, stat: ProxyStat) -> float:
        penalty = min(stat.consecutive_failures * 0.1, 0.5)
        return round(max(0.0, min(1.0, stat.success_rate - penalty)), 4)

    @staticmethod
    def _unwrap(relay: RelayEndpoint, body: str) -> str:
        if relay.response_format != "json_contents":
            return body
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return body
        if isinstance(data, dict) and isinstance(data.get("contents"), str):
            return data["contents"]
        return body

    async def try_proxy(
        self,
        relay: RelayEndpoint,
        url: str,
        accept: Callable[[str], Any] | None = None,
    ) -> str:
        """Single attempt through one relay. Raises a classified FetchError."""
        content, _ = await self._attempt(relay, url, accept)
        return content

    async def _attempt(
        self,
        relay: RelayEndpoint,
        url: str,
        accept: Callable[[str], Any] | None,
    ) -> tuple[str, Any]:
        started = time.perf_counter()
        try:
            result = await fetch_tool(self.client, relay.build_url(url), timeout=relay.timeout_seconds)
            content = self._unwrap(relay, result.body)
            if not content.strip():
                raise FetchError(f"{relay.name} returned an empty body", kind=ErrorKind.HTTP_ERROR)
            # A body the caller rejects counts against the relay like a failed fetch
            accepted = accept(content) if accept is not None else None
        except FeedResolutionError:
            self._record(relay.name, False, (time.perf_counter() - started) * 1000)
            raise
        self._record(relay.name, True, (time.perf_counter() - started) * 1000)
        return content, accepted

    async def try_proxies_with_failover(
        self,
        url: str,
        accept: Callable[[str], Any] | None = None,
    ) -> RelayResult:
        """
        Try relays in order; return the first success.

        When ``accept`` is given it is called on each relayed body. A body it
        rejects with a FeedResolutionError is a failed attempt and the next
        relay is tried; its return value lands in ``RelayResult.accepted``.
        """
        relays = self.get_available_proxies()
        if not relays:
            raise NoRelaysAvailableError("No healthy proxies available")

        attempts: list[RelayAttempt] = []
        errors: list[tuple[str, FeedResolutionError]] = []
        for relay in relays:
            started_at = datetime.now(timezone.utc)
            started = time.perf_counter()
            try:
                content, accepted = await self._attempt(relay, url, accept)
            except FeedResolutionError as e:
                duration = (time.perf_counter() - started) * 1000
                logger.info("Relay %s failed for %s: %s", relay.name, url, e.message)
                attempts.append(RelayAttempt(relay.name, False, duration, e, started_at))
                errors.append((relay.name, e))
                continue
            duration = (time.perf_counter() - started) * 1000
            attempts.append(RelayAttempt(relay.name, True, duration, started_at=started_at))
            logger.info("Relay %s succeeded for %s", relay.name, url)
            return RelayResult(content=content, relay_used=relay.name, attempts=attempts, accepted=accepted)

        raise AllRelaysFailedError(errors, attempts)

    def get_proxy_stats_by_name(self, name: str) -> ProxyStat | None:
        stat = self._stats.get(name)
        return stat.model_copy() if stat is not None else None

    def get_all_stats(self) -> list[ProxyStat]:
        return [s.model_copy() for s in self._stats.values()]

    def get_overall_stats(self) -> OverallProxyStats:
        stats = list(self._stats.values())
        total = sum(s.total_requests for s in stats)
        weighted = sum(s.avg_response_time_ms * s.total_requests for s in stats)
        return OverallProxyStats(
            total_proxies=len(self._relays),
            healthy_proxies=sum(1 for r in self._relays if r.enabled and self._is_usable(self._stats[r.name])),
            total_requests=total,
            total_successes=sum(s.successes for s in stats),
            total_failures=sum(s.failures for s in stats),
            average_response_time_ms=weighted / total if total else 0.0,
        )

    def reset_stats(self) -> None:
        """Zero every counter; relay configuration is untouched."""
        self._stats = {name: ProxyStat(name=name) for name in self._stats}


def format_proxy_stats(stat: ProxyStat) -> str:
    """Short human-readable summary, e.g. '80% success (10 requests, 1500ms avg)'."""
    rate = round(stat.success_rate * 100)
    return f"{rate}% success ({stat.total_requests} requests, {stat.avg_response_time_ms:.0f}ms avg)"


def get_proxy_recommendation(stat: ProxyStat) -> str:
    if stat.health_score >= 0.8:
        return "Excellent"
    if stat.health_score >= 0.6:
        return "Good"
    if stat.health_score >= 0.4:
        return "Fair"
    return "Poor"
