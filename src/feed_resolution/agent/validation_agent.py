"""Validation agent - control plane for resolving an address into a working feed."""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config.loader import Config
from ..errors import (
    AllRelaysFailedError,
    ErrorKind,
    FeedResolutionError,
    RELAYABLE_KINDS,
    TRANSIENT_KINDS,
)
from ..models.cache_entry import CacheStats, ResultClass
from ..models.discovered_feed import DiscoveredFeed, FeedMetadata
from ..models.validation_result import (
    ClassifiedError,
    ValidationAttempt,
    ValidationMethod,
    ValidationResult,
    ValidationStats,
    ValidationStatus,
)
from ..tools.cache_tool import ResultCache
from ..tools.dedupe_tool import normalize_url
from ..tools.discover_tool import DiscoveryEngine, normalize_site_url, site_origin
from ..tools.fetch_tool import fetch_tool
from ..tools.parse_tool import extract_feed_metadata
from ..tools.relay_tool import RelayAttempt, RelayManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

SUCCESS_SUGGESTION = "Feed validated successfully"
DISCOVERY_FAILED_ERROR = "Feed discovery failed"

ERROR_SUGGESTIONS: dict[ErrorKind, list[str]] = {
    ErrorKind.HTTP_NOT_FOUND: [
        "The feed URL was not found on the server",
        "Check the address for typos or look for the feed link on the website",
    ],
    ErrorKind.HTTP_ERROR: [
        "The server is experiencing issues",
        "Try again later",
    ],
    ErrorKind.CORS: [
        "The feed server doesn't allow direct browser access",
        "The feed may still work through a relay; try again later",
    ],
    ErrorKind.PARSE_ERROR: [
        "Check if the URL points to a valid RSS or Atom feed",
        "The address may be a web page rather than a feed",
    ],
    ErrorKind.TIMEOUT: [
        "The server took too long to respond",
        "Check your connection or try again later",
    ],
    ErrorKind.NETWORK: [
        "Could not connect to the server",
        "Check your internet connection and the feed address",
    ],
    ErrorKind.DISCOVERY_FAILED: [
        "No RSS feeds found on this website",
        "Check whether the site publishes a feed at all",
    ],
}


def get_error_suggestions(kind: ErrorKind | None) -> list[str]:
    """User-facing hints for a failure class."""
    if kind is None:
        return [SUCCESS_SUGGESTION]
    return list(ERROR_SUGGESTIONS.get(kind, ["Try again later"]))


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, FeedResolutionError) and exc.kind in TRANSIENT_KINDS


def _status_for(kind: ErrorKind | None) -> ValidationStatus:
    if kind is ErrorKind.HTTP_NOT_FOUND:
        return ValidationStatus.NOT_FOUND
    if kind is ErrorKind.TIMEOUT:
        return ValidationStatus.TIMEOUT
    return ValidationStatus.INVALID


def _result_class(result: ValidationResult) -> ResultClass:
    if result.is_valid:
        return ResultClass.SUCCESS
    if result.status is ValidationStatus.DISCOVERY_REQUIRED:
        return ResultClass.DISCOVERY
    return ResultClass.FAILURE


def _count_retries(attempts: list[ValidationAttempt]) -> int:
    for i, attempt in enumerate(attempts):
        if attempt.success:
            return i
    return max(len(attempts) - 1, 0)


class _Run:
    """Mutable state of one validation run."""

    def __init__(self, original_url: str, url: str, on_progress: Optional[ProgressCallback] = None):
        self.original_url = original_url
        self.url = url
        self.on_progress = on_progress
        self.attempts: list[ValidationAttempt] = []
        self.started = time.perf_counter()
        self.last_error: Optional[FeedResolutionError] = None

    def progress(self, status: str, pct: int) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(status, pct)
        except Exception:
            logger.exception("Progress callback failed at %d%% for %s", pct, self.url)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000

    def add_relay_attempts(self, relay_attempts: list[RelayAttempt]) -> None:
        for ra in relay_attempts:
            self.attempts.append(ValidationAttempt(
                method=ValidationMethod.RELAY,
                success=ra.success,
                error=ClassifiedError.from_exception(ra.error) if ra.error else None,
                relay_used=ra.relay,
                started_at=ra.started_at,
                duration_ms=ra.duration_ms,
            ))


class FeedValidationAgent:
    """
    Orchestrates feed validation: direct fetch, relay failover, then site discovery.
    Consults and populates the result cache. Every strategy failure becomes a
    recorded attempt; only exhaustion of all strategies surfaces in the result.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Config,
        cache: ResultCache,
        relays: RelayManager,
        discovery: DiscoveryEngine,
    ):
        self.client = client
        self.config = config
        self.cache = cache
        self.relays = relays
        self.discovery = discovery
        self._history: dict[str, deque[ValidationAttempt]] = {}
        self._stats: dict[str, ValidationStats] = {}

    def _cache_key(self, url: str, purpose: str) -> str:
        return self.cache.make_key(normalize_url(normalize_site_url(url)), purpose)

    def _cached(self, key: str) -> Optional[ValidationResult]:
        cached = self.cache.get(key)
        if isinstance(cached, ValidationResult):
            return cached.model_copy(update={"from_cache": True}, deep=True)
        return None

    def _store(self, key: str, result: ValidationResult) -> None:
        self.cache.set(key, result.model_copy(deep=True), _result_class(result))

    def refresh_cached_result(self, url: str) -> bool:
        """Drop cached outcomes for url so the next call validates again."""
        removed = False
        for purpose in ("validate", "resolve"):
            removed = self.cache.delete(self._cache_key(url, purpose)) or removed
        return removed

    async def _attempt(self, run: _Run, method: ValidationMethod, url: str) -> FeedMetadata:
        """One fetch-and-parse try, recorded whatever the outcome."""
        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        try:
            result = await fetch_tool(self.client, url, timeout=self.config.fetch.timeout_seconds)
            metadata = extract_feed_metadata(result.body)
        except FeedResolutionError as e:
            run.attempts.append(ValidationAttempt(
                method=method,
                success=False,
                error=ClassifiedError.from_exception(e),
                started_at=started_at,
                duration_ms=(time.perf_counter() - t0) * 1000,
            ))
            raise
        run.attempts.append(ValidationAttempt(
            method=method,
            success=True,
            started_at=started_at,
            duration_ms=(time.perf_counter() - t0) * 1000,
        ))
        return metadata

    async def _fetch_with_retry(self, run: _Run, url: str, method: ValidationMethod) -> FeedMetadata:
        """Fetch and parse url, retrying transient failures with backoff."""
        policy = self.config.retry_policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(multiplier=policy.backoff_seconds, max=policy.backoff_max_seconds),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._attempt(run, method, url)
        raise AssertionError("unreachable")

    async def _try_direct(self, run: _Run) -> Optional[FeedMetadata]:
        try:
            return await self._fetch_with_retry(run, run.url, ValidationMethod.DIRECT)
        except FeedResolutionError as e:
            logger.info("Direct validation failed for %s: [%s] %s", run.url, e.kind.value, e.message)
            run.last_error = e
            return None

    async def _try_relays(self, run: _Run) -> Optional[tuple[FeedMetadata, str]]:
        started_at = datetime.now(timezone.utc)
        try:
            relayed = await self.relays.try_proxies_with_failover(run.url, accept=extract_feed_metadata)
        except AllRelaysFailedError as e:
            run.add_relay_attempts(e.attempts)
            run.last_error = e
            return None
        except FeedResolutionError as e:
            # No usable relay: record the pass so the result shows it was considered
            run.attempts.append(ValidationAttempt(
                method=ValidationMethod.RELAY,
                success=False,
                error=ClassifiedError.from_exception(e),
                started_at=started_at,
            ))
            logger.info("Relay pass skipped for %s: %s", run.url, e.message)
            return None

        run.add_relay_attempts(relayed.attempts)
        return relayed.accepted, relayed.relay_used

    def _finish(self, run: _Run, **fields) -> ValidationResult:
        result = ValidationResult(
            url=fields.pop("url", run.url),
            original_url=run.original_url,
            attempts=list(run.attempts),
            total_retries=_count_retries(run.attempts),
            total_validation_time_ms=run.elapsed_ms(),
            **fields,
        )
        self._remember(run.original_url, result)
        return result

    def _success(
        self,
        run: _Run,
        metadata: FeedMetadata,
        method: ValidationMethod,
        relay_used: Optional[str] = None,
        **fields,
    ) -> ValidationResult:
        suggestions = fields.pop("suggestions", [SUCCESS_SUGGESTION])
        return self._finish(
            run,
            is_valid=True,
            status=ValidationStatus.VALID,
            title=metadata.title,
            description=metadata.description,
            feed_type=metadata.type,
            final_method=method,
            relay_used=relay_used,
            suggestions=suggestions,
            **fields,
        )

    def _failure(
        self,
        run: _Run,
        method: ValidationMethod,
        status: Optional[ValidationStatus] = None,
        **fields,
    ) -> ValidationResult:
        err = run.last_error
        kind = err.kind if err is not None else ErrorKind.DISCOVERY_FAILED
        fields.setdefault("error", err.message if err is not None else DISCOVERY_FAILED_ERROR)
        fields.setdefault("suggestions", get_error_suggestions(kind))
        return self._finish(
            run,
            is_valid=False,
            status=status or _status_for(kind),
            final_error=ClassifiedError.from_exception(err) if err is not None else None,
            final_method=method,
            **fields,
        )

    def _remember(self, url: str, result: ValidationResult) -> None:
        key = normalize_url(normalize_site_url(url))
        history = self._history.setdefault(key, deque(maxlen=self.config.history_limit))
        history.extend(result.attempts)
        stats = self._stats.setdefault(key, ValidationStats())
        stats.total_attempts += len(result.attempts)
        stats.successful_attempts += sum(1 for a in result.attempts if a.success)
        stats.failed_attempts += sum(1 for a in result.attempts if not a.success)
        stats.total_retries += result.total_retries
        if result.attempts:
            stats.last_attempt_at = result.attempts[-1].started_at

    def get_validation_history(self, url: str) -> list[ValidationAttempt]:
        """Most recent attempts for url, oldest first."""
        return list(self._history.get(normalize_url(normalize_site_url(url)), ()))

    def get_validation_stats(self, url: str) -> ValidationStats:
        stats = self._stats.get(normalize_url(normalize_site_url(url)))
        return stats.model_copy() if stats is not None else ValidationStats()

    async def validate_feed(self, url: str) -> ValidationResult:
        """Validate one feed address: direct fetch, then relays. No discovery."""
        key = self._cache_key(url, "validate")
        cached = self._cached(key)
        if cached is not None:
            logger.debug("Cache hit for %s", url)
            return cached

        run = _Run(url, normalize_site_url(url))
        logger.info("Validating %s", run.url)
        result = await self._direct_then_relay(run)
        if result is None:
            result = self._failure(run, ValidationMethod.RELAY if self._relay_tried(run) else ValidationMethod.DIRECT)
        self._store(key, result)
        return result

    async def validate_feeds(self, urls: list[str]) -> list[ValidationResult]:
        """Validate many addresses concurrently; results keep input order."""
        return list(await asyncio.gather(*(self.validate_feed(u) for u in urls)))

    @staticmethod
    def _relay_tried(run: _Run) -> bool:
        return any(a.method is ValidationMethod.RELAY for a in run.attempts)

    async def _direct_then_relay(self, run: _Run) -> Optional[ValidationResult]:
        metadata = await self._try_direct(run)
        if metadata is not None:
            return self._success(run, metadata, ValidationMethod.DIRECT)

        if run.last_error is not None and run.last_error.kind in RELAYABLE_KINDS:
            run.progress("Direct connection failed, trying relay servers...", 20)
            relayed = await self._try_relays(run)
            if relayed is not None:
                metadata, relay_name = relayed
                return self._success(
                    run,
                    metadata,
                    ValidationMethod.RELAY,
                    relay_used=relay_name,
                    suggestions=[SUCCESS_SUGGESTION, f"Feed retrieved through the {relay_name} relay"],
                )
        return None

    async def validate_feed_with_discovery(
        self, url: str, on_progress: Optional[ProgressCallback] = None
    ) -> ValidationResult:
        """Full resolution: direct, relay failover, then discovery on the site."""
        run = _Run(url, normalize_site_url(url), on_progress)
        run.progress("Starting validation...", 10)
        try:
            key = self._cache_key(url, "resolve")
            cached = self._cached(key)
            if cached is not None:
                logger.debug("Cache hit for %s", url)
                return cached

            logger.info("Resolving %s", run.url)
            result = await self._direct_then_relay(run)
            if result is None:
                result = await self._discover(run)
            self._store(key, result)
            logger.info(
                "Resolved %s: %s via %s (%d attempts)",
                run.original_url,
                result.status.value,
                result.final_method.value if result.final_method else "-",
                len(result.attempts),
            )
            return result
        finally:
            run.progress("Validation complete", 100)

    async def _discover(self, run: _Run) -> ValidationResult:
        site = site_origin(run.url)
        direct_error = run.last_error
        run.progress("Direct validation failed, attempting discovery...", 30)

        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        discovery = await self.discovery.discover_from_website(site)
        feeds = discovery.discovered_feeds
        run.progress("Discovery completed", 70)

        discovery_error = None
        if not feeds:
            discovery_error = ClassifiedError(
                kind=ErrorKind.DISCOVERY_FAILED,
                message=f"No feeds discovered on {site}",
            )
        run.attempts.append(ValidationAttempt(
            method=ValidationMethod.DISCOVERY,
            success=bool(feeds),
            error=discovery_error,
            started_at=started_at,
            duration_ms=(time.perf_counter() - t0) * 1000,
        ))

        if not feeds:
            suggestions = list(discovery.suggestions)
            if direct_error is not None:
                suggestions.extend(s for s in get_error_suggestions(direct_error.kind) if s not in suggestions)
            return self._failure(
                run,
                ValidationMethod.DISCOVERY,
                status=ValidationStatus.INVALID,
                error=DISCOVERY_FAILED_ERROR,
                suggestions=suggestions,
                discovered_feeds=[],
            )

        if len(feeds) == 1:
            return await self._validate_candidate(run, feeds[0], site)

        return self._finish(
            run,
            is_valid=False,
            status=ValidationStatus.DISCOVERY_REQUIRED,
            error=f"Found {len(feeds)} RSS feeds - user selection required",
            final_method=ValidationMethod.DISCOVERY,
            discovered_feeds=feeds,
            requires_user_selection=True,
            suggestions=self._selection_suggestions(feeds, site),
        )

    async def _validate_candidate(self, run: _Run, candidate: DiscoveredFeed, site: str) -> ValidationResult:
        run.progress("Validating discovered feed...", 80)
        try:
            metadata = await self._fetch_with_retry(run, candidate.url, ValidationMethod.DISCOVERY)
        except FeedResolutionError as e:
            logger.info("Discovered feed %s failed validation: %s", candidate.url, e.message)
            run.last_error = e
            return self._failure(
                run,
                ValidationMethod.DISCOVERY,
                status=ValidationStatus.INVALID,
                discovered_feeds=[candidate],
            )
        logger.info("Discovered and validated %s from %s", candidate.url, site)
        return self._success(
            run,
            metadata,
            ValidationMethod.DISCOVERY,
            url=candidate.url,
            discovered_feeds=[candidate],
            suggestions=[f"Feed discovered and validated from {site}"],
        )

    @staticmethod
    def _selection_suggestions(feeds: list[DiscoveredFeed], site: str) -> list[str]:
        counts: dict[str, int] = {}
        for feed in feeds:
            counts[feed.type.value.upper()] = counts.get(feed.type.value.upper(), 0) + 1
        breakdown = ", ".join(f"{n} {t}" for t, n in sorted(counts.items()))
        return [
            f"Found {len(feeds)} RSS feeds - user selection required",
            f"{len(feeds)} feeds available on {site} ({breakdown})",
            "Choose the feed that best matches the content you want",
        ]

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()


def get_validation_attempt_summary(result: ValidationResult) -> str:
    """Short timing summary, e.g. 'Validated in 3s' or '3 attempts (2 retries) in 5s'."""
    seconds = int(result.total_validation_time_ms / 1000 + 0.5)
    attempts = len(result.attempts)
    if attempts <= 1:
        return f"Validated in {seconds}s"
    return f"{attempts} attempts ({result.total_retries} retries) in {seconds}s"


def get_last_validation_error(result: ValidationResult) -> Optional[ClassifiedError]:
    """Final error if set, else the error of the last failed attempt."""
    if result.final_error is not None:
        return result.final_error
    for attempt in reversed(result.attempts):
        if attempt.error is not None:
            return attempt.error
    return None


def is_validation_retryable(result: ValidationResult) -> bool:
    error = get_last_validation_error(result)
    return bool(error and error.retryable)
