"""Feed resolver - composition root wiring every service around one HTTP client."""

import logging
from typing import Optional

import httpx

from ..config.loader import Config
from ..models.cache_entry import CacheStats, ResultClass
from ..models.discovered_feed import FeedDiscoveryResult
from ..models.feed_source import (
    DedupeOptions,
    DedupeResult,
    DuplicateCheckResult,
    DuplicateGroup,
    FeedSource,
)
from ..models.proxy_stat import OverallProxyStats, ProxyStat
from ..models.validation_result import ValidationResult
from ..tools.cache_tool import ResultCache
from ..tools.dedupe_tool import DuplicateDetector, normalize_url
from ..tools.discover_tool import DiscoveryEngine, normalize_site_url
from ..tools.fetch_tool import build_client
from ..tools.relay_tool import RelayManager
from .validation_agent import FeedValidationAgent, ProgressCallback

logger = logging.getLogger(__name__)


class FeedResolver:
    """
    Caller-facing interface. Owns one client, cache, relay manager, discovery
    engine, validation agent and duplicate detector. Use as an async context
    manager; pass a client to share one (tests inject a mock transport).
    """

    def __init__(self, config: Optional[Config] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or Config()
        self._owns_client = client is None
        self.client = client or build_client(self.config.fetch.user_agent, self.config.fetch.timeout_seconds)
        self.cache = ResultCache(self.config.cache)
        self.relays = RelayManager(self.client, self.config.relays)
        self.discovery = DiscoveryEngine(self.client, self.config.discovery)
        self.agent = FeedValidationAgent(self.client, self.config, self.cache, self.relays, self.discovery)
        self.detector = DuplicateDetector(self.agent, self.config.duplicates)

    async def __aenter__(self) -> "FeedResolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def validate_feed(self, url: str) -> ValidationResult:
        return await self.agent.validate_feed(url)

    async def validate_feed_with_discovery(
        self, url: str, on_progress: Optional[ProgressCallback] = None
    ) -> ValidationResult:
        return await self.agent.validate_feed_with_discovery(url, on_progress)

    async def discover_from_website(self, site_url: str) -> FeedDiscoveryResult:
        """Discover feeds on a site, reusing a recent discovery of the same site."""
        key = self.cache.make_key(normalize_url(normalize_site_url(site_url)), "discover")
        cached = self.cache.get(key)
        if isinstance(cached, FeedDiscoveryResult):
            logger.debug("Cache hit for discovery of %s", site_url)
            return cached.model_copy(deep=True)
        result = await self.discovery.discover_from_website(site_url)
        self.cache.set(key, result.model_copy(deep=True), ResultClass.DISCOVERY)
        return result

    async def detect_duplicate(self, url: str, existing_feeds: list[FeedSource]) -> DuplicateCheckResult:
        return await self.detector.detect_duplicate(url, existing_feeds)

    async def find_duplicate_groups(self, feeds: list[FeedSource]) -> list[DuplicateGroup]:
        return await self.detector.find_duplicate_groups(feeds)

    async def remove_duplicates(
        self, feeds: list[FeedSource], options: Optional[DedupeOptions] = None
    ) -> DedupeResult:
        return await self.detector.remove_duplicates(feeds, options)

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        """Drop cached results and fingerprints."""
        self.cache.clear()
        self.detector.clear_cache()

    def get_proxy_stats_by_name(self, name: str) -> Optional[ProxyStat]:
        return self.relays.get_proxy_stats_by_name(name)

    def get_overall_stats(self) -> OverallProxyStats:
        return self.relays.get_overall_stats()

    def reset_stats(self) -> None:
        self.relays.reset_stats()
