"""Discover tool - locate candidate feeds on a website."""

import asyncio
import logging
import time
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from ..config.loader import DiscoveryConfig
from ..errors import ErrorKind, FeedResolutionError, FetchError
from ..models.discovered_feed import (
    DiscoveredFeed,
    DiscoveryMethod,
    FeedDiscoveryResult,
    FeedMetadata,
    FeedType,
    METHOD_PRIORITY,
)
from .fetch_tool import fetch_tool
from .parse_tool import extract_feed_metadata

logger = logging.getLogger(__name__)

CONFIDENCE = {
    DiscoveryMethod.COMMON_PATH: 0.9,
    DiscoveryMethod.LINK_TAG: 0.85,
    DiscoveryMethod.META_TAG: 0.6,
    DiscoveryMethod.CONTENT_SCAN: 0.5,
}

FEED_MIME_TYPES = {
    "application/rss+xml": FeedType.RSS,
    "application/atom+xml": FeedType.ATOM,
    "application/rdf+xml": FeedType.RDF,
}

META_FEED_TOKENS = ("rss", "atom", "feed")
ANCHOR_FEED_TOKENS = ("rss", "atom", "feed.xml", "/feed", "index.xml")

NO_FEEDS_SUGGESTION = "No RSS feeds found on this website"
UNREACHABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT})


@dataclass
class FeedReference:
    """A feed address found in page markup, not yet fetched."""

    url: str
    method: DiscoveryMethod
    title_hint: str | None = None


def normalize_site_url(site_url: str) -> str:
    """Absolute base for a site address given with or without a scheme."""
    url = (site_url or "").strip()
    if not url:
        return url
    if "://" not in url:
        url = "https://" + url.lstrip("/")
    return url


def site_origin(url: str) -> str:
    parts = urlsplit(normalize_site_url(url))
    return f"{parts.scheme}://{parts.netloc}"


def find_feed_references(html: str, base_url: str, scan_anchors: bool = True) -> list[FeedReference]:
    """
    Scan markup for feed references, resolved against base_url.
    <link rel="alternate"> with a feed MIME type -> link-tag,
    feed-indicating <meta> -> meta-tag, feed-looking anchors -> content-scan.
    """
    soup = BeautifulSoup(html, "lxml")
    refs: list[FeedReference] = []
    seen: set[str] = set()

    def add(href: str | None, method: DiscoveryMethod, title: str | None = None) -> None:
        if not href:
            return
        href = href.strip()
        if not href or href.startswith(("#", "javascript:", "mailto:")):
            return
        resolved = urljoin(base_url, href)
        if not resolved.startswith(("http://", "https://")) or resolved in seen:
            return
        seen.add(resolved)
        refs.append(FeedReference(url=resolved, method=method, title_hint=title))

    for link in soup.find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        typ = (link.get("type") or "").lower().split(";")[0].strip()
        if "alternate" in [r.lower() for r in rel] and typ in FEED_MIME_TYPES:
            add(link.get("href"), DiscoveryMethod.LINK_TAG, link.get("title"))

    for meta in soup.find_all("meta"):
        key = (meta.get("property") or meta.get("name") or "").lower()
        if any(token in key for token in META_FEED_TOKENS):
            add(meta.get("content"), DiscoveryMethod.META_TAG)

    if scan_anchors:
        for a in soup.find_all("a", href=True):
            href = a["href"].lower()
            text = (a.get_text() or "").strip().lower()
            if any(tok in href for tok in ANCHOR_FEED_TOKENS) or text in ("rss", "atom", "feed"):
                add(a["href"], DiscoveryMethod.CONTENT_SCAN, a.get_text(strip=True) or None)

    return refs


def merge_discovered(feeds: list[DiscoveredFeed]) -> list[DiscoveredFeed]:
    """Deduplicate by URL keeping the strongest entry; sort by confidence."""
    best: dict[str, DiscoveredFeed] = {}
    for feed in feeds:
        current = best.get(feed.url)
        if current is None or (feed.confidence, METHOD_PRIORITY[feed.discovery_method]) > (
            current.confidence,
            METHOD_PRIORITY[current.discovery_method],
        ):
            best[feed.url] = feed
    return sorted(
        best.values(),
        key=lambda f: (-f.confidence, -METHOD_PRIORITY[f.discovery_method], f.url),
    )


class DiscoveryEngine:
    """Produces a ranked list of candidate feeds for a website."""

    def __init__(self, client: httpx.AsyncClient, config: DiscoveryConfig | None = None):
        self.client = client
        self.config = config or DiscoveryConfig()
        self._common_paths: tuple[str, ...] = tuple(self.config.common_paths)

    @property
    def common_paths(self) -> tuple[str, ...]:
        return self._common_paths

    def set_common_paths(self, paths: list[str]) -> None:
        """Swap the probe list. Runs already in progress keep the old list."""
        self._common_paths = tuple(paths)

    @staticmethod
    def extract_feed_metadata(content: str) -> FeedMetadata:
        return extract_feed_metadata(content)

    async def _probe(
        self,
        url: str,
        method: DiscoveryMethod,
        semaphore: asyncio.Semaphore,
        counters: dict[str, int],
        title_hint: str | None = None,
    ) -> DiscoveredFeed | None:
        """Fetch and parse one candidate. Any failure means 'not a feed here'."""
        async with semaphore:
            counters["total"] += 1
            try:
                result = await fetch_tool(self.client, url, timeout=self.config.probe_timeout_seconds)
                counters["successful"] += 1
                meta = extract_feed_metadata(result.body)
            except FeedResolutionError as e:
                logger.debug("Probe %s (%s) rejected: %s", url, method.value, e.message)
                return None
        return DiscoveredFeed(
            url=url,
            title=meta.title or title_hint,
            description=meta.description,
            type=meta.type,
            discovery_method=method,
            confidence=CONFIDENCE[method],
        )

    async def _gather(self, probes) -> list[DiscoveredFeed]:
        results = await asyncio.gather(*probes)
        return [r for r in results if r is not None]

    async def try_common_feed_paths(
        self,
        site_url: str,
        semaphore: asyncio.Semaphore | None = None,
        counters: dict[str, int] | None = None,
    ) -> list[DiscoveredFeed]:
        """Probe conventional feed locations on the site's origin."""
        semaphore = semaphore or asyncio.Semaphore(self.config.max_concurrency)
        counters = counters if counters is not None else {"total": 0, "successful": 0}
        origin = site_origin(site_url)
        paths = self._common_paths
        probes = [
            self._probe(origin + path, DiscoveryMethod.COMMON_PATH, semaphore, counters)
            for path in paths
        ]
        found = await self._gather(probes)
        logger.debug("Common paths on %s: %d of %d matched", origin, len(found), len(paths))
        return merge_discovered(found)

    async def scan_html_for_feeds(
        self,
        html: str,
        base_url: str,
        semaphore: asyncio.Semaphore | None = None,
        counters: dict[str, int] | None = None,
    ) -> list[DiscoveredFeed]:
        """Find feed references in markup and keep the ones that parse as feeds."""
        semaphore = semaphore or asyncio.Semaphore(self.config.max_concurrency)
        counters = counters if counters is not None else {"total": 0, "successful": 0}
        refs = find_feed_references(html, base_url, scan_anchors=self.config.scan_anchors)
        refs = refs[: self.config.max_references]
        probes = [
            self._probe(ref.url, ref.method, semaphore, counters, ref.title_hint) for ref in refs
        ]
        found = await self._gather(probes)
        logger.debug("HTML scan of %s: %d references, %d feeds", base_url, len(refs), len(found))
        return merge_discovered(found)

    async def discover_from_website(self, site_url: str) -> FeedDiscoveryResult:
        """Run every discovery method against a site and rank the candidates."""
        started = time.perf_counter()
        base_url = normalize_site_url(site_url)
        counters = {"total": 0, "successful": 0}
        methods = ["html-scan", "common-paths"]
        logger.info("Discovering feeds on %s", base_url)

        def finish(feeds: list[DiscoveredFeed], suggestions: list[str]) -> FeedDiscoveryResult:
            elapsed = (time.perf_counter() - started) * 1000
            if not feeds and NO_FEEDS_SUGGESTION not in suggestions:
                suggestions.insert(0, NO_FEEDS_SUGGESTION)
            logger.info("Discovery on %s found %d feeds in %.0fms", base_url, len(feeds), elapsed)
            return FeedDiscoveryResult(
                original_url=site_url,
                discovered_feeds=feeds,
                discovery_methods=methods,
                total_attempts=counters["total"],
                successful_attempts=counters["successful"],
                discovery_time_ms=elapsed,
                suggestions=suggestions,
            )

        if not base_url or not urlsplit(base_url).netloc:
            return finish([], ["Enter a full website address, e.g. https://example.com"])

        # Fetch the page itself first: an unreachable site ends discovery early
        page_html = None
        page_url = base_url
        counters["total"] += 1
        try:
            page = await fetch_tool(self.client, base_url, timeout=self.config.probe_timeout_seconds)
            counters["successful"] += 1
            page_html, page_url = page.body, page.final_url
        except FetchError as e:
            if e.kind in UNREACHABLE_KINDS:
                logger.info("Site %s unreachable (%s); skipping discovery", base_url, e.kind.value)
                return finish([], [
                    NO_FEEDS_SUGGESTION,
                    "The website could not be reached - check the address and your connection",
                ])
            logger.debug("Site page %s not usable: %s", base_url, e.message)

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        tasks = [self.try_common_feed_paths(base_url, semaphore, counters)]
        if page_html:
            tasks.append(self.scan_html_for_feeds(page_html, page_url, semaphore, counters))
        results = await asyncio.gather(*tasks)
        feeds = merge_discovered([feed for group in results for feed in group])

        suggestions: list[str] = []
        if feeds:
            suggestions.append(f"Found {len(feeds)} feed{'s' if len(feeds) != 1 else ''} on this website")
            if len(feeds) > 1:
                suggestions.append("Choose the feed that best matches the content you want")
        else:
            suggestions.append("Check whether the site links to its feed from the home page")
        return finish(feeds, suggestions)


def get_confidence_text(confidence: float) -> str:
    if confidence >= 0.9:
        return "Very High"
    if confidence >= 0.8:
        return "High"
    if confidence >= 0.7:
        return "Medium"
    if confidence >= 0.6:
        return "Low"
    return "Very Low"


def get_discovery_method_text(method: DiscoveryMethod | str) -> str:
    labels = {
        DiscoveryMethod.COMMON_PATH.value: "Common path",
        DiscoveryMethod.LINK_TAG.value: "HTML link tag",
        DiscoveryMethod.META_TAG.value: "HTML meta tag",
        DiscoveryMethod.CONTENT_SCAN.value: "Page content scan",
    }
    value = method.value if isinstance(method, DiscoveryMethod) else method
    return labels.get(value, "Unknown")
