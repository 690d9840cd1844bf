"""Dedupe tool - detect and resolve equivalent feeds in a collection.

Detection tiers, first match wins:
- identical normalized URL (1.0)
- identical content fingerprint (0.95)
- near-identical feed titles by fuzzy ratio (0.92)
"""

import asyncio
import hashlib
import logging
import re
from collections import OrderedDict
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit

from fuzzywuzzy import fuzz

from ..config.loader import DuplicateConfig
from ..models.feed_source import (
    ContentFingerprint,
    DedupeAction,
    DedupeOptions,
    DedupeResult,
    DuplicateCheckResult,
    DuplicateGroup,
    FeedSource,
    RemovedDuplicate,
)

logger = logging.getLogger(__name__)

TRACKING_PARAMS = frozenset({
    "ref",
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "yclid",
    "igshid",
    "mc_cid",
    "mc_eid",
    "_ga",
})
DEFAULT_PORTS = {"http": 80, "https": 443}

URL_CONFIDENCE = 1.0
FINGERPRINT_CONFIDENCE = 0.95
TITLE_CONFIDENCE = 0.92

REASON_URL = "Identical normalized URLs"
REASON_FINGERPRINT = "Identical content fingerprint"
REASON_NO_FINGERPRINT = "Unable to generate content fingerprint"
REASON_NONE = "No duplicates detected"

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


class FeedValidator(Protocol):
    async def validate_feed(self, url: str): ...


def _is_tracking_param(key: str) -> bool:
    key = key.lower()
    return key.startswith("utm_") or key in TRACKING_PARAMS


def normalize_url(url: str) -> str:
    """
    Canonical spelling of a feed URL for comparison. Pure and idempotent;
    malformed input comes back stripped but otherwise unchanged.
    """
    if not isinstance(url, str):
        return ""
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        if not parts.scheme or not parts.netloc or not parts.hostname:
            return raw
        scheme = parts.scheme.lower()
        host = parts.hostname.lower()
        while host.startswith("www."):
            host = host[4:]
        if ":" in host:
            host = f"[{host}]"
        port = parts.port
        netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"
        path = parts.path.rstrip("/")
        query = [
            (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if not _is_tracking_param(k)
        ]
        query.sort(key=lambda kv: kv[0])
        result = f"{scheme}://{netloc}{path}"
        if query:
            result += "?" + urlencode(query)
        return result
    except ValueError:
        return raw


def _normalize_text(text: str | None) -> str:
    text = _NON_WORD.sub(" ", (text or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


def content_hash(title: str | None, description: str | None) -> str:
    raw = f"{_normalize_text(title)}|{_normalize_text(description)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def title_similarity(a: str | None, b: str | None) -> float:
    """Edit-distance ratio of two lowercased titles, in [0, 1]."""
    a = _WHITESPACE.sub(" ", (a or "").lower()).strip()
    b = _WHITESPACE.sub(" ", (b or "").lower()).strip()
    if a == b:
        return 1.0 if a else 0.0
    if not a or not b:
        return 0.0
    return fuzz.ratio(a, b) / 100


def _same_content(a: ContentFingerprint, b: ContentFingerprint) -> bool:
    # Untitled feeds share too little to be identified by their hash
    if not _normalize_text(a.title) or not _normalize_text(b.title):
        return False
    return a.content_hash == b.content_hash



class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


class DuplicateDetector:
    """Finds equivalent feeds via URL normalization and content fingerprints."""

    def __init__(self, validator: FeedValidator, config: DuplicateConfig | None = None):
        self.validator = validator
        self.config = config or DuplicateConfig()
        self._fingerprints: OrderedDict[str, ContentFingerprint | None] = OrderedDict()
        self._pending: dict[str, asyncio.Task] = {}

    normalize_url = staticmethod(normalize_url)

    def clear_cache(self) -> None:
        self._fingerprints.clear()

    async def generate_content_fingerprint(self, url: str) -> ContentFingerprint | None:
        """Fingerprint a feed by validating it. None when the feed is not valid."""
        normalized = normalize_url(url)
        if normalized in self._fingerprints:
            self._fingerprints.move_to_end(normalized)
            return self._fingerprints[normalized]
        # Concurrent callers for the same feed share one validation
        task = self._pending.get(normalized)
        if task is None:
            task = asyncio.ensure_future(self._fingerprint(url, normalized))
            self._pending[normalized] = task
            task.add_done_callback(lambda _: self._pending.pop(normalized, None))
        return await asyncio.shield(task)

    async def _fingerprint(self, url: str, normalized: str) -> ContentFingerprint | None:
        try:
            result = await self.validator.validate_feed(url)
        except Exception:
            logger.exception("Validation raised while fingerprinting %s", url)
            return None
        fingerprint = None
        if result is not None and getattr(result, "is_valid", False):
            title = result.title or ""
            description = result.description or ""
            fingerprint = ContentFingerprint(
                url=url,
                normalized_url=normalized,
                title=title,
                description=description,
                content_hash=content_hash(title, description),
            )
        else:
            logger.debug("No fingerprint for %s: feed is not valid", url)
        self._fingerprints[normalized] = fingerprint
        self._fingerprints.move_to_end(normalized)
        while len(self._fingerprints) > self.config.fingerprint_cache_size:
            self._fingerprints.popitem(last=False)
        return fingerprint

    async def _fingerprint_all(self, urls: list[str]) -> list[ContentFingerprint | None]:
        semaphore = asyncio.Semaphore(self.config.fingerprint_concurrency)

        async def one(u: str) -> ContentFingerprint | None:
            async with semaphore:
                return await self.generate_content_fingerprint(u)

        # Same normalized URL fingerprints once
        unique: dict[str, str] = {}
        for u in urls:
            unique.setdefault(normalize_url(u), u)
        results = await asyncio.gather(*(one(u) for u in unique.values()))
        by_key = dict(zip(unique.keys(), results))
        return [by_key[normalize_url(u)] for u in urls]

    def _similar_titles(self, a: ContentFingerprint, b: ContentFingerprint) -> float | None:
        if not a.title or not b.title:
            return None
        similarity = title_similarity(a.title, b.title)
        if similarity >= self.config.title_similarity_threshold:
            return similarity
        return None

    async def detect_duplicate(self, new_url: str, existing_feeds: list[FeedSource]) -> DuplicateCheckResult:
        normalized = normalize_url(new_url)

        for feed in existing_feeds:
            if normalize_url(feed.url) == normalized:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    duplicate_of=feed,
                    confidence=URL_CONFIDENCE,
                    reason=REASON_URL,
                    normalized_url=normalized,
                )

        new_fp = await self.generate_content_fingerprint(new_url)
        if new_fp is None:
            return DuplicateCheckResult(
                is_duplicate=False,
                confidence=0.0,
                reason=REASON_NO_FINGERPRINT,
                normalized_url=normalized,
            )

        existing_fps = await self._fingerprint_all([f.url for f in existing_feeds])
        pairs = [(f, fp) for f, fp in zip(existing_feeds, existing_fps) if fp is not None]

        for feed, fp in pairs:
            if _same_content(new_fp, fp):
                return DuplicateCheckResult(
                    is_duplicate=True,
                    duplicate_of=feed,
                    confidence=FINGERPRINT_CONFIDENCE,
                    reason=REASON_FINGERPRINT,
                    normalized_url=normalized,
                    content_fingerprint=new_fp,
                )

        for feed, fp in pairs:
            similarity = self._similar_titles(new_fp, fp)
            if similarity is not None:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    duplicate_of=feed,
                    confidence=TITLE_CONFIDENCE,
                    reason=f"Very similar titles ({similarity:.0%} match)",
                    normalized_url=normalized,
                    content_fingerprint=new_fp,
                )

        return DuplicateCheckResult(
            is_duplicate=False,
            confidence=0.0,
            reason=REASON_NONE,
            normalized_url=normalized,
            content_fingerprint=new_fp,
        )

    def _pair_match(
        self,
        norm_a: str,
        norm_b: str,
        fp_a: ContentFingerprint | None,
        fp_b: ContentFingerprint | None,
    ) -> tuple[float, str] | None:
        if norm_a == norm_b:
            return URL_CONFIDENCE, REASON_URL
        if fp_a is None or fp_b is None:
            return None
        if _same_content(fp_a, fp_b):
            return FINGERPRINT_CONFIDENCE, REASON_FINGERPRINT
        similarity = self._similar_titles(fp_a, fp_b)
        if similarity is not None:
            return TITLE_CONFIDENCE, f"Very similar titles ({similarity:.0%} match)"
        return None

    async def _cluster(self, feeds: list[FeedSource]) -> list[tuple[list[int], float, str]]:
        """Index clusters of mutually duplicate feeds, with the weakest link per cluster."""
        if len(feeds) < 2:
            return []
        normalized = [normalize_url(f.url) for f in feeds]
        fingerprints = await self._fingerprint_all([f.url for f in feeds])

        uf = _UnionFind(len(feeds))
        weakest: dict[int, tuple[float, str]] = {}
        links: list[tuple[int, int, float, str]] = []
        for i in range(len(feeds)):
            for j in range(i + 1, len(feeds)):
                match = self._pair_match(normalized[i], normalized[j], fingerprints[i], fingerprints[j])
                if match is not None:
                    uf.union(i, j)
                    links.append((i, j, *match))

        for i, _, confidence, reason in links:
            root = uf.find(i)
            if root not in weakest or confidence < weakest[root][0]:
                weakest[root] = (confidence, reason)

        members: dict[int, list[int]] = {}
        for i in range(len(feeds)):
            members.setdefault(uf.find(i), []).append(i)

        clusters = []
        for root in sorted(members):
            indexes = members[root]
            if len(indexes) >= 2:
                clusters.append((indexes, *weakest[root]))
        return clusters

    async def find_duplicate_groups(self, feeds: list[FeedSource]) -> list[DuplicateGroup]:
        """Cluster mutually duplicate feeds. Feeds with no partner are left out."""
        groups = [
            DuplicateGroup(feeds=[feeds[i] for i in indexes], reason=reason, confidence=confidence)
            for indexes, confidence, reason in await self._cluster(feeds)
        ]
        logger.info("Found %d duplicate groups among %d feeds", len(groups), len(feeds))
        return groups

    @staticmethod
    def _merge(group: list[FeedSource]) -> FeedSource:
        titles: list[str] = []
        for feed in group:
            if feed.custom_title and feed.custom_title not in titles:
                titles.append(feed.custom_title)
        category = next((f.category for f in group if f.category), None)
        return FeedSource(
            url=group[0].url,
            custom_title=" / ".join(titles) if titles else None,
            category=category,
        )

    @staticmethod
    def _choose(group: list[FeedSource], options: DedupeOptions) -> int:
        """Offset of the feed to keep within its group."""
        if options.action is DedupeAction.KEEP_LAST:
            return len(group) - 1
        if options.action is DedupeAction.USER_SELECT and options.preferred_feed is not None:
            preferred = options.preferred_feed
            for offset, feed in enumerate(group):
                if feed == preferred:
                    return offset
            for offset, feed in enumerate(group):
                if normalize_url(feed.url) == normalize_url(preferred.url):
                    return offset
        return 0

    async def remove_duplicates(
        self, feeds: list[FeedSource], options: DedupeOptions | None = None
    ) -> DedupeResult:
        """Keep one feed per duplicate group; record every removal."""
        options = options or DedupeOptions()
        clusters = await self._cluster(feeds)

        # position -> feed that takes its place (None when the position is dropped)
        replacement: dict[int, FeedSource | None] = {}
        removed: list[RemovedDuplicate] = []
        for indexes, _, _ in clusters:
            group = [feeds[i] for i in indexes]
            if options.action is DedupeAction.MERGE:
                kept, kept_index = self._merge(group), indexes[0]
            else:
                offset = self._choose(group, options)
                kept, kept_index = group[offset], indexes[offset]
            for i in indexes:
                if i == kept_index:
                    replacement[i] = kept
                else:
                    replacement[i] = None
                    removed.append(RemovedDuplicate(original_feed=feeds[i], duplicate_of=kept))

        unique = [replacement.get(i, feed) for i, feed in enumerate(feeds)]
        unique = [feed for feed in unique if feed is not None]
        logger.info(
            "Removed %d duplicate feeds (%s); %d remain",
            len(removed), options.action.value, len(unique),
        )
        return DedupeResult(unique_feeds=unique, removed_duplicates=removed)
