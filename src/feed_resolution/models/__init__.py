"""Data models for the feed resolution system."""

from .discovered_feed import (
    DiscoveredFeed,
    DiscoveryMethod,
    FeedDiscoveryResult,
    FeedMetadata,
    FeedType,
    METHOD_PRIORITY,
)
from .validation_result import (
    ClassifiedError,
    ValidationAttempt,
    ValidationMethod,
    ValidationResult,
    ValidationStats,
    ValidationStatus,
)
from .proxy_stat import ProxyStat, OverallProxyStats
from .cache_entry import CacheEntry, CacheStats, MemoryUsage, ResultClass
from .feed_source import (
    ContentFingerprint,
    DedupeAction,
    DedupeOptions,
    DedupeResult,
    DuplicateCheckResult,
    DuplicateGroup,
    FeedSource,
    RemovedDuplicate,
)

__all__ = [
    "DiscoveredFeed",
    "DiscoveryMethod",
    "FeedDiscoveryResult",
    "FeedMetadata",
    "FeedType",
    "METHOD_PRIORITY",
    "ClassifiedError",
    "ValidationAttempt",
    "ValidationMethod",
    "ValidationResult",
    "ValidationStats",
    "ValidationStatus",
    "ProxyStat",
    "OverallProxyStats",
    "CacheEntry",
    "CacheStats",
    "MemoryUsage",
    "ResultClass",
    "ContentFingerprint",
    "DedupeAction",
    "DedupeOptions",
    "DedupeResult",
    "DuplicateCheckResult",
    "DuplicateGroup",
    "FeedSource",
    "RemovedDuplicate",
]
