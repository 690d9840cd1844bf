"""Tools for the feed resolution pipeline."""

from .fetch_tool import FetchResult, build_client, fetch_tool
from .parse_tool import clean_feed_content, extract_feed_metadata
from .relay_tool import RelayManager, RelayResult, format_proxy_stats, get_proxy_recommendation
from .discover_tool import DiscoveryEngine, get_confidence_text, get_discovery_method_text
from .cache_tool import ResultCache
from .dedupe_tool import DuplicateDetector, normalize_url, title_similarity

__all__ = [
    "FetchResult",
    "build_client",
    "fetch_tool",
    "clean_feed_content",
    "extract_feed_metadata",
    "RelayManager",
    "RelayResult",
    "format_proxy_stats",
    "get_proxy_recommendation",
    "DiscoveryEngine",
    "get_confidence_text",
    "get_discovery_method_text",
    "ResultCache",
    "DuplicateDetector",
    "normalize_url",
    "title_similarity",
]
