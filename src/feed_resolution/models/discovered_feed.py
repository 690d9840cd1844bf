"""Discovery models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FeedType(str, Enum):
    """Feed document family, decided by root element."""

    RSS = "rss"
    ATOM = "atom"
    RDF = "rdf"


class DiscoveryMethod(str, Enum):
    """How a candidate feed was found."""

    COMMON_PATH = "common-path"
    LINK_TAG = "link-tag"
    META_TAG = "meta-tag"
    CONTENT_SCAN = "content-scan"


# Tie-break order when two methods report the same URL with equal confidence
METHOD_PRIORITY = {
    DiscoveryMethod.COMMON_PATH: 4,
    DiscoveryMethod.LINK_TAG: 3,
    DiscoveryMethod.META_TAG: 2,
    DiscoveryMethod.CONTENT_SCAN: 1,
}


class FeedMetadata(BaseModel):
    """Title, description and type extracted from a feed document."""

    title: Optional[str] = None
    description: Optional[str] = None
    type: FeedType


class DiscoveredFeed(BaseModel):
    """A candidate feed found during discovery."""

    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    type: FeedType
    discovery_method: DiscoveryMethod
    confidence: float = Field(..., ge=0.0, le=1.0)


class FeedDiscoveryResult(BaseModel):
    """Outcome of discovering feeds on one website."""

    original_url: str
    discovered_feeds: list[DiscoveredFeed] = Field(default_factory=list)
    discovery_methods: list[str] = Field(default_factory=list)
    total_attempts: int = 0
    successful_attempts: int = 0
    discovery_time_ms: float = 0.0
    suggestions: list[str] = Field(default_factory=list)
