"""Feed source and duplicate detection models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FeedSource(BaseModel):
    """A feed in the caller's collection."""

    url: str
    custom_title: Optional[str] = None
    category: Optional[str] = None


class ContentFingerprint(BaseModel):
    """Comparable summary of a feed's identity."""

    url: str
    normalized_url: str
    title: str = ""
    description: str = ""
    content_hash: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool
    duplicate_of: Optional[FeedSource] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    reason: str
    normalized_url: str
    content_fingerprint: Optional[ContentFingerprint] = None


class DuplicateGroup(BaseModel):
    """Mutually duplicate feeds found in one collection scan. Not persisted."""

    feeds: list[FeedSource] = Field(..., min_length=2)
    reason: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class DedupeAction(str, Enum):
    KEEP_FIRST = "keep_first"
    KEEP_LAST = "keep_last"
    MERGE = "merge"
    USER_SELECT = "user_select"


class DedupeOptions(BaseModel):
    action: DedupeAction = DedupeAction.KEEP_FIRST
    preferred_feed: Optional[FeedSource] = None


class RemovedDuplicate(BaseModel):
    """Audit record for one removed feed."""

    original_feed: FeedSource
    duplicate_of: FeedSource


class DedupeResult(BaseModel):
    unique_feeds: list[FeedSource] = Field(default_factory=list)
    removed_duplicates: list[RemovedDuplicate] = Field(default_factory=list)
