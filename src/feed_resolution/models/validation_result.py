"""Validation attempt and result models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ErrorKind, FeedResolutionError, TRANSIENT_KINDS
from .discovered_feed import DiscoveredFeed, FeedType


class ValidationMethod(str, Enum):
    """Strategy that produced an attempt."""

    DIRECT = "direct"
    RELAY = "relay"
    DISCOVERY = "discovery"


class ValidationStatus(str, Enum):
    """Terminal status of a validation run."""

    VALID = "valid"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    DISCOVERY_REQUIRED = "discovery_required"


class ClassifiedError(BaseModel):
    """Serializable form of a classified failure."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    retryable: bool = False

    @classmethod
    def from_exception(cls, exc: FeedResolutionError) -> "ClassifiedError":
        return cls(
            kind=exc.kind,
            message=exc.message,
            status_code=exc.status_code,
            retryable=exc.kind in TRANSIENT_KINDS,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationAttempt(BaseModel):
    """One try within a validation run. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    method: ValidationMethod
    success: bool
    error: Optional[ClassifiedError] = None
    relay_used: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    duration_ms: float = Field(default=0.0, ge=0)


class ValidationResult(BaseModel):
    """Outcome of one URL's validation run."""

    url: str
    original_url: str = ""
    is_valid: bool = False
    status: ValidationStatus = ValidationStatus.INVALID
    title: Optional[str] = None
    description: Optional[str] = None
    feed_type: Optional[FeedType] = None
    error: Optional[str] = None
    final_error: Optional[ClassifiedError] = None
    final_method: Optional[ValidationMethod] = None
    relay_used: Optional[str] = None
    attempts: list[ValidationAttempt] = Field(default_factory=list)
    total_retries: int = Field(default=0, ge=0)
    total_validation_time_ms: float = Field(default=0.0, ge=0)
    discovered_feeds: Optional[list[DiscoveredFeed]] = None
    requires_user_selection: bool = False
    suggestions: list[str] = Field(default_factory=list)
    validated_at: datetime = Field(default_factory=_utcnow)
    from_cache: bool = False


class ValidationStats(BaseModel):
    """Aggregate attempt counts for one URL's validation history."""

    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    total_retries: int = 0
    last_attempt_at: Optional[datetime] = None
