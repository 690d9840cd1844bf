"""Error taxonomy for feed resolution.

Every failure is classified once, at the fetch boundary, into an ErrorKind.
Downstream code branches on the kind, never on message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure classes."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    CORS = "cors"
    HTTP_NOT_FOUND = "http_not_found"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    DISCOVERY_FAILED = "discovery_failed"
    CACHE_MISS = "cache_miss"  # internal, never surfaced


# Kinds worth retrying within the same strategy
TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT})

# Kinds where a relay may succeed where a direct fetch could not
RELAYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.CORS})


class FeedResolutionError(Exception):
    """Base error carrying a classified kind."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(self, message: str, kind: ErrorKind | None = None, status_code: int | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class FetchError(FeedResolutionError):
    """A fetch failed (transport error or non-2xx response)."""


class FeedParseError(FeedResolutionError):
    """Content is not a recognizable RSS, Atom or RDF document."""

    kind = ErrorKind.PARSE_ERROR


class NoRelaysAvailableError(FeedResolutionError):
    """Every relay is disabled or marked unhealthy."""

    kind = ErrorKind.NETWORK


class AllRelaysFailedError(FeedResolutionError):
    """Every relay was tried and none returned usable content."""

    def __init__(self, errors: list[tuple[str, FeedResolutionError]], attempts: list | None = None):
        self.errors = errors
        self.attempts = attempts or []
        summary = "; ".join(f"{name}: {err.message}" for name, err in errors)
        last_kind = errors[-1][1].kind if errors else ErrorKind.NETWORK
        super().__init__(f"All proxies failed ({summary})", kind=last_kind)
