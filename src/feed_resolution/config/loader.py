"""Configuration loader for the feed resolution system."""

import json
from pathlib import Path
from typing import Any, Literal
from urllib.parse import quote

import yaml
from pydantic import BaseModel, Field


DEFAULT_COMMON_PATHS = [
    "/rss.xml",
    "/feed.xml",
    "/atom.xml",
    "/rss",
    "/feed",
    "/atom",
    "/index.xml",
    "/index.rss",
    "/rss2.xml",
    "/feeds/all.atom.xml",
    "/feeds/posts/default",
    "/?feed=rss2",
    "/wp-rss2.php",
    "/blog/feed",
    "/blog/rss.xml",
    "/news/rss.xml",
    "/rss/index.xml",
]


class FetchConfig(BaseModel):
    """HTTP fetch settings."""

    timeout_seconds: float = Field(default=10.0, gt=0)
    user_agent: str = Field(default="feed-resolution/0.1 (+feed discovery and validation)")


class RetryPolicy(BaseModel):
    """Retry configuration for transient failures."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=4.0, ge=0)


class RelayEndpoint(BaseModel):
    """A third-party relay that fetches a resource on our behalf."""

    name: str
    url_template: str = Field(..., description="Must contain {url}")
    priority: int = Field(default=1, ge=0)
    timeout_seconds: float = Field(default=10.0, gt=0)
    enabled: bool = True
    encode_url: bool = True
    response_format: Literal["raw", "json_contents"] = "raw"

    def build_url(self, target: str) -> str:
        return self.url_template.format(url=quote(target, safe="") if self.encode_url else target)


def _default_relays() -> list[RelayEndpoint]:
    return [
        RelayEndpoint(
            name="AllOrigins",
            url_template="https://api.allorigins.win/get?url={url}",
            priority=1,
            response_format="json_contents",
        ),
        RelayEndpoint(
            name="CorsProxy.io",
            url_template="https://corsproxy.io/?url={url}",
            priority=2,
        ),
        RelayEndpoint(
            name="CodeTabs",
            url_template="https://api.codetabs.com/v1/proxy?quest={url}",
            priority=3,
        ),
        RelayEndpoint(
            name="ThingProxy",
            url_template="https://thingproxy.freeboard.io/fetch/{url}",
            priority=4,
            encode_url=False,
        ),
    ]


class RelayConfig(BaseModel):
    """Relay failover configuration."""

    endpoints: list[RelayEndpoint] = Field(default_factory=_default_relays)
    reorder_by_success: bool = Field(default=True)
    failure_threshold: int = Field(default=3, ge=1)
    recovery_seconds: float = Field(default=300.0, ge=0)


class DiscoveryConfig(BaseModel):
    """Feed discovery configuration."""

    common_paths: list[str] = Field(default_factory=lambda: list(DEFAULT_COMMON_PATHS))
    max_concurrency: int = Field(default=5, ge=1)
    probe_timeout_seconds: float = Field(default=8.0, gt=0)
    scan_anchors: bool = Field(default=True)
    max_references: int = Field(default=20, ge=1)


class CacheConfig(BaseModel):
    """Result cache TTLs and bounds."""

    success_ttl_seconds: float = Field(default=30 * 60, gt=0)
    failure_ttl_seconds: float = Field(default=5 * 60, gt=0)
    discovery_ttl_seconds: float = Field(default=10 * 60, gt=0)
    max_entries: int = Field(default=500, ge=1)
    max_memory_bytes: int = Field(default=5 * 1024 * 1024, ge=1024)


class DuplicateConfig(BaseModel):
    """Duplicate detection configuration."""

    title_similarity_threshold: float = Field(default=0.9, ge=0, le=1)
    fingerprint_concurrency: int = Field(default=5, ge=1)
    fingerprint_cache_size: int = Field(default=1000, ge=1)


class Config(BaseModel):
    """Full system configuration."""

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    relays: RelayConfig = Field(default_factory=RelayConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    duplicates: DuplicateConfig = Field(default_factory=DuplicateConfig)
    history_limit: int = Field(default=20, ge=1)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load config from YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Load config from dictionary."""
        return cls(**data)


def load_config(path: str | Path) -> Config:
    """Load configuration from file (YAML or JSON)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        content = f.read()

    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content) or {}
    else:
        data = json.loads(content)

    return Config.from_dict(data)
