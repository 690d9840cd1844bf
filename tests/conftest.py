"""Shared fixtures: an in-memory web served through httpx.MockTransport."""

import asyncio
import json
from typing import Callable, Optional

import httpx
import pytest

from feed_resolution.agent.resolver import FeedResolver
from feed_resolution.config.loader import (
    Config,
    DiscoveryConfig,
    RelayConfig,
    RelayEndpoint,
    RetryPolicy,
)

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>{title}</title>
    <link>https://example.com/</link>
    <description>{description}</description>
    <item><title>First post</title><link>https://example.com/1</link></item>
  </channel>
</rss>"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>{title}</title>
  <subtitle>{description}</subtitle>
  <entry><title>Entry</title></entry>
</feed>"""


def rss(title: str = "Test Blog", description: str = "A blog about testing") -> str:
    return RSS_FEED.format(title=title, description=description)


def atom(title: str = "Atom Blog", description: str = "An atom feed") -> str:
    return ATOM_FEED.format(title=title, description=description)


def html_page(*links: tuple[str, str], body: str = "") -> str:
    """Home page with <link rel="alternate"> tags given as (mime type, href)."""
    tags = "\n".join(
        f'<link rel="alternate" type="{typ}" title="Feed" href="{href}">' for typ, href in links
    )
    return f"<!DOCTYPE html><html><head><title>Site</title>{tags}</head><body>{body}</body></html>"


def _key(url: httpx.URL) -> str:
    return f"{url.host}{url.raw_path.decode('ascii')}"


class FakeWeb:
    """
    Routes keyed by host + path (+ query). Unknown URLs answer 404, or raise
    default_error when set. Every request is logged.
    """

    def __init__(self):
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.hosts: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[str] = []
        self.default_error: Optional[type[Exception]] = None
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def add(self, url: str, body: str, status: int = 200, content_type: str = "application/rss+xml") -> None:
        self.routes[_key(httpx.URL(url))] = lambda request: httpx.Response(
            status, text=body, headers={"content-type": content_type}
        )

    def add_html(self, url: str, body: str, status: int = 200) -> None:
        self.add(url, body, status, content_type="text/html; charset=utf-8")

    def fail(self, url: str, error: type[Exception] = httpx.ConnectError) -> None:
        def raise_error(request: httpx.Request) -> httpx.Response:
            raise error("simulated failure", request=request)

        self.routes[_key(httpx.URL(url))] = raise_error

    def on_host(self, host: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.hosts[host] = handler

    def count(self, fragment: str = "") -> int:
        return sum(1 for u in self.requests if fragment in u)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            route = self.routes.get(_key(request.url)) or self.hosts.get(request.url.host)
            if route is not None:
                return route(request)
            if self.default_error is not None:
                raise self.default_error("simulated failure", request=request)
            return httpx.Response(404, text="Not Found")
        finally:
            self.in_flight -= 1


def relay_json(body: str) -> Callable[[httpx.Request], httpx.Response]:
    """Relay handler wrapping body in a {"contents": ...} envelope."""
    return lambda request: httpx.Response(200, text=json.dumps({"contents": body}))


def relay_raw(body: str, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, text=body)


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
def client(web):
    client = httpx.AsyncClient(transport=httpx.MockTransport(web.handler), follow_redirects=True)
    yield client
    asyncio.run(client.aclose())


@pytest.fixture
def relay_endpoints() -> list[RelayEndpoint]:
    return [
        RelayEndpoint(
            name="RelayA",
            url_template="https://relay-a.test/get?url={url}",
            priority=1,
            response_format="json_contents",
        ),
        RelayEndpoint(
            name="RelayB",
            url_template="https://relay-b.test/raw?url={url}",
            priority=2,
        ),
    ]


@pytest.fixture
def config(relay_endpoints) -> Config:
    return Config(
        retry_policy=RetryPolicy(max_attempts=2, backoff_seconds=0, backoff_max_seconds=0),
        relays=RelayConfig(endpoints=relay_endpoints),
        discovery=DiscoveryConfig(common_paths=["/rss.xml", "/feed.xml", "/atom.xml"]),
    )


@pytest.fixture
def resolver(config, client) -> FeedResolver:
    return FeedResolver(config, client=client)
