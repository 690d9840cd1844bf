import asyncio

import httpx
import pytest

from feed_resolution.config.loader import DiscoveryConfig
from feed_resolution.models.discovered_feed import DiscoveredFeed, DiscoveryMethod, FeedType
from feed_resolution.tools.discover_tool import (
    NO_FEEDS_SUGGESTION,
    DiscoveryEngine,
    find_feed_references,
    get_confidence_text,
    get_discovery_method_text,
    merge_discovered,
    normalize_site_url,
)

from conftest import atom, html_page, rss


@pytest.fixture
def engine(client, config):
    return DiscoveryEngine(client, config.discovery)


def test_references_from_links_meta_and_anchors():
    page = """
    <html><head>
      <link rel="alternate" type="application/rss+xml" title="Main" href="../feed.xml">
      <link rel="alternate" type="application/atom+xml" href="./atom.xml">
      <link rel="stylesheet" type="text/css" href="/style.css">
      <meta name="rss-feed" content="/meta-feed.xml">
    </head><body>
      <a href="/podcast/rss">Podcast RSS</a>
      <a href="/about">About</a>
    </body></html>
    """
    refs = find_feed_references(page, "https://example.com/blog/post/")
    found = {(r.url, r.method) for r in refs}
    assert ("https://example.com/blog/feed.xml", DiscoveryMethod.LINK_TAG) in found
    assert ("https://example.com/blog/post/atom.xml", DiscoveryMethod.LINK_TAG) in found
    assert ("https://example.com/meta-feed.xml", DiscoveryMethod.META_TAG) in found
    assert ("https://example.com/podcast/rss", DiscoveryMethod.CONTENT_SCAN) in found
    assert not any("style.css" in r.url or "about" in r.url for r in refs)


def test_anchor_scan_can_be_disabled():
    page = '<html><body><a href="/feed.xml">Feed</a></body></html>'
    assert find_feed_references(page, "https://example.com/", scan_anchors=False) == []


def test_merge_keeps_strongest_entry_and_sorts():
    feeds = [
        DiscoveredFeed(url="https://e.com/a", type=FeedType.RSS, discovery_method=DiscoveryMethod.META_TAG, confidence=0.6),
        DiscoveredFeed(url="https://e.com/b", type=FeedType.RSS, discovery_method=DiscoveryMethod.LINK_TAG, confidence=0.85),
        DiscoveredFeed(url="https://e.com/b", type=FeedType.RSS, discovery_method=DiscoveryMethod.COMMON_PATH, confidence=0.9),
        DiscoveredFeed(url="https://e.com/c", type=FeedType.RSS, discovery_method=DiscoveryMethod.LINK_TAG, confidence=0.85),
    ]
    merged = merge_discovered(feeds)
    assert [f.url for f in merged] == ["https://e.com/b", "https://e.com/c", "https://e.com/a"]
    assert merged[0].discovery_method is DiscoveryMethod.COMMON_PATH


def test_common_paths_probe_every_path(web, engine):
    web.add("https://example.com/feed.xml", rss("Common"))
    found = asyncio.run(engine.try_common_feed_paths("https://example.com/some/page"))
    assert [f.url for f in found] == ["https://example.com/feed.xml"]
    assert found[0].discovery_method is DiscoveryMethod.COMMON_PATH
    assert found[0].confidence > 0.8
    assert web.count("example.com") == 3


def test_scan_drops_references_that_are_not_feeds(web, engine):
    web.add("https://example.com/feeds/main.xml", atom("Main"))
    web.add_html("https://example.com/not-a-feed.xml", "<html><body>hi</body></html>")
    page = html_page(
        ("application/atom+xml", "/feeds/main.xml"),
        ("application/rss+xml", "/not-a-feed.xml"),
        ("application/rss+xml", "/missing.xml"),
    )
    found = asyncio.run(engine.scan_html_for_feeds(page, "https://example.com/"))
    assert len(found) == 1
    assert found[0].type is FeedType.ATOM
    assert found[0].title == "Main"
    assert found[0].discovery_method is DiscoveryMethod.LINK_TAG


def test_discover_from_website_merges_and_ranks(web, engine):
    web.add_html("https://example.com/", html_page(("application/atom+xml", "/blog/atom.xml")))
    web.add("https://example.com/rss.xml", rss("Site RSS"))
    web.add("https://example.com/blog/atom.xml", atom("Blog Atom"))

    result = asyncio.run(engine.discover_from_website("example.com"))

    assert result.original_url == "example.com"
    assert [f.url for f in result.discovered_feeds] == [
        "https://example.com/rss.xml",
        "https://example.com/blog/atom.xml",
    ]
    confidences = [f.confidence for f in result.discovered_feeds]
    assert confidences == sorted(confidences, reverse=True)
    assert all(0 <= c <= 1 for c in confidences)
    assert result.successful_attempts == 3
    assert result.total_attempts == 5
    assert "Found 2 feeds on this website" in result.suggestions


def test_relative_references_resolve_against_final_page_url(web, engine):
    web.routes["example.com/"] = lambda request: httpx.Response(
        302, headers={"location": "https://example.com/blog/"}
    )
    web.add_html("https://example.com/blog/", html_page(("application/rss+xml", "feed.xml")))
    web.add("https://example.com/blog/feed.xml", rss("Blog"))

    result = asyncio.run(engine.discover_from_website("https://example.com"))
    assert [f.url for f in result.discovered_feeds] == ["https://example.com/blog/feed.xml"]


def test_unreachable_site_returns_empty_result(web, engine):
    web.default_error = httpx.ConnectError
    result = asyncio.run(asyncio.wait_for(engine.discover_from_website("https://example.com"), 5))
    assert result.discovered_feeds == []
    assert NO_FEEDS_SUGGESTION in result.suggestions
    assert result.total_attempts == 1


def test_no_feeds_found(web, engine):
    web.add_html("https://example.com/", "<html><body>Nothing here</body></html>")
    result = asyncio.run(engine.discover_from_website("https://example.com"))
    assert result.discovered_feeds == []
    assert result.suggestions[0] == NO_FEEDS_SUGGESTION


def test_probe_concurrency_is_bounded(web, client):
    engine = DiscoveryEngine(
        client,
        DiscoveryConfig(common_paths=[f"/feed{i}.xml" for i in range(8)], max_concurrency=2),
    )
    web.delay = 0.01
    asyncio.run(engine.try_common_feed_paths("https://example.com"))
    assert web.count("example.com/feed") == 8
    assert web.max_in_flight <= 2


def test_common_paths_can_be_swapped(web, engine):
    engine.set_common_paths(["/custom.rss"])
    web.add("https://example.com/custom.rss", rss())
    found = asyncio.run(engine.try_common_feed_paths("https://example.com"))
    assert engine.common_paths == ("/custom.rss",)
    assert len(found) == 1


def test_normalize_site_url():
    assert normalize_site_url("example.com") == "https://example.com"
    assert normalize_site_url("http://example.com") == "http://example.com"
    assert normalize_site_url("  ") == ""


def test_text_helpers():
    assert get_confidence_text(0.9) == "Very High"
    assert get_confidence_text(0.85) == "High"
    assert get_confidence_text(0.5) == "Very Low"
    assert get_discovery_method_text(DiscoveryMethod.LINK_TAG) == "HTML link tag"
    assert get_discovery_method_text("common-path") == "Common path"
    assert get_discovery_method_text("bogus") == "Unknown"
