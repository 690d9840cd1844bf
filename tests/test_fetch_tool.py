import asyncio

import httpx
import pytest

from feed_resolution.errors import ErrorKind, FetchError
from feed_resolution.tools.fetch_tool import classify_status, fetch_tool

from conftest import rss


def test_successful_fetch_returns_body_and_final_url(web, client):
    web.add("https://example.com/rss.xml", rss())
    result = asyncio.run(fetch_tool(client, "https://example.com/rss.xml"))
    assert result.ok
    assert result.http_status == 200
    assert result.final_url == "https://example.com/rss.xml"
    assert "Test Blog" in result.body
    assert result.content_type.startswith("application/rss+xml")


def test_redirect_is_followed(web, client):
    web.routes["example.com/old"] = lambda request: httpx.Response(
        301, headers={"location": "https://example.com/new"}
    )
    web.add("https://example.com/new", rss())
    result = asyncio.run(fetch_tool(client, "https://example.com/old"))
    assert result.final_url == "https://example.com/new"


@pytest.mark.parametrize(
    "status,kind",
    [
        (404, ErrorKind.HTTP_NOT_FOUND),
        (410, ErrorKind.HTTP_NOT_FOUND),
        (403, ErrorKind.CORS),
        (401, ErrorKind.CORS),
        (500, ErrorKind.HTTP_ERROR),
        (429, ErrorKind.HTTP_ERROR),
    ],
)
def test_status_classification(web, client, status, kind):
    web.add("https://example.com/x", "nope", status=status)
    with pytest.raises(FetchError) as exc_info:
        asyncio.run(fetch_tool(client, "https://example.com/x"))
    assert exc_info.value.kind is kind
    assert exc_info.value.status_code == status
    assert classify_status(status) is kind


def test_connection_error_is_network(web, client):
    web.fail("https://down.example/feed", httpx.ConnectError)
    with pytest.raises(FetchError) as exc_info:
        asyncio.run(fetch_tool(client, "https://down.example/feed"))
    assert exc_info.value.kind is ErrorKind.NETWORK
    assert exc_info.value.retryable


def test_timeout_is_classified(web, client):
    web.fail("https://slow.example/feed", httpx.ReadTimeout)
    with pytest.raises(FetchError) as exc_info:
        asyncio.run(fetch_tool(client, "https://slow.example/feed", timeout=2))
    assert exc_info.value.kind is ErrorKind.TIMEOUT
    assert "timed out" in exc_info.value.message


def test_raise_for_status_false_returns_error_response(web, client):
    result = asyncio.run(fetch_tool(client, "https://example.com/missing", raise_for_status=False))
    assert result.http_status == 404
    assert not result.ok
