"""Fetch tool - retrieve a resource via HTTP and classify failures."""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from ..errors import ErrorKind, FetchError

logger = logging.getLogger(__name__)

NOT_FOUND_STATUSES = frozenset({404, 410})
# The origin refused us; a relay may get through where we could not
ACCESS_DENIED_STATUSES = frozenset({401, 403, 451})


@dataclass
class FetchResult:
    """Result from fetch_tool."""

    final_url: str
    http_status: int
    status_text: str
    content_type: str
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.http_status < 300

    def raise_for_error(self) -> "FetchResult":
        """Raise a classified FetchError for non-2xx responses."""
        if self.ok:
            return self
        kind = classify_status(self.http_status)
        raise FetchError(
            f"HTTP {self.http_status}: {self.status_text}".rstrip(": "),
            kind=kind,
            status_code=self.http_status,
        )


def classify_status(status: int) -> ErrorKind:
    if status in NOT_FOUND_STATUSES:
        return ErrorKind.HTTP_NOT_FOUND
    if status in ACCESS_DENIED_STATUSES:
        return ErrorKind.CORS
    return ErrorKind.HTTP_ERROR


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map a transport exception onto an ErrorKind."""
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    return ErrorKind.NETWORK


async def fetch_tool(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = 10.0,
    raise_for_status: bool = True,
) -> FetchResult:
    """
    Fetch a URL with a bounded timeout.
    Transport failures raise FetchError (network / timeout). Non-2xx responses
    raise FetchError (http_not_found / cors / http_error) unless
    raise_for_status is False.
    """
    try:
        response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout=timeout)
    except (httpx.HTTPError, asyncio.TimeoutError, OSError) as e:
        kind = classify_exception(e)
        message = str(e) or type(e).__name__
        if kind is ErrorKind.TIMEOUT:
            message = f"Request timed out after {timeout:g}s"
        logger.debug("Fetch failed %s: [%s] %s", url, kind.value, message)
        raise FetchError(message, kind=kind) from e
    except httpx.InvalidURL as e:
        raise FetchError(f"Invalid URL: {url}", kind=ErrorKind.NETWORK) from e

    result = FetchResult(
        final_url=str(response.url),
        http_status=response.status_code,
        status_text=response.reason_phrase or "",
        content_type=response.headers.get("content-type", "application/octet-stream"),
        body=response.text,
    )
    logger.debug("Fetched %s -> HTTP %s", url, result.http_status)
    if raise_for_status:
        result.raise_for_error()
    return result


def build_client(user_agent: str, timeout: float = 10.0) -> httpx.AsyncClient:
    """Create the shared async client used by every strategy."""
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        trust_env=False,
        headers={"User-Agent": user_agent, "Accept": "*/*"},
    )
