"""HTML fetching with browser-like headers and per-request timeouts."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator

import httpx

from siteprompt.config import Settings
from siteprompt.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


class FetchStatus(str, Enum):
    OK = "ok"
    NOT_HTML = "not_html"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a single GET."""

    url: str
    status: FetchStatus
    html: str = ""
    status_code: int | None = None
    final_url: str | None = None  # After redirects
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK


class TransientStatusError(Exception):
    """Raised internally so the retry policy can retry 429/5xx responses."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def is_transient(exc: BaseException) -> bool:
    """Timeouts, connection failures and 429/5xx responses are worth retrying."""
    return isinstance(exc, (TransientStatusError, httpx.TransportError))


def browser_headers(settings: Settings) -> dict[str, str]:
    """Request headers that look like a desktop browser."""
    return {
        "User-Agent": settings.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9",
        "Accept-Language": settings.accept_language,
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }


@asynccontextmanager
async def open_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Shared client for one crawl; ``transport`` lets tests mock the network."""
    async with httpx.AsyncClient(
        timeout=settings.page_timeout_seconds,
        follow_redirects=True,
        headers=browser_headers(settings),
        transport=transport,
    ) as client:
        yield client


class HtmlFetcher:
    """Fetches pages and classifies responses as success, non-HTML or failure."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        retry_policy: RetryPolicy | None = None,
        max_chars: int | None = None,
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_chars = max_chars

    async def fetch(self, url: str, timeout: float | None = None) -> FetchResult:
        """GET ``url`` and classify the response. Never raises for network errors.

        Args:
            url: Absolute http(s) URL
            timeout: Per-request timeout in seconds (client default if None)

        Returns:
            FetchResult; ``html`` is only populated for 2xx text/html responses
            and is cut to ``max_chars`` characters
        """

        async def _get() -> httpx.Response:
            if timeout is None:
                response = await self.client.get(url)
            else:
                response = await self.client.get(url, timeout=timeout)
            if response.status_code in TRANSIENT_HTTP_STATUSES:
                raise TransientStatusError(response)
            return response

        try:
            response = await self.retry_policy.run(
                _get,
                should_retry=is_transient,
                operation_name=f"GET {url}",
            )
        except TransientStatusError as e:
            logger.warning(f"Giving up on {url}: HTTP {e.response.status_code}")
            return FetchResult(
                url=url,
                status=FetchStatus.FAILED,
                status_code=e.response.status_code,
                error=f"Request failed with status {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            logger.warning(f"Error fetching {url}: {e!r}")
            return FetchResult(url=url, status=FetchStatus.FAILED, error=str(e) or repr(e))

        final_url = str(response.url)

        if not response.is_success:
            return FetchResult(
                url=url,
                status=FetchStatus.FAILED,
                status_code=response.status_code,
                final_url=final_url,
                error=f"Request failed with status {response.status_code}",
            )

        # Only process HTML pages
        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type.lower():
            return FetchResult(
                url=url,
                status=FetchStatus.NOT_HTML,
                status_code=response.status_code,
                final_url=final_url,
                error="Not an HTML page",
            )

        html = response.text
        if self.max_chars is not None and len(html) > self.max_chars:
            logger.warning(f"Truncating {url} from {len(html)} to {self.max_chars} characters")
            html = html[: self.max_chars]

        return FetchResult(
            url=url,
            status=FetchStatus.OK,
            html=html,
            status_code=response.status_code,
            final_url=final_url,
        )
