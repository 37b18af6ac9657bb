"""Sitemap resolution service."""

import asyncio
import html
import logging
import re
from urllib.parse import urlparse

import httpx

from siteprompt.config import Settings
from siteprompt.services.fetcher import TRANSIENT_HTTP_STATUSES, TransientStatusError, is_transient
from siteprompt.services.retry import RetryPolicy
from siteprompt.services.urls import is_same_site, registrable_domain

logger = logging.getLogger(__name__)

# Regex instead of an XML parser: many sitemaps in the wild are not well-formed
LOC_RE = re.compile(r"<loc>\s*(.*?)\s*</loc>", re.IGNORECASE | re.DOTALL)
SITEMAP_INDEX_RE = re.compile(r"<sitemapindex\b", re.IGNORECASE)


class SitemapResolver:
    """Finds in-domain page URLs listed in ``{origin}/sitemap.xml``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        retry_policy: RetryPolicy | None = None,
    ):
        self.client = client
        self.timeout = settings.sitemap_timeout_seconds
        self.max_child_sitemaps = settings.max_child_sitemaps
        self.retry_policy = retry_policy or RetryPolicy()

    @staticmethod
    def sitemap_url(root_url: str) -> str:
        parsed = urlparse(root_url)
        return f"{parsed.scheme}://{parsed.netloc}/sitemap.xml"

    async def resolve(self, root_url: str) -> list[str]:
        """Get in-domain URLs from the site's sitemap.

        Handles both regular sitemaps and sitemap indexes (one level deep).
        A missing or unreachable sitemap is not an error.

        Returns:
            Unique URLs in document order; empty if there is no sitemap.
        """
        root_domain = registrable_domain(root_url)
        sitemap_url = self.sitemap_url(root_url)
        logger.info(f"Attempting to fetch sitemap from: {sitemap_url}")

        text = await self._fetch_text(sitemap_url)
        if text is None:
            return []

        if SITEMAP_INDEX_RE.search(text):
            children = self.extract_locs(text, root_domain)[: self.max_child_sitemaps]
            logger.info(f"Sitemap index with {len(children)} child sitemaps")
            child_texts = await asyncio.gather(*[self._fetch_text(child) for child in children])
            urls: list[str] = []
            for child_text in child_texts:
                if child_text and not SITEMAP_INDEX_RE.search(child_text):
                    urls.extend(self.extract_locs(child_text, root_domain))
            urls = list(dict.fromkeys(urls))
        else:
            urls = self.extract_locs(text, root_domain)

        logger.info(f"Found {len(urls)} in-domain URLs in sitemap")
        return urls

    @staticmethod
    def extract_locs(text: str, root_domain: str) -> list[str]:
        """All ``<loc>`` values whose host belongs to ``root_domain``, deduplicated."""
        urls: dict[str, None] = {}
        for raw in LOC_RE.findall(text):
            loc = html.unescape(raw).strip()
            if loc.startswith("<![CDATA[") and loc.endswith("]]>"):
                loc = loc[9:-3].strip()
            try:
                same_site = is_same_site(loc, root_domain)
                scheme = urlparse(loc).scheme
            except ValueError:
                continue
            if same_site and scheme in ("http", "https"):
                urls[loc] = None
        return list(urls)

    async def _fetch_text(self, url: str) -> str | None:
        """Fetch a sitemap document; None on any non-2xx or network error."""

        async def _get() -> httpx.Response:
            response = await self.client.get(url, timeout=self.timeout)
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
            logger.warning(f"Sitemap {url} returned status {e.response.status_code}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Error fetching sitemap {url}: {e!r}")
            return None

        if not response.is_success:
            logger.warning(f"Sitemap not found or returned status {response.status_code}: {url}")
            return None
        return response.text
