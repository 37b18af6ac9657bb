"""Sitemap-first website crawler with breadth-first recursive fallback."""

import asyncio
import logging
from dataclasses import dataclass, field

from siteprompt.config import Settings
from siteprompt.errors import CrawlError
from siteprompt.services.extractor import extract_links, strip_noise
from siteprompt.services.fetcher import HtmlFetcher
from siteprompt.services.sitemap import SitemapResolver
from siteprompt.services.urls import (
    has_binary_extension,
    is_same_site,
    normalize_url,
    registrable_domain,
)

logger = logging.getLogger(__name__)


@dataclass
class CrawlState:
    """Bookkeeping for a single crawl call.

    ``discovered_urls`` only grows and every URL enters it at most once, so a
    URL can never sit in two depth buckets. ``crawled_urls`` holds URLs whose
    fetch was attempted and is always a subset of ``discovered_urls``.
    """

    root_url: str
    root_domain: str
    max_urls: int | None = None
    max_per_depth: int = 200
    discovered_urls: set[str] = field(default_factory=set)
    crawled_urls: set[str] = field(default_factory=set)
    urls_by_depth: dict[int, set[str]] = field(default_factory=dict)
    discovery_order: list[str] = field(default_factory=list)

    @property
    def is_full(self) -> bool:
        return self.max_urls is not None and len(self.discovered_urls) >= self.max_urls

    def discover(self, url: str, depth: int | None = None) -> bool:
        """Record a new URL; optionally queue it for crawling at ``depth``.

        Check and insert happen together with no await in between.

        Returns:
            True if the URL was new and accepted.
        """
        if url in self.discovered_urls or self.is_full:
            return False
        if depth is not None:
            bucket = self.urls_by_depth.setdefault(depth, set())
            if len(bucket) >= self.max_per_depth:
                return False
            bucket.add(url)
        self.discovered_urls.add(url)
        self.discovery_order.append(url)
        return True

    def frontier(self, depth: int) -> list[str]:
        """URLs queued at ``depth`` that have not been fetched, in discovery order."""
        bucket = self.urls_by_depth.get(depth, set())
        return [u for u in self.discovery_order if u in bucket and u not in self.crawled_urls]

    def result(self) -> list[str]:
        urls = list(self.discovery_order)
        if self.max_urls is not None:
            urls = urls[: self.max_urls]
        return urls


class RecursiveCrawler:
    """Discovers in-domain URLs from the sitemap, then by following links.

    The recursive phase only runs when the sitemap yields fewer than
    ``settings.sitemap_min_urls`` URLs (root included).
    """

    def __init__(
        self,
        fetcher: HtmlFetcher,
        sitemap: SitemapResolver,
        settings: Settings,
    ):
        self.fetcher = fetcher
        self.sitemap = sitemap
        self.concurrency = settings.crawl_concurrency
        self.max_per_depth = settings.max_urls_per_depth
        self.min_sitemap_urls = settings.sitemap_min_urls
        self.timeout = settings.crawl_timeout_seconds

    async def crawl(self, root_url: str, max_depth: int, max_urls: int | None = None) -> list[str]:
        """Discover URLs for a site.

        Args:
            root_url: http(s) URL to start from
            max_depth: Number of breadth-first levels to expand (1-4)
            max_urls: Stop once this many unique URLs are known

        Returns:
            Normalized URLs in discovery order, root first unless the sitemap
            listed it earlier.

        Raises:
            CrawlError: If the root page could not be fetched and nothing
                else was discovered.
        """
        state = await self.crawl_with_state(root_url, max_depth, max_urls)
        return state.result()

    async def crawl_with_state(
        self,
        root_url: str,
        max_depth: int,
        max_urls: int | None = None,
    ) -> CrawlState:
        """Same as :meth:`crawl` but returns the full crawl bookkeeping."""
        root = normalize_url(root_url)
        state = CrawlState(
            root_url=root,
            root_domain=registrable_domain(root),
            max_urls=max_urls,
            max_per_depth=self.max_per_depth,
        )

        # Strategy 1: sitemap first
        for url in await self.sitemap.resolve(root):
            if is_same_site(url, state.root_domain) and not has_binary_extension(url):
                state.discover(normalize_url(url))

        # Root is always queued at depth 0, even if the sitemap listed it
        state.discovered_urls.discard(root)
        if root in state.discovery_order:
            state.discovery_order.remove(root)
        state.discovery_order.insert(0, root)
        state.discovered_urls.add(root)
        state.urls_by_depth.setdefault(0, set()).add(root)

        # Strategy 2: recursive fallback
        if len(state.discovered_urls) < self.min_sitemap_urls:
            logger.info(
                f"Sitemap provided {len(state.discovered_urls)} URLs for {root}. "
                "Starting recursive crawl as fallback."
            )
            await self._crawl_recursive(state, max_depth)

        logger.info(
            f"Discovery complete for {root}: {len(state.discovered_urls)} unique URLs, "
            f"{len(state.crawled_urls)} fetched"
        )
        return state

    async def _crawl_recursive(self, state: CrawlState, max_depth: int) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)
        root_ok = True

        for depth in range(max_depth):
            if state.is_full:
                break

            batch = state.frontier(depth)
            if not batch:
                break
            logger.info(f"Depth {depth + 1}: processing {len(batch)} URLs")

            async def crawl_one(url: str) -> bool:
                async with semaphore:
                    return await self._expand(state, url, depth)

            # Depth N+1 starts only after every fetch at depth N has settled
            results = await asyncio.gather(*[crawl_one(url) for url in batch])
            if depth == 0:
                root_ok = results[0]

        if not root_ok and len(state.discovered_urls) <= 1:
            raise CrawlError(f"Failed to fetch the root URL: {state.root_url}", url=state.root_url)

    async def _expand(self, state: CrawlState, url: str, depth: int) -> bool:
        """Fetch one page and queue its in-domain links at ``depth + 1``."""
        if url in state.crawled_urls:
            return True
        state.crawled_urls.add(url)

        result = await self.fetcher.fetch(url, timeout=self.timeout)
        if not result.ok:
            logger.debug(f"Skipping {url}: {result.status.value} ({result.error})")
            return False

        try:
            internal, _ = extract_links(strip_noise(result.html), result.final_url or url)
        except Exception as e:
            logger.error(f"Link extraction failed for {url}: {e}")
            return False

        added = 0
        for link in sorted(internal):
            if not is_same_site(link, state.root_domain) or has_binary_extension(link):
                continue
            if state.discover(normalize_url(link), depth + 1):
                added += 1
        logger.debug(f"{url}: {added} new URLs queued at depth {depth + 1}")
        return True
