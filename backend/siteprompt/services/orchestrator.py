"""Quick scan and deep crawl use cases built on the crawler and extractor."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

import httpx

from siteprompt.config import Settings
from siteprompt.errors import CrawlError
from siteprompt.services.crawler import RecursiveCrawler
from siteprompt.services.extractor import FETCH_FAILED_TITLE, PageRecord, error_record, extract
from siteprompt.services.fetcher import HtmlFetcher, open_client
from siteprompt.services.retry import RetryPolicy
from siteprompt.services.sitemap import SitemapResolver
from siteprompt.services.urls import (
    has_binary_extension,
    normalize_url,
    path_depth,
    validate_root_url,
)

logger = logging.getLogger(__name__)

PAGE_START_MARKER = "--- START PAGE:"
PAGE_END_MARKER = "--- END PAGE ---"


def format_page_block(page: PageRecord) -> str:
    """Render one page in the delimiter format downstream prompts rely on."""
    return (
        f"{PAGE_START_MARKER} {page.url} ---\n"
        f"Title: {page.title}\n"
        f"Content:\n{page.content}\n"
        f"{PAGE_END_MARKER}"
    )


def format_crawled_text(pages: list[PageRecord]) -> str:
    """Join page blocks with a blank line between them."""
    return "\n\n".join(format_page_block(page) for page in pages)


def split_crawled_text(text: str) -> list[str]:
    """Split an aggregate blob back into its page blocks (for chunking)."""
    blocks = []
    for part in text.split(PAGE_START_MARKER):
        part = part.strip()
        if part:
            blocks.append(f"{PAGE_START_MARKER} {part}")
    return blocks


@dataclass
class CrawlResult:
    """Aggregate output of a quick scan or deep crawl."""

    crawled_text: str
    page_count: int
    pages: list[PageRecord] = field(default_factory=list)

    @classmethod
    def from_pages(cls, pages: list[PageRecord]) -> "CrawlResult":
        return cls(crawled_text=format_crawled_text(pages), page_count=len(pages), pages=pages)


class CrawlOrchestrator:
    """Runs crawls with a fresh HTTP client per call.

    Args:
        settings: Application settings
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        on_progress: Optional callback for progress reporting (done, total, url)
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        on_progress: Callable[[int, int, str], None] | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings
        self.transport = transport
        self.on_progress = on_progress
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)

    def _report_progress(self, done: int, total: int, url: str) -> None:
        """Report crawl progress if callback is set."""
        if self.on_progress:
            self.on_progress(done, total, url)

    @staticmethod
    def _check_url(url: str) -> None:
        error = validate_root_url(url)
        if error:
            raise ValueError(error)

    async def fetch_and_extract(self, fetcher: HtmlFetcher, url: str) -> PageRecord:
        """Fetch a page and extract it. Failures become sentinel records."""
        result = await fetcher.fetch(url, timeout=self.settings.page_timeout_seconds)
        if not result.ok:
            logger.error(f"Failed to fetch {url}: {result.error}")
            return error_record(url, FETCH_FAILED_TITLE, f"Failed to fetch URL: {result.error}")
        # Links resolve against the page we landed on after redirects
        return extract(result.final_url or url, result.html, self.settings.max_content_chars)

    async def quick_scan(self, url: str) -> CrawlResult:
        """Homepage plus up to four of its internal links.

        Raises:
            ValueError: If the URL is not a valid http(s) URL
            CrawlError: If the homepage cannot be fetched or parsed
        """
        self._check_url(url)
        max_pages = self.settings.quick_scan_max_pages
        logger.info(f"Quick scan starting for {url}")

        async with open_client(self.settings, self.transport) as client:
            fetcher = HtmlFetcher(client, self.retry_policy, self.settings.max_html_chars)

            homepage = await self.fetch_and_extract(fetcher, url)
            if homepage.is_error:
                raise CrawlError(f"Failed to fetch the main URL: {url}. Cannot proceed.", url=url)
            pages = [homepage]
            self._report_progress(1, max_pages, url)

            # homepage.url is the post-redirect address
            seen = {normalize_url(url), homepage.url}
            additional: list[str] = []
            for link in sorted(homepage.internal_links, key=lambda u: (path_depth(u), u)):
                if len(additional) >= max_pages - 1:
                    break
                key = normalize_url(link)
                if key in seen or has_binary_extension(link):
                    continue
                seen.add(key)
                additional.append(key)

            logger.info(f"Quick scan found {len(additional)} additional URLs on the homepage")

            results = await asyncio.gather(
                *[self.fetch_and_extract(fetcher, link) for link in additional],
                return_exceptions=True,
            )
            for link, page in zip(additional, results):
                if isinstance(page, BaseException):
                    logger.error(f"Quick scan failed for {link}: {page}")
                    continue
                if not page.is_error:
                    pages.append(page)
                    self._report_progress(len(pages), max_pages, link)

        logger.info(f"Quick scan extracted {len(pages)} pages from {url}")
        return CrawlResult.from_pages(pages)

    async def deep_crawl(
        self,
        url: str,
        max_pages: int | None = None,
        crawl_depth: int | None = None,
    ) -> CrawlResult:
        """Discover up to ``max_pages`` URLs and extract every one.

        Shallow paths are extracted first. Pages that fail are dropped.

        Raises:
            ValueError: If the URL or limits are invalid
            CrawlError: If the root is unreachable or zero pages were extracted
        """
        self._check_url(url)
        max_pages = max_pages or self.settings.deep_crawl_max_pages
        crawl_depth = crawl_depth or self.settings.deep_crawl_depth
        if not 1 <= max_pages <= 100:
            raise ValueError("max_pages must be between 1 and 100")
        if not 1 <= crawl_depth <= 4:
            raise ValueError("crawl_depth must be between 1 and 4")

        logger.info(f"Deep crawl starting for {url} (depth {crawl_depth}, max {max_pages} pages)")

        async with open_client(self.settings, self.transport) as client:
            fetcher = HtmlFetcher(client, self.retry_policy, self.settings.max_html_chars)
            crawler = RecursiveCrawler(
                fetcher,
                SitemapResolver(client, self.settings, self.retry_policy),
                self.settings,
            )
            urls = await crawler.crawl(url, crawl_depth, max_urls=max_pages)

            # Stable sort keeps discovery order within the same depth
            candidates = sorted(dict.fromkeys(urls), key=path_depth)[:max_pages]
            logger.info(f"Extracting {len(candidates)} unique URLs")

            pages: list[PageRecord] = []
            batch_size = self.settings.extraction_batch_size
            for start in range(0, len(candidates), batch_size):
                batch = candidates[start:start + batch_size]
                results = await asyncio.gather(
                    *[self.fetch_and_extract(fetcher, page_url) for page_url in batch],
                    return_exceptions=True,
                )
                for page_url, page in zip(batch, results):
                    if isinstance(page, BaseException):
                        logger.error(f"Extraction failed for {page_url}: {page}")
                        continue
                    if not page.is_error:
                        pages.append(page)
                self._report_progress(min(start + batch_size, len(candidates)), len(candidates), url)

        if not pages:
            raise CrawlError(f"No pages could be extracted from {url}", url=url)

        logger.info(f"Deep crawl extracted {len(pages)} pages from {url}")
        return CrawlResult.from_pages(pages)
