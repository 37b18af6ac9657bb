"""Tests for sitemap-first discovery and the recursive fallback."""

import pytest

from siteprompt.errors import CrawlError
from siteprompt.services.crawler import CrawlState, RecursiveCrawler
from siteprompt.services.fetcher import HtmlFetcher, open_client
from siteprompt.services.retry import RetryPolicy
from siteprompt.services.sitemap import SitemapResolver
from siteprompt.services.urls import is_same_site


async def run_crawl(settings, site, root="https://example.com/", max_depth=2, max_urls=None):
    async with open_client(settings, site.transport) as client:
        policy = RetryPolicy.from_settings(settings)
        crawler = RecursiveCrawler(
            HtmlFetcher(client, policy),
            SitemapResolver(client, settings, policy),
            settings,
        )
        return await crawler.crawl_with_state(root, max_depth, max_urls)


def small_site(site):
    """Root -> /a, /b; /a -> /a/deep; /a/deep -> /a/deep/deeper."""
    site.page("/", links=["/a", "/b", "https://other.org/x", "/brochure.pdf", "mailto:x@example.com"])
    site.page("/a", links=["/a/deep", "/", "https://blog.example.com/post"])
    site.page("/b", links=["/a?ref=b", "/b#section"])
    site.page("/a/deep", links=["/a/deep/deeper"])
    site.page("https://blog.example.com/post")
    return site


class TestCrawlState:
    def test_discover_once(self):
        state = CrawlState(root_url="https://example.com/", root_domain="example.com")
        assert state.discover("https://example.com/a", 1)
        assert not state.discover("https://example.com/a", 2)
        assert state.urls_by_depth == {1: {"https://example.com/a"}}

    def test_per_depth_cap(self):
        state = CrawlState(root_url="r", root_domain="example.com", max_per_depth=2)
        assert state.discover("u1", 1)
        assert state.discover("u2", 1)
        assert not state.discover("u3", 1)
        assert "u3" not in state.discovered_urls

    def test_max_urls(self):
        state = CrawlState(root_url="r", root_domain="example.com", max_urls=1)
        assert state.discover("u1")
        assert state.is_full
        assert not state.discover("u2")


class TestSitemapFirst:
    @pytest.mark.asyncio
    async def test_large_sitemap_skips_recursion(self, settings, site):
        paths = ["/", "/a", "/b", "/c", "/d", "/e"]
        site.sitemap(paths + ["https://other.org/z"])

        state = await run_crawl(settings, site)

        assert state.result() == [f"https://example.com{p}" for p in paths]
        assert state.crawled_urls == set()
        assert site.requests == ["https://example.com/sitemap.xml"]

    @pytest.mark.asyncio
    async def test_root_forced_first(self, settings, site):
        site.sitemap(["/a", "/b", "/c", "/d", "/e"])
        state = await run_crawl(settings, site)
        assert state.result()[0] == "https://example.com/"
        assert len(state.result()) == 6

    @pytest.mark.asyncio
    async def test_small_sitemap_triggers_recursive_fallback(self, settings, site):
        small_site(site).sitemap(["/", "/sitemap-only"])

        state = await run_crawl(settings, site)

        assert "https://example.com/sitemap-only" in state.discovered_urls
        assert "https://example.com/a" in state.discovered_urls
        assert site.count("/") == 1


class TestRecursiveFallback:
    @pytest.mark.asyncio
    async def test_discovers_breadth_first(self, settings, site):
        small_site(site)

        state = await run_crawl(settings, site, max_depth=2)

        assert state.result() == [
            "https://example.com/",
            "https://example.com/a",
            "https://example.com/b",
            "https://blog.example.com/post",
            "https://example.com/a/deep",
        ]
        # Depth 2 links are discovered but never fetched with max_depth=2
        assert state.crawled_urls == {
            "https://example.com/",
            "https://example.com/a",
            "https://example.com/b",
        }
        assert site.count("/a/deep") == 0

    @pytest.mark.asyncio
    async def test_domain_containment(self, settings, site):
        small_site(site)
        state = await run_crawl(settings, site, max_depth=3)
        assert all(is_same_site(url, "example.com") for url in state.discovered_urls)
        assert not any(url.endswith(".pdf") for url in state.discovered_urls)
        assert all("?" not in url and "#" not in url for url in state.discovered_urls)

    @pytest.mark.asyncio
    async def test_depth_buckets_disjoint_and_crawled_subset(self, settings, site):
        small_site(site)
        state = await run_crawl(settings, site, max_depth=3)

        assert state.crawled_urls <= state.discovered_urls
        seen = set()
        for depth in sorted(state.urls_by_depth):
            bucket = state.urls_by_depth[depth]
            assert not bucket & seen
            seen |= bucket
        assert state.urls_by_depth[0] == {"https://example.com/"}
        assert "https://example.com/a/deep" in state.urls_by_depth[2]
        assert "https://example.com/a/deep/deeper" in state.urls_by_depth[3]

    @pytest.mark.asyncio
    async def test_depth_one_fetches_only_root(self, settings, site):
        small_site(site)
        state = await run_crawl(settings, site, max_depth=1)
        assert state.crawled_urls == {"https://example.com/"}
        assert "https://example.com/a" in state.discovered_urls

    @pytest.mark.asyncio
    async def test_max_urls_caps_result(self, settings, site):
        small_site(site)
        state = await run_crawl(settings, site, max_depth=3, max_urls=3)
        assert len(state.result()) == 3
        assert len(state.discovered_urls) <= 3

    @pytest.mark.asyncio
    async def test_www_root_keeps_apex_links(self, settings, site):
        site.page("https://www.example.com/", links=["https://example.com/pricing"])
        state = await run_crawl(settings, site, root="https://www.example.com/", max_depth=2)
        assert "https://example.com/pricing" in state.discovered_urls

    @pytest.mark.asyncio
    async def test_unreachable_root_raises(self, settings, site):
        with pytest.raises(CrawlError):
            await run_crawl(settings, site)

    @pytest.mark.asyncio
    async def test_unreachable_root_with_sitemap_urls_is_not_fatal(self, settings, site):
        site.sitemap(["/a"])
        state = await run_crawl(settings, site)
        assert state.result() == ["https://example.com/", "https://example.com/a"]

    @pytest.mark.asyncio
    async def test_failed_child_is_skipped(self, settings, site):
        site.page("/", links=["/broken", "/ok"])
        site.raw("/broken", "oops", status=500)
        site.page("/ok", links=["/ok/child"])

        state = await run_crawl(settings, site, max_depth=2)

        assert "https://example.com/broken" in state.crawled_urls
        assert "https://example.com/ok/child" in state.discovered_urls

    @pytest.mark.asyncio
    async def test_fetches_bounded_by_concurrency(self, settings, site):
        settings.crawl_concurrency = 4
        children = [f"/c{i}" for i in range(12)]
        site.page("/", links=children)
        for path in children:
            site.page(path)

        state = await run_crawl(settings, site, max_depth=2)

        assert len(state.crawled_urls) == 13
        assert 1 < site.peak <= 4


@pytest.mark.asyncio
async def test_crawl_returns_url_list(settings, site):
    small_site(site)
    async with open_client(settings, site.transport) as client:
        policy = RetryPolicy.from_settings(settings)
        crawler = RecursiveCrawler(
            HtmlFetcher(client, policy), SitemapResolver(client, settings, policy), settings
        )
        urls = await crawler.crawl("https://example.com", 1)
    assert urls[0] == "https://example.com/"
