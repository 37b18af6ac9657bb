"""Shared fixtures: settings without retries and a fake website."""

import asyncio

import httpx
import pytest

from siteprompt.config import Settings

HTML = "text/html; charset=utf-8"
XML = "application/xml"
BASE = "https://example.com"


class FakeSite:
    """Canned responses served through ``httpx.MockTransport``.

    Unknown URLs answer 404. Every request URL is recorded in ``requests``.
    Each response yields to the event loop a few times before returning, and
    ``peak`` holds the most requests ever in flight at once.
    """

    def __init__(self, base: str = BASE):
        self.base = base
        # url -> (status, body, headers) or an exception to raise
        self.routes: dict[str, tuple[int, str, dict] | Exception] = {}
        self.requests: list[str] = []
        self.in_flight = 0
        self.peak = 0

    def url(self, path: str) -> str:
        return path if path.startswith("http") else f"{self.base}{path}"

    def page(self, path: str, title: str = "", links=(), body: str = "", status: int = 200):
        title = title or f"Page {path}"
        anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
        html = (
            f"<html><head><title>{title}</title></head><body>"
            f"<main><h1>{title}</h1><p>{body or 'Some text about ' + title}</p>{anchors}</main>"
            "</body></html>"
        )
        self.routes[self.url(path)] = (status, html, {"content-type": HTML})
        return self

    def raw(self, path: str, text: str, status: int = 200, content_type: str = HTML):
        self.routes[self.url(path)] = (status, text, {"content-type": content_type})
        return self

    def redirect(self, path: str, location: str, status: int = 301):
        self.routes[self.url(path)] = (status, "", {"location": self.url(location)})
        return self

    def error(self, path: str, exc: Exception):
        self.routes[self.url(path)] = exc
        return self

    def sitemap(self, paths, path: str = "/sitemap.xml"):
        locs = "".join(f"<url><loc>{self.url(p)}</loc></url>" for p in paths)
        xml = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{locs}</urlset>'
        )
        return self.raw(path, xml, content_type=XML)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        # Key on the request target a real server sees (empty path is sent as "/").
        url = str(request.url.copy_with(raw_path=request.url.raw_path))
        self.requests.append(url)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            for _ in range(10):
                await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, text="not found")
        if isinstance(route, Exception):
            raise route
        status, body, headers = route
        return httpx.Response(status, text=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str) -> int:
        return self.requests.count(self.url(path))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        retry_max_attempts=1,
        retry_base_delay_seconds=0,
        retry_jitter=False,
        log_json=False,
    )


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()
