"""Tests for the HTTP API."""

from unittest.mock import AsyncMock

import httpx
import openai
import pytest
from fastapi.testclient import TestClient

from siteprompt.api.deps import get_orchestrator
from siteprompt.main import create_app
from siteprompt.services.generation import Completion
from siteprompt.services.orchestrator import CrawlOrchestrator

KEYS = {"OPENAI_API_KEY_1": "sk-test-aaaa1111", "OPENAI_API_KEY_2": "sk-test-bbbb2222"}


@pytest.fixture
def app(settings, site):
    app = create_app(settings, environ=KEYS)
    app.dependency_overrides[get_orchestrator] = lambda: CrawlOrchestrator(settings, site.transport)
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def rate_limit_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.RateLimitError(
        "Rate limit reached", response=httpx.Response(429, request=request), body=None
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


class TestCrawlRoutes:
    def test_quick_scan(self, client, site):
        site.page("/", title="Home", links=["/a"])
        site.page("/a", title="A")

        response = client.post("/api/scan/quick", json={"url": "https://example.com/"})

        assert response.status_code == 200
        data = response.json()
        assert data["page_count"] == 2
        assert data["crawled_text"].startswith("--- START PAGE: https://example.com/ ---")

    def test_quick_scan_invalid_url(self, client):
        response = client.post("/api/scan/quick", json={"url": "ftp://example.com"})
        assert response.status_code == 400
        assert response.json()["detail"] == "URL must use http:// or https://"

    def test_quick_scan_unreachable(self, client):
        response = client.post("/api/scan/quick", json={"url": "https://example.com/"})
        assert response.status_code == 422
        assert "Failed to fetch the main URL" in response.json()["detail"]

    def test_deep_crawl(self, client, site):
        paths = ["/", "/a", "/b", "/c", "/d"]
        site.sitemap(paths)
        for path in paths:
            site.page(path)

        response = client.post(
            "/api/crawl/deep",
            json={"url": "https://example.com/", "max_pages": 3, "crawl_depth": 1},
        )

        assert response.status_code == 200
        assert response.json()["page_count"] == 3

    def test_deep_crawl_limits_validated(self, client):
        response = client.post(
            "/api/crawl/deep", json={"url": "https://example.com/", "max_pages": 500}
        )
        assert response.status_code == 422


class TestGenerateRoutes:
    def test_generate(self, app, client):
        app.state.generator.completion_fn = AsyncMock(
            return_value=Completion("Generated text", {"total_tokens": 12})
        )

        response = client.post("/api/generate", json={"prompt": "Write a tagline"})

        assert response.status_code == 200
        assert response.json() == {
            "content": "Generated text",
            "model": app.state.settings.llm_model,
            "usage": {"total_tokens": 12},
        }

    def test_no_credentials_available(self, app, client):
        pool = app.state.credential_pool
        for record in pool.records:
            pool.mark_suspended(record.key, "manual")

        response = client.post("/api/generate", json={"prompt": "p"})

        assert response.status_code == 503
        assert "Nu sunt disponibile chei API" in response.json()["detail"]

    def test_generation_failure(self, app, client):
        app.state.generator.completion_fn = AsyncMock(side_effect=rate_limit_error())

        response = client.post("/api/generate", json={"prompt": "p"})

        assert response.status_code == 502

    def test_empty_prompt_rejected(self, client):
        assert client.post("/api/generate", json={"prompt": ""}).status_code == 422

    def test_credential_stats(self, client):
        response = client.get("/api/credentials/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_keys"] == 2
        assert data["available_keys"] == 2
        assert [entry["key_preview"] for entry in data["keys"]] == ["...1111", "...2222"]
        assert "sk-test-aaaa1111" not in response.text

    def test_reset_credential(self, app, client):
        pool = app.state.credential_pool
        pool.mark_suspended("sk-test-aaaa1111", "manual")

        response = client.post("/api/credentials/1111/reset")

        assert response.status_code == 200
        assert response.json()["is_suspended"] is False
        assert client.post("/api/credentials/9999/reset").status_code == 404
