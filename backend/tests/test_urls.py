"""Tests for URL helpers."""

import pytest

from siteprompt.services.urls import (
    has_binary_extension,
    is_same_site,
    normalize_url,
    path_depth,
    registrable_domain,
    resolve_link,
    validate_root_url,
)


class TestNormalizeUrl:
    def test_drops_query_and_fragment(self):
        assert normalize_url("https://example.com/a?x=1#top") == "https://example.com/a"

    def test_lowercases_scheme_and_host_only(self):
        assert normalize_url("HTTPS://Example.COM/About") == "https://example.com/About"

    def test_empty_path_becomes_slash(self):
        assert normalize_url("http://example.com") == "http://example.com/"

    def test_default_port_removed(self):
        assert normalize_url("https://example.com:443/x") == "https://example.com/x"

    def test_custom_port_kept(self):
        assert normalize_url("http://example.com:8080/x") == "http://example.com:8080/x"

    @pytest.mark.parametrize(
        "url",
        [
            "https://www.example.com/a/b/?q=1",
            "HTTP://EXAMPLE.com",
            "https://example.com:8443/path#frag",
            "https://sub.example.com/x/y.html",
        ],
    )
    def test_idempotent(self, url):
        once = normalize_url(url)
        assert normalize_url(once) == once


class TestSameSite:
    def test_www_is_stripped(self):
        assert registrable_domain("https://www.example.com/x") == "example.com"
        assert is_same_site("https://www.example.com/", "example.com")

    def test_subdomain_is_same_site(self):
        assert is_same_site("https://blog.example.com/post", "example.com")

    def test_suffix_lookalike_is_not_same_site(self):
        assert not is_same_site("https://notexample.com/", "example.com")

    def test_other_domain(self):
        assert not is_same_site("https://other.org/", "example.com")

    def test_missing_host(self):
        assert not is_same_site("mailto:hi@example.com", "example.com")


class TestResolveLink:
    def test_relative(self):
        assert resolve_link("/about", "https://example.com/x/") == "https://example.com/about"

    def test_relative_to_path(self):
        assert resolve_link("team", "https://example.com/about/") == "https://example.com/about/team"

    @pytest.mark.parametrize("href", ["mailto:a@b.c", "javascript:void(0)", "tel:123", "  "])
    def test_non_http_targets_dropped(self, href):
        assert resolve_link(href, "https://example.com/") is None


def test_binary_extensions():
    assert has_binary_extension("https://example.com/doc.PDF")
    assert has_binary_extension("https://example.com/img/logo.svg?v=2")
    assert not has_binary_extension("https://example.com/pricing")
    assert not has_binary_extension("https://example.com/page.html")


def test_path_depth():
    assert path_depth("https://example.com/") == 0
    assert path_depth("https://example.com") == 0
    assert path_depth("https://example.com/a/b/") == 2


class TestValidateRootUrl:
    def test_valid(self):
        assert validate_root_url("https://example.com") is None
        assert validate_root_url("http://localhost/") is None

    def test_rejects_other_schemes(self):
        assert validate_root_url("ftp://example.com") == "URL must use http:// or https://"

    def test_rejects_missing_domain(self):
        assert validate_root_url("https://") == "URL must include a domain name"

    def test_rejects_bad_domain(self):
        assert validate_root_url("https://not_a_domain") == "Invalid domain name"
