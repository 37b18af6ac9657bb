"""Structured content extraction from static HTML.

Parsing is regex-based on purpose: no DOM is built and no scripts run. The
patterns are non-greedy and do not balance nested tags of the same name, so a
``<div class="review">`` containing another ``<div>`` is only removed up to
the first closing ``</div>``. An unclosed ``<nav>`` or review block makes
its pattern scan to the end of the document, so worst-case time grows with
the square of the page size; callers cap the HTML length before extracting
(see ``HtmlFetcher.max_chars``).
"""

import html
import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from siteprompt.services.urls import is_same_site, normalize_url, resolve_link, strip_www

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 15000

NO_TITLE = "No title found"
FETCH_FAILED_TITLE = "Error - Fetch Failed"
EXTRACTION_FAILED_TITLE = "Error - Extraction Failed"
ERROR_TITLE_PREFIX = "Error - "

_FLAGS = re.IGNORECASE | re.DOTALL

# Compiled once at import; every page goes through the same patterns
COMMENTS_RE = re.compile(r"<!--.*?-->", re.DOTALL)
SCRIPTS_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", _FLAGS)
STYLES_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", _FLAGS)
TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title\s*>", _FLAGS)
META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
ATTRIBUTE_RE = re.compile(
    r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))"""
)
HEADINGS_RE = re.compile(r"<h([1-6])\b[^>]*>(.*?)</h\1\s*>", _FLAGS)
LINKS_RE = re.compile(r"""<a\s[^>]*?href\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
IMAGES_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
BUTTONS_RE = re.compile(r"<button\b[^>]*>(.*?)</button\s*>", _FLAGS)
MAIN_RE = re.compile(r"<main\b[^>]*>(.*?)</main\s*>", _FLAGS)
UNWANTED_BLOCKS_RE = re.compile(
    r"<(nav|header|footer|aside|form|head)\b[^>]*>.*?</\1\s*>", _FLAGS
)
REVIEW_BLOCKS_RE = re.compile(
    r"""<(div|section)\b[^>]*\b(?:class|id)\s*=\s*["'][^"']*"""
    r"""(?:testimonial|review|rating)[^"']*["'][^>]*>.*?</\1\s*>""",
    _FLAGS,
)
TAGS_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Heading:
    level: int
    text: str


@dataclass(frozen=True)
class PageRecord:
    """Structured content of one fetched page."""

    url: str
    title: str
    meta_description: str = ""
    meta_keywords: str = ""
    headings: tuple[Heading, ...] = ()
    internal_links: frozenset[str] = field(default_factory=frozenset)
    external_links: frozenset[str] = field(default_factory=frozenset)
    image_alts: tuple[str, ...] = ()
    button_texts: tuple[str, ...] = ()
    content: str = ""

    @property
    def is_error(self) -> bool:
        return self.title.startswith(ERROR_TITLE_PREFIX)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "title": self.title,
            "meta_description": self.meta_description,
            "meta_keywords": self.meta_keywords,
            "headings": [{"level": h.level, "text": h.text} for h in self.headings],
            "internal_links": sorted(self.internal_links),
            "external_links": sorted(self.external_links),
            "image_alts": list(self.image_alts),
            "button_texts": list(self.button_texts),
            "content": self.content,
        }


def error_record(url: str, title: str, reason: str) -> PageRecord:
    """Sentinel record returned instead of raising on fetch/extract failure."""
    return PageRecord(url=url, title=title, content=reason)


def _clean_text(fragment: str) -> str:
    """Replace tags with spaces, decode entities and collapse whitespace."""
    text = TAGS_RE.sub(" ", fragment)
    text = html.unescape(text)
    return WHITESPACE_RE.sub(" ", text).strip()


def _attributes(tag: str) -> dict[str, str]:
    attrs = {}
    for name, double, single, bare in ATTRIBUTE_RE.findall(tag):
        attrs[name.lower()] = double or single or bare
    return attrs


def strip_noise(raw_html: str) -> str:
    """Remove comments, scripts and styles before any other pattern runs."""
    cleaned = COMMENTS_RE.sub("", raw_html)
    cleaned = SCRIPTS_RE.sub("", cleaned)
    return STYLES_RE.sub("", cleaned)


def extract_title(doc: str) -> str:
    match = TITLE_RE.search(doc)
    if match:
        title = _clean_text(match.group(1))
        if title:
            return title
    return NO_TITLE


def extract_meta(doc: str, name: str) -> str:
    """Content of ``<meta name="{name}">`` regardless of attribute order."""
    for tag in META_TAG_RE.findall(doc):
        attrs = _attributes(tag)
        if attrs.get("name", "").lower() == name and "content" in attrs:
            return html.unescape(attrs["content"]).strip()
    return ""


def extract_headings(doc: str) -> tuple[Heading, ...]:
    headings = []
    for level, inner in HEADINGS_RE.findall(doc):
        text = _clean_text(inner)
        if text:
            headings.append(Heading(level=int(level), text=text))
    return tuple(headings)


def extract_links(doc: str, base_url: str) -> tuple[frozenset[str], frozenset[str]]:
    """Split every resolvable http(s) href into (internal, external)."""
    root_domain = strip_www(urlparse(base_url).hostname or "")
    internal: set[str] = set()
    external: set[str] = set()
    for href in LINKS_RE.findall(doc):
        absolute = resolve_link(html.unescape(href), base_url)
        if absolute is None:
            continue
        if is_same_site(absolute, root_domain):
            internal.add(absolute)
        else:
            external.add(absolute)
    return frozenset(internal), frozenset(external)


def extract_image_alts(doc: str) -> tuple[str, ...]:
    alts = []
    for tag in IMAGES_RE.findall(doc):
        alt = html.unescape(_attributes(tag).get("alt", "")).strip()
        if alt:
            alts.append(alt)
    return tuple(alts)


def extract_button_texts(doc: str) -> tuple[str, ...]:
    return tuple(text for text in (_clean_text(inner) for inner in BUTTONS_RE.findall(doc)) if text)


def extract_main_content(doc: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
    """Visible body text, preferring ``<main>`` and skipping page chrome."""
    main_match = MAIN_RE.search(doc)
    body = main_match.group(1) if main_match else doc

    body = UNWANTED_BLOCKS_RE.sub(" ", body)
    body = REVIEW_BLOCKS_RE.sub(" ", body)
    return _clean_text(body)[:max_chars]


def extract(url: str, raw_html: str, max_chars: int = MAX_CONTENT_CHARS) -> PageRecord:
    """Turn raw HTML into a PageRecord. Never raises.

    Args:
        url: The page URL, used as the base for resolving relative links
        raw_html: Response body as text
        max_chars: Budget for the cleaned body text

    Returns:
        PageRecord, or an extraction-failed sentinel if parsing blew up
    """
    try:
        doc = strip_noise(raw_html)
        internal_links, external_links = extract_links(doc, url)
        return PageRecord(
            url=normalize_url(url),
            title=extract_title(doc),
            meta_description=extract_meta(doc, "description"),
            meta_keywords=extract_meta(doc, "keywords"),
            headings=extract_headings(doc),
            internal_links=internal_links,
            external_links=external_links,
            image_alts=extract_image_alts(doc),
            button_texts=extract_button_texts(doc),
            content=extract_main_content(doc, max_chars),
        )
    except Exception as e:
        logger.error(f"Content extraction failed for {url}: {e}")
        return error_record(url, EXTRACTION_FAILED_TITLE, f"Failed to extract content: {e}")
