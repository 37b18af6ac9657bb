"""URL helpers shared by the crawler, sitemap resolver and extractor."""

import re
from urllib.parse import urljoin, urlparse

# Non-HTML file extensions that are never worth fetching as pages
BINARY_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico",
    ".css", ".js", ".xml", ".json", ".zip", ".tar", ".gz", ".rar",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".flv", ".wav",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
)

DEFAULT_PORTS = {"http": 80, "https": 443}

_DOMAIN_PATTERN = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9\-]*[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")


def strip_www(hostname: str) -> str:
    """Lowercase a hostname and drop a leading ``www.``."""
    hostname = hostname.lower()
    if hostname.startswith("www."):
        return hostname[4:]
    return hostname


def registrable_domain(url: str) -> str:
    """Hostname of ``url`` with any ``www.`` prefix stripped."""
    return strip_www(urlparse(url).hostname or "")


def is_same_site(url: str, root_domain: str) -> bool:
    """True if ``url``'s hostname equals ``root_domain`` or is a subdomain of it."""
    host = strip_www(urlparse(url).hostname or "")
    if not host or not root_domain:
        return False
    return host == root_domain or host.endswith("." + root_domain)


def normalize_url(url: str) -> str:
    """Dedup key for a URL: scheme, host and path only.

    Query string and fragment are dropped, scheme and host are lowercased,
    default ports are removed and an empty path becomes ``/``.
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    try:
        port = parsed.port
    except ValueError:
        port = None
    netloc = host
    if port and port != DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"
    path = parsed.path or "/"
    return f"{scheme}://{netloc}{path}"


def resolve_link(href: str, base_url: str) -> str | None:
    """Resolve ``href`` against ``base_url``; None for non-http(s) targets."""
    href = href.strip()
    if not href:
        return None
    try:
        absolute = urljoin(base_url, href)
        parsed = urlparse(absolute)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return absolute


def has_binary_extension(url: str) -> bool:
    """True if the URL path ends in a known non-HTML file extension."""
    path = urlparse(url).path.lower()
    return path.endswith(BINARY_EXTENSIONS)


def path_depth(url: str) -> int:
    """Number of non-empty path segments (``/`` is 0, ``/a/b`` is 2)."""
    return len([segment for segment in urlparse(url).path.split("/") if segment])


def validate_root_url(url: str) -> str | None:
    """Validate a crawl root URL. Returns error message or None if valid."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Invalid URL format"

    # Check scheme
    if parsed.scheme not in ("http", "https"):
        return "URL must use http:// or https://"

    # Check netloc (domain)
    if not parsed.netloc or not parsed.hostname:
        return "URL must include a domain name"

    domain = parsed.hostname.lower()
    if not _DOMAIN_PATTERN.match(domain) and domain != "localhost":
        return "Invalid domain name"

    return None
