"""Business logic services."""

from siteprompt.services.crawler import RecursiveCrawler
from siteprompt.services.credentials import CredentialPool
from siteprompt.services.generation import Generator
from siteprompt.services.orchestrator import CrawlOrchestrator
from siteprompt.services.sitemap import SitemapResolver

__all__ = [
    "CrawlOrchestrator",
    "CredentialPool",
    "Generator",
    "RecursiveCrawler",
    "SitemapResolver",
]
