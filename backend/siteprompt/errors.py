"""Exceptions raised by crawl and generation services."""


class SitePromptError(Exception):
    """Base class for all service errors."""


class CrawlError(SitePromptError):
    """Crawl produced nothing usable (root unreachable, zero pages extracted)."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class CredentialError(SitePromptError):
    """Base class for credential pool errors."""


class NoCredentialsConfiguredError(CredentialError):
    """No API keys were found in the environment at startup."""


class NoCredentialsAvailableError(CredentialError):
    """Every configured key is suspended, geo-restricted or over quota."""


class GenerationError(SitePromptError):
    """An LLM call failed after credential failover."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable
