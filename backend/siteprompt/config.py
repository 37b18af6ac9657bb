"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


# Desktop Chrome; some hosts serve stripped pages to unknown agents
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "SitePrompt"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_json: bool = True
    log_level: str = "INFO"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # HTTP fetching
    user_agent: str = BROWSER_USER_AGENT
    accept_language: str = "en-US,en;q=0.9,ro;q=0.8"
    page_timeout_seconds: float = 15.0
    crawl_timeout_seconds: float = 20.0
    sitemap_timeout_seconds: float = 30.0

    # Crawler settings
    crawl_concurrency: int = 10  # Max in-flight fetches per crawl depth
    extraction_batch_size: int = 50  # Max in-flight fetches during deep-crawl extraction
    max_urls_per_depth: int = 200
    sitemap_min_urls: int = 5  # Below this, fall back to recursive crawling
    max_child_sitemaps: int = 10
    quick_scan_max_pages: int = 5
    deep_crawl_max_pages: int = 50
    deep_crawl_depth: int = 2
    max_content_chars: int = 15000
    max_html_chars: int = 2_000_000  # Response text beyond this is dropped before extraction

    # Retry policy (applies to page fetches and LLM calls)
    retry_max_attempts: int = 2
    retry_base_delay_seconds: float = 1.0
    retry_multiplier: float = 2.0
    retry_jitter: bool = True

    # Credential pool
    credential_env_prefix: str = "OPENAI_API_KEY"
    credential_tier: Literal["daily", "monthly"] = "daily"
    daily_token_limit: int = 200_000
    monthly_token_limit: int = 1_000_000
    rate_limit_cooldown_seconds: int = 60 * 60  # 1 hour

    # LLM
    llm_model: str = "gpt-4o"
    llm_fallback_model: str = "gpt-3.5-turbo"
    llm_timeout_seconds: float = 45.0
    llm_temperature: float = 0.3
    llm_max_tokens: int = 4000

    @property
    def token_limit(self) -> int:
        """Per-credential token limit for the configured tier."""
        if self.credential_tier == "monthly":
            return self.monthly_token_limit
        return self.daily_token_limit

    @property
    def quota_reset_seconds(self) -> int:
        """Length of the quota window for the configured tier."""
        if self.credential_tier == "monthly":
            return 30 * 24 * 60 * 60  # 30 days
        return 24 * 60 * 60  # 24 hours


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
