"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

FETCH_MODES = ("api", "browser")


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be used."""


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    database_url: str
    worker_port: int = 9000
    max_pages: int = 5
    fetch_mode: str = "api"
    secret_key: str = ""
    cache_ttl_days: int = 7
    page_delay: float = 0.2
    page_token_delay: float = 2.5
    variant_delay: float = 0.5
    browser_headless: bool = True
    feed_timeout_ms: int = 15000
    cost_per_call_usd: float = 0.032


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    secret_key = os.getenv("SCRAPER_SECRET_KEY", "")
    fetch_mode = os.getenv("FETCH_MODE", "api").strip().lower()

    if fetch_mode not in FETCH_MODES:
        raise ConfigError(f"FETCH_MODE must be one of {', '.join(FETCH_MODES)}, got {fetch_mode!r}")

    if not database_url:
        logger.warning("DATABASE_URL is not set; search results will be cached in memory only.")
    if fetch_mode == "api" and not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; Google Places requests will fail.")
    if not secret_key:
        logger.warning("SCRAPER_SECRET_KEY is not configured; /scrape will reject every request.")

    return Settings(
        google_api_key=google_api_key,
        database_url=database_url,
        worker_port=int(os.getenv("WORKER_PORT", "9000")),
        max_pages=int(os.getenv("WORKER_MAX_PAGES", "5")),
        fetch_mode=fetch_mode,
        secret_key=secret_key,
        cache_ttl_days=int(os.getenv("CACHE_TTL_DAYS", "7")),
        page_delay=float(os.getenv("PAGE_DELAY_SECONDS", "0.2")),
        page_token_delay=float(os.getenv("PAGE_TOKEN_DELAY_SECONDS", "2.5")),
        variant_delay=float(os.getenv("VARIANT_DELAY_SECONDS", "0.5")),
        browser_headless=_env_flag("BROWSER_HEADLESS", "true"),
        feed_timeout_ms=int(os.getenv("BROWSER_FEED_TIMEOUT_MS", "15000")),
        cost_per_call_usd=float(os.getenv("COST_PER_CALL_USD", "0.032")),
    )
