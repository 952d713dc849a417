"""Runtime settings read from the environment (and a .env file, if present)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .core.metadata import DEFAULT_MAX_RESULTS, GOOGLE_BOOKS_API
from .core.remote import PASTEMYST_API


@dataclass
class Settings:
    cache_dir: Path = Path(".cache")
    pastemyst_api_url: str = PASTEMYST_API
    google_books_api_url: str = GOOGLE_BOOKS_API
    google_books_api_key: str = ""
    search_max_results: int = DEFAULT_MAX_RESULTS
    sync_stale_after: float = 300.0  # seconds since last pull before a focus re-pulls
    http_timeout: float = 10.0
    metadata_min_interval: float = 0.0
    rate_limit: int = 10  # searches per window per client IP
    rate_limit_window: int = 60
    log_level: str = "INFO"
    env: str = "dev"
    port: int = 8000

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"


def load_settings() -> Settings:
    load_dotenv()
    env = os.environ.get
    return Settings(
        cache_dir=Path(env("CACHE_DIR", ".cache")),
        pastemyst_api_url=env("PASTEMYST_API_URL", PASTEMYST_API),
        google_books_api_url=env("GOOGLE_BOOKS_API_URL", GOOGLE_BOOKS_API),
        google_books_api_key=env("GOOGLE_BOOKS_API_KEY", ""),
        search_max_results=int(env("SEARCH_MAX_RESULTS", str(DEFAULT_MAX_RESULTS))),
        sync_stale_after=float(env("SYNC_STALE_AFTER", "300")),
        http_timeout=float(env("HTTP_TIMEOUT", "10")),
        metadata_min_interval=float(env("METADATA_MIN_INTERVAL", "0")),
        rate_limit=int(env("RATE_LIMIT", "10")),
        rate_limit_window=int(env("RATE_LIMIT_WINDOW", "60")),
        log_level=env("LOG_LEVEL", "INFO"),
        env=env("ENV", "dev"),
        port=int(env("PORT", "8000")),
    )
