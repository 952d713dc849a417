"""Wire the store, cache, clients, engine and scheduler together."""

from __future__ import annotations

from pathlib import Path

import httpx
import structlog

from .cache import LocalCache
from .engine import STALE_AFTER_SECONDS, ReconciliationEngine
from .metadata import GoogleBooksProvider, MetadataProvider
from .ops import CollectionOps
from .remote import PasteMystClient
from .scheduler import SyncScheduler
from .store import BookStore

log = structlog.get_logger()

USER_AGENT = "BookTracker/0.1.0"


class Tracker:
    """One reading list on one device, with its sync machinery."""

    def __init__(
        self,
        cache: LocalCache,
        remote: PasteMystClient,
        provider: MetadataProvider,
        stale_after: float = STALE_AFTER_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.provider = provider
        self.store = BookStore()
        self.engine = ReconciliationEngine(
            self.store, cache, remote, provider, stale_after=stale_after
        )
        self.scheduler = SyncScheduler(self.engine)
        self.ops = CollectionOps(self.store, cache, self.scheduler)
        self._http_client = http_client

    @classmethod
    def open(
        cls,
        cache_dir: Path,
        pastemyst_api_url: str,
        google_books_api_url: str,
        google_books_api_key: str = "",
        http_timeout: float = 10.0,
        metadata_min_interval: float = 0.0,
        stale_after: float = STALE_AFTER_SECONDS,
    ) -> Tracker:
        cache_dir.mkdir(parents=True, exist_ok=True)
        client = httpx.AsyncClient(
            timeout=http_timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        return cls(
            cache=LocalCache(cache_dir / "booktracker.db"),
            remote=PasteMystClient(client, pastemyst_api_url),
            provider=GoogleBooksProvider(
                client,
                google_books_api_url,
                api_key=google_books_api_key,
                min_interval=metadata_min_interval,
            ),
            stale_after=stale_after,
            http_client=client,
        )

    def startup(self) -> None:
        """Load the cached collection and kick off a background sync if configured."""
        self.store.replace_all(self.cache.load_books())
        settings = self.cache.load_settings()
        log.info("tracker_started", books=len(self.store), sync_configured=bool(settings.token and settings.paste_id))
        if settings.token and settings.paste_id:
            self.scheduler.request_pull()

    async def aclose(self) -> None:
        await self.scheduler.drain()
        if self._http_client is not None:
            await self._http_client.aclose()
        self.cache.close()
