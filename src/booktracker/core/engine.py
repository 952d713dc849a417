"""Reconcile the in-memory collection with the local cache and the remote paste.

Policy summary:

* Pull treats the remote document as the source of truth and replaces the
  whole in-memory collection. Local edits that were never pushed are lost.
* Push is best-effort. Failures are logged and never reach the caller.
* Only one pull or push runs at a time; requests arriving meanwhile are
  dropped, not queued.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Callable

import structlog

from .cache import LocalCache
from .codec import decode_rows, encode_collection
from .errors import NotFoundError, SyncError, UnauthorizedError
from .metadata import MetadataProvider
from .models import BookRecord, SyncSettings, WireRow, unpack_tags, utc_now_iso
from .remote import PasteMystClient
from .store import BookStore

log = structlog.get_logger()

STALE_AFTER_SECONDS = 300.0


class ReconciliationEngine:
    def __init__(
        self,
        store: BookStore,
        cache: LocalCache,
        remote: PasteMystClient,
        provider: MetadataProvider,
        stale_after: float = STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.cache = cache
        self.remote = remote
        self.provider = provider
        self.stale_after = stale_after
        self.clock = clock
        self.in_flight = False
        self.last_pull_at: float | None = None

    def _settings(self, paste_id: str | None, token: str | None) -> SyncSettings:
        settings = self.cache.load_settings()
        if paste_id is not None:
            settings.paste_id = paste_id.strip()
        if token is not None:
            settings.token = token.strip()
        return settings

    def _remember_document(self, settings: SyncSettings, paste_id: str, pasty_id: str) -> None:
        stored = self.cache.load_settings()
        if stored.paste_id and stored.paste_id != paste_id:
            return
        stored.paste_id = paste_id
        stored.pasty_id = pasty_id
        if not stored.token:
            stored.token = settings.token
        self.cache.save_settings(stored)

    def is_stale(self, now: float | None = None) -> bool:
        if self.last_pull_at is None:
            return True
        now = self.clock() if now is None else now
        return now - self.last_pull_at >= self.stale_after

    async def pull(self, paste_id: str | None = None, token: str | None = None) -> list[BookRecord] | None:
        """Replace the collection with the remote document's contents.

        Returns the new collection, or None when another sync was already running.
        """
        settings = self._settings(paste_id, token)
        if not settings.paste_id:
            raise NotFoundError("No remote paste configured")
        if self.in_flight:
            log.info("sync_skipped", op="pull")
            return None

        self.in_flight = True
        try:
            doc = await self.remote.fetch(settings.paste_id, settings.token)
            rows = decode_rows(doc.text)
            books = await self._expand(rows)

            self.store.replace_all(books)
            self.cache.save_books(self.store.books)
            self.store.pending.clear()
            self.last_pull_at = self.clock()
            self._remember_document(settings, settings.paste_id, doc.pasty_id)
            log.info("pull_complete", paste_id=settings.paste_id, rows=len(rows), books=len(self.store))
            return self.store.books
        finally:
            self.in_flight = False

    async def _expand(self, rows: list[WireRow]) -> list[BookRecord]:
        """Resolve wire rows to full records.

        Rows whose ISBN is already known reuse the cached metadata. All other
        rows are looked up concurrently, and a failed or empty lookup drops
        only that row.
        """
        slots: list[BookRecord | None] = []
        misses: list[tuple[int, WireRow]] = []
        for row in rows:
            cached = self.store.find_by_isbn(row.isbn)
            if cached is not None:
                slots.append(self._apply_row(cached, row))
            else:
                misses.append((len(slots), row))
                slots.append(None)

        if misses:
            results = await asyncio.gather(
                *(self.provider.lookup_by_isbn(row.isbn) for _, row in misses),
                return_exceptions=True,
            )
            for (index, row), result in zip(misses, results):
                if isinstance(result, BaseException):
                    log.warning(
                        "pull_row_failed",
                        isbn=row.isbn,
                        error=str(result),
                        kind=type(result).__name__,
                    )
                elif result is None:
                    log.warning("pull_row_unresolved", isbn=row.isbn)
                else:
                    slots[index] = self._apply_row(result, row)

        return [book for book in slots if book is not None]

    @staticmethod
    def _apply_row(base: BookRecord, row: WireRow) -> BookRecord:
        membership, rating, tags = unpack_tags(row.tags)
        return dataclasses.replace(
            base,
            isbn=row.isbn,
            membership=membership,
            rating=rating,
            tags=tags,
            added_at=row.added_at or base.added_at or utc_now_iso(),
        )

    async def push(self, paste_id: str | None = None, token: str | None = None) -> bool:
        """Write the collection to the remote paste, creating it on first use."""
        settings = self._settings(paste_id, token)
        if not settings.token:
            log.debug("push_skipped", reason="no_credential")
            return False
        if self.in_flight:
            log.info("sync_skipped", op="push")
            return False

        self.in_flight = True
        try:
            generation = self.store.pending.generation
            text = encode_collection(self.store.books)
            if not settings.paste_id:
                doc = await self.remote.create(settings.token, text)
                self._remember_document(settings, doc.id, doc.pasty_id)
            else:
                pasty_id = settings.pasty_id
                if not pasty_id:
                    current = await self.remote.fetch(settings.paste_id, settings.token)
                    pasty_id = current.pasty_id
                doc = await self.remote.update(settings.paste_id, settings.token, text, pasty_id)
                self._remember_document(settings, settings.paste_id, doc.pasty_id or pasty_id)
        except SyncError as e:
            log.warning("push_failed", error=str(e), kind=type(e).__name__, status=e.status_code)
            return False
        finally:
            self.in_flight = False

        self.store.pending.clear(generation)
        log.info("push_complete", paste_id=self.cache.load_settings().paste_id, bytes=len(text))
        return True

    async def sync(self, manual: bool = False) -> list[BookRecord] | bool | None:
        """Startup/manual entry point: create the paste if missing, otherwise pull."""
        settings = self.cache.load_settings()
        if not settings.token:
            if manual:
                raise UnauthorizedError("Please configure API token in settings")
            log.debug("sync_skipped", reason="no_credential")
            return None
        if not settings.paste_id:
            return await self.push()
        return await self.pull()
