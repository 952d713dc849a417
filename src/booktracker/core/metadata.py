"""Look up book metadata from Google Books."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

import httpx
import structlog

from .errors import MalformedError, NetworkError, raise_for_books_status
from .models import UNKNOWN_AUTHOR, UNKNOWN_YEAR, BookRecord

log = structlog.get_logger()

GOOGLE_BOOKS_API = "https://www.googleapis.com/books/v1"
DEFAULT_MAX_RESULTS = 20


class MetadataProvider(Protocol):
    async def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> list[BookRecord]: ...

    async def lookup_by_isbn(self, isbn: str) -> BookRecord | None: ...


def _pick_isbn(identifiers: list[dict]) -> str | None:
    """Prefer ISBN_13, then ISBN_10, then whatever identifier comes first."""
    by_type = {i.get("type"): i.get("identifier") for i in identifiers if i.get("identifier")}
    for kind in ("ISBN_13", "ISBN_10"):
        if by_type.get(kind):
            return by_type[kind]
    for ident in identifiers:
        if ident.get("identifier"):
            return ident["identifier"]
    return None


def volume_to_record(item: dict, default_title: str = "") -> BookRecord:
    """Map a Google Books volume to a BookRecord."""
    info = item.get("volumeInfo") or {}
    authors = info.get("authors") or []
    published = info.get("publishedDate") or ""
    thumbnail = (info.get("imageLinks") or {}).get("thumbnail")
    if thumbnail:
        thumbnail = thumbnail.replace("http://", "https://")
    return BookRecord(
        id=str(item.get("id", "")),
        isbn=_pick_isbn(info.get("industryIdentifiers") or []),
        title=info.get("title") or default_title,
        author=", ".join(authors) if authors else UNKNOWN_AUTHOR,
        publication_year=published[:4] if published else UNKNOWN_YEAR,
        cover_image_url=thumbnail,
        description=info.get("description") or None,
    )


class GoogleBooksProvider:
    """Free-text search and ISBN lookup against the Google Books volumes API.

    Requests can be spaced by ``min_interval`` seconds; the spacing is enforced
    under a lock so concurrent lookups from a pull stay within the limit.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = GOOGLE_BOOKS_API,
        api_key: str = "",
        min_interval: float = 0.0,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.min_interval = min_interval
        self._last_request: float = 0.0  # monotonic timestamp of last request
        self._throttle = asyncio.Lock()

    async def _get_volumes(self, params: dict[str, str]) -> dict:
        if self.api_key:
            params = {**params, "key": self.api_key}

        if self.min_interval > 0:
            async with self._throttle:
                elapsed = time.monotonic() - self._last_request
                if elapsed < self.min_interval:
                    await asyncio.sleep(self.min_interval - elapsed)
                self._last_request = time.monotonic()

        try:
            resp = await self.client.get(f"{self.base_url}/volumes", params=params)
        except httpx.HTTPError as e:
            log.debug("books_request_failed", error=str(e))
            raise NetworkError(f"Network error: {e}") from e

        raise_for_books_status(resp)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedError("Books API returned invalid JSON", resp.status_code) from e
        if not isinstance(data, dict):
            raise MalformedError("Books API returned unexpected payload", resp.status_code)
        return data

    async def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> list[BookRecord]:
        query = query.strip()
        if not query:
            return []
        data = await self._get_volumes(
            {"q": query, "maxResults": str(max_results), "printType": "books"}
        )
        items = data.get("items") or []
        log.debug("books_search", query=query, results=len(items))
        return [volume_to_record(item) for item in items if item.get("id")]

    async def lookup_by_isbn(self, isbn: str) -> BookRecord | None:
        data = await self._get_volumes({"q": f"isbn:{isbn}"})
        items = [item for item in data.get("items") or [] if item.get("id")]
        if not items:
            log.debug("books_isbn_no_match", isbn=isbn)
            return None

        record = volume_to_record(items[0], default_title="Unknown Title")
        # Keep the ISBN we were asked for so the record lines up with its wire row.
        record.isbn = isbn
        log.debug("books_isbn_hit", isbn=isbn, title=record.title)
        return record
