"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator, Generator

import httpx
import pytest
import pytest_asyncio

from booktracker.core.cache import LocalCache
from booktracker.core.metadata import GoogleBooksProvider
from booktracker.core.models import SyncSettings
from booktracker.core.remote import PasteMystClient
from booktracker.core.tracker import Tracker

PASTE_BASE = "https://paste.test/api/v2"
BOOKS_BASE = "https://books.test/books/v1"
TOKEN = "secret-token"


class FakePasteMyst:
    """In-memory stand-in for the PasteMyst v2 paste endpoints."""

    def __init__(self, token: str = TOKEN) -> None:
        self.token = token
        self.pastes: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_status: int | None = None
        self.gate: asyncio.Event | None = None

    def seed(self, paste_id: str, text: str, pasty_id: str = "pasty-1") -> None:
        self.pastes[paste_id] = {
            "_id": paste_id,
            "title": "Book Tracker Database",
            "pasties": [{"_id": pasty_id, "title": "books.tsv", "code": text}],
        }

    def text(self, paste_id: str) -> str:
        return self.pastes[paste_id]["pasties"][0]["code"]

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"statusMessage": "failure"})
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"statusMessage": "unauthorized"})

        parts = request.url.path.rstrip("/").split("/")
        if request.method == "POST" and parts[-1] == "paste":
            body = json.loads(request.content)
            paste_id = f"paste{len(self.pastes) + 1}"
            pasty = {**body["pasties"][0], "_id": f"pasty-{paste_id}"}
            self.pastes[paste_id] = {"_id": paste_id, "title": body["title"], "pasties": [pasty]}
            return httpx.Response(200, json=self.pastes[paste_id])

        paste = self.pastes.get(parts[-1])
        if paste is None:
            return httpx.Response(404, json={"statusMessage": "paste not found"})
        if request.method == "PATCH":
            body = json.loads(request.content)
            paste["pasties"][0]["code"] = body["pasties"][0]["code"]
        return httpx.Response(200, json=paste)


class FakeGoogleBooks:
    """Stand-in for the Google Books volumes endpoint."""

    def __init__(self) -> None:
        self.volumes: dict[str, dict] = {}
        self.broken: set[str] = set()
        self.queries: list[str] = []
        self.fail_status: int | None = None
        self.fail_body: dict = {}

    def add(
        self,
        isbn: str,
        volume_id: str,
        title: str,
        authors: list[str] | None = None,
        published: str = "2001-05-01",
    ) -> dict:
        item = {
            "id": volume_id,
            "volumeInfo": {
                "title": title,
                "authors": authors or ["Some Author"],
                "publishedDate": published,
                "description": f"About {title}",
                "imageLinks": {"thumbnail": f"http://covers.test/{volume_id}.jpg"},
                "industryIdentifiers": [
                    {"type": "ISBN_10", "identifier": isbn[-10:]},
                    {"type": "ISBN_13", "identifier": isbn},
                ],
            },
        }
        self.volumes[isbn] = item
        return item

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("q", "")
        self.queries.append(query)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json=self.fail_body)

        if query.startswith("isbn:"):
            isbn = query[len("isbn:"):]
            if isbn in self.broken:
                raise httpx.ConnectError("connection reset", request=request)
            items = [self.volumes[isbn]] if isbn in self.volumes else []
        else:
            needle = query.lower()
            items = [v for v in self.volumes.values() if needle in v["volumeInfo"]["title"].lower()]

        payload: dict = {"kind": "books#volumes", "totalItems": len(items)}
        if items:
            payload["items"] = items
        return httpx.Response(200, json=payload)


@pytest.fixture
def paste_api() -> FakePasteMyst:
    return FakePasteMyst()


@pytest.fixture
def books_api() -> FakeGoogleBooks:
    return FakeGoogleBooks()


@pytest.fixture
def cache(tmp_path) -> Generator[LocalCache, None, None]:
    cache = LocalCache(tmp_path / "test.db")
    yield cache
    cache.close()


@pytest_asyncio.fixture
async def http_client(paste_api, books_api) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == "paste.test":
            return await paste_api(request)
        return await books_api(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(route)) as client:
        yield client


@pytest_asyncio.fixture
async def tracker(cache, http_client) -> AsyncGenerator[Tracker, None]:
    tracker = Tracker(
        cache=cache,
        remote=PasteMystClient(http_client, PASTE_BASE),
        provider=GoogleBooksProvider(http_client, BOOKS_BASE),
    )
    yield tracker
    await tracker.scheduler.drain()


@pytest.fixture
def configure_sync(cache):
    """Store sync settings the way the settings endpoint would."""

    def _configure(paste_id: str = "", token: str = TOKEN, pasty_id: str = "") -> SyncSettings:
        settings = SyncSettings(paste_id=paste_id, token=token, pasty_id=pasty_id)
        cache.save_settings(settings)
        return settings

    return _configure

