"""FastAPI web application for BookTracker."""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from ..config import Settings, load_settings
from ..core.errors import (
    MalformedError,
    NetworkError,
    NotFoundError,
    QuotaExceededError,
    RateLimitedError,
    SyncError,
    UnauthorizedError,
)
from ..core.logs import configure_logging
from ..core.models import LEGACY_LISTS, BookRecord, Membership, Notice
from ..core.tracker import Tracker

log = structlog.get_logger()

MAX_BODY_BYTES = 50_000  # ~50 KB max request body

_ERROR_STATUS: dict[type[SyncError], int] = {
    UnauthorizedError: 401,
    NotFoundError: 404,
    RateLimitedError: 429,
    QuotaExceededError: 429,
    NetworkError: 502,
    MalformedError: 502,
}


def _status_for(error: SyncError) -> int:
    for kind, status in _ERROR_STATUS.items():
        if isinstance(error, kind):
            return status
    return 500


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _parse_list(value: object) -> Membership | None:
    if not isinstance(value, str):
        return None
    if value in LEGACY_LISTS:
        return LEGACY_LISTS[value]
    try:
        return Membership(value)
    except ValueError:
        return None


def _book_json(book: BookRecord) -> dict:
    return {
        "id": book.id,
        "isbn": book.isbn,
        "title": book.title,
        "author": book.author,
        "publicationYear": book.publication_year,
        "coverImageUrl": book.cover_image_url,
        "description": book.description,
        "list": book.membership.value if book.membership else None,
        "rating": book.rating,
        "tags": book.visible_tags,
        "addedAt": book.added_at,
    }


def _notice_json(notice: Notice, status_code: int = 200, **extra: object) -> JSONResponse:
    return JSONResponse({"level": notice.level, "message": notice.message, **extra}, status_code=status_code)


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "Book not found."}, status_code=404)


async def _json_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def create_app(settings: Settings | None = None, tracker: Tracker | None = None) -> FastAPI:
    if settings is None:
        settings = load_settings()
        configure_logging(settings.log_level, json_output=not settings.is_dev)
    if tracker is None:
        tracker = Tracker.open(
            settings.cache_dir,
            settings.pastemyst_api_url,
            settings.google_books_api_url,
            google_books_api_key=settings.google_books_api_key,
            http_timeout=settings.http_timeout,
            metadata_min_interval=settings.metadata_min_interval,
            stale_after=settings.sync_stale_after,
        )

    # Rate limit tracking for searches: IP -> list of timestamps
    rate_log: dict[str, list[float]] = defaultdict(list)

    def is_rate_limited(ip: str) -> bool:
        window_start = time.time() - settings.rate_limit_window
        rate_log[ip] = [t for t in rate_log[ip] if t > window_start]
        return len(rate_log[ip]) >= settings.rate_limit

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tracker.startup()
        yield
        await tracker.aclose()

    app = FastAPI(title="BookTracker", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.tracker = tracker

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                return JSONResponse({"error": "Invalid Content-Length."}, status_code=400)
            if size > MAX_BODY_BYTES:
                return JSONResponse({"error": "Request too large."}, status_code=413)
        return await call_next(request)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": "0.1.0",
            "environment": settings.env,
            "books": len(tracker.store),
            "syncing": tracker.engine.in_flight,
            "pending_sync": tracker.store.pending.dirty,
        }

    @app.get("/api/search")
    async def search(request: Request, q: str = ""):
        query = q.strip()
        if not query:
            return {"books": []}

        ip = _client_ip(request)
        if is_rate_limited(ip):
            log.warning("rate_limited", ip=ip)
            return JSONResponse(
                {"error": "Too many requests. Please wait a minute and try again."},
                status_code=429,
            )
        rate_log[ip].append(time.time())

        try:
            results = await tracker.provider.search(query, settings.search_max_results)
        except SyncError as e:
            log.warning("search_failed", query=query, error=str(e), kind=type(e).__name__)
            status = 502 if isinstance(e, UnauthorizedError) else _status_for(e)
            return JSONResponse({"error": str(e)}, status_code=status)
        return {"books": [_book_json(b) for b in results]}

    @app.get("/api/books")
    async def list_books(list_name: str | None = Query(None, alias="list")):
        membership = None
        if list_name is not None:
            membership = _parse_list(list_name)
            if membership is None:
                return JSONResponse({"error": f"Unknown list '{list_name}'."}, status_code=400)
        return {"books": [_book_json(b) for b in tracker.store.by_membership(membership)]}

    @app.post("/api/books")
    async def add_book(request: Request):
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid request body."}, status_code=400)
        membership = _parse_list(body.get("list"))
        book = body.get("book")
        if membership is None or not isinstance(book, dict) or not book.get("id"):
            return JSONResponse({"error": "A book with an id and a valid list are required."}, status_code=400)

        duplicate = str(book["id"]) in tracker.store
        notice = tracker.ops.add_book(BookRecord.from_dict(book), membership)
        if notice.level == "error":
            return _notice_json(notice, status_code=409 if duplicate else 400)
        return _notice_json(notice, status_code=201, book=_book_json(tracker.store.get(str(book["id"]))))

    @app.delete("/api/books/{book_id}")
    async def remove_book(book_id: str):
        notice = tracker.ops.remove(book_id)
        return _not_found() if notice is None else _notice_json(notice)

    @app.put("/api/books/{book_id}/status")
    async def change_status(book_id: str, request: Request):
        body = await _json_body(request)
        membership = _parse_list(body.get("list")) if body else None
        if membership is None:
            return JSONResponse({"error": "A valid list is required."}, status_code=400)
        notice = tracker.ops.change_status(book_id, membership)
        return _not_found() if notice is None else _notice_json(notice)

    @app.put("/api/books/{book_id}/rating")
    async def set_rating(book_id: str, request: Request):
        body = await _json_body(request)
        if body is None or "rating" not in body:
            return JSONResponse({"error": "A rating (1-10 or null) is required."}, status_code=400)
        rating = body["rating"]
        if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 10):
            return JSONResponse({"error": "Rating must be between 1 and 10."}, status_code=400)

        book = tracker.store.get(book_id)
        if book is None:
            return _not_found()
        if book.membership != Membership.READ:
            return JSONResponse({"error": "Only books you have read can be rated."}, status_code=409)
        return _notice_json(tracker.ops.set_rating(book_id, rating))

    @app.post("/api/books/{book_id}/tags")
    async def add_tag(book_id: str, request: Request):
        body = await _json_body(request)
        tag = body.get("tag") if body else None
        if not isinstance(tag, str):
            return JSONResponse({"error": "A tag is required."}, status_code=400)
        notice = tracker.ops.add_tag(book_id, tag)
        if notice is None:
            return _not_found()
        return _notice_json(notice, status_code=400 if notice.level == "error" else 200)

    @app.delete("/api/books/{book_id}/tags/{tag}")
    async def remove_tag(book_id: str, tag: str):
        notice = tracker.ops.remove_tag(book_id, tag)
        return _not_found() if notice is None else _notice_json(notice)

    @app.get("/api/settings")
    async def get_settings():
        current = tracker.cache.load_settings()
        return {"pasteId": current.paste_id, "apiTokenSet": bool(current.token)}

    @app.put("/api/settings")
    async def save_settings(request: Request):
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid request body."}, status_code=400)
        current = tracker.cache.load_settings()
        paste_id = str(body.get("pasteId", current.paste_id) or "").strip()
        if paste_id != current.paste_id:
            current.pasty_id = ""
        current.paste_id = paste_id
        current.token = str(body.get("apiToken", current.token) or "").strip()
        tracker.cache.save_settings(current)
        log.info("settings_saved", paste_id=current.paste_id, token_set=bool(current.token))
        return {"message": "Settings saved!", "pasteId": current.paste_id, "apiTokenSet": bool(current.token)}

    @app.post("/api/sync")
    async def sync_now():
        if tracker.engine.in_flight:
            return JSONResponse({"error": "Sync already in progress."}, status_code=409)
        try:
            result = await tracker.engine.sync(manual=True)
        except SyncError as e:
            log.warning("manual_sync_failed", error=str(e), kind=type(e).__name__)
            return JSONResponse({"error": f"Sync failed: {e}"}, status_code=_status_for(e))

        if result is False:
            return JSONResponse({"error": "Sync failed."}, status_code=502)
        if result is True:
            paste_id = tracker.cache.load_settings().paste_id
            return {"message": f"Synced! New paste created: {paste_id}", "pasteId": paste_id}
        if result is None:
            return JSONResponse({"error": "Sync already in progress."}, status_code=409)
        return {"message": "Synced successfully!", "books": len(result)}

    @app.post("/api/focus")
    async def focus():
        return {"scheduled": tracker.scheduler.on_focus()}

    return app


def main():
    settings = load_settings()
    uvicorn.run(
        "booktracker.web.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        reload=settings.is_dev,
    )
