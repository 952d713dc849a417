"""Error taxonomy shared by the remote store and metadata clients."""

from __future__ import annotations

import httpx


class SyncError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(SyncError):
    pass


class UnauthorizedError(SyncError):
    pass


class RateLimitedError(SyncError):
    pass


class QuotaExceededError(SyncError):
    pass


class NetworkError(SyncError):
    pass


class MalformedError(SyncError):
    pass


def _error_message(resp: httpx.Response) -> str:
    """Best-effort message from a JSON error body."""
    try:
        data = resp.json()
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    msg = data.get("message") or data.get("error") or data.get("statusMessage") or ""
    if isinstance(msg, dict):
        msg = msg.get("message") or msg.get("status") or ""
    return str(msg)


def raise_for_paste_status(resp: httpx.Response, action: str) -> None:
    """Classify a PasteMyst response into the error taxonomy."""
    status = resp.status_code
    if status < 400:
        return
    detail = _error_message(resp)
    suffix = f": {detail}" if detail else ""
    if status == 404:
        raise NotFoundError(f"Paste not found{suffix}", status)
    if status in (401, 403):
        raise UnauthorizedError(f"{action} rejected credential ({status}){suffix}", status)
    if status == 429:
        raise RateLimitedError(f"{action} rate limited{suffix}", status)
    raise NetworkError(f"Failed to {action}: {status}{suffix}", status)


def raise_for_books_status(resp: httpx.Response) -> None:
    """Classify a Google Books response into the error taxonomy.

    Google reports both per-minute throttling and daily caps; the latter come
    back as 403 with a quota/limit message and are never worth retrying today.
    """
    status = resp.status_code
    if status < 400:
        return
    detail = _error_message(resp)
    lowered = detail.lower()
    if status == 403 or (status == 429 and "daily" in lowered):
        raise QuotaExceededError("API quota exceeded. Daily limit reached.", status)
    if status == 429:
        raise RateLimitedError("Rate limit exceeded. Please try again in a few minutes.", status)
    if status == 401:
        raise UnauthorizedError(f"Books API rejected key{': ' + detail if detail else ''}", status)
    raise NetworkError(f"Search failed (Error {status})", status)
