"""PasteMyst client for the remote copy of the reading list.

Each call is a single round trip. Retrying is left to the caller.
"""

from __future__ import annotations

import httpx
import structlog

from .errors import MalformedError, NetworkError, raise_for_paste_status
from .models import RemoteDocument

log = structlog.get_logger()

PASTEMYST_API = "https://paste.myst.rs/api/v2"
PASTE_TITLE = "Book Tracker Database"
PASTY_TITLE = "books.tsv"
PASTY_LANGUAGE = "plain text"


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _document_from_json(resp: httpx.Response, fallback_id: str = "") -> RemoteDocument:
    try:
        data = resp.json()
    except ValueError as e:
        raise MalformedError("Paste response is not JSON", resp.status_code) from e
    if not isinstance(data, dict):
        raise MalformedError("Paste response has unexpected shape", resp.status_code)

    pasties = data.get("pasties") or []
    if not pasties or not isinstance(pasties[0], dict):
        raise MalformedError("Paste has no pasties", resp.status_code)
    pasty = pasties[0]
    return RemoteDocument(
        id=str(data.get("_id") or fallback_id),
        pasty_id=str(pasty.get("_id") or ""),
        text=str(pasty.get("code") or ""),
    )


class PasteMystClient:
    """Fetch, create and update the single paste that holds the TSV document."""

    def __init__(self, client: httpx.AsyncClient, base_url: str = PASTEMYST_API) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def _send(self, method: str, url: str, action: str, **kwargs: object) -> httpx.Response:
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            log.debug("paste_request_failed", action=action, error=str(e))
            raise NetworkError(f"Network error during {action}: {e}") from e
        raise_for_paste_status(resp, action)
        return resp

    async def fetch(self, paste_id: str, token: str = "") -> RemoteDocument:
        resp = await self._send(
            "GET",
            f"{self.base_url}/paste/{paste_id}",
            "fetch paste",
            headers=_auth_headers(token),
        )
        doc = _document_from_json(resp, fallback_id=paste_id)
        log.debug("paste_fetched", paste_id=doc.id, size=len(doc.text))
        return doc

    async def create(self, token: str, text: str) -> RemoteDocument:
        body = {
            "title": PASTE_TITLE,
            "expiresIn": "never",
            "isPrivate": True,
            "pasties": [
                {"_id": "", "title": PASTY_TITLE, "language": PASTY_LANGUAGE, "code": text}
            ],
        }
        resp = await self._send(
            "POST",
            f"{self.base_url}/paste",
            "create paste",
            json=body,
            headers=_auth_headers(token),
        )
        doc = _document_from_json(resp)
        if not doc.id:
            raise MalformedError("Created paste has no id", resp.status_code)
        log.info("paste_created", paste_id=doc.id)
        return doc

    async def update(self, paste_id: str, token: str, text: str, pasty_id: str) -> RemoteDocument:
        body = {
            "pasties": [
                {"_id": pasty_id, "title": PASTY_TITLE, "language": PASTY_LANGUAGE, "code": text}
            ]
        }
        resp = await self._send(
            "PATCH",
            f"{self.base_url}/paste/{paste_id}",
            "update paste",
            json=body,
            headers=_auth_headers(token),
        )
        doc = _document_from_json(resp, fallback_id=paste_id)
        log.debug("paste_updated", paste_id=paste_id, size=len(text))
        return doc
