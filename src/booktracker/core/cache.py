"""SQLite-backed local cache for the book collection and sync settings."""

from __future__ import annotations

import json
import os
import sqlite3
import time
from pathlib import Path

import structlog

from .models import LEGACY_LISTS, BookRecord, SyncSettings, pack_tags

log = structlog.get_logger()

BOOKS_KEY = "bookTrackerData"
SETTINGS_KEY = "bookTrackerSettings"


def _from_legacy_layout(data: dict) -> list[dict]:
    """Flatten the old per-list layout into record dicts with packed tags."""
    flat: list[dict] = []
    for list_name, membership in LEGACY_LISTS.items():
        for entry in data.get(list_name) or []:
            if not isinstance(entry, dict):
                continue
            rating = entry.get("rating")
            tags = pack_tags(membership, rating if isinstance(rating, int) else None, [])
            flat.append({**entry, "tags": tags})
    return flat


class LocalCache:
    """Durable key-value storage for the denormalized collection."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            cache_dir = Path(os.environ.get("CACHE_DIR", ".cache"))
            cache_dir.mkdir(parents=True, exist_ok=True)
            db_path = cache_dir / "booktracker.db"

        self.db_path = db_path
        self._conn = sqlite3.connect(str(db_path))
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at REAL
            )"""
        )
        self._conn.commit()

    def get(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM entries WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO entries (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, time.time()),
        )
        self._conn.commit()

    def load_books(self) -> list[BookRecord]:
        """Read the cached collection. Corrupt data is logged and treated as empty."""
        raw = self.get(BOOKS_KEY)
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            log.error("cache_load_failed", key=BOOKS_KEY, error=str(e))
            return []

        if isinstance(data, dict):
            data = _from_legacy_layout(data)
        if not isinstance(data, list):
            log.error("cache_load_failed", key=BOOKS_KEY, error="unexpected layout")
            return []

        books: list[BookRecord] = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("id"):
                log.warning("cache_record_skipped", entry=repr(entry)[:80])
                continue
            books.append(BookRecord.from_dict(entry))
        log.debug("cache_loaded", books=len(books))
        return books

    def save_books(self, books: list[BookRecord]) -> None:
        self.put(BOOKS_KEY, json.dumps([b.to_dict() for b in books]))
        log.debug("cache_store", books=len(books))

    def load_settings(self) -> SyncSettings:
        raw = self.get(SETTINGS_KEY)
        if raw is None:
            return SyncSettings()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            log.error("cache_load_failed", key=SETTINGS_KEY, error=str(e))
            return SyncSettings()
        if not isinstance(data, dict):
            return SyncSettings()
        return SyncSettings.from_dict(data)

    def save_settings(self, settings: SyncSettings) -> None:
        self.put(SETTINGS_KEY, json.dumps(settings.to_dict()))

    def close(self) -> None:
        self._conn.close()
