"""In-memory book collection and its pending-sync marker."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import structlog

from .models import BookRecord, Membership

log = structlog.get_logger()


class PendingSync:
    """Outbox marker recording mutations not yet pushed to the remote store.

    Every mutation bumps ``generation``. A push snapshots the generation it
    encoded and clears only up to that point, so edits made while the push
    was in flight stay pending.
    """

    def __init__(self) -> None:
        self.generation = 0
        self._synced_generation = 0
        self.reasons: list[str] = []

    @property
    def dirty(self) -> bool:
        return self.generation > self._synced_generation

    def mark(self, reason: str) -> int:
        self.generation += 1
        self.reasons.append(reason)
        return self.generation

    def clear(self, upto: int | None = None) -> None:
        if upto is None or upto >= self.generation:
            self._synced_generation = self.generation
            self.reasons.clear()
            return
        dropped = upto - self._synced_generation
        if dropped > 0:
            self._synced_generation = upto
            del self.reasons[:dropped]


class BookStore:
    """Insertion-ordered collection of BookRecords keyed by id."""

    def __init__(self, books: Iterable[BookRecord] = ()) -> None:
        self._books: dict[str, BookRecord] = {}
        self.pending = PendingSync()
        self.replace_all(books)

    def __len__(self) -> int:
        return len(self._books)

    def __iter__(self) -> Iterator[BookRecord]:
        return iter(list(self._books.values()))

    def __contains__(self, book_id: object) -> bool:
        return book_id in self._books

    @property
    def books(self) -> list[BookRecord]:
        return list(self._books.values())

    def get(self, book_id: str) -> BookRecord | None:
        return self._books.get(book_id)

    def find_by_isbn(self, isbn: str) -> BookRecord | None:
        for book in self._books.values():
            if book.isbn and book.isbn == isbn:
                return book
        return None

    def insert(self, book: BookRecord) -> bool:
        """Add a record; returns False if its id is already present."""
        if book.id in self._books:
            return False
        self._books[book.id] = book
        return True

    def remove(self, book_id: str) -> BookRecord | None:
        return self._books.pop(book_id, None)

    def replace_all(self, books: Iterable[BookRecord]) -> None:
        """Swap in a whole new collection, keeping the first record per id."""
        fresh: dict[str, BookRecord] = {}
        for book in books:
            if book.id in fresh:
                log.warning("store_duplicate_dropped", book_id=book.id, isbn=book.isbn)
                continue
            fresh[book.id] = book
        self._books = fresh

    def by_membership(self, membership: Membership | None = None) -> list[BookRecord]:
        """Records in one list (or all), newest first."""
        books = [b for b in self._books.values() if membership is None or b.membership == membership]
        return sorted(books, key=lambda b: b.added_at, reverse=True)
