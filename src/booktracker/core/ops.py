"""Mutations on the reading list.

Each mutation updates memory and the local cache before returning, then
hands the push to the scheduler without waiting for it.
"""

from __future__ import annotations

import dataclasses

import structlog

from .cache import LocalCache
from .models import BookRecord, Membership, Notice, is_reserved_tag, utc_now_iso
from .scheduler import SyncScheduler
from .store import BookStore

log = structlog.get_logger()


def _tag_problem(tag: str) -> str | None:
    """Why a user tag cannot be stored, or None if it can.

    Commas split the tag column. Non-printable characters include the tab and
    every line separator, and those would break the row apart.
    """
    if not tag or "," in tag or not tag.isprintable():
        return "Tags must be non-empty and free of separators"
    if is_reserved_tag(tag):
        return f"'{tag}' is reserved"
    return None


class CollectionOps:
    def __init__(self, store: BookStore, cache: LocalCache, scheduler: SyncScheduler) -> None:
        self.store = store
        self.cache = cache
        self.scheduler = scheduler

    def _commit(self, reason: str, book_id: str) -> None:
        self.cache.save_books(self.store.books)
        self.store.pending.mark(f"{reason}:{book_id}")
        self.scheduler.request_push()

    def add_book(self, record: BookRecord, membership: Membership) -> Notice:
        if record.id in self.store:
            log.info("book_add_duplicate", book_id=record.id)
            return Notice("error", "Book already in your lists")
        if record.isbn and not record.isbn.isprintable():
            log.info("book_add_invalid_isbn", book_id=record.id)
            return Notice("error", "Invalid ISBN")

        tags: list[str] = []
        for raw in record.tags:
            tag = raw.strip()
            if _tag_problem(tag) is None and tag not in tags:
                tags.append(tag)
        if len(tags) != len(record.tags):
            log.info("book_tags_dropped", book_id=record.id, kept=len(tags), given=len(record.tags))

        book = dataclasses.replace(
            record,
            membership=membership,
            tags=tags,
            added_at=utc_now_iso(),
        )
        self.store.insert(book)
        self._commit("add", book.id)

        if not book.isbn:
            log.warning("book_added_without_isbn", book_id=book.id, title=book.title)
            return Notice("warning", "Book has no ISBN - won't sync to cloud")
        log.info("book_added", book_id=book.id, isbn=book.isbn, membership=membership.value)
        return Notice("info", "Book added!")

    def change_status(self, book_id: str, membership: Membership) -> Notice | None:
        book = self.store.get(book_id)
        if book is None:
            return None
        book.membership = membership
        book.added_at = utc_now_iso()
        self._commit("status", book_id)
        return Notice("info", "Book moved!")

    def set_rating(self, book_id: str, rating: int | None) -> Notice | None:
        book = self.store.get(book_id)
        if book is None:
            return None
        book.rating = rating if rating is not None and 1 <= rating <= 10 else None
        self._commit("rating", book_id)
        return Notice("info", "Rating saved" if book.rating else "Rating cleared")

    def remove(self, book_id: str) -> Notice | None:
        if self.store.remove(book_id) is None:
            return None
        self._commit("remove", book_id)
        return Notice("info", "Book removed")

    def add_tag(self, book_id: str, tag: str) -> Notice | None:
        book = self.store.get(book_id)
        if book is None:
            return None
        tag = tag.strip()
        problem = _tag_problem(tag)
        if problem is not None:
            return Notice("error", problem)
        if tag in book.tags:
            return Notice("info", "Tag already present")
        book.tags.append(tag)
        self._commit("tag", book_id)
        return Notice("info", "Tag added")

    def remove_tag(self, book_id: str, tag: str) -> Notice | None:
        book = self.store.get(book_id)
        if book is None:
            return None
        if tag not in book.tags:
            return Notice("info", "Tag not present")
        book.tags.remove(tag)
        self._commit("untag", book_id)
        return Notice("info", "Tag removed")
