"""Encode and decode the compact TSV document kept in the remote store."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from .models import LEGACY_LISTS, BookRecord, WireRow, rating_tag

log = structlog.get_logger()

COLUMNS = ["isbn", "tags", "addedAt"]
HEADER = "\t".join(COLUMNS)

# Documents written before tags carried list membership and rating.
LEGACY_HEADER = "isbn\tlist\trating"


def split_tags(field: str) -> list[str]:
    """Split a comma-joined tag column, dropping blanks and duplicates."""
    tags: list[str] = []
    for raw in field.split(","):
        tag = raw.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _book_to_row(book: BookRecord) -> dict[str, str]:
    """Map a BookRecord to the wire columns."""
    return {
        "isbn": book.isbn or "",
        "tags": ",".join(book.packed_tags),
        "addedAt": book.added_at,
    }


def encode_collection(books: Iterable[BookRecord]) -> str:
    """Serialize books in collection order; books without an ISBN are left out."""
    lines = [HEADER]
    skipped = 0
    for book in books:
        if not book.isbn:
            skipped += 1
            continue
        row = _book_to_row(book)
        lines.append("\t".join(row[c] for c in COLUMNS))
    if skipped:
        log.debug("encode_skipped_no_isbn", count=skipped)
    return "\n".join(lines)


def _legacy_row(fields: list[str]) -> WireRow:
    isbn, list_name = fields[0].strip(), fields[1].strip()
    tags: list[str] = []
    membership = LEGACY_LISTS.get(list_name)
    if membership is not None:
        tags.append(membership.value)
    raw_rating = fields[2].strip() if len(fields) > 2 else ""
    if raw_rating.isdigit() and 1 <= int(raw_rating) <= 10:
        tags.append(rating_tag(int(raw_rating)))
    return WireRow(isbn=isbn, tags=tags)


def decode_rows(text: str) -> list[WireRow]:
    """Parse a wire document into rows.

    The first line is always treated as the header. Lines with fewer than two
    fields or an empty ISBN are skipped rather than failing the whole document.
    Only a line feed ends a row. Other Unicode line breaks stay inside the
    field they appear in.
    """
    lines = [line.rstrip("\r") for line in text.split("\n")]
    legacy = lines[0].strip() == LEGACY_HEADER

    rows: list[WireRow] = []
    for lineno, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        fields = line.split("\t")
        if len(fields) < 2 or not fields[0].strip():
            log.warning("wire_row_malformed", line=lineno, fields=len(fields))
            continue
        if legacy:
            rows.append(_legacy_row(fields))
            continue
        rows.append(
            WireRow(
                isbn=fields[0].strip(),
                tags=split_tags(fields[1]),
                added_at=fields[2].strip() if len(fields) > 2 else "",
            )
        )
    return rows
