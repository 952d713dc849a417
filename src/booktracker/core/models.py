"""Data models for the reading list."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

UNKNOWN_AUTHOR = "Unknown Author"
UNKNOWN_YEAR = "N/A"

RATING_SUFFIX = "_rating"
_RATING_RE = re.compile(r"^(\d{2})" + re.escape(RATING_SUFFIX) + r"$")


class Membership(str, Enum):
    TO_READ = "to_read"
    READING = "reading"
    READ = "read"


MEMBERSHIP_TAGS = frozenset(m.value for m in Membership)

# List names used by the older per-list layouts.
LEGACY_LISTS = {
    "wantToRead": Membership.TO_READ,
    "reading": Membership.READING,
    "read": Membership.READ,
}


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def rating_tag(rating: int) -> str:
    return f"{rating:02d}{RATING_SUFFIX}"


def parse_rating_tag(tag: str) -> int | None:
    """Return the 1-10 rating a tag encodes, or None."""
    match = _RATING_RE.match(tag)
    if not match:
        return None
    value = int(match.group(1))
    return value if 1 <= value <= 10 else None


def is_reserved_tag(tag: str) -> bool:
    return tag in MEMBERSHIP_TAGS or bool(_RATING_RE.match(tag))


def pack_tags(membership: Membership | None, rating: int | None, tags: list[str]) -> list[str]:
    """Collapse structured state into the flat tag list used for storage."""
    packed = [t for t in tags if t not in MEMBERSHIP_TAGS and parse_rating_tag(t) is None]
    if membership is not None:
        packed.append(membership.value)
    if rating is not None and 1 <= rating <= 10:
        packed.append(rating_tag(rating))
    return packed


def unpack_tags(tags: list[str]) -> tuple[Membership | None, int | None, list[str]]:
    """Split a flat tag list into (membership, rating, user tags).

    The last membership tag and the last valid rating tag win. Rating-shaped
    tags outside 1-10 are kept as user tags so nothing is silently lost.
    """
    membership: Membership | None = None
    rating: int | None = None
    user_tags: list[str] = []
    for tag in tags:
        if tag in MEMBERSHIP_TAGS:
            membership = Membership(tag)
            continue
        value = parse_rating_tag(tag)
        if value is not None:
            rating = value
            continue
        if tag not in user_tags:
            user_tags.append(tag)
    return membership, rating, user_tags


@dataclass
class BookRecord:
    id: str
    isbn: str | None = None
    title: str = ""
    author: str = UNKNOWN_AUTHOR
    publication_year: str = UNKNOWN_YEAR
    cover_image_url: str | None = None
    description: str | None = None
    membership: Membership | None = None
    rating: int | None = None
    tags: list[str] = field(default_factory=list)
    added_at: str = ""

    @property
    def packed_tags(self) -> list[str]:
        return pack_tags(self.membership, self.rating, self.tags)

    @property
    def visible_tags(self) -> list[str]:
        """User tags with the reserved membership/rating namespace filtered out."""
        return [t for t in self.tags if not is_reserved_tag(t)]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "publicationYear": self.publication_year,
            "coverImageUrl": self.cover_image_url,
            "description": self.description,
            "tags": self.packed_tags,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> BookRecord:
        raw_tags = data.get("tags")
        if not isinstance(raw_tags, list):
            raw_tags = []
        membership, rating, tags = unpack_tags([t for t in raw_tags if isinstance(t, str)])
        # JSON clients may send the ISBN as a number
        isbn = data.get("isbn")
        isbn = str(isbn).strip() if isbn is not None else ""
        return cls(
            id=str(data["id"]),
            isbn=isbn or None,
            title=data.get("title") or "",
            author=data.get("author") or UNKNOWN_AUTHOR,
            publication_year=data.get("publicationYear") or data.get("year") or UNKNOWN_YEAR,
            cover_image_url=data.get("coverImageUrl") or data.get("coverUrl"),
            description=data.get("description"),
            membership=membership,
            rating=rating,
            tags=tags,
            added_at=data.get("addedAt") or "",
        )


@dataclass
class WireRow:
    isbn: str
    tags: list[str] = field(default_factory=list)
    added_at: str = ""


@dataclass
class RemoteDocument:
    id: str
    pasty_id: str
    text: str


@dataclass
class SyncSettings:
    paste_id: str = ""
    token: str = ""
    pasty_id: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"pasteId": self.paste_id, "apiToken": self.token, "pastyId": self.pasty_id}

    @classmethod
    def from_dict(cls, data: dict) -> SyncSettings:
        return cls(
            paste_id=(data.get("pasteId") or "").strip(),
            token=(data.get("apiToken") or "").strip(),
            pasty_id=(data.get("pastyId") or "").strip(),
        )


@dataclass
class Notice:
    level: str
    message: str
