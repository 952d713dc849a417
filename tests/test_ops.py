import pytest

from booktracker.core.codec import decode_rows, encode_collection
from booktracker.core.models import MEMBERSHIP_TAGS, BookRecord, Membership


def _hobbit(**kwargs):
    return BookRecord(id="v1", isbn="9780547928227", title="The Hobbit", **kwargs)


@pytest.mark.asyncio
async def test_add_book_persists_and_marks_pending(tracker):
    notice = tracker.ops.add_book(_hobbit(), Membership.TO_READ)

    assert notice.level == "info"
    assert notice.message == "Book added!"
    book = tracker.store.get("v1")
    assert book.membership is Membership.TO_READ
    assert book.added_at.endswith("Z")
    assert tracker.cache.load_books() == tracker.store.books
    assert tracker.store.pending.dirty


@pytest.mark.asyncio
async def test_add_book_rejects_duplicate_id(tracker):
    tracker.ops.add_book(_hobbit(), Membership.TO_READ)
    notice = tracker.ops.add_book(_hobbit(), Membership.READ)

    assert notice.level == "error"
    assert notice.message == "Book already in your lists"
    assert len(tracker.store) == 1
    assert tracker.store.get("v1").membership is Membership.TO_READ


@pytest.mark.asyncio
async def test_add_book_without_isbn_warns_and_stays_local(tracker):
    notice = tracker.ops.add_book(BookRecord(id="X1", title="Zine"), Membership.TO_READ)

    assert notice.level == "warning"
    assert "X1" in tracker.store
    assert [b.id for b in tracker.cache.load_books()] == ["X1"]
    assert encode_collection(tracker.store.books).count("\n") == 0


@pytest.mark.asyncio
async def test_change_status_leaves_exactly_one_membership_tag(tracker):
    tracker.ops.add_book(_hobbit(tags=["gift"]), Membership.TO_READ)
    before = tracker.store.get("v1").added_at

    notice = tracker.ops.change_status("v1", Membership.READ)

    assert notice.message == "Book moved!"
    book = tracker.store.get("v1")
    assert [t for t in book.packed_tags if t in MEMBERSHIP_TAGS] == ["read"]
    assert "gift" in book.packed_tags
    assert book.added_at >= before


@pytest.mark.asyncio
async def test_set_rating_clears_out_of_range_values(tracker):
    tracker.ops.add_book(_hobbit(), Membership.READ)

    assert tracker.ops.set_rating("v1", 7).message == "Rating saved"
    assert tracker.store.get("v1").packed_tags == ["read", "07_rating"]

    assert tracker.ops.set_rating("v1", 11).message == "Rating cleared"
    assert tracker.store.get("v1").rating is None

    tracker.ops.set_rating("v1", 3)
    tracker.ops.set_rating("v1", None)
    assert tracker.store.get("v1").packed_tags == ["read"]


@pytest.mark.asyncio
async def test_remove_deletes_from_store_and_cache(tracker):
    tracker.ops.add_book(_hobbit(), Membership.READ)
    assert tracker.ops.remove("v1").message == "Book removed"
    assert "v1" not in tracker.store
    assert tracker.cache.load_books() == []


@pytest.mark.asyncio
async def test_operations_on_unknown_id_return_none(tracker):
    assert tracker.ops.change_status("nope", Membership.READ) is None
    assert tracker.ops.set_rating("nope", 5) is None
    assert tracker.ops.remove("nope") is None
    assert tracker.ops.add_tag("nope", "x") is None
    assert tracker.ops.remove_tag("nope", "x") is None
    assert not tracker.store.pending.dirty


@pytest.mark.asyncio
@pytest.mark.parametrize("tag", ["", "  ", "a,b", "tab\there", "read", "to_read", "05_rating"])
async def test_add_tag_refuses_separators_and_reserved_names(tracker, tag):
    tracker.ops.add_book(_hobbit(), Membership.READ)
    notice = tracker.ops.add_tag("v1", tag)
    assert notice.level == "error"
    assert tracker.store.get("v1").tags == []


@pytest.mark.asyncio
async def test_add_and_remove_user_tag(tracker):
    tracker.ops.add_book(_hobbit(), Membership.READ)

    assert tracker.ops.add_tag("v1", " classic ").message == "Tag added"
    assert tracker.ops.add_tag("v1", "classic").message == "Tag already present"
    assert tracker.store.get("v1").tags == ["classic"]

    assert tracker.ops.remove_tag("v1", "classic").message == "Tag removed"
    assert tracker.ops.remove_tag("v1", "classic").message == "Tag not present"
    assert tracker.cache.load_books()[0].tags == []


@pytest.mark.asyncio
async def test_mutation_pushes_in_background_when_configured(tracker, paste_api, configure_sync):
    configure_sync()
    tracker.ops.add_book(_hobbit(), Membership.READ)
    assert tracker.scheduler.pending_tasks == 1

    await tracker.scheduler.drain()

    assert paste_api.count("POST") == 1
    assert "9780547928227\tread\t" in paste_api.text("paste1")
    assert not tracker.store.pending.dirty


@pytest.mark.asyncio
@pytest.mark.parametrize("tag", ["sci\u2028fi", "a\x0bb", "page\x0cbreak", "x\x85y", "p\u2029q", "ctl\x1e"])
async def test_add_tag_refuses_line_break_characters(tracker, tag):
    tracker.ops.add_book(_hobbit(), Membership.READ)
    notice = tracker.ops.add_tag("v1", tag)
    assert notice.level == "error"
    assert tracker.store.get("v1").tags == []


@pytest.mark.asyncio
async def test_add_book_drops_unstorable_tags(tracker):
    record = _hobbit(tags=["a,b", "x\ty", "sci\u2028fi", "00_rating", " classic ", "classic"])
    notice = tracker.ops.add_book(record, Membership.READ)

    assert notice.message == "Book added!"
    book = tracker.store.get("v1")
    assert book.tags == ["classic"]

    [row] = decode_rows(encode_collection(tracker.store.books))
    assert row.isbn == "9780547928227"
    assert row.tags == ["classic", "read"]
    assert row.added_at == book.added_at


@pytest.mark.asyncio
async def test_add_book_rejects_isbn_with_separators(tracker):
    notice = tracker.ops.add_book(BookRecord(id="v1", isbn="978\t0547"), Membership.READ)
    assert notice.level == "error"
    assert "v1" not in tracker.store
    assert not tracker.store.pending.dirty
