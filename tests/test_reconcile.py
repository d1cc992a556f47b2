"""Tests for conflict policies, hashtag promotion and per-document isolation."""

from __future__ import annotations

import pytest

from astral.errors import StoreError
from astral.importer import import_archive
from astral.models import ImportOptions, NumberValue
from astral.reconcile import SKIP_REASON, merge_properties, normalize_tags, union_tags
from astral.store import MemoryStore
from conftest import make_object, make_zip, objects_by_title

NOTE_ARCHIVE = make_zip({"Note.md": "---\ntags: [b, c]\ny: 2\n---\nIncoming body\n"})


@pytest.fixture
def existing_store() -> MemoryStore:
    """Store holding one page titled "Note" with tags a, b and property x=1."""
    return MemoryStore(
        objects=[
            make_object(
                "note-1",
                "Note",
                content="<p>Old body</p>",
                tags=["a", "b"],
                properties={"x": NumberValue(value=1)},
            )
        ]
    )


def _plain(obj) -> dict:
    return {key: value.plain() for key, value in obj.properties.items()}


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


class TestTagHelpers:
    def test_normalize_tags_from_string(self):
        assert normalize_tags("a, #b, A,, ") == ["a", "b"]

    def test_normalize_tags_from_list(self):
        assert normalize_tags(["Work", "#work", 2024]) == ["Work", "2024"]

    def test_union_keeps_order_and_first_spelling(self):
        assert union_tags(["a", "B"], ["b", "c"]) == ["a", "B", "c"]

    def test_merge_properties_incoming_wins(self):
        merged = merge_properties({"x": 1, "y": 1}, {"y": 2})

        assert merged == {"x": 1, "y": 2}


# ─────────────────────────────────────────────────────────────────────────────
# Conflict policies
# ─────────────────────────────────────────────────────────────────────────────


class TestConflictPolicies:
    @pytest.mark.asyncio
    async def test_skip_keeps_existing(self, existing_store):
        outcome = await import_archive(NOTE_ARCHIVE, existing_store, ImportOptions(handle_conflicts="skip"))

        assert outcome.skipped_count == 1
        assert outcome.created_count == 0
        assert [(item.title, item.reason) for item in outcome.skipped_items] == [("Note", SKIP_REASON)]
        note = await existing_store.get_object("note-1")
        assert note.content == "<p>Old body</p>"
        assert note.last_import_batch is None

    @pytest.mark.asyncio
    async def test_merge_unions_tags_and_merges_properties(self, existing_store):
        outcome = await import_archive(NOTE_ARCHIVE, existing_store, ImportOptions(handle_conflicts="merge"))

        assert outcome.updated_count == 1
        note = await existing_store.get_object("note-1")
        assert note.tags == ["a", "b", "c"]
        assert _plain(note) == {"x": 1, "y": 2}
        assert "Incoming body" in note.content
        assert note.last_import_batch == outcome.batch_id
        assert note.import_batch is None

    @pytest.mark.asyncio
    async def test_second_merge_builds_on_the_first(self, existing_store):
        archive = make_zip(
            {
                "Notes/Note.md": "---\ntags: [c]\nz: 3\n---\nFirst copy\n",
                "Pages/Note.md": "---\ntags: [d]\n---\nSecond copy\n",
            }
        )

        outcome = await import_archive(archive, existing_store, ImportOptions(handle_conflicts="merge"))

        assert outcome.updated_count == 2
        note = await existing_store.get_object("note-1")
        assert note.tags == ["a", "b", "c", "d"]
        assert _plain(note) == {"x": 1, "z": 3}
        assert "Second copy" in note.content

    @pytest.mark.asyncio
    async def test_overwrite_replaces_tags_and_properties(self, existing_store):
        outcome = await import_archive(NOTE_ARCHIVE, existing_store, ImportOptions(handle_conflicts="overwrite"))

        assert outcome.updated_count == 1
        note = await existing_store.get_object("note-1")
        assert note.tags == ["b", "c"]
        assert _plain(note) == {"y": 2}
        assert "Old body" not in note.content

    @pytest.mark.asyncio
    async def test_duplicate_creates_suffixed_copy(self, existing_store):
        outcome = await import_archive(NOTE_ARCHIVE, existing_store, ImportOptions(handle_conflicts="duplicate"))

        assert outcome.created_count == 1
        objects = await objects_by_title(existing_store)
        assert set(objects) == {"Note", "Note (imported)"}
        assert objects["Note (imported)"].import_batch == outcome.batch_id

    @pytest.mark.asyncio
    async def test_match_ignores_case_but_not_type(self, existing_store):
        archive = make_zip({"note.md": "lower-case title", "Books/Note.md": "a book"})

        outcome = await import_archive(archive, existing_store)

        assert outcome.skipped_count == 1
        assert outcome.created_count == 1
        created = [o for o in await existing_store.list_objects() if o.id != "note-1"]
        assert [(o.type, o.title) for o in created] == [("book", "Note")]

    @pytest.mark.asyncio
    async def test_documents_of_one_run_do_not_match_each_other(self, store):
        archive = make_zip({"Pages/Twin.md": "first", "Export/Pages/Twin.md": "second"})

        outcome = await import_archive(archive, store)

        assert outcome.created_count == 2


# ─────────────────────────────────────────────────────────────────────────────
# Properties discovered during the run
# ─────────────────────────────────────────────────────────────────────────────


class TestNewProperties:
    @pytest.mark.asyncio
    async def test_new_property_persisted_on_type_once(self, store):
        archive = make_zip(
            {
                "Books/Dune.md": "---\nPages: 412\n---\n",
                "Books/Emma.md": "---\npages: 474\n---\n",
            }
        )

        await import_archive(archive, store)

        book = next(t for t in await store.list_types() if t.id == "book")
        assert [p.id for p in book.properties].count("pages") == 1
        objects = await objects_by_title(store)
        assert _plain(objects["Emma"]) == {"pages": 474}


# ─────────────────────────────────────────────────────────────────────────────
# Hashtags
# ─────────────────────────────────────────────────────────────────────────────


class TestHashtags:
    @pytest.mark.asyncio
    async def test_mentions_mode_creates_one_tag_object_per_hashtag(self, store):
        archive = make_zip(
            {
                "Pages/A.md": "Planning #Work and #ideas",
                "Pages/B.md": "More #work here",
            }
        )

        outcome = await import_archive(archive, store)

        assert outcome.created_count == 2
        tags = [o for o in await store.list_objects() if o.type == "tag"]
        assert sorted(t.title for t in tags) == ["ideas", "work"]
        work_id = next(t.id for t in tags if t.title == "work")
        objects = await objects_by_title(store)
        assert f'data-hashtag-id="{work_id}">#Work</span>' in objects["A"].content
        assert f'data-hashtag-id="{work_id}">#work</span>' in objects["B"].content

    @pytest.mark.asyncio
    async def test_mentions_mode_reuses_existing_tag_object(self):
        store = MemoryStore(objects=[make_object("tag-1", "Work", type_id="tag")])

        await import_archive(make_zip({"Pages/A.md": "Planning #work"}), store)

        tags = [o for o in await store.list_objects() if o.type == "tag"]
        assert [t.id for t in tags] == ["tag-1"]
        objects = await objects_by_title(store)
        assert 'data-hashtag-id="tag-1"' in objects["A"].content

    @pytest.mark.asyncio
    async def test_tags_mode_attaches_hashtags_to_object(self, store):
        archive = make_zip({"Pages/A.md": "---\ntags: [draft]\n---\nPlanning #work and #Draft"})

        await import_archive(archive, store, ImportOptions(convert_hashtags="tags"))

        objects = await objects_by_title(store)
        assert objects["A"].tags == ["draft", "work"]
        assert not any(o.type == "tag" for o in objects.values())
        assert "hashtag-pill" not in objects["A"].content

    @pytest.mark.asyncio
    async def test_plain_mode_leaves_text(self, store):
        await import_archive(make_zip({"Pages/A.md": "Planning #work"}), store, ImportOptions(convert_hashtags="plain"))

        objects = await objects_by_title(store)
        assert objects["A"].tags == []
        assert "#work" in objects["A"].content
        assert "hashtag-pill" not in objects["A"].content


# ─────────────────────────────────────────────────────────────────────────────
# Failure isolation
# ─────────────────────────────────────────────────────────────────────────────


class FlakyStore(MemoryStore):
    """Rejects creation of one title."""

    def __init__(self, bad_title: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.bad_title = bad_title

    async def create_object(self, draft):
        if draft.title == self.bad_title:
            raise StoreError("disk full")
        return await super().create_object(draft)


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_one_failing_document_does_not_abort_the_batch(self):
        store = FlakyStore("Bad")
        archive = make_zip({"Pages/Good.md": "ok", "Pages/Bad.md": "boom", "Pages/Also Good.md": "ok"})

        outcome = await import_archive(archive, store)

        assert outcome.errors == []
        assert outcome.created_count == 2
        assert "Error importing 'Bad': disk full" in outcome.warnings
        assert set(await objects_by_title(store)) == {"Good", "Also Good"}
