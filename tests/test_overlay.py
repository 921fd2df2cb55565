"""Tests for the edit overlay store."""

import pytest

from conftest import make_entry
from pdf2epub.assembler import assemble_book
from pdf2epub.overlay import EditOverlayStore, SplitError, split_text

PAGES = ["First page text.", "Second page.  Second half here.", "Third page."]


@pytest.fixture
def store(library):
    return EditOverlayStore(library)


@pytest.fixture
def doc_id(library):
    return library.add(make_entry(PAGES)).id


class TestSplitText:
    """Tests for cutting a page's text."""

    def test_trims_whitespace_at_cut(self):
        assert split_text("Hello   world", 6) == ("Hello", "world")

    def test_halves_rebuild_text(self):
        text = "One sentence. Another sentence."
        head, tail = split_text(text, 14)
        assert f"{head} {tail}" == text

    @pytest.mark.parametrize("offset", [0, 5, -1, 99])
    def test_offset_at_boundary_rejected(self, offset):
        with pytest.raises(SplitError):
            split_text("Hello", offset)

    def test_split_error_is_value_error(self):
        assert issubclass(SplitError, ValueError)


class TestSetPageText:
    """Tests for editing page text."""

    def test_display_falls_back_to_original(self, store, doc_id):
        assert store.pages(doc_id) == tuple(PAGES)
        assert store.library.get(doc_id).overlay is None

    def test_first_edit_seeds_overlay(self, store, doc_id):
        entry = store.set_page_text(doc_id, 1, "Edited")
        assert entry.overlay == (PAGES[0], "Edited", PAGES[2])
        assert entry.original_pages == tuple(PAGES)

    def test_later_edits_keep_earlier_ones(self, store, doc_id):
        store.set_page_text(doc_id, 0, "A")
        store.set_page_text(doc_id, 2, "C")
        assert store.pages(doc_id) == ("A", PAGES[1], "C")

    def test_out_of_range(self, store, doc_id):
        with pytest.raises(IndexError):
            store.set_page_text(doc_id, 3, "nope")

    def test_unknown_document(self, store):
        with pytest.raises(KeyError):
            store.set_page_text("missing", 0, "x")


class TestSplitPage:
    """Tests for splitting a page in two."""

    def test_split_inserts_page(self, store, doc_id):
        entry = store.split_page(doc_id, 1, 12)
        assert entry.display_pages == (PAGES[0], "Second page.", "Second half here.", PAGES[2])
        assert len(entry.original_pages) == 3

    def test_split_shifts_later_marks(self, store, doc_id):
        store.set_or_clear_chapter(doc_id, 0, "Start")
        store.set_or_clear_chapter(doc_id, 1, "Middle")
        store.set_or_clear_chapter(doc_id, 2, "End")

        entry = store.split_page(doc_id, 1, 12)

        assert [(m.page_index, m.title) for m in entry.chapters] == [
            (0, "Start"), (1, "Middle"), (3, "End"),
        ]

    @pytest.mark.parametrize("offset", [0, len(PAGES[1])])
    def test_rejected_split_changes_nothing(self, store, doc_id, offset):
        store.set_or_clear_chapter(doc_id, 2, "End")
        before = store.library.get(doc_id)

        with pytest.raises(SplitError):
            store.split_page(doc_id, 1, offset)

        assert store.library.get(doc_id) == before
        assert store.library.get(doc_id).overlay is None

    def test_split_builds_on_edits(self, store, doc_id):
        store.set_page_text(doc_id, 0, "alpha beta")
        store.split_page(doc_id, 0, 5)
        assert store.pages(doc_id)[:2] == ("alpha", "beta")


class TestResetToOriginal:
    """Tests for discarding edits."""

    def test_reset_restores_original(self, store, doc_id):
        store.set_page_text(doc_id, 0, "changed")
        store.split_page(doc_id, 1, 12)
        store.split_page(doc_id, 0, 3)

        entry = store.reset_to_original(doc_id)

        assert entry.overlay is None
        assert entry.display_pages == tuple(PAGES)

    def test_reset_only_affects_one_document(self, store, library, doc_id):
        other_id = library.add(make_entry(["other one", "other two"], title="Other")).id
        store.set_page_text(doc_id, 0, "mine")
        store.set_page_text(other_id, 0, "theirs")

        store.reset_to_original(doc_id)

        assert library.get(other_id).overlay == ("theirs", "other two")

    def test_reset_drops_marks_past_the_end(self, store, doc_id):
        store.split_page(doc_id, 1, 12)
        store.set_or_clear_chapter(doc_id, 3, "Last")
        store.set_or_clear_chapter(doc_id, 1, "Kept")

        entry = store.reset_to_original(doc_id)

        assert [m.title for m in entry.chapters] == ["Kept"]


class TestChapterMarks:
    """Tests for chapter marks bound to the store."""

    def test_create_and_rename(self, store, doc_id):
        first = store.set_or_clear_chapter(doc_id, 1, "  Intro  ").chapters[0]
        renamed = store.set_or_clear_chapter(doc_id, 1, "Introduction").chapters[0]

        assert first.title == "Intro"
        assert renamed.title == "Introduction"
        assert renamed.id == first.id

    @pytest.mark.parametrize("blank", ["", "   ", "\n\t"])
    def test_blank_title_removes(self, store, doc_id, blank):
        store.set_or_clear_chapter(doc_id, 1, "Intro")
        entry = store.set_or_clear_chapter(doc_id, 1, blank)
        assert entry.chapters == ()

    def test_marks_sorted_and_unique(self, store, doc_id):
        store.set_or_clear_chapter(doc_id, 2, "C")
        store.set_or_clear_chapter(doc_id, 0, "A")
        entry = store.set_or_clear_chapter(doc_id, 2, "C again")

        assert [(m.page_index, m.title) for m in entry.chapters] == [(0, "A"), (2, "C again")]

    def test_mark_must_point_at_a_page(self, store, doc_id):
        with pytest.raises(IndexError):
            store.set_or_clear_chapter(doc_id, 5, "Nowhere")

    def test_placed_marks_without_titles_number_by_order(self, store, doc_id):
        store.place_chapter(doc_id, 2)
        entry = store.place_chapter(doc_id, 1, "   ")

        assert [(m.page_index, m.title) for m in entry.chapters] == [(1, ""), (2, "")]
        manifest = assemble_book(entry.display_pages, entry.chapters, "Book", "Author")
        assert [c.title for c in manifest.chapters] == ["Cover", "Preface", "Chapter 1", "Chapter 2"]

    def test_place_out_of_range(self, store, doc_id):
        with pytest.raises(IndexError):
            store.place_chapter(doc_id, 3)
