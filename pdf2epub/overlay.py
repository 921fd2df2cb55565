"""
User edits layered over the original page text.

The original slots are never touched here. The first edit or split copies
the current pages into an overlay, which from then on is what is displayed
and exported until it is reset.
"""

import logging

from . import chapters
from .library import DocumentLibrary, LibraryEntry

logger = logging.getLogger(__name__)


class SplitError(ValueError):
    """A page cannot be split at the requested position."""


def split_text(text: str, offset: int) -> tuple[str, str]:
    """Cut text in two at ``offset``, trimming whitespace at the cut.

    Raises:
        SplitError: Offset is not strictly inside the text
    """
    if not 0 < offset < len(text):
        raise SplitError(
            "Place the cursor inside the page text to split it "
            f"(offset {offset}, page length {len(text)})"
        )
    return text[:offset].rstrip(), text[offset:].lstrip()


class EditOverlayStore:
    """Edits, splits, and chapter marks for documents in a library."""

    def __init__(self, library: DocumentLibrary) -> None:
        self.library = library

    def pages(self, document_id: str) -> tuple[str, ...]:
        return self.library.get(document_id).display_pages

    @staticmethod
    def _check_index(entry: LibraryEntry, page_index: int) -> None:
        count = len(entry.display_pages)
        if not 0 <= page_index < count:
            raise IndexError(f"Page index {page_index} out of range (0-{count - 1})")

    def set_page_text(self, document_id: str, page_index: int, text: str) -> LibraryEntry:
        """Replace the text of one displayed page."""
        entry = self.library.get(document_id)
        self._check_index(entry, page_index)

        pages = list(entry.display_pages)
        pages[page_index] = text
        return self.library.update(document_id, overlay=tuple(pages))

    def split_page(self, document_id: str, page_index: int, offset: int) -> LibraryEntry:
        """Split a page in two at a character offset.

        Chapter marks after the page move down by one so they stay on the
        same text.

        Raises:
            SplitError: Offset at or beyond either end of the page (no change made)
        """
        entry = self.library.get(document_id)
        self._check_index(entry, page_index)

        pages = list(entry.display_pages)
        head, tail = split_text(pages[page_index], offset)
        pages[page_index:page_index + 1] = [head, tail]

        logger.debug(f"Split page {page_index + 1} of {entry.document.title!r} at {offset}")
        return self.library.update(
            document_id,
            overlay=tuple(pages),
            chapters=chapters.shift_after(entry.chapters, page_index),
        )

    def reset_to_original(self, document_id: str) -> LibraryEntry:
        """Drop all edits and splits for one document.

        Chapter marks that pointed past the end of the original pages are
        removed.
        """
        entry = self.library.get(document_id)
        return self.library.update(
            document_id,
            overlay=None,
            chapters=chapters.prune(entry.chapters, len(entry.original_pages)),
        )

    def set_or_clear_chapter(self, document_id: str, page_index: int, title: str) -> LibraryEntry:
        """Mark a page as a chapter start, rename its mark, or clear it with an empty title."""
        entry = self.library.get(document_id)
        self._check_index(entry, page_index)
        return self.library.update(
            document_id,
            chapters=chapters.set_or_clear(entry.chapters, page_index, title),
        )

    def place_chapter(self, document_id: str, page_index: int, title: str = "") -> LibraryEntry:
        """Mark a page as a chapter start; a blank title is numbered at export."""
        entry = self.library.get(document_id)
        self._check_index(entry, page_index)
        return self.library.update(
            document_id,
            chapters=chapters.place(entry.chapters, page_index, title),
        )
