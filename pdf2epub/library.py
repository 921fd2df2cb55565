"""
Per-document state, stored as an arena keyed by document id.

Entries are immutable. Every update replaces the whole entry, so a reader
never sees a half-written page array, even while a background transcription
run for another document is writing.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from .chapters import ChapterMark

logger = logging.getLogger(__name__)


class DocumentMode(Enum):
    """How page text is obtained."""

    TEXT = "text"
    IMAGE = "image"


class Provenance(Enum):
    """Origin/status of a page's text."""

    EXTRACTED = "extracted"
    VLM_PENDING = "vlm-pending"
    VLM_FILLED = "vlm-filled"
    VLM_ERROR = "vlm-error"


@dataclass(frozen=True)
class Document:
    """Immutable identity of an opened PDF."""

    title: str
    content: bytes = field(repr=False)
    page_count: int
    file_name: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class PageSlot:
    """Original extracted or transcribed text of one page."""

    text: str
    provenance: Provenance


@dataclass(frozen=True)
class BookMetadata:
    title: str = ""
    author: str = ""


@dataclass(frozen=True)
class LibraryEntry:
    """Everything known about one document.

    Attributes:
        document: The opened PDF
        mode: Text extraction or image transcription
        slots: One slot per page, the untouched original
        last_completed_index: Last page a transcription run finished, None before the first
        overlay: User-edited page texts, None until the first edit or split
        chapters: Chapter marks sorted by page index
        metadata: Title/author overrides for export
        extraction_error: Message when text extraction itself failed
    """

    document: Document
    mode: DocumentMode
    slots: tuple[PageSlot, ...]
    last_completed_index: int | None = None
    overlay: tuple[str, ...] | None = None
    chapters: tuple[ChapterMark, ...] = ()
    metadata: BookMetadata = BookMetadata()
    extraction_error: str | None = None

    @property
    def id(self) -> str:
        return self.document.id

    @property
    def original_pages(self) -> tuple[str, ...]:
        return tuple(slot.text for slot in self.slots)

    @property
    def display_pages(self) -> tuple[str, ...]:
        """The overlay if present, else the original pages."""
        if self.overlay is not None:
            return self.overlay
        return self.original_pages

    @property
    def has_text(self) -> bool:
        return any(text.strip() for text in self.display_pages)


class DocumentLibrary:
    """History of opened documents, newest first, plus the current selection."""

    def __init__(self) -> None:
        self._entries: dict[str, LibraryEntry] = {}
        self._order: list[str] = []
        self.current_id: str | None = None

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, entry: LibraryEntry) -> LibraryEntry:
        self._entries[entry.id] = entry
        self._order.insert(0, entry.id)
        logger.debug(f"Added {entry.document.title!r} ({entry.id}) to history")
        return entry

    def get(self, document_id: str) -> LibraryEntry:
        try:
            return self._entries[document_id]
        except KeyError:
            raise KeyError(f"Unknown document: {document_id}") from None

    def update(self, document_id: str, **changes) -> LibraryEntry:
        """Replace an entry with a copy carrying ``changes``."""
        entry = replace(self.get(document_id), **changes)
        self._entries[document_id] = entry
        return entry

    def remove(self, document_id: str) -> LibraryEntry:
        entry = self._entries.pop(document_id)
        self._order.remove(document_id)
        if self.current_id == document_id:
            self.current_id = None
        logger.debug(f"Removed {entry.document.title!r} from history")
        return entry

    def entries(self) -> list[LibraryEntry]:
        return [self._entries[i] for i in self._order]

    def find_by_file_name(self, file_name: str) -> LibraryEntry | None:
        for entry in self.entries():
            if entry.document.file_name == file_name:
                return entry
        return None

    def select(self, document_id: str | None) -> LibraryEntry | None:
        if document_id is None:
            self.current_id = None
            return None
        entry = self.get(document_id)
        self.current_id = document_id
        return entry

    @property
    def current(self) -> LibraryEntry | None:
        if self.current_id is None:
            return None
        return self._entries.get(self.current_id)
