"""Shared fixtures: small PDFs built with PyMuPDF and in-memory libraries."""

import fitz
import pytest

from pdf2epub.library import (
    Document,
    DocumentLibrary,
    DocumentMode,
    LibraryEntry,
    PageSlot,
    Provenance,
)

TEXT_PAGES = [
    "It was a bright cold day in April, and the clocks were striking thirteen.",
    "Winston Smith, his chin nuzzled into his breast, slipped quickly through.",
    "The hallway smelt of boiled cabbage and old rag mats.",
]


def build_pdf(page_texts: list[str]) -> bytes:
    """A PDF with one page per entry; empty entries give blank pages."""
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def text_pdf() -> bytes:
    return build_pdf(TEXT_PAGES)


@pytest.fixture
def blank_pdf() -> bytes:
    return build_pdf(["", "", ""])


def make_entry(pages: list[str], mode: DocumentMode = DocumentMode.TEXT, title: str = "Book") -> LibraryEntry:
    provenance = Provenance.EXTRACTED if mode is DocumentMode.TEXT else Provenance.VLM_PENDING
    document = Document(title=title, content=b"%PDF-1.7", page_count=len(pages), file_name=f"{title}.pdf")
    return LibraryEntry(
        document=document,
        mode=mode,
        slots=tuple(PageSlot(text, provenance) for text in pages),
    )


@pytest.fixture
def library() -> DocumentLibrary:
    return DocumentLibrary()
