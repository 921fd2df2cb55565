"""
Page source resolution: decide whether a PDF carries usable text or needs
image transcription.
"""

import logging
import re
from pathlib import Path
from typing import Callable

from .library import Document, DocumentMode, LibraryEntry, PageSlot, Provenance
from .pdf_source import extract_page_texts

logger = logging.getLogger(__name__)

TEXT_THRESHOLD = 20


def classify_pages(texts: list[str], threshold: int = TEXT_THRESHOLD) -> DocumentMode:
    """Classify a document from its per-page extracted text.

    Args:
        texts: Extracted text of each page
        threshold: A page counts as text when its trimmed length exceeds this

    Returns:
        DocumentMode.TEXT if any page has real text, else DocumentMode.IMAGE
    """
    if any(len(text.strip()) > threshold for text in texts):
        return DocumentMode.TEXT
    return DocumentMode.IMAGE


def title_from_file_name(file_name: str) -> str:
    return re.sub(r"\.pdf$", "", Path(file_name).name, flags=re.IGNORECASE)


def resolve_document(
    file_name: str,
    content: bytes,
    extractor: Callable[[bytes], list[str]] = extract_page_texts,
    threshold: int = TEXT_THRESHOLD,
) -> LibraryEntry:
    """Open a PDF and build its library entry.

    Text documents get their slots filled right away. Image documents get
    one empty pending slot per page; transcription is started by the caller.
    If extraction itself fails, the document is still created with zero
    pages so a parse failure never triggers transcription.

    Args:
        file_name: Name of the uploaded file
        content: Raw PDF bytes
        extractor: Returns per-page text for the PDF bytes
        threshold: Classification threshold

    Returns:
        New LibraryEntry (not yet added to any library)
    """
    title = title_from_file_name(file_name)

    try:
        texts = extractor(content)
    except Exception as e:
        logger.error(f"Text extraction failed for {file_name}: {e}")
        document = Document(title=title, content=content, page_count=0, file_name=file_name)
        return LibraryEntry(
            document=document,
            mode=DocumentMode.TEXT,
            slots=(),
            extraction_error=str(e) or type(e).__name__,
        )

    document = Document(title=title, content=content, page_count=len(texts), file_name=file_name)
    mode = classify_pages(texts, threshold)

    if mode is DocumentMode.TEXT:
        slots = tuple(PageSlot(text, Provenance.EXTRACTED) for text in texts)
    else:
        slots = tuple(PageSlot("", Provenance.VLM_PENDING) for _ in texts)

    logger.info(f"{file_name}: {len(texts)} pages, {mode.value} mode")
    return LibraryEntry(document=document, mode=mode, slots=slots)
