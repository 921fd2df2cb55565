"""
Session orchestration: open PDFs, drive transcription, apply edits, export.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from .assembler import BookManifest, assemble_book
from .config import AppConfig, ProviderProfile, Settings
from .epub_builder import EPUBBuilder
from .library import BookMetadata, DocumentLibrary, DocumentMode, LibraryEntry
from .overlay import EditOverlayStore
from .resolver import resolve_document
from .transcriber import ConfigurationError, TranscriptionDriver

logger = logging.getLogger(__name__)


@dataclass
class OpenResult:
    """Outcome of opening a PDF."""

    entry: LibraryEntry
    reused: bool = False
    transcription_started: bool = False
    warning: str | None = None


@dataclass
class ExportResult:
    """Outcome of an EPUB export."""

    success: bool
    path: Path | None
    message: str


class BookSession:
    """One user's working set of documents.

    Usage:
        session = BookSession(config)
        result = await session.open_pdf(Path("scan.pdf"))
        await session.driver.wait(result.entry.id)
        await session.export(result.entry.id)
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        settings: Settings | None = None,
        driver: TranscriptionDriver | None = None,
        library: DocumentLibrary | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Application configuration
            settings: Provider profiles; loaded from ``config.settings_path`` when omitted
            driver: Transcription driver; built over ``library`` when omitted
            library: Document history; taken from ``driver`` or created when omitted
        """
        self.config = config or AppConfig()
        self.settings = settings if settings is not None else self.config.settings_store.load()
        if driver is not None:
            self.library = driver.library
            self.driver = driver
        else:
            self.library = library or DocumentLibrary()
            self.driver = TranscriptionDriver(self.library, self.config)
        self.edits = EditOverlayStore(self.library)
        self.exporting = False

    @property
    def active_profile(self) -> ProviderProfile:
        return self.settings.active_profile

    def save_settings(self) -> None:
        self.config.settings_store.save(self.settings)

    async def open_pdf(self, path: Path) -> OpenResult:
        path = Path(path)
        return await self.open_bytes(path.name, path.read_bytes())

    async def open_bytes(self, file_name: str, content: bytes) -> OpenResult:
        """Classify a PDF, add it to history, and start transcription if needed.

        A file name already in history selects that entry instead.
        """
        existing = self.library.find_by_file_name(file_name)
        if existing is not None:
            self.library.select(existing.id)
            return OpenResult(entry=existing, reused=True)

        entry = await asyncio.to_thread(
            resolve_document, file_name, content, threshold=self.config.text_threshold
        )
        self.library.add(entry)
        self.library.select(entry.id)

        result = OpenResult(entry=entry)
        if entry.extraction_error is not None:
            result.warning = f"No text extracted: {entry.extraction_error}"
        elif entry.mode is DocumentMode.IMAGE and entry.document.page_count > 0:
            try:
                task = await self.driver.start(entry.id, self.active_profile, 0)
                result.transcription_started = task is not None
            except ConfigurationError as e:
                result.warning = str(e)
        return result

    def remove(self, document_id: str) -> LibraryEntry:
        """Remove a document from history, stopping its transcription."""
        self.driver.forget(document_id)
        return self.library.remove(document_id)

    async def start_transcription(self, document_id: str):
        return await self.driver.start(document_id, self.active_profile, 0)

    async def resume_transcription(self, document_id: str):
        return await self.driver.resume(document_id, self.active_profile)

    async def rescan(self, document_id: str):
        return await self.driver.rescan(document_id, self.active_profile)

    def cancel_transcription(self, document_id: str) -> bool:
        return self.driver.cancel(document_id)

    def set_metadata(self, document_id: str, title: str | None = None, author: str | None = None) -> LibraryEntry:
        entry = self.library.get(document_id)
        metadata = BookMetadata(
            title=entry.metadata.title if title is None else title,
            author=entry.metadata.author if author is None else author,
        )
        return self.library.update(document_id, metadata=metadata)

    def manifest(self, document_id: str) -> BookManifest:
        entry = self.library.get(document_id)
        title = entry.metadata.title.strip() or entry.document.title
        author = entry.metadata.author.strip() or "Unknown"
        return assemble_book(entry.display_pages, entry.chapters, title, author)

    async def export(self, document_id: str, output_dir: Path | None = None) -> ExportResult:
        """Assemble and write ``{title}.epub``.

        The EPUB is built in a worker thread so transcription keeps running.
        Only one export runs at a time. Never raises for serialization
        problems; the session is left idle and the export can be retried.
        """
        if self.exporting:
            return ExportResult(success=False, path=None, message="An export is already in progress")

        output_dir = Path(output_dir) if output_dir is not None else self.config.output_dir
        manifest = self.manifest(document_id)

        self.exporting = True
        try:
            path = await asyncio.to_thread(EPUBBuilder(manifest).write, output_dir)
        except (OSError, MemoryError, ValueError) as e:
            logger.error(f"EPUB export failed for {manifest.title!r}: {e}")
            return ExportResult(success=False, path=None, message=f"Export failed: {e}")
        finally:
            self.exporting = False

        return ExportResult(
            success=True,
            path=path,
            message=f"Exported {len(manifest.chapters) - 1} chapters to {path}",
        )

    async def close(self) -> None:
        """Stop background runs and persist settings."""
        await self.driver.shutdown()
        self.save_settings()
