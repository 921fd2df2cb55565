"""
HTTP backend for the PDF to EPUB editor.

Serves documents and their pages, applies edits, splits and chapter marks,
drives transcription runs in the background, and exports EPUB files.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel

from .config import AppConfig, ProviderProfile
from .library import LibraryEntry
from .overlay import SplitError
from .pipeline import BookSession
from .transcriber import ConfigurationError, ModelListError, fetch_models

logger = logging.getLogger(__name__)


class OpenRequest(BaseModel):
    path: str


class PageUpdate(BaseModel):
    text: str


class SplitRequest(BaseModel):
    offset: int


class ChapterUpdate(BaseModel):
    title: str = ""


class MetadataUpdate(BaseModel):
    title: str | None = None
    author: str | None = None


class ProfileUpdate(BaseModel):
    name: str | None = None
    baseUrl: str | None = None
    apiKey: str | None = None
    model: str | None = None
    prompt: str | None = None


def entry_summary(entry: LibraryEntry, session: BookSession) -> dict:
    document = entry.document
    return {
        "id": document.id,
        "title": document.title,
        "fileName": document.file_name,
        "datetime": document.created_at.isoformat(),
        "pageCount": document.page_count,
        "mode": entry.mode.value,
        "edited": entry.overlay is not None,
        "extractionError": entry.extraction_error,
        "current": session.library.current_id == document.id,
        "transcription": session.driver.state(document.id).value,
    }


def transcription_status(session: BookSession, document_id: str) -> dict:
    entry = session.library.get(document_id)
    run = session.driver.run_for(document_id)
    return {
        "state": session.driver.state(document_id).value,
        "lastRun": run.to_dict() if run else None,
        "lastCompletedIndex": entry.last_completed_index,
        "total": entry.document.page_count,
    }


def create_app(config: AppConfig | None = None, session: BookSession | None = None) -> FastAPI:
    """Build the FastAPI app around a session.

    Settings are loaded when the session is created and saved on shutdown.
    """
    session = session or BookSession(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await session.close()

    app = FastAPI(title="pdf2epub", lifespan=lifespan)
    app.state.session = session

    # CORS for local dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_entry(document_id: str) -> LibraryEntry:
        try:
            return session.library.get(document_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")

    def get_profile(profile_id: str) -> ProviderProfile:
        try:
            return session.settings.get(profile_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Profile not found: {profile_id}")

    def page_response(entry: LibraryEntry) -> dict:
        pages = entry.display_pages
        slots = entry.slots
        return {
            "documentId": entry.id,
            "edited": entry.overlay is not None,
            "pages": [
                {
                    "index": i,
                    "text": text,
                    # Split pages have no original slot of their own
                    "provenance": slots[i].provenance.value if entry.overlay is None and i < len(slots) else None,
                }
                for i, text in enumerate(pages)
            ],
            "original": [
                {"text": slot.text, "provenance": slot.provenance.value} for slot in slots
            ],
            "chapters": [
                {"id": m.id, "pageIndex": m.page_index, "title": m.title} for m in entry.chapters
            ],
        }

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "documents": len(session.library),
            "activeProfile": session.active_profile.name,
        }

    @app.get("/documents")
    async def list_documents():
        """History, newest first."""
        return {"documents": [entry_summary(e, session) for e in session.library.entries()]}

    @app.post("/documents")
    async def open_document(request: OpenRequest):
        """Open a PDF from a local path."""
        path = Path(request.path).expanduser().resolve()

        if not path.exists():
            raise HTTPException(status_code=404, detail=f"File not found: {path}")

        if path.suffix.lower() != ".pdf":
            raise HTTPException(status_code=400, detail="Please upload a PDF file")

        result = await session.open_pdf(path)
        return {
            "document": entry_summary(result.entry, session),
            "reused": result.reused,
            "transcriptionStarted": result.transcription_started,
            "warning": result.warning,
        }

    @app.get("/documents/{document_id}")
    async def get_document(document_id: str):
        entry = get_entry(document_id)
        return {
            **entry_summary(entry, session),
            "metadata": {"title": entry.metadata.title, "author": entry.metadata.author},
        }

    @app.delete("/documents/{document_id}")
    async def remove_document(document_id: str):
        get_entry(document_id)
        session.remove(document_id)
        return {"success": True}

    @app.post("/documents/{document_id}/select")
    async def select_document(document_id: str):
        get_entry(document_id)
        session.library.select(document_id)
        return {"success": True, "current": document_id}

    @app.get("/documents/{document_id}/pages")
    async def list_pages(document_id: str):
        return page_response(get_entry(document_id))

    @app.put("/documents/{document_id}/pages/{page_index}")
    async def update_page(document_id: str, page_index: int, update: PageUpdate):
        get_entry(document_id)
        try:
            entry = session.edits.set_page_text(document_id, page_index, update.text)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return page_response(entry)

    @app.post("/documents/{document_id}/pages/{page_index}/split")
    async def split_page(document_id: str, page_index: int, request: SplitRequest):
        get_entry(document_id)
        try:
            entry = session.edits.split_page(document_id, page_index, request.offset)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except SplitError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return page_response(entry)

    @app.post("/documents/{document_id}/reset")
    async def reset_document(document_id: str):
        get_entry(document_id)
        return page_response(session.edits.reset_to_original(document_id))

    @app.put("/documents/{document_id}/chapters/{page_index}")
    async def set_chapter(document_id: str, page_index: int, update: ChapterUpdate):
        """Create or rename the chapter mark at a page; an empty title clears it."""
        get_entry(document_id)
        try:
            entry = session.edits.set_or_clear_chapter(document_id, page_index, update.title)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return page_response(entry)

    @app.put("/documents/{document_id}/metadata")
    async def update_metadata(document_id: str, update: MetadataUpdate):
        get_entry(document_id)
        entry = session.set_metadata(document_id, title=update.title, author=update.author)
        return {"title": entry.metadata.title, "author": entry.metadata.author}

    @app.get("/documents/{document_id}/transcription")
    async def get_transcription(document_id: str):
        get_entry(document_id)
        return transcription_status(session, document_id)

    @app.post("/documents/{document_id}/transcription/{action}")
    async def control_transcription(document_id: str, action: str):
        """Start, resume, rescan, or cancel the document's transcription run."""
        get_entry(document_id)
        try:
            if action == "start":
                await session.start_transcription(document_id)
            elif action == "resume":
                await session.resume_transcription(document_id)
            elif action == "rescan":
                await session.rescan(document_id)
            elif action == "cancel":
                session.cancel_transcription(document_id)
            else:
                raise HTTPException(status_code=404, detail=f"Unknown action: {action}")
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return transcription_status(session, document_id)

    @app.post("/documents/{document_id}/export")
    async def export_document(document_id: str):
        """Write the EPUB and return it as a download."""
        get_entry(document_id)
        if session.exporting:
            raise HTTPException(status_code=409, detail="An export is already in progress")

        result = await session.export(document_id)
        if not result.success:
            raise HTTPException(status_code=500, detail=result.message)

        return FileResponse(
            result.path,
            media_type="application/epub+zip",
            filename=result.path.name,
        )

    @app.get("/profiles")
    async def list_profiles():
        return {
            "profiles": [p.to_dict() for p in session.settings.profiles],
            "activeProfileId": session.settings.active_profile.id,
        }

    @app.post("/profiles")
    async def add_profile():
        profile = session.settings.add_profile()
        session.save_settings()
        return profile.to_dict()

    @app.put("/profiles/{profile_id}")
    async def update_profile(profile_id: str, update: ProfileUpdate):
        get_profile(profile_id)
        fields = {
            "name": update.name,
            "base_url": update.baseUrl,
            "api_key": update.apiKey,
            "model": update.model,
            "prompt": update.prompt,
        }
        profile = session.settings.update_profile(
            profile_id, **{k: v for k, v in fields.items() if v is not None}
        )
        session.save_settings()
        return profile.to_dict()

    @app.delete("/profiles/{profile_id}")
    async def delete_profile(profile_id: str):
        get_profile(profile_id)
        session.settings.delete_profile(profile_id)
        session.save_settings()
        return await list_profiles()

    @app.post("/profiles/{profile_id}/activate")
    async def activate_profile(profile_id: str):
        get_profile(profile_id)
        session.settings.activate(profile_id)
        session.save_settings()
        return await list_profiles()

    @app.get("/profiles/{profile_id}/models")
    async def list_models(profile_id: str):
        profile = get_profile(profile_id)
        try:
            models = await fetch_models(profile)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ModelListError as e:
            raise HTTPException(status_code=502, detail=f"Model listing failed: {e}")
        return {"models": models}

    return app
