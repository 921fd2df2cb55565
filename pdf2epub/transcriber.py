"""
Vision-model transcription of image-only PDFs.

Pages are sent one at a time, in ascending order, to an OpenAI-compatible
chat-completions endpoint. A run can be cancelled between pages or while a
request is in flight, resumed after the last completed page, or restarted
from scratch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol

import httpx

from .config import AppConfig, ProviderProfile
from .library import Document, DocumentLibrary, DocumentMode, PageSlot, Provenance
from .pdf_source import PageRenderer

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """The provider profile cannot be used for transcription."""


class TranscriptionError(Exception):
    """A single page request failed."""


class ModelListError(Exception):
    """Listing the provider's models failed."""


class RunCancelled(Exception):
    """Raised inside a run when its cancellation context fires."""


def error_marker(page_number: int, message: str) -> str:
    """Placeholder text stored for a page whose transcription failed."""
    return f"[Transcription failed for page {page_number}: {message}]"


def parse_message_content(payload) -> str:
    """Pull ``choices[0].message.content`` out of a completion, or ''."""
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""


def parse_model_names(payload) -> list[str]:
    """Model names from either a bare list or ``{"data": [...]}``."""
    if isinstance(payload, dict):
        payload = payload.get("data")
    if not isinstance(payload, list):
        return []

    names = []
    for item in payload:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict) and (item.get("id") or item.get("name")):
            names.append(str(item.get("id") or item.get("name")))
        else:
            names.append(str(item))
    return sorted(names)


class VisionClient:
    """Async client for one provider profile.

    Usage:
        async with VisionClient(profile) as client:
            text = await client.transcribe(data_url)
    """

    def __init__(
        self,
        profile: ProviderProfile,
        max_tokens: int = 4096,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.profile = profile
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _url(self, path: str) -> str:
        return self.profile.base_url.strip().rstrip("/") + path

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.profile.api_key}",
        }

    def build_request_body(self, image_url: str) -> dict:
        return {
            "model": self.profile.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": image_url}},
                        {"type": "text", "text": self.profile.prompt},
                    ],
                }
            ],
            "stream": False,
            "max_tokens": self.max_tokens,
        }

    async def transcribe(self, image_url: str) -> str:
        """Send one page image and return the model's text.

        Raises:
            TranscriptionError: Non-2xx status
            httpx.HTTPError: Network failure
            ValueError: Response body is not JSON
        """
        response = await self._client.post(
            self._url("/chat/completions"),
            headers=self._headers,
            json=self.build_request_body(image_url),
        )
        if not response.is_success:
            raise TranscriptionError(f"HTTP {response.status_code}")
        return parse_message_content(response.json())

    async def list_models(self) -> list[str]:
        """Model names offered by the provider, sorted."""
        try:
            response = await self._client.get(self._url("/models"), headers=self._headers)
            if not response.is_success:
                raise ModelListError(f"HTTP {response.status_code}")
            return parse_model_names(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise ModelListError(str(e) or "Failed to fetch models") from e


async def fetch_models(profile: ProviderProfile, transport: httpx.AsyncBaseTransport | None = None) -> list[str]:
    if not profile.is_configured:
        raise ConfigurationError(f"Profile {profile.name!r} has no base URL configured")
    async with VisionClient(profile, transport=transport) as client:
        return await client.list_models()


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class TranscriptionRun:
    """Live state of one transcription pass over a document."""

    document_id: str
    total_pages: int
    next_page_index: int
    cancelled: bool = False
    last_completed_index: int | None = None
    state: RunState = RunState.RUNNING
    progress: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "documentId": self.document_id,
            "state": self.state.value,
            "progress": self.progress,
            "total": self.total_pages,
            "nextPageIndex": self.next_page_index,
            "lastCompletedIndex": self.last_completed_index,
            "failed": self.failed,
        }


class CancellationContext:
    """Cooperative cancellation shared by a run and whoever may stop it.

    ``cancel()`` sets the flag and aborts the request currently awaited
    through ``guard()``.
    """

    def __init__(self) -> None:
        self.cancelled = False
        self._inflight: asyncio.Task | None = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    def check(self) -> None:
        if self.cancelled:
            raise RunCancelled()

    async def guard(self, coro):
        """Await ``coro`` as an abortable task."""
        if self.cancelled:
            coro.close()
            raise RunCancelled()

        task = asyncio.ensure_future(coro)
        self._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            # Only swallow our own abort; outer cancellation propagates.
            if self.cancelled and task.cancelled():
                raise RunCancelled() from None
            raise
        finally:
            self._inflight = None


class PageRendererLike(Protocol):
    def render(self, index: int) -> str: ...

    def close(self) -> None: ...


PageListener = Callable[[TranscriptionRun, int, PageSlot], None]


@dataclass
class _ActiveRun:
    run: TranscriptionRun
    context: CancellationContext
    task: asyncio.Task


class TranscriptionDriver:
    """Runs at most one transcription per document.

    Results are written into the shared library page by page, so switching
    the current document never loses progress.
    """

    def __init__(
        self,
        library: DocumentLibrary,
        config: AppConfig | None = None,
        client_factory: Callable[[ProviderProfile], VisionClient] | None = None,
        renderer_factory: Callable[[Document], PageRendererLike] | None = None,
    ) -> None:
        self.library = library
        self.config = config or AppConfig()
        self.client_factory = client_factory or self._default_client
        self.renderer_factory = renderer_factory or self._default_renderer
        self.listeners: list[PageListener] = []
        self._runs: dict[str, _ActiveRun] = {}

    def _default_client(self, profile: ProviderProfile) -> VisionClient:
        return VisionClient(
            profile,
            max_tokens=self.config.max_tokens,
            timeout=self.config.request_timeout,
        )

    def _default_renderer(self, document: Document) -> PageRenderer:
        return PageRenderer(
            document.content,
            zoom=self.config.render_zoom,
            resize_target=self.config.resize_target,
            quality=self.config.jpeg_quality,
        )

    def run_for(self, document_id: str) -> TranscriptionRun | None:
        """Most recent run for a document, finished or not."""
        active = self._runs.get(document_id)
        return active.run if active else None

    def is_running(self, document_id: str) -> bool:
        active = self._runs.get(document_id)
        return active is not None and not active.task.done()

    def state(self, document_id: str) -> RunState:
        return RunState.RUNNING if self.is_running(document_id) else RunState.IDLE

    def cancel(self, document_id: str) -> bool:
        """Request cancellation. Returns False when nothing was running."""
        active = self._runs.get(document_id)
        if active is None or active.task.done():
            return False
        active.run.cancelled = True
        active.context.cancel()
        logger.info(f"Cancelling transcription of {document_id}")
        return True

    async def wait(self, document_id: str) -> TranscriptionRun | None:
        active = self._runs.get(document_id)
        if active is None:
            return None
        await asyncio.wait({active.task})
        return active.run

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to stop."""
        for document_id in list(self._runs):
            self.cancel(document_id)
        tasks = {a.task for a in self._runs.values() if not a.task.done()}
        if tasks:
            await asyncio.wait(tasks)

    def forget(self, document_id: str) -> None:
        self.cancel(document_id)
        self._runs.pop(document_id, None)

    async def _supersede(self, document_id: str) -> None:
        active = self._runs.get(document_id)
        if active is not None and not active.task.done():
            self.cancel(document_id)
            await asyncio.wait({active.task})

    @staticmethod
    def _require_configured(profile: ProviderProfile) -> None:
        if not profile.is_configured:
            logger.error(f"Profile {profile.name!r} has no base URL configured")
            raise ConfigurationError(
                f"No base URL configured for profile {profile.name!r}. "
                "Set one in the provider settings before transcribing."
            )

    async def start(
        self,
        document_id: str,
        profile: ProviderProfile,
        start_index: int = 0,
    ) -> asyncio.Task | None:
        """Start transcribing ``[start_index, page_count)`` in the background.

        Args:
            document_id: Library id of an image-mode document; text-mode
                documents are left alone (use rescan to transcribe them)
            profile: Provider snapshot used for the whole run
            start_index: First page to process

        Returns:
            The run task, or None when there is nothing left to do

        Raises:
            ConfigurationError: Profile has no base URL (nothing is mutated)
        """
        self._require_configured(profile)
        await self._supersede(document_id)

        entry = self.library.get(document_id)
        if entry.mode is not DocumentMode.IMAGE:
            logger.info(f"{entry.document.title!r} has extracted text; not transcribing")
            return None

        total = entry.document.page_count
        if start_index >= total:
            logger.info(f"Nothing to transcribe for {entry.document.title!r}")
            return None

        run = TranscriptionRun(
            document_id=document_id,
            total_pages=total,
            next_page_index=start_index,
            progress=start_index,
        )
        context = CancellationContext()
        task = asyncio.create_task(self._run(run, context, profile, entry.document))
        self._runs[document_id] = _ActiveRun(run, context, task)
        return task

    async def resume(self, document_id: str, profile: ProviderProfile) -> asyncio.Task | None:
        """Continue after the last completed page."""
        self._require_configured(profile)
        await self._supersede(document_id)

        entry = self.library.get(document_id)
        if entry.mode is not DocumentMode.IMAGE:
            logger.info(f"{entry.document.title!r} has extracted text; nothing to resume")
            return None

        last = entry.last_completed_index
        start_index = 0 if last is None else last + 1
        return await self.start(document_id, profile, start_index)

    async def rescan(self, document_id: str, profile: ProviderProfile) -> asyncio.Task | None:
        """Discard all page text and transcribe again from page 0."""
        self._require_configured(profile)
        await self._supersede(document_id)

        entry = self.library.get(document_id)
        self.library.update(
            document_id,
            mode=DocumentMode.IMAGE,
            slots=tuple(PageSlot("", Provenance.VLM_PENDING) for _ in entry.slots),
            last_completed_index=None,
        )
        return await self.start(document_id, profile, 0)

    async def _run(
        self,
        run: TranscriptionRun,
        context: CancellationContext,
        profile: ProviderProfile,
        document: Document,
    ) -> TranscriptionRun:
        renderer = self.renderer_factory(document)

        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("PIL").setLevel(logging.WARNING)
        logger.info(
            f"Transcribing {document.title!r} pages {run.next_page_index + 1}-{run.total_pages} "
            f"with {profile.name!r} ({profile.model or 'default model'})"
        )

        try:
            async with self.client_factory(profile) as client:
                for index in range(run.next_page_index, run.total_pages):
                    run.next_page_index = index
                    try:
                        context.check()
                        slot = await self._transcribe_page(client, renderer, context, index)
                        context.check()
                    except RunCancelled:
                        break

                    if not self._store_page(run, index, slot):
                        break
        finally:
            renderer.close()
            run.cancelled = context.cancelled
            run.state = RunState.CANCELLED if context.cancelled else RunState.COMPLETED
            logger.info(
                f"Transcription of {document.title!r} {run.state.value}: "
                f"{run.progress}/{run.total_pages} pages, {run.failed} failed"
            )

        return run

    async def _transcribe_page(
        self,
        client: VisionClient,
        renderer: PageRendererLike,
        context: CancellationContext,
        index: int,
    ) -> PageSlot:
        """Render and transcribe one page. Failures become marker pages."""
        try:
            # Rasterization is local; once begun it is allowed to finish.
            image_url = await asyncio.to_thread(renderer.render, index)
            context.check()
            text = await context.guard(client.transcribe(image_url))
            return PageSlot(text, Provenance.VLM_FILLED)
        except RunCancelled:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(f"Page {index + 1} transcription failed: {message}")
            return PageSlot(error_marker(index + 1, message), Provenance.VLM_ERROR)

    def _store_page(self, run: TranscriptionRun, index: int, slot: PageSlot) -> bool:
        """Write one finished page into the library. False if the document is gone."""
        try:
            entry = self.library.get(run.document_id)
        except KeyError:
            logger.info(f"Document {run.document_id} was removed; stopping transcription")
            return False

        slots = list(entry.slots)
        slots[index] = slot
        self.library.update(run.document_id, slots=tuple(slots), last_completed_index=index)

        run.last_completed_index = index
        run.next_page_index = index + 1
        run.progress += 1
        if slot.provenance is Provenance.VLM_ERROR:
            run.failed += 1

        for listener in self.listeners:
            listener(run, index, slot)
        return True
