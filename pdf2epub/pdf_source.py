"""
PDF access: page count, per-page text, and page images for transcription.
"""

import base64
import io
import logging

import fitz  # PyMuPDF
from PIL import Image

logger = logging.getLogger(__name__)


class PdfSource:
    """Read-only view of a PDF held in memory.

    Usage:
        with PdfSource(content) as pdf:
            texts = pdf.extract_texts()
    """

    def __init__(self, content: bytes) -> None:
        self._doc = fitz.open(stream=content, filetype="pdf")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self._doc.close()

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def extract_texts(self) -> list[str]:
        """Extracted text of every page, in page order."""
        return [page.get_text("text") for page in self._doc]

    def render_page(self, index: int, zoom: float = 2.0) -> Image.Image:
        """Rasterize one page.

        Args:
            index: 0-based page index
            zoom: Scale factor over 72 DPI

        Returns:
            RGB PIL image of the page
        """
        page = self._doc.load_page(index)
        pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


def extract_page_texts(content: bytes) -> list[str]:
    with PdfSource(content) as pdf:
        return pdf.extract_texts()


def resize_to_target(img: Image.Image, resize_target: int) -> Image.Image:
    """Resize image so the short edge matches target.

    Only resizes down, never up. Maintains aspect ratio.
    """
    if resize_target <= 0:
        return img

    width, height = img.size
    short_edge = min(width, height)
    if short_edge <= resize_target:
        return img

    scale = resize_target / short_edge
    return img.resize((int(width * scale), int(height * scale)), Image.LANCZOS)


def image_to_data_url(img: Image.Image, quality: int = 90) -> str:
    buffer = io.BytesIO()
    img.convert("RGB").save(buffer, "JPEG", quality=quality)
    b64 = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{b64}"


class PageRenderer:
    """Turns a page of a PDF into a JPEG data URL for a vision model.

    One renderer serves a single transcription run and keeps its PDF open
    between pages.
    """

    def __init__(
        self,
        content: bytes,
        zoom: float = 2.0,
        resize_target: int = 1600,
        quality: int = 90,
    ) -> None:
        self.content = content
        self.zoom = zoom
        self.resize_target = resize_target
        self.quality = quality
        self._pdf: PdfSource | None = None

    def render(self, index: int) -> str:
        if self._pdf is None:
            self._pdf = PdfSource(self.content)
        img = self._pdf.render_page(index, zoom=self.zoom)
        img = resize_to_target(img, self.resize_target)
        logger.debug(f"Rendered page {index + 1} at {img.width}x{img.height}")
        return image_to_data_url(img, quality=self.quality)

    def close(self) -> None:
        if self._pdf is not None:
            self._pdf.close()
            self._pdf = None
