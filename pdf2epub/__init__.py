"""
pdf2epub - Convert PDF documents to EPUB

A pipeline for:
1. Deciding whether a PDF has usable text or needs vision transcription
2. Transcribing image-only pages through an OpenAI-compatible vision model
3. Editing, splitting and chapter-marking the extracted pages
4. Assembling chapters and writing the EPUB
"""

__version__ = "1.0.0"
__author__ = "pdf2epub"

from .config import AppConfig, ProviderProfile, Settings
from .pipeline import BookSession

__all__ = ["AppConfig", "BookSession", "ProviderProfile", "Settings"]
