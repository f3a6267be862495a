"""Document text extraction.

Plain text and Markdown are read directly; PDFs go through PyMuPDF (fitz).
"""

from __future__ import annotations

import logging
from pathlib import Path

import fitz  # PyMuPDF

from docchat.errors import InputError

LOGGER = logging.getLogger(__name__)

TEXT_SUFFIXES = frozenset({".txt", ".md"})
SUPPORTED_SUFFIXES = TEXT_SUFFIXES | {".pdf"}


def read_pdf_text(path: Path) -> str:
    """Return the text of every page, pages separated by blank lines."""
    doc = fitz.open(path)
    try:
        return "\n\n".join(page.get_text() or "" for page in doc)
    finally:
        doc.close()


def load_text(path: Path) -> str:
    """Extract the raw text of a supported document."""
    suffix = path.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        return path.read_text(encoding="utf-8-sig", errors="replace")
    if suffix == ".pdf":
        try:
            return read_pdf_text(path)
        except (RuntimeError, ValueError) as exc:
            LOGGER.error("Failed to open PDF %s: %s", path, exc)
            raise InputError(f"Unreadable PDF: {path}") from exc
    raise InputError(f"Unsupported file type: {path.suffix or path.name}")
