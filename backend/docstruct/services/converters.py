from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Final, Optional

import fitz  # type: ignore[import]

from docstruct.utils.html_text import html_to_text


logger = logging.getLogger(__name__)

MIME_BY_EXTENSION: Final[Dict[str, str]] = {
    ".pdf": "application/pdf",
    ".html": "text/html",
    ".htm": "text/html",
    ".txt": "text/plain",
    ".text": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".csv": "text/csv",
}
TEXT_MIME_TYPES: Final[set[str]] = {"text/plain", "text/markdown", "text/csv"}
HTML_MIME_TYPES: Final[set[str]] = {"text/html", "application/xhtml+xml"}
PDF_MIME_TYPES: Final[set[str]] = {"application/pdf"}


class UnsupportedFormatError(ValueError):
    """Raised when no converter handles the uploaded file."""


class ConversionError(RuntimeError):
    """Raised when a supported file cannot be turned into text."""


def detect_mime(file_name: Optional[str], content_type: Optional[str] = None) -> Optional[str]:
    """Pick a MIME type from the extension, else from the declared content type."""

    suffix = Path(file_name or "").suffix.lower()
    if suffix in MIME_BY_EXTENSION:
        return MIME_BY_EXTENSION[suffix]
    if content_type:
        declared = content_type.split(";", 1)[0].strip().lower()
        if declared in PDF_MIME_TYPES | HTML_MIME_TYPES | TEXT_MIME_TYPES:
            return declared
    return None


def convert_to_text(file_name: Optional[str], data: bytes, content_type: Optional[str] = None) -> str:
    mime = detect_mime(file_name, content_type)
    if mime is None:
        raise UnsupportedFormatError(
            f"Unsupported file format: {file_name or content_type or 'unknown'}"
        )

    if mime in PDF_MIME_TYPES:
        text = _pdf_to_text(data)
    elif mime in HTML_MIME_TYPES:
        text = html_to_text(decode_text(data))
    else:
        text = decode_text(data)

    logger.info("[convert] %s (%s) -> %s chars", file_name, mime, len(text))
    return text


def decode_text(data: bytes, charset: Optional[str] = None) -> str:
    """Decode bytes as ``charset`` or UTF-8, falling back to latin-1."""

    for encoding in filter(None, (charset, "utf-8-sig")):
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return data.decode("latin-1")


def _pdf_to_text(data: bytes) -> str:
    try:
        document = fitz.open(stream=data, filetype="pdf")
    except (fitz.FileDataError, ValueError, RuntimeError) as exc:
        raise ConversionError(
            "Unable to open PDF document. The file may be corrupted or unsupported."
        ) from exc

    try:
        pages = [
            document.load_page(page_index).get_text("text")
            for page_index in range(document.page_count)
        ]
    finally:
        document.close()

    text = "\n\n".join(page.strip("\n") for page in pages)
    if not text.strip():
        raise ConversionError("PDF document does not contain extractable text")
    return text
