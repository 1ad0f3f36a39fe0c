from __future__ import annotations

import asyncio
import logging
from typing import Optional
from uuid import UUID

from docstruct.models.document import (
    Document,
    DocumentCreate,
    DocumentSource,
    DocumentStatus,
)
from docstruct.services import documents, storage
from docstruct.services.converters import (
    ConversionError,
    UnsupportedFormatError,
    convert_to_text,
    detect_mime,
)
from docstruct.services.documents import DocumentNotFoundError
from docstruct.services.link_fetch import LinkFetchError, fetch_link_text
from docstruct.services.normalizer import NormalizationResult, normalize_text
from docstruct.utils.text_sanitize import sanitize_text


logger = logging.getLogger(__name__)

DEFAULT_TEXT_NAME = "pasted-text.txt"


class EmptyDocumentError(ValueError):
    """Raised when a source yields no usable text."""


class ReingestNotSupportedError(RuntimeError):
    """Raised when a document has no original that can be processed again."""


def prepare_text(raw_text: Optional[str]) -> NormalizationResult:
    cleaned = sanitize_text(raw_text)
    if cleaned is None:
        raise EmptyDocumentError("Document does not contain any text")
    result = normalize_text(cleaned)
    if not result.text.strip():
        raise EmptyDocumentError("Document does not contain any text")
    return result


async def ingest_text(
    text: str,
    *,
    original_name: Optional[str] = None,
    language: Optional[str] = None,
) -> Document:
    """Normalize pasted text and store it as a new document.

    Text that cleans down to nothing is still recorded, as a ``failed``
    document, before the error propagates.
    """

    name = (original_name or "").strip() or DEFAULT_TEXT_NAME
    try:
        normalized = prepare_text(text)
    except EmptyDocumentError:
        await documents.create_document(
            DocumentCreate(
                original_name=name,
                mime="text/plain",
                source=DocumentSource.TEXT,
                language=language,
                status=DocumentStatus.FAILED,
            )
        )
        logger.warning("[ingest] pasted text '%s' is empty after cleaning", name)
        raise

    document = await documents.create_document(
        DocumentCreate(
            original_name=name,
            mime="text/plain",
            source=DocumentSource.TEXT,
            language=language,
            status=DocumentStatus.NORMALIZED,
            normalized_text=normalized.text,
            char_count=normalized.char_count,
        )
    )
    logger.info("[ingest] text document %s normalized (%s chars)", document.id, normalized.char_count)
    return document


async def ingest_upload(
    file_name: str,
    data: bytes,
    *,
    content_type: Optional[str] = None,
    language: Optional[str] = None,
) -> Document:
    if not data:
        raise ValueError("Uploaded file is empty")
    mime = detect_mime(file_name, content_type)
    if mime is None:
        raise UnsupportedFormatError(f"Unsupported file format: {file_name}")

    stored = await storage.upload_document_bytes(file_name, data, mime)
    base = DocumentCreate(
        original_name=stored.file_name,
        mime=mime,
        source=DocumentSource.UPLOAD,
        language=language,
        file_path=stored.object_name,
        file_size=stored.size,
    )

    try:
        raw_text = await asyncio.to_thread(convert_to_text, file_name, data, mime)
        normalized = prepare_text(raw_text)
    except (ConversionError, EmptyDocumentError) as exc:
        failed = await documents.create_document(
            base.model_copy(update={"status": DocumentStatus.FAILED})
        )
        logger.warning("[ingest] upload %s failed to convert: %s", failed.id, exc)
        raise

    document = await documents.create_document(
        base.model_copy(
            update={
                "status": DocumentStatus.NORMALIZED,
                "normalized_text": normalized.text,
                "char_count": normalized.char_count,
            }
        )
    )
    logger.info("[ingest] upload %s normalized (%s chars)", document.id, normalized.char_count)
    return document


async def ingest_link(url: str, *, language: Optional[str] = None) -> Document:
    """Fetch a web page and store its text.

    URLs rejected by the SSRF checks raise before anything is stored; fetch
    failures are recorded as a ``failed`` document and re-raised.
    """

    base = DocumentCreate(
        original_name=url.strip(),
        mime="text/html",
        source=DocumentSource.LINK,
        language=language,
    )
    try:
        raw_text = await fetch_link_text(url)
        normalized = prepare_text(raw_text)
    except (LinkFetchError, EmptyDocumentError) as exc:
        failed = await documents.create_document(
            base.model_copy(update={"status": DocumentStatus.FAILED})
        )
        logger.warning("[ingest] link %s failed: %s", failed.id, exc)
        raise

    document = await documents.create_document(
        base.model_copy(
            update={
                "status": DocumentStatus.NORMALIZED,
                "normalized_text": normalized.text,
                "char_count": normalized.char_count,
            }
        )
    )
    logger.info("[ingest] link document %s normalized (%s chars)", document.id, normalized.char_count)
    return document


async def reingest_document(document_id: UUID) -> Document:
    """Rebuild the normalized text from the stored original.

    The new text replaces the old one wholesale and the previous tree is
    discarded in the same transaction.
    """

    document = await documents.get_document(document_id)
    if document is None:
        raise DocumentNotFoundError(document_id)

    if document.source == DocumentSource.UPLOAD and document.file_path:
        data = await storage.download_document_bytes(document.file_path)
        raw_text = await asyncio.to_thread(
            convert_to_text, document.original_name, data, document.mime
        )
    elif document.source == DocumentSource.LINK:
        raw_text = await fetch_link_text(document.original_name)
    else:
        raise ReingestNotSupportedError(
            f"Document {document_id} has no stored original to re-ingest"
        )

    normalized = prepare_text(raw_text)
    updated = await documents.replace_document_text(
        document_id, normalized.text, normalized.char_count
    )
    logger.info("[ingest] document %s re-ingested (%s chars)", document_id, normalized.char_count)
    return updated
