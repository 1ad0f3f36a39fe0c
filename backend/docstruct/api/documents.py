from __future__ import annotations

from typing import List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile

from docstruct.models.document import (
    Document,
    IngestLinkRequest,
    IngestTextRequest,
    TextSlice,
)
from docstruct.models.node import (
    NodeExtract,
    StructureBuildResponse,
    StructureFlat,
    StructureTree,
)
from docstruct.services.anchors import AnchorNotFoundError
from docstruct.services.converters import ConversionError, UnsupportedFormatError
from docstruct.services.documents import DocumentNotFoundError, get_document, list_documents
from docstruct.services.extraction import TextRangeError
from docstruct.services.hierarchy import StructuralError
from docstruct.services.ingestion import (
    EmptyDocumentError,
    ReingestNotSupportedError,
    ingest_link,
    ingest_text,
    ingest_upload,
    reingest_document,
)
from docstruct.services.link_fetch import (
    ContentSizeLimitError,
    LinkFetchError,
    SsrfProtectionError,
)
from docstruct.services.spans import SpanValidationError
from docstruct.services.structure import (
    DocumentStateError,
    NodeDocumentMismatchError,
    NodeNotFoundError,
    build_structure,
    extract_by_node,
    get_flat,
    get_text_slice,
    get_tree,
)
from docstruct.services.structure_llm import StructureLlmError


router = APIRouter(prefix="/documents", tags=["documents"])

STRUCTURE_FORMATS = ("tree", "flat")


@router.get("", response_model=List[Document])
@router.get("/", response_model=List[Document])
async def api_list_documents(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return await list_documents(limit=limit, offset=offset)


@router.post("", response_model=Document, status_code=201)
@router.post("/", response_model=Document, status_code=201)
async def api_ingest_text(
    data: IngestTextRequest,
    original_name: Optional[str] = Query(default=None, max_length=255),
):
    try:
        return await ingest_text(data.text, original_name=original_name, language=data.language)
    except EmptyDocumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/upload", response_model=Document, status_code=201)
async def api_ingest_upload(
    file: UploadFile = File(..., description="Document to ingest (PDF, HTML, text)"),
    language: Optional[str] = Form(default=None),
):
    try:
        data = await file.read()
    finally:
        await file.close()

    try:
        return await ingest_upload(
            file.filename or "",
            data,
            content_type=file.content_type,
            language=language,
        )
    except UnsupportedFormatError as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc
    except (ConversionError, EmptyDocumentError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("/link", response_model=Document, status_code=201)
async def api_ingest_link(data: IngestLinkRequest):
    try:
        return await ingest_link(data.url, language=data.language)
    except SsrfProtectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ContentSizeLimitError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except (LinkFetchError, EmptyDocumentError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/{document_id}", response_model=Document)
async def api_get_document(document_id: UUID):
    document = await get_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.get("/{document_id}/text", response_model=TextSlice)
async def api_get_text(
    document_id: UUID,
    start: Optional[int] = Query(default=None, ge=0),
    end: Optional[int] = Query(default=None, ge=0),
):
    try:
        return await get_text_slice(document_id, start=start, end=end)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TextRangeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/{document_id}/structure", response_model=Union[StructureTree, StructureFlat])
async def api_get_structure(
    document_id: UUID,
    format: str = Query(default="tree", description="'tree' or 'flat'"),
):
    if format not in STRUCTURE_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported format '{format}', expected one of: {', '.join(STRUCTURE_FORMATS)}",
        )
    try:
        if format == "flat":
            return await get_flat(document_id)
        return await get_tree(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/{document_id}/structure", response_model=StructureBuildResponse)
async def api_build_structure(document_id: UUID):
    try:
        result = await build_structure(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DocumentStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StructuralError as exc:
        raise HTTPException(
            status_code=422,
            detail={"status": "failed", "message": str(exc), "issues": exc.issues},
        ) from exc
    except (AnchorNotFoundError, SpanValidationError, StructureLlmError) as exc:
        raise HTTPException(
            status_code=422, detail={"status": "failed", "message": str(exc)}
        ) from exc

    return StructureBuildResponse(
        status=result.status.value,
        message=result.message,
        total_nodes=result.total_nodes,
    )


@router.get("/{document_id}/extract", response_model=NodeExtract)
async def api_extract_node(document_id: UUID, node_id: UUID = Query(...)):
    try:
        return await extract_by_node(document_id, node_id)
    except (DocumentNotFoundError, NodeNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except NodeDocumentMismatchError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TextRangeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/{document_id}/reingest", response_model=Document)
async def api_reingest_document(document_id: UUID):
    try:
        return await reingest_document(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReingestNotSupportedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except UnsupportedFormatError as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc
    except SsrfProtectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ContentSizeLimitError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except (ConversionError, LinkFetchError, EmptyDocumentError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
