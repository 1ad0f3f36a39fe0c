from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional
from uuid import UUID

from docstruct.core.config import settings
from docstruct.models.document import Document, DocumentStatus, TextSlice
from docstruct.models.node import (
    DocumentNode,
    NodeExtract,
    NodeSummary,
    NodeView,
    StructureFlat,
    StructureTree,
)
from docstruct.services import documents, nodes, structure_llm
from docstruct.services.anchors import resolve_all
from docstruct.services.chunking import merge_duplicate_nodes, split_text
from docstruct.services.documents import DocumentNotFoundError
from docstruct.services.extraction import extract_node_text, slice_text
from docstruct.services.hierarchy import build_hierarchy
from docstruct.services.spans import sanitize_span


logger = logging.getLogger(__name__)

BUILDABLE_STATUSES = {DocumentStatus.NORMALIZED, DocumentStatus.STRUCTURED}

_build_locks: Dict[UUID, asyncio.Lock] = {}
_build_waiters: Dict[UUID, int] = defaultdict(int)


class DocumentStateError(RuntimeError):
    """Raised when a document is not in a state that allows the operation."""


class NodeNotFoundError(RuntimeError):
    def __init__(self, node_id: UUID):
        super().__init__(f"Node {node_id} not found")
        self.node_id = node_id


class NodeDocumentMismatchError(ValueError):
    def __init__(self, node_id: UUID, document_id: UUID):
        super().__init__(f"Node {node_id} does not belong to document {document_id}")
        self.node_id = node_id
        self.document_id = document_id


@dataclass
class StructureBuildResult:
    document_id: UUID
    status: DocumentStatus
    total_nodes: int
    chunks: int

    @property
    def message(self) -> str:
        return (
            f"Built {self.total_nodes} nodes from {self.chunks} "
            f"chunk{'s' if self.chunks != 1 else ''}"
        )


@asynccontextmanager
async def _build_lock(document_id: UUID) -> AsyncIterator[None]:
    """Serialize builds of one document; the entry is dropped once idle."""

    lock = _build_locks.get(document_id)
    if lock is None:
        lock = asyncio.Lock()
        _build_locks[document_id] = lock
    _build_waiters[document_id] += 1
    try:
        async with lock:
            yield
    finally:
        _build_waiters[document_id] -= 1
        if _build_waiters[document_id] == 0:
            del _build_waiters[document_id]
            _build_locks.pop(document_id, None)


async def _require_document(document_id: UUID) -> Document:
    document = await documents.get_document(document_id)
    if document is None:
        raise DocumentNotFoundError(document_id)
    return document


async def _require_text(document_id: UUID) -> str:
    text = await documents.get_normalized_text(document_id)
    if not text:
        raise DocumentStateError(f"Document {document_id} has no normalized text")
    return text


async def build_structure(document_id: UUID) -> StructureBuildResult:
    """Propose, resolve, validate and store the document's outline.

    Builds of one document are serialized in-process; the storage layer's
    transaction lock serializes them across processes. A failed build leaves
    the previously stored tree untouched.
    """

    async with _build_lock(document_id):
        document = await _require_document(document_id)
        if document.status not in BUILDABLE_STATUSES:
            raise DocumentStateError(
                f"Document {document_id} is {document.status.value}; "
                "structure can only be built for normalized documents"
            )
        text = await _require_text(document_id)

        chunks = split_text(
            text,
            max_chars=settings.structure_chunk_max_chars,
            overlap_chars=settings.structure_chunk_overlap_chars,
        )
        candidates: List[DocumentNode] = []
        for chunk in chunks:
            spans = await structure_llm.propose_spans(
                chunk.text, chunk_index=chunk.index, total_chunks=len(chunks)
            )
            for raw, start, end in resolve_all(spans, chunk.text):
                candidates.append(sanitize_span(raw, chunk.start + start, chunk.start + end))

        if len(chunks) > 1:
            candidates = merge_duplicate_nodes(candidates)
        if not candidates:
            raise structure_llm.StructureLlmError("Structure model proposed no nodes")

        built = build_hierarchy(candidates, text_length=len(text))
        for node in built:
            node.document_id = document_id
        await nodes.replace_nodes(document_id, built, status=DocumentStatus.STRUCTURED)

        logger.info(
            "[structure] document %s structured with %s nodes (%s chunks)",
            document_id,
            len(built),
            len(chunks),
        )
        return StructureBuildResult(
            document_id=document_id,
            status=DocumentStatus.STRUCTURED,
            total_nodes=len(built),
            chunks=len(chunks),
        )


async def get_tree(document_id: UUID) -> StructureTree:
    await _require_document(document_id)
    stored = await nodes.list_nodes(document_id)

    children: Dict[Optional[UUID], List[DocumentNode]] = defaultdict(list)
    for node in stored:
        children[node.parent_id].append(node)

    def _view(node: DocumentNode) -> NodeView:
        view = NodeView.model_validate(node, from_attributes=True)
        view.children = [
            _view(child) for child in sorted(children.get(node.id, []), key=lambda n: n.idx)
        ]
        return view

    roots = [_view(node) for node in sorted(children.get(None, []), key=lambda n: n.idx)]
    return StructureTree(document_id=document_id, roots=roots, total_nodes=len(stored))


async def get_flat(document_id: UUID) -> StructureFlat:
    await _require_document(document_id)
    stored = await nodes.list_nodes(document_id)
    ordered = sorted(stored, key=lambda node: (node.start_offset, node.depth))
    return StructureFlat(
        document_id=document_id,
        nodes=[NodeSummary.model_validate(node, from_attributes=True) for node in ordered],
        total_nodes=len(ordered),
    )


async def extract_by_node(document_id: UUID, node_id: UUID) -> NodeExtract:
    await _require_document(document_id)
    node = await nodes.get_node(node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    if node.document_id != document_id:
        raise NodeDocumentMismatchError(node_id, document_id)

    text = await documents.get_normalized_text(document_id) or ""
    return NodeExtract(
        document_id=document_id,
        node_id=node.id,
        title=node.title,
        start_offset=node.start_offset,
        end_offset=node.end_offset,
        text=extract_node_text(text, node),
    )


async def get_text_slice(
    document_id: UUID, start: Optional[int] = None, end: Optional[int] = None
) -> TextSlice:
    await _require_document(document_id)
    text = await documents.get_normalized_text(document_id) or ""
    resolved_start = 0 if start is None else start
    resolved_end = len(text) if end is None else end
    return TextSlice(
        document_id=document_id,
        start=resolved_start,
        end=resolved_end,
        text=slice_text(text, resolved_start, resolved_end),
    )
