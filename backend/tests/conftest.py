from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

import pytest

from docstruct.models.document import Document, DocumentCreate, DocumentStatus
from docstruct.models.node import DocumentNode
from docstruct.services.documents import DocumentNotFoundError
from docstruct.services.storage import StorageUploadResult


class InMemoryDataStore:
    def __init__(self) -> None:
        self._documents: Dict[UUID, Dict[str, Any]] = {}
        self._texts: Dict[UUID, Optional[str]] = {}
        self._nodes: Dict[UUID, List[DocumentNode]] = {}
        self._objects: Dict[str, bytes] = {}
        self.replace_calls: List[UUID] = []

    def _document(self, document_id: UUID) -> Document:
        return Document(**self._documents[document_id])

    async def upload_document_bytes(
        self, file_name: str, data: bytes, content_type: Optional[str] = None
    ) -> StorageUploadResult:
        if not data:
            raise ValueError("Uploaded file is empty")
        object_name = f"{uuid4().hex}/{Path(file_name).name}"
        self._objects[object_name] = data
        return StorageUploadResult(
            bucket="test-bucket",
            object_name=object_name,
            file_name=Path(file_name).name,
            size=len(data),
            content_type=(content_type or "application/octet-stream").lower(),
        )

    async def download_document_bytes(self, object_name: str) -> bytes:
        return self._objects[object_name]

    async def create_document(self, data: DocumentCreate) -> Document:
        document_id = uuid4()
        now = datetime.now(timezone.utc)
        self._documents[document_id] = {
            "id": document_id,
            "original_name": data.original_name,
            "mime": data.mime,
            "source": data.source,
            "language": data.language,
            "status": data.status,
            "char_count": data.char_count,
            "file_path": data.file_path,
            "file_size": data.file_size,
            "created_at": now,
            "updated_at": now,
        }
        self._texts[document_id] = data.normalized_text
        return self._document(document_id)

    async def get_document(self, document_id: UUID) -> Document | None:
        if document_id not in self._documents:
            return None
        return self._document(document_id)

    async def get_normalized_text(self, document_id: UUID) -> Optional[str]:
        return self._texts.get(document_id)

    async def list_documents(self, limit: int = 50, offset: int = 0) -> List[Document]:
        records = sorted(
            self._documents.values(), key=lambda rec: rec["created_at"], reverse=True
        )
        return [Document(**record) for record in records[offset : offset + limit]]

    async def update_document_status(
        self, document_id: UUID, status: DocumentStatus
    ) -> Document | None:
        record = self._documents.get(document_id)
        if record is None:
            return None
        record["status"] = status
        record["updated_at"] = datetime.now(timezone.utc)
        return self._document(document_id)

    async def replace_document_text(
        self, document_id: UUID, normalized_text: str, char_count: int
    ) -> Document:
        record = self._documents.get(document_id)
        if record is None:
            raise DocumentNotFoundError(document_id)
        self._texts[document_id] = normalized_text
        self._nodes.pop(document_id, None)
        record["char_count"] = char_count
        record["status"] = DocumentStatus.NORMALIZED
        record["updated_at"] = datetime.now(timezone.utc)
        return self._document(document_id)

    async def replace_nodes(
        self,
        document_id: UUID,
        nodes: Sequence[DocumentNode],
        *,
        status: DocumentStatus = DocumentStatus.STRUCTURED,
    ) -> None:
        self.replace_calls.append(document_id)
        self._nodes[document_id] = [
            node.model_copy(update={"document_id": document_id}) for node in nodes
        ]
        self._documents[document_id]["status"] = status

    async def list_nodes(self, document_id: UUID) -> List[DocumentNode]:
        return sorted(
            self._nodes.get(document_id, []),
            key=lambda node: (node.start_offset, node.depth),
        )

    async def get_node(self, node_id: UUID) -> DocumentNode | None:
        for stored in self._nodes.values():
            for node in stored:
                if node.id == node_id:
                    return node
        return None

    def seed_document(
        self,
        text: str,
        *,
        status: DocumentStatus = DocumentStatus.NORMALIZED,
        name: str = "seeded.txt",
    ) -> UUID:
        document_id = uuid4()
        now = datetime.now(timezone.utc)
        self._documents[document_id] = {
            "id": document_id,
            "original_name": name,
            "mime": "text/plain",
            "source": "text",
            "language": None,
            "status": status,
            "char_count": len(text),
            "file_path": None,
            "file_size": None,
            "created_at": now,
            "updated_at": now,
        }
        self._texts[document_id] = text
        return document_id

    def nodes_for(self, document_id: UUID) -> List[DocumentNode]:
        return list(self._nodes.get(document_id, []))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def datastore(monkeypatch: pytest.MonkeyPatch) -> InMemoryDataStore:
    store = InMemoryDataStore()

    monkeypatch.setattr(
        "docstruct.services.storage.upload_document_bytes", store.upload_document_bytes
    )
    monkeypatch.setattr(
        "docstruct.services.storage.download_document_bytes",
        store.download_document_bytes,
    )
    monkeypatch.setattr("docstruct.services.documents.create_document", store.create_document)
    monkeypatch.setattr("docstruct.services.documents.get_document", store.get_document)
    monkeypatch.setattr(
        "docstruct.services.documents.get_normalized_text", store.get_normalized_text
    )
    monkeypatch.setattr("docstruct.services.documents.list_documents", store.list_documents)
    monkeypatch.setattr(
        "docstruct.services.documents.update_document_status", store.update_document_status
    )
    monkeypatch.setattr(
        "docstruct.services.documents.replace_document_text", store.replace_document_text
    )
    monkeypatch.setattr("docstruct.services.nodes.replace_nodes", store.replace_nodes)
    monkeypatch.setattr("docstruct.services.nodes.list_nodes", store.list_nodes)
    monkeypatch.setattr("docstruct.services.nodes.get_node", store.get_node)

    # Patch API module aliases to ensure they use the in-memory implementations
    monkeypatch.setattr("docstruct.api.documents.get_document", store.get_document)
    monkeypatch.setattr("docstruct.api.documents.list_documents", store.list_documents)

    return store
