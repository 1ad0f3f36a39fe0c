from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from docstruct.db.pool import get_pool
from docstruct.models.document import Document, DocumentCreate, DocumentStatus


DOCUMENT_COLUMNS = (
    "id, original_name, mime, source, language, status, char_count, file_path, "
    "file_size, created_at, updated_at"
)


class DocumentNotFoundError(RuntimeError):
    """Raised when a document id does not exist."""

    def __init__(self, document_id: UUID):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


async def list_documents(limit: int = 50, offset: int = 0) -> List[Document]:
    pool = get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            f"SELECT {DOCUMENT_COLUMNS} FROM documents "
            "ORDER BY created_at DESC LIMIT $1 OFFSET $2",
            limit,
            offset,
        )
    return [Document(**dict(row)) for row in rows]


async def create_document(data: DocumentCreate) -> Document:
    pool = get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"""
            INSERT INTO documents (
                original_name,
                mime,
                source,
                language,
                status,
                normalized_text,
                char_count,
                file_path,
                file_size
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING {DOCUMENT_COLUMNS}
            """,
            data.original_name,
            data.mime,
            data.source.value,
            data.language,
            data.status.value,
            data.normalized_text,
            data.char_count,
            data.file_path,
            data.file_size,
        )
    return Document(**dict(row))


async def get_document(document_id: UUID) -> Optional[Document]:
    pool = get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id=$1",
            document_id,
        )
    return Document(**dict(row)) if row else None


async def get_normalized_text(document_id: UUID) -> Optional[str]:
    pool = get_pool()
    async with pool.acquire() as conn:
        return await conn.fetchval(
            "SELECT normalized_text FROM documents WHERE id=$1",
            document_id,
        )


async def update_document_status(
    document_id: UUID, status: DocumentStatus
) -> Optional[Document]:
    pool = get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"""
            UPDATE documents
            SET status=$2, updated_at=NOW()
            WHERE id=$1
            RETURNING {DOCUMENT_COLUMNS}
            """,
            document_id,
            status.value,
        )
    return Document(**dict(row)) if row else None


async def replace_document_text(
    document_id: UUID, normalized_text: str, char_count: int
) -> Document:
    """Swap in a new normalized text and drop the tree built on the old one."""

    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(
                "SELECT pg_advisory_xact_lock(hashtext($1::text))", str(document_id)
            )
            await conn.execute(
                "DELETE FROM document_nodes WHERE document_id=$1", document_id
            )
            row = await conn.fetchrow(
                f"""
                UPDATE documents
                SET normalized_text=$2, char_count=$3, status=$4, updated_at=NOW()
                WHERE id=$1
                RETURNING {DOCUMENT_COLUMNS}
                """,
                document_id,
                normalized_text,
                char_count,
                DocumentStatus.NORMALIZED.value,
            )
    if row is None:
        raise DocumentNotFoundError(document_id)
    return Document(**dict(row))
