from __future__ import annotations

import logging
from typing import List, Optional, Sequence
from uuid import UUID

from docstruct.db.pool import get_pool
from docstruct.models.document import DocumentStatus
from docstruct.models.node import DocumentNode


logger = logging.getLogger(__name__)

NODE_COLUMNS = (
    "id, document_id, parent_id, idx, type, title, start_anchor, end_anchor, "
    "start_offset, end_offset, depth, ai_confidence"
)


async def replace_nodes(
    document_id: UUID,
    nodes: Sequence[DocumentNode],
    *,
    status: DocumentStatus = DocumentStatus.STRUCTURED,
) -> None:
    """Atomically swap the document's tree and set its status.

    Delete, insert and status update share one transaction, and a
    transaction-scoped advisory lock on the document id serializes rebuilds.
    ``nodes`` must list parents before their children.
    """

    records = [
        (
            node.id,
            document_id,
            node.parent_id,
            node.idx,
            node.type.value,
            node.title,
            node.start_anchor,
            node.end_anchor,
            node.start_offset,
            node.end_offset,
            node.depth,
            node.ai_confidence,
        )
        for node in nodes
    ]

    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(
                "SELECT pg_advisory_xact_lock(hashtext($1::text))", str(document_id)
            )
            await conn.execute(
                "DELETE FROM document_nodes WHERE document_id=$1", document_id
            )
            if records:
                await conn.executemany(
                    """
                    INSERT INTO document_nodes (
                        id,
                        document_id,
                        parent_id,
                        idx,
                        type,
                        title,
                        start_anchor,
                        end_anchor,
                        start_offset,
                        end_offset,
                        depth,
                        ai_confidence
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                    """,
                    records,
                )
            await conn.execute(
                "UPDATE documents SET status=$2, updated_at=NOW() WHERE id=$1",
                document_id,
                status.value,
            )
    logger.info("[nodes] stored %s nodes for document %s", len(records), document_id)


async def list_nodes(document_id: UUID) -> List[DocumentNode]:
    pool = get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            f"""
            SELECT {NODE_COLUMNS}
            FROM document_nodes
            WHERE document_id=$1
            ORDER BY start_offset ASC, depth ASC, idx ASC
            """,
            document_id,
        )
    return [DocumentNode(**dict(row)) for row in rows]


async def get_node(node_id: UUID) -> Optional[DocumentNode]:
    pool = get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"SELECT {NODE_COLUMNS} FROM document_nodes WHERE id=$1",
            node_id,
        )
    return DocumentNode(**dict(row)) if row else None
