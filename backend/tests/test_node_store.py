from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, List, Tuple
from uuid import uuid4

import pytest

from docstruct.models.document import DocumentStatus
from docstruct.models.node import DocumentNode, NodeType
from docstruct.services import nodes, storage


class FakeConnection:
    def __init__(self, *, fail_on_insert: bool = False) -> None:
        self.statements: List[Tuple[str, Tuple[Any, ...]]] = []
        self.transactions: List[str] = []
        self.fail_on_insert = fail_on_insert
        self.rows: List[dict] = []

    @asynccontextmanager
    async def transaction(self):
        self.transactions.append("begin")
        try:
            yield
        except Exception:
            self.transactions.append("rollback")
            raise
        self.transactions.append("commit")

    async def execute(self, query: str, *args: Any) -> str:
        self.statements.append((" ".join(query.split()), args))
        return "OK"

    async def executemany(self, query: str, records: List[tuple]) -> None:
        if self.fail_on_insert:
            raise RuntimeError("insert failed")
        self.statements.append((" ".join(query.split()), tuple(records)))

    async def fetch(self, query: str, *args: Any) -> List[dict]:
        self.statements.append((" ".join(query.split()), args))
        return self.rows


class FakePool:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _tree(document_id) -> List[DocumentNode]:
    root = DocumentNode(
        document_id=document_id,
        idx=0,
        type=NodeType.CHAPTER,
        title="Root",
        start_offset=0,
        end_offset=50,
    )
    child = DocumentNode(
        document_id=document_id,
        parent_id=root.id,
        idx=0,
        type=NodeType.SECTION,
        title="Child",
        start_offset=10,
        end_offset=40,
        depth=1,
    )
    return [root, child]


@pytest.mark.anyio
async def test_replace_nodes_runs_in_one_locked_transaction(monkeypatch) -> None:
    conn = FakeConnection()
    monkeypatch.setattr(nodes, "get_pool", lambda: FakePool(conn))
    document_id = uuid4()

    await nodes.replace_nodes(document_id, _tree(document_id))

    queries = [query for query, _ in conn.statements]
    assert queries[0].startswith("SELECT pg_advisory_xact_lock")
    assert queries[1].startswith("DELETE FROM document_nodes")
    assert queries[2].startswith("INSERT INTO document_nodes")
    assert queries[3].startswith("UPDATE documents SET status")
    assert conn.statements[3][1] == (document_id, DocumentStatus.STRUCTURED.value)
    assert conn.transactions == ["begin", "commit"]

    inserted = conn.statements[2][1]
    assert [record[5] for record in inserted] == ["Root", "Child"]
    assert inserted[1][2] == inserted[0][0]


@pytest.mark.anyio
async def test_replace_nodes_rolls_back_on_failure(monkeypatch) -> None:
    conn = FakeConnection(fail_on_insert=True)
    monkeypatch.setattr(nodes, "get_pool", lambda: FakePool(conn))
    document_id = uuid4()

    with pytest.raises(RuntimeError):
        await nodes.replace_nodes(document_id, _tree(document_id))

    assert conn.transactions == ["begin", "rollback"]
    assert not any(query.startswith("UPDATE documents") for query, _ in conn.statements)


@pytest.mark.anyio
async def test_list_nodes_orders_by_offset(monkeypatch) -> None:
    document_id = uuid4()
    conn = FakeConnection()
    conn.rows = [node.model_dump() for node in _tree(document_id)]
    monkeypatch.setattr(nodes, "get_pool", lambda: FakePool(conn))

    listed = await nodes.list_nodes(document_id)

    assert [node.title for node in listed] == ["Root", "Child"]
    assert "ORDER BY start_offset ASC, depth ASC, idx ASC" in conn.statements[0][0]


def test_object_names_are_unique_and_flat() -> None:
    first = storage._build_object_name("../my report.pdf")
    second = storage._build_object_name("../my report.pdf")

    assert first != second
    assert first.endswith("/my_report.pdf")


@pytest.mark.parametrize(
    "endpoint,secure,expected",
    [
        ("minio:9000", False, ("minio:9000", False)),
        ("https://storage.example/", False, ("storage.example", True)),
        ("http://minio:9000", True, ("minio:9000", False)),
    ],
)
def test_normalize_minio_endpoint(endpoint, secure, expected) -> None:
    assert storage._normalize_minio_endpoint(endpoint, secure) == expected


@pytest.mark.anyio
async def test_upload_rejects_empty_payload() -> None:
    with pytest.raises(ValueError):
        await storage.upload_document_bytes("empty.txt", b"")
