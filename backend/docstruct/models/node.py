from __future__ import annotations

from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from typing import List, Optional


class NodeType(str, Enum):
    BOOK = "BOOK"
    PART = "PART"
    CHAPTER = "CHAPTER"
    SECTION = "SECTION"
    SUBSECTION = "SUBSECTION"
    PARAGRAPH = "PARAGRAPH"
    APPENDIX = "APPENDIX"
    OTHER = "OTHER"


class NodeSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    parent_id: Optional[UUID] = None
    idx: int
    type: NodeType
    title: str
    start_offset: int
    end_offset: int
    depth: int
    ai_confidence: float


class DocumentNode(BaseModel):
    """A structural span of a document's normalized text.

    ``parent_id`` is a non-owning back-reference into the same batch of nodes;
    ``idx`` and ``parent_id`` stay unset until the hierarchy builder places the
    node. Offsets are half-open ``[start_offset, end_offset)`` code-point
    positions.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    document_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    idx: Optional[int] = None
    type: NodeType = NodeType.OTHER
    title: str
    start_anchor: Optional[str] = None
    end_anchor: Optional[str] = None
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., ge=0)
    depth: int = Field(default=0, ge=0)
    ai_confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    def describe(self) -> str:
        return f"'{self.title}' [{self.start_offset},{self.end_offset})"


class NodeView(NodeSummary):
    children: List["NodeView"] = Field(default_factory=list)


class StructureTree(BaseModel):
    document_id: UUID
    roots: List[NodeView] = Field(default_factory=list)
    total_nodes: int = 0


class StructureFlat(BaseModel):
    document_id: UUID
    nodes: List[NodeSummary] = Field(default_factory=list)
    total_nodes: int = 0


class NodeExtract(BaseModel):
    document_id: UUID
    node_id: UUID
    title: str
    start_offset: int
    end_offset: int
    text: str


class StructureBuildResponse(BaseModel):
    status: str
    message: str
    total_nodes: Optional[int] = None


NodeView.model_rebuild()
