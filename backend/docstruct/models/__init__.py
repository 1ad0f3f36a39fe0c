from .document import (
    Document,
    DocumentBase,
    DocumentCreate,
    DocumentSource,
    DocumentStatus,
    IngestLinkRequest,
    IngestTextRequest,
    TextSlice,
)
from .node import (
    DocumentNode,
    NodeExtract,
    NodeSummary,
    NodeType,
    NodeView,
    StructureBuildResponse,
    StructureFlat,
    StructureTree,
)

__all__ = [
    "Document",
    "DocumentBase",
    "DocumentCreate",
    "DocumentSource",
    "DocumentStatus",
    "IngestLinkRequest",
    "IngestTextRequest",
    "TextSlice",
    "DocumentNode",
    "NodeExtract",
    "NodeSummary",
    "NodeType",
    "NodeView",
    "StructureBuildResponse",
    "StructureFlat",
    "StructureTree",
]
