from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from docstruct.models.node import DocumentNode, NodeType
from docstruct.schemas.structure import RawSpan


logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8


class SpanValidationError(ValueError):
    """Raised when a proposed span lacks a field that has no safe default."""

    def __init__(self, message: str, *, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


def parse_raw_spans(items: Iterable[Any]) -> List[RawSpan]:
    spans: List[RawSpan] = []
    for index, item in enumerate(items):
        if isinstance(item, RawSpan):
            spans.append(item)
            continue
        if not isinstance(item, dict):
            raise SpanValidationError(
                f"Span #{index} is not an object", index=index
            )
        try:
            spans.append(RawSpan.model_validate(item))
        except ValidationError as exc:
            fields = sorted(
                {str(error["loc"][0]) for error in exc.errors() if error.get("loc")}
            )
            raise SpanValidationError(
                f"Span #{index} is missing or has invalid fields: {', '.join(fields)}",
                index=index,
            ) from exc
    return spans


def parse_node_type(value: Optional[str]) -> NodeType:
    if not value:
        return NodeType.OTHER
    try:
        return NodeType(value.strip().upper())
    except ValueError:
        return NodeType.OTHER


def clamp_confidence(value: Optional[float]) -> float:
    if value is None or math.isnan(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, value))


def sanitize_span(raw: RawSpan, start_offset: int, end_offset: int) -> DocumentNode:
    """Turn a resolved raw span into a candidate node for the hierarchy builder.

    Depth, type and confidence are clamped or defaulted; title and anchors pass
    through unchanged. ``idx`` and ``parent_id`` stay unset.
    """

    node_type = parse_node_type(raw.type)
    if raw.type and node_type is NodeType.OTHER and raw.type.upper() != "OTHER":
        logger.debug("[spans] unknown node type %r mapped to OTHER", raw.type)

    return DocumentNode(
        type=node_type,
        title=raw.title,
        start_anchor=raw.start_anchor,
        end_anchor=raw.end_anchor,
        start_offset=start_offset,
        end_offset=end_offset,
        depth=max(0, raw.depth),
        ai_confidence=clamp_confidence(raw.confidence),
    )
