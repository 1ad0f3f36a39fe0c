from __future__ import annotations

import copy
import math
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


STRUCTURE_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": [
                    "type",
                    "title",
                    "start_anchor",
                    "end_anchor",
                    "depth",
                    "confidence",
                ],
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": [
                            "PART",
                            "CHAPTER",
                            "SECTION",
                            "SUBSECTION",
                            "PARAGRAPH",
                            "APPENDIX",
                            "OTHER",
                        ],
                    },
                    "title": {"type": "string", "minLength": 1},
                    "start_anchor": {"type": "string", "minLength": 1},
                    "end_anchor": {"type": "string", "minLength": 1},
                    "depth": {"type": "integer", "minimum": 0},
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                },
                "additionalProperties": False,
            },
        },
    },
    "required": ["nodes"],
    "additionalProperties": False,
}


def get_structure_json_schema() -> dict[str, Any]:
    return copy.deepcopy(STRUCTURE_JSON_SCHEMA)


class RawSpan(BaseModel):
    """Untrusted structural span as proposed by the language model.

    Fields with a safe default are coerced leniently here; the remaining
    cleanup happens in :func:`docstruct.services.spans.sanitize_span`. Title and
    anchors have no safe default and fail validation when missing or blank.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: Optional[str] = None
    title: str = Field(..., min_length=1)
    start_anchor: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("start_anchor", "startAnchor")
    )
    end_anchor: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("end_anchor", "endAnchor")
    )
    depth: int = 0
    confidence: float = math.nan
    start_offset: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("start_offset", "startOffset")
    )
    end_offset: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("end_offset", "endOffset")
    )

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return value.strip() or None

    @field_validator("title", "start_anchor", "end_anchor", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return ""
        return value

    @field_validator("depth", mode="before")
    @classmethod
    def _coerce_depth(cls, value: Any) -> int:
        """Non-integer depths collapse to the root level."""

        if isinstance(value, bool) or value is None:
            return 0
        if isinstance(value, int):
            return value
        try:
            as_float = float(value)
        except (TypeError, ValueError):
            return 0
        if math.isnan(as_float) or math.isinf(as_float):
            return 0
        return int(as_float)

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float:
        if isinstance(value, bool) or value is None:
            return math.nan
        try:
            return float(value)
        except (TypeError, ValueError):
            return math.nan

    @field_validator("start_offset", "end_offset", mode="before")
    @classmethod
    def _coerce_offset(cls, value: Any) -> Optional[int]:
        if isinstance(value, bool) or value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            return None


class StructureProposal(BaseModel):
    """Top-level payload returned by the structure LLM."""

    model_config = ConfigDict(extra="ignore")

    nodes: list[dict[str, Any]] = Field(default_factory=list)
