"""Pydantic schemas for payloads exchanged with the structure LLM."""

from .structure import (
    RawSpan,
    StructureProposal,
    get_structure_json_schema,
)

__all__ = [
    "RawSpan",
    "StructureProposal",
    "get_structure_json_schema",
]
