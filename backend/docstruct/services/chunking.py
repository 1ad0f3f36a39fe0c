from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Sequence

from docstruct.models.node import DocumentNode


logger = logging.getLogger(__name__)

PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
TITLE_SIMILARITY_THRESHOLD = 0.8
MIN_OVERLAP_CHARS = 50
MIN_OVERLAP_RATIO = 0.3


@dataclass(frozen=True)
class TextChunk:
    index: int
    start: int
    end: int
    text: str


def split_text(text: str, *, max_chars: int, overlap_chars: int = 0) -> List[TextChunk]:
    """Split ``text`` into overlapping windows of at most ``max_chars``.

    Cuts prefer the last paragraph break in the window, then the last line
    break, then the last space. Chunk ``start``/``end`` are offsets into
    ``text``.
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    overlap_chars = max(0, min(overlap_chars, max_chars // 2))

    if len(text) <= max_chars:
        return [TextChunk(index=0, start=0, end=len(text), text=text)]

    chunks: List[TextChunk] = []
    position = 0
    while position < len(text):
        end = _choose_cut(text, position, max_chars)
        chunks.append(
            TextChunk(index=len(chunks), start=position, end=end, text=text[position:end])
        )
        if end >= len(text):
            break
        # Overlap never moves the window backwards past half its length.
        position = max(end - overlap_chars, position + max(1, (end - position) // 2))

    logger.info("[chunking] split %s chars into %s chunks", len(text), len(chunks))
    return chunks


def _choose_cut(text: str, start: int, max_chars: int) -> int:
    limit = min(len(text), start + max_chars)
    if limit >= len(text):
        return len(text)

    window = text[start:limit]
    minimum = max_chars // 2

    paragraph_breaks = [match.end() for match in PARAGRAPH_BREAK_RE.finditer(window)]
    if paragraph_breaks and paragraph_breaks[-1] >= minimum:
        return start + paragraph_breaks[-1]

    for separator in ("\n", " "):
        cut = window.rfind(separator)
        if cut >= minimum:
            return start + cut + 1

    return limit


def title_similarity(left: str, right: str) -> float:
    """Word-level Jaccard similarity of two titles, case-insensitive."""

    left_words = set(left.lower().split())
    right_words = set(right.lower().split())
    union = left_words | right_words
    if not union:
        return 0.0
    return len(left_words & right_words) / len(union)


def nodes_are_duplicates(first: DocumentNode, second: DocumentNode) -> bool:
    overlap = min(first.end_offset, second.end_offset) - max(
        first.start_offset, second.start_offset
    )
    if overlap <= 0:
        return False
    smaller = min(
        first.end_offset - first.start_offset, second.end_offset - second.start_offset
    )
    if overlap < MIN_OVERLAP_CHARS or overlap < smaller * MIN_OVERLAP_RATIO:
        return False
    if title_similarity(first.title, second.title) < TITLE_SIMILARITY_THRESHOLD:
        return False
    return first.type == second.type


def merge_duplicate_nodes(nodes: Sequence[DocumentNode]) -> List[DocumentNode]:
    """Collapse nodes proposed twice by overlapping chunks.

    Each group keeps the fields of its best member (confidence plus a small
    length bonus), spans the union of the group and carries the mean
    confidence. The result is ordered by start offset.
    """

    groups: List[List[DocumentNode]] = []
    for node in nodes:
        for group in groups:
            if nodes_are_duplicates(group[0], node):
                group.append(node)
                break
        else:
            groups.append([node])

    merged: List[DocumentNode] = []
    for group in groups:
        if len(group) == 1:
            merged.append(group[0])
            continue
        best = max(
            group,
            key=lambda node: node.ai_confidence + (node.end_offset - node.start_offset) / 1000.0,
        )
        merged.append(
            best.model_copy(
                update={
                    "start_offset": min(node.start_offset for node in group),
                    "end_offset": max(node.end_offset for node in group),
                    "ai_confidence": sum(node.ai_confidence for node in group) / len(group),
                }
            )
        )

    if len(merged) != len(nodes):
        logger.info("[chunking] merged %s proposed nodes into %s", len(nodes), len(merged))
    merged.sort(key=lambda node: node.start_offset)
    return merged
