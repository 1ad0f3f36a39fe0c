from __future__ import annotations

import pytest

from docstruct.models.node import DocumentNode, NodeType
from docstruct.services.chunking import (
    merge_duplicate_nodes,
    nodes_are_duplicates,
    split_text,
    title_similarity,
)


def _node(title: str, start: int, end: int, *, confidence: float = 0.8, **extra) -> DocumentNode:
    return DocumentNode(
        title=title,
        start_offset=start,
        end_offset=end,
        ai_confidence=confidence,
        type=extra.pop("type", NodeType.CHAPTER),
        **extra,
    )


def test_short_text_is_a_single_chunk() -> None:
    chunks = split_text("tiny", max_chars=100, overlap_chars=10)
    assert len(chunks) == 1
    assert (chunks[0].start, chunks[0].end, chunks[0].text) == (0, 4, "tiny")


def test_split_prefers_paragraph_breaks() -> None:
    text = "A" * 20 + "\n\n" + "B" * 20 + "\n\n" + "C" * 20
    chunks = split_text(text, max_chars=30)

    assert [(chunk.start, chunk.end) for chunk in chunks] == [(0, 22), (22, 44), (44, 64)]
    assert all(chunk.text == text[chunk.start : chunk.end] for chunk in chunks)


def test_split_falls_back_to_spaces_then_hard_cuts() -> None:
    spaced = split_text("word " * 20, max_chars=32)
    assert spaced[0].end == 30

    dense = split_text("x" * 100, max_chars=30)
    assert [(chunk.start, chunk.end) for chunk in dense] == [
        (0, 30),
        (30, 60),
        (60, 90),
        (90, 100),
    ]


def test_overlapping_chunks_cover_text() -> None:
    text = "A" * 20 + "\n\n" + "B" * 20 + "\n\n" + "C" * 20
    chunks = split_text(text, max_chars=30, overlap_chars=5)

    assert chunks[0].start == 0
    assert chunks[-1].end == len(text)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start < previous.end
        assert current.start > previous.start
    assert all(chunk.end - chunk.start <= 30 for chunk in chunks)


def test_split_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        split_text("text", max_chars=0)


def test_title_similarity_is_case_insensitive_jaccard() -> None:
    assert title_similarity("Chapter One", "chapter one") == 1.0
    assert title_similarity("Chapter One", "Chapter Two") == pytest.approx(1 / 3)
    assert title_similarity("", "") == 0.0


def test_duplicates_require_overlap_title_and_type() -> None:
    first = _node("Chapter One", 100, 400)
    assert nodes_are_duplicates(first, _node("chapter one", 120, 420))
    assert not nodes_are_duplicates(first, _node("Chapter Two", 120, 420))
    assert not nodes_are_duplicates(first, _node("Chapter One", 380, 700))
    assert not nodes_are_duplicates(first, _node("Chapter One", 120, 420, type=NodeType.SECTION))


def test_merge_duplicate_nodes_unions_spans() -> None:
    merged = merge_duplicate_nodes(
        [
            _node("Chapter Two", 500, 900),
            _node("Chapter One", 100, 400, confidence=0.9),
            _node("chapter one", 120, 420, confidence=0.7),
        ]
    )

    assert [node.title for node in merged] == ["Chapter One", "Chapter Two"]
    assert (merged[0].start_offset, merged[0].end_offset) == (100, 420)
    assert merged[0].ai_confidence == pytest.approx(0.8)
