from __future__ import annotations

import time
from typing import List

import pytest

from docstruct.models.node import DocumentNode, NodeType
from docstruct.services.hierarchy import (
    StructuralError,
    build_hierarchy,
    validate_siblings,
)


def _node(title: str, start: int, end: int, depth: int, node_type: NodeType = NodeType.SECTION) -> DocumentNode:
    return DocumentNode(
        type=node_type,
        title=title,
        start_offset=start,
        end_offset=end,
        depth=depth,
        ai_confidence=0.9,
    )


def _children(nodes: List[DocumentNode], parent: DocumentNode) -> List[DocumentNode]:
    return [node for node in nodes if node.parent_id == parent.id]


def test_empty_input_returns_empty_list() -> None:
    assert build_hierarchy([]) == []


def test_multiple_roots_get_sequential_indices() -> None:
    first = _node("One", 0, 10, 0)
    second = _node("Two", 10, 20, 0)
    third = _node("Three", 20, 30, 0)

    built = build_hierarchy([third, first, second])

    assert [node.title for node in built] == ["One", "Two", "Three"]
    assert [node.idx for node in built] == [0, 1, 2]
    assert all(node.parent_id is None for node in built)


def test_multi_level_depth_drop() -> None:
    chapter = _node("Chapter 1", 0, 50, 0, NodeType.CHAPTER)
    section = _node("Section 1.1", 5, 40, 1)
    subsection = _node("Subsection 1.1.1", 10, 30, 2, NodeType.SUBSECTION)
    second_chapter = _node("Chapter 2", 50, 80, 0, NodeType.CHAPTER)

    built = build_hierarchy([chapter, section, subsection, second_chapter])

    roots = [node for node in built if node.parent_id is None]
    assert [root.title for root in roots] == ["Chapter 1", "Chapter 2"]
    assert _children(built, second_chapter) == []
    assert _children(built, chapter) == [section]
    assert _children(built, section) == [subsection]
    assert second_chapter.idx == 1


def test_reconciliation_widens_ancestors_bottom_up() -> None:
    chapter = _node("Chapter", 0, 20, 0, NodeType.CHAPTER)
    section = _node("Section", 5, 30, 1)
    subsection = _node("Sub", 25, 60, 2, NodeType.SUBSECTION)

    build_hierarchy([chapter, section, subsection])

    assert section.end_offset == 60
    assert chapter.end_offset == 60
    assert subsection.end_offset == 60


def test_reconciliation_never_shrinks_parents() -> None:
    chapter = _node("Chapter", 0, 100, 0, NodeType.CHAPTER)
    section = _node("Section", 10, 20, 1)

    build_hierarchy([chapter, section])

    assert chapter.end_offset == 100


def test_overlapping_roots_are_rejected() -> None:
    first = _node("A", 0, 10, 0)
    second = _node("B", 5, 15, 0)

    with pytest.raises(StructuralError) as exc:
        build_hierarchy([first, second])

    message = str(exc.value)
    assert "Overlapping siblings in ROOT" in message
    assert "'A' [0,10)" in message
    assert "'B' [5,15)" in message


def test_overlapping_children_name_their_parent() -> None:
    chapter = _node("Chapter", 0, 100, 0, NodeType.CHAPTER)
    first = _node("First", 10, 50, 1)
    second = _node("Second", 40, 90, 1)

    with pytest.raises(StructuralError) as exc:
        build_hierarchy([chapter, first, second])

    assert "Overlapping siblings in 'Chapter'" in exc.value.issues[0]


def test_adjacent_siblings_are_allowed() -> None:
    built = build_hierarchy([_node("A", 0, 10, 0), _node("B", 10, 20, 0)])
    assert [node.idx for node in built] == [0, 1]


def test_equal_starts_resolve_by_depth() -> None:
    chapter = _node("Chapter", 0, 40, 0, NodeType.CHAPTER)
    section = _node("Section", 0, 20, 1)

    build_hierarchy([chapter, section])

    assert section.parent_id == chapter.id
    assert section.idx == 0


def test_equal_starts_keep_input_order_when_deeper_node_comes_first() -> None:
    section = _node("Section", 0, 20, 1)
    chapter = _node("Chapter", 0, 40, 0, NodeType.CHAPTER)

    with pytest.raises(StructuralError):
        build_hierarchy([section, chapter])


def test_depth_gap_attaches_to_nearest_open_ancestor() -> None:
    chapter = _node("Chapter", 0, 40, 0, NodeType.CHAPTER)
    deep = _node("Deep", 5, 50, 3, NodeType.PARAGRAPH)

    build_hierarchy([chapter, deep])

    assert deep.parent_id == chapter.id
    assert chapter.end_offset == 50


def test_bounds_are_checked_against_text_length() -> None:
    with pytest.raises(StructuralError) as exc:
        build_hierarchy([_node("Too long", 0, 120, 0)], text_length=100)
    assert "outside the text bounds" in str(exc.value)


def test_sibling_order_matches_offset_order_and_covers_children() -> None:
    nodes = [
        _node("Part", 0, 10, 0, NodeType.PART),
        _node("Ch 1", 2, 30, 1, NodeType.CHAPTER),
        _node("S 1.1", 3, 12, 2),
        _node("S 1.2", 12, 35, 2),
        _node("Ch 2", 35, 60, 1, NodeType.CHAPTER),
        _node("Part 2", 70, 90, 0, NodeType.PART),
    ]

    built = build_hierarchy(nodes, text_length=100)
    by_id = {node.id: node for node in built}

    for parent in [None, *built]:
        parent_id = parent.id if parent else None
        siblings = [node for node in built if node.parent_id == parent_id]
        by_idx = sorted(siblings, key=lambda node: node.idx)
        by_start = sorted(siblings, key=lambda node: node.start_offset)
        assert by_idx == by_start
        if parent and siblings:
            assert parent.end_offset >= max(node.end_offset for node in siblings)

    for node in built:
        if node.parent_id:
            parent = by_id[node.parent_id]
            assert parent.start_offset <= node.start_offset
            assert node.end_offset <= parent.end_offset


def test_validate_siblings_reports_duplicate_indices() -> None:
    first = _node("A", 0, 10, 0)
    second = _node("B", 10, 20, 0)
    first.idx = 0
    second.idx = 0

    with pytest.raises(StructuralError) as exc:
        validate_siblings([first, second])
    assert "Duplicate sibling index 0 in ROOT" in str(exc.value)


def test_large_depth_gap_is_reconciled_quickly() -> None:
    chapter = _node("Chapter", 0, 10, 0, NodeType.CHAPTER)
    deep = _node("Deep", 5, 40, 2_000_000_000)

    started = time.perf_counter()
    built = build_hierarchy([chapter, deep], text_length=50)
    elapsed = time.perf_counter() - started

    assert elapsed < 1.0
    assert deep.parent_id == chapter.id
    assert built[0].end_offset == 40
