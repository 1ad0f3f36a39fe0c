"""Turn a flat batch of sanitized spans into a validated parent/child forest.

The builder performs exactly one repair: parents are widened so that their
end offset covers every direct child. Overlapping siblings, duplicate sibling
indices and escaped children are reported as :class:`StructuralError` and are
never fixed up, since that would hide a bad extraction upstream.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from docstruct.models.node import DocumentNode


logger = logging.getLogger(__name__)

ROOT_LABEL = "ROOT"


class StructuralError(RuntimeError):
    """Raised when a batch of spans cannot form a valid tree."""

    def __init__(self, issues: Sequence[str]):
        self.issues = list(issues)
        summary = "; ".join(self.issues[:5])
        if len(self.issues) > 5:
            summary += f"; and {len(self.issues) - 5} more"
        super().__init__(f"Invalid document structure: {summary}")


def build_hierarchy(
    nodes: Sequence[DocumentNode], *, text_length: Optional[int] = None
) -> List[DocumentNode]:
    """Assign ``parent_id`` and ``idx`` to ``nodes`` and validate the result.

    Nodes are returned in start-offset order. When ``text_length`` is given
    every span must satisfy ``0 <= start < end <= text_length``.
    """

    if not nodes:
        return []

    if text_length is not None:
        _check_bounds(nodes, text_length)

    # sorted() is stable, so equal starts keep their input order.
    ordered = sorted(nodes, key=lambda node: node.start_offset)

    stack: List[DocumentNode] = []
    next_idx: Dict[Optional[UUID], int] = defaultdict(int)
    for node in ordered:
        while stack and stack[-1].depth >= node.depth:
            stack.pop()
        parent = stack[-1] if stack else None
        node.parent_id = parent.id if parent else None
        node.idx = next_idx[node.parent_id]
        next_idx[node.parent_id] += 1
        stack.append(node)

    reconcile_end_offsets(ordered)
    validate_siblings(ordered)
    validate_containment(ordered)

    logger.debug(
        "[hierarchy] built %s nodes with %s roots",
        len(ordered),
        next_idx[None],
    )
    return ordered


def reconcile_end_offsets(nodes: Sequence[DocumentNode]) -> None:
    """Widen parents, deepest level first, so they cover their direct children."""

    if not nodes:
        return

    children = _group_by_parent(nodes)
    by_depth: Dict[int, List[DocumentNode]] = defaultdict(list)
    for node in nodes:
        by_depth[node.depth].append(node)

    # A child is always deeper than its parent.
    for depth in sorted(by_depth, reverse=True):
        for node in by_depth[depth]:
            direct = children.get(node.id)
            if not direct:
                continue
            widest = max(child.end_offset for child in direct)
            if widest > node.end_offset:
                logger.debug(
                    "[hierarchy] widening %s to end %s",
                    node.describe(),
                    widest,
                )
                node.end_offset = widest


def validate_siblings(nodes: Sequence[DocumentNode]) -> None:
    by_id = {node.id: node for node in nodes}
    issues: List[str] = []
    for parent_id, siblings in _group_by_parent(nodes, include_roots=True).items():
        label = _parent_label(by_id, parent_id)

        seen: Dict[int, DocumentNode] = {}
        for sibling in siblings:
            if sibling.idx is None:
                issues.append(f"Node without sibling index in {label}: {sibling.describe()}")
                continue
            if sibling.idx in seen:
                issues.append(
                    f"Duplicate sibling index {sibling.idx} in {label}: "
                    f"{seen[sibling.idx].describe()} and {sibling.describe()}"
                )
            else:
                seen[sibling.idx] = sibling

        ranked = sorted(seen.values(), key=lambda node: node.idx)
        for current, following in zip(ranked, ranked[1:]):
            if following.start_offset < current.start_offset:
                issues.append(
                    f"Sibling order does not match offsets in {label}: "
                    f"{current.describe()} before {following.describe()}"
                )
            elif current.end_offset > following.start_offset:
                issues.append(
                    f"Overlapping siblings in {label}: "
                    f"{current.describe()} and {following.describe()}"
                )

    if issues:
        raise StructuralError(issues)


def validate_containment(nodes: Sequence[DocumentNode]) -> None:
    by_id = {node.id: node for node in nodes}
    issues: List[str] = []
    for node in nodes:
        if node.parent_id is None:
            continue
        parent = by_id.get(node.parent_id)
        if parent is None:
            issues.append(f"Parent of {node.describe()} is not part of the batch")
            continue
        if node.start_offset < parent.start_offset or node.end_offset > parent.end_offset:
            issues.append(
                f"{node.describe()} is not contained in parent {parent.describe()}"
            )

    if issues:
        raise StructuralError(issues)


def _check_bounds(nodes: Sequence[DocumentNode], text_length: int) -> None:
    issues = [
        f"{node.describe()} is outside the text bounds [0,{text_length})"
        for node in nodes
        if not 0 <= node.start_offset < node.end_offset <= text_length
    ]
    if issues:
        raise StructuralError(issues)


def _group_by_parent(
    nodes: Sequence[DocumentNode], *, include_roots: bool = False
) -> Dict[Optional[UUID], List[DocumentNode]]:
    groups: Dict[Optional[UUID], List[DocumentNode]] = defaultdict(list)
    for node in nodes:
        if node.parent_id is None and not include_roots:
            continue
        groups[node.parent_id].append(node)
    return groups


def _parent_label(by_id: Dict[UUID, DocumentNode], parent_id: Optional[UUID]) -> str:
    if parent_id is None:
        return ROOT_LABEL
    parent = by_id.get(parent_id)
    return f"'{parent.title}'" if parent else str(parent_id)
