"""Resolve LLM-supplied text anchors to code-point offsets in normalized text.

Language models paraphrase, re-wrap and re-escape the fragments they are asked
to copy verbatim, so a start or end anchor is looked up with progressively
looser strategies. Each strategy returns a span in the coordinates of the
original text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from docstruct.core.config import settings
from docstruct.schemas.structure import RawSpan


logger = logging.getLogger(__name__)

SHORTENED_PREFIX_LENGTHS: Tuple[int, ...] = (50, 40, 30, 25, 20)
MIN_SHORTENED_LENGTH = 20
MIN_ANCHOR_WARNING_LENGTH = 20
FUZZY_MAX_LENGTH = 80
FUZZY_MIN_LENGTH = 15
FUZZY_STEP = 5
WORD_MATCH_MAX_WORDS = 5
WORD_MATCH_MIN_WORDS = 3

_WHITESPACE_RE = re.compile(r"\s+")


class AnchorNotFoundError(RuntimeError):
    """Raised when an anchor cannot be located and no usable offsets exist."""


@dataclass(frozen=True)
class AnchorMatch:
    start: int
    end: int
    strategy: str


class CollapsedText:
    """Text with every whitespace run replaced by one space.

    ``positions[i]`` is the index in the original text of collapsed character
    ``i``, so matches in the collapsed form map back exactly.
    """

    def __init__(self, original: str):
        chars: List[str] = []
        positions: List[int] = []
        previous_space = False
        for index, char in enumerate(original):
            if char.isspace():
                if previous_space:
                    continue
                chars.append(" ")
                previous_space = True
            else:
                chars.append(char)
                previous_space = False
            positions.append(index)
        self.original = original
        self.text = "".join(chars)
        self.positions = positions

    def to_collapsed(self, original_index: int) -> int:
        """First collapsed index whose original position is ``>= original_index``."""

        low, high = 0, len(self.positions)
        while low < high:
            mid = (low + high) // 2
            if self.positions[mid] < original_index:
                low = mid + 1
            else:
                high = mid
        return low

    def to_original_span(self, start: int, length: int) -> Tuple[int, int]:
        if length <= 0:
            position = self.positions[start] if start < len(self.positions) else len(self.original)
            return position, position
        return self.positions[start], self.positions[start + length - 1] + 1


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def flatten_newlines(value: str) -> str:
    return value.replace("\\n", " ").replace("\n", " ")


def unescape_quotes(value: str) -> str:
    return value.replace('\\"', '"')


def find_anchor(
    text: str,
    anchor: str,
    *,
    from_index: int = 0,
    collapsed: Optional[CollapsedText] = None,
) -> Optional[AnchorMatch]:
    """Locate ``anchor`` in ``text`` at or after ``from_index``.

    Strategies, in order: exact, newline-flattened, whitespace-collapsed,
    unescaped quotes, case-insensitive, shortened unique prefixes and finally
    fuzzy fragments. Shortened and fuzzy matches project the full anchor over
    the matched fragment, clamped to the text.
    """

    if not anchor or not anchor.strip() or from_index > len(text):
        return None

    if len(anchor) < MIN_ANCHOR_WARNING_LENGTH:
        logger.debug("[anchors] anchor %r is shorter than %s chars", anchor, MIN_ANCHOR_WARNING_LENGTH)

    collapsed = collapsed or CollapsedText(text)

    match = _find_exact(text, anchor, from_index, "exact")
    if match:
        return match

    flattened = flatten_newlines(anchor)
    match = _find_exact(text, flattened, from_index, "newline")
    if match:
        return match

    match = _find_collapsed(collapsed, collapse_whitespace(anchor), from_index, "whitespace")
    if match:
        return match

    unescaped = unescape_quotes(flattened)
    if unescaped != flattened:
        match = _find_exact(text, unescaped, from_index, "quotes")
        if match:
            return match
        match = _find_collapsed(
            collapsed, collapse_whitespace(unescaped), from_index, "quotes+whitespace"
        )
        if match:
            return match

    match = _find_case_insensitive(text, anchor, from_index)
    if match:
        return match

    match = _find_shortened(text, collapsed, unescaped, from_index)
    if match:
        return match

    return _find_fuzzy(text, collapsed, collapse_whitespace(unescaped), from_index)


def find_next_heading(
    text: str, from_index: int, keywords: Optional[Sequence[str]] = None
) -> Optional[int]:
    """Return the earliest heading keyword strictly after ``from_index``."""

    if from_index >= len(text):
        return None
    candidates = [
        text.find(keyword, from_index + 1)
        for keyword in (keywords if keywords is not None else settings.anchor_heading_keywords)
        if keyword
    ]
    found = [position for position in candidates if position != -1]
    return min(found) if found else None


def resolve_offsets(
    raw: RawSpan,
    text: str,
    *,
    collapsed: Optional[CollapsedText] = None,
    heading_keywords: Optional[Sequence[str]] = None,
) -> Tuple[int, int]:
    """Resolve ``raw``'s anchors to a half-open ``[start, end)`` span in ``text``.

    Falls back to offsets carried on the span itself when anchors cannot be
    resolved and those offsets fit the text.
    """

    collapsed = collapsed or CollapsedText(text)
    try:
        return _resolve_from_anchors(raw, text, collapsed, heading_keywords)
    except AnchorNotFoundError:
        start, end = raw.start_offset, raw.end_offset
        if start is not None and end is not None and 0 <= start < end <= len(text):
            logger.warning(
                "[anchors] anchor matching failed for '%s', using supplied offsets [%s,%s)",
                raw.title,
                start,
                end,
            )
            return start, end
        raise


def resolve_all(
    spans: Iterable[RawSpan], text: str, *, heading_keywords: Optional[Sequence[str]] = None
) -> List[Tuple[RawSpan, int, int]]:
    collapsed = CollapsedText(text)
    resolved: List[Tuple[RawSpan, int, int]] = []
    for raw in spans:
        start, end = resolve_offsets(
            raw, text, collapsed=collapsed, heading_keywords=heading_keywords
        )
        resolved.append((raw, start, end))
    return resolved


def _resolve_from_anchors(
    raw: RawSpan,
    text: str,
    collapsed: CollapsedText,
    heading_keywords: Optional[Sequence[str]],
) -> Tuple[int, int]:
    if not raw.start_anchor or not raw.start_anchor.strip():
        raise AnchorNotFoundError(f"Start anchor is empty for node '{raw.title}'")
    if not raw.end_anchor or not raw.end_anchor.strip():
        raise AnchorNotFoundError(f"End anchor is empty for node '{raw.title}'")

    start_match = find_anchor(text, raw.start_anchor, collapsed=collapsed)
    if start_match is None:
        raise AnchorNotFoundError(
            f"Start anchor not found for node '{raw.title}': {raw.start_anchor[:50]!r}"
        )
    start = start_match.start

    end_match = find_anchor(text, raw.end_anchor, from_index=start, collapsed=collapsed)
    if end_match is not None:
        end = end_match.end
    else:
        heading = find_next_heading(text, start, heading_keywords)
        end = heading if heading is not None else len(text)
        logger.warning(
            "[anchors] end anchor not found for '%s', falling back to offset %s",
            raw.title,
            end,
        )

    if not 0 <= start < end <= len(text):
        raise AnchorNotFoundError(
            f"Anchors for node '{raw.title}' resolve to an empty or invalid span [{start},{end})"
        )
    return start, end


def _find_exact(text: str, needle: str, from_index: int, strategy: str) -> Optional[AnchorMatch]:
    if not needle:
        return None
    position = text.find(needle, from_index)
    if position == -1:
        return None
    return AnchorMatch(position, position + len(needle), strategy)


def _find_collapsed(
    collapsed: CollapsedText, needle: str, from_index: int, strategy: str
) -> Optional[AnchorMatch]:
    if not needle:
        return None
    position = collapsed.text.find(needle, collapsed.to_collapsed(from_index))
    if position == -1:
        return None
    start, end = collapsed.to_original_span(position, len(needle))
    return AnchorMatch(start, end, strategy)


def _find_case_insensitive(text: str, anchor: str, from_index: int) -> Optional[AnchorMatch]:
    pattern = re.compile(re.escape(anchor), re.IGNORECASE)
    found = pattern.search(text, from_index)
    if not found:
        return None
    logger.debug("[anchors] case-insensitive match at %s", found.start())
    return AnchorMatch(found.start(), found.end(), "case-insensitive")


def _find_shortened(
    text: str, collapsed: CollapsedText, anchor: str, from_index: int
) -> Optional[AnchorMatch]:
    seen: set[str] = set()
    for length in SHORTENED_PREFIX_LENGTHS:
        prefix = anchor[:length]
        if len(prefix) < MIN_SHORTENED_LENGTH or prefix in seen:
            continue
        seen.add(prefix)

        position = text.find(prefix, from_index)
        if position != -1 and text.find(prefix, position + 1) == -1:
            return _project(text, position, position + len(prefix), 0, anchor, "shortened")

        needle = collapse_whitespace(prefix)
        collapsed_start = collapsed.to_collapsed(from_index)
        position = collapsed.text.find(needle, collapsed_start)
        if position != -1 and collapsed.text.find(needle, position + 1) == -1:
            start, end = collapsed.to_original_span(position, len(needle))
            return _project(text, start, end, 0, anchor, "shortened+whitespace")
    return None


def _find_fuzzy(
    text: str, collapsed: CollapsedText, anchor: str, from_index: int
) -> Optional[AnchorMatch]:
    if not anchor:
        return None
    collapsed_start = collapsed.to_collapsed(from_index)

    for length in range(min(len(anchor), FUZZY_MAX_LENGTH), FUZZY_MIN_LENGTH - 1, -FUZZY_STEP):
        offsets = [0]
        if len(anchor) > length:
            offsets.append(len(anchor) - length)
        if len(anchor) > length + 10:
            offsets.append((len(anchor) - length) // 2)
        for offset in offsets:
            fragment = anchor[offset : offset + length]
            span = _unique_in_collapsed(collapsed, fragment, collapsed_start)
            if span is not None:
                return _project(text, span[0], span[1], offset, anchor, "fuzzy")

    words = anchor.split(" ")
    if len(words) >= WORD_MATCH_MIN_WORDS:
        for count in range(min(len(words), WORD_MATCH_MAX_WORDS), WORD_MATCH_MIN_WORDS - 1, -1):
            fragment = " ".join(words[:count])
            span = _unique_in_collapsed(collapsed, fragment, collapsed_start, exact_case=False)
            if span is not None:
                return _project(text, span[0], span[1], 0, anchor, "fuzzy-words")
    return None


def _unique_in_collapsed(
    collapsed: CollapsedText, fragment: str, from_index: int, *, exact_case: bool = True
) -> Optional[Tuple[int, int]]:
    flags = [0, re.IGNORECASE] if exact_case else [re.IGNORECASE]
    for flag in flags:
        pattern = re.compile(re.escape(fragment), flag)
        first = pattern.search(collapsed.text, from_index)
        if not first:
            continue
        if pattern.search(collapsed.text, first.start() + 1):
            continue
        return collapsed.to_original_span(first.start(), first.end() - first.start())
    return None


def _project(
    text: str, start: int, end: int, offset_in_anchor: int, anchor: str, strategy: str
) -> AnchorMatch:
    """Stretch a fragment match to the anchor's full extent, clamped to ``text``."""

    projected_start = max(0, start - offset_in_anchor)
    tail = len(anchor) - offset_in_anchor - (end - start)
    projected_end = min(len(text), end + max(0, tail))
    logger.debug(
        "[anchors] %s match for anchor %r at [%s,%s)",
        strategy,
        anchor[:30],
        projected_start,
        projected_end,
    )
    return AnchorMatch(projected_start, projected_end, strategy)
