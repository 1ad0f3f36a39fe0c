from __future__ import annotations

from docstruct.models.node import DocumentNode


class TextRangeError(ValueError):
    """Raised when offsets fall outside the normalized text."""

    def __init__(self, start: int, end: int, length: int):
        super().__init__(
            f"Offsets [{start},{end}) are outside the text bounds [0,{length}]"
        )
        self.start = start
        self.end = end
        self.length = length


def slice_text(text: str, start: int, end: int) -> str:
    """Return ``text[start:end]``; out-of-range offsets raise, never clamp."""

    length = len(text)
    if not 0 <= start <= end <= length:
        raise TextRangeError(start, end, length)
    return text[start:end]


def extract_node_text(text: str, node: DocumentNode) -> str:
    return slice_text(text, node.start_offset, node.end_offset)
