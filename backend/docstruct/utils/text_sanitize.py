"""Utilities for cleaning raw text before normalization and persistence."""

from __future__ import annotations

import re
from typing import Optional

NULL_BYTE_RE = re.compile(r"\x00")
_ALLOWED_CONTROL_CHARS = {"\n", "\t", "\r"}


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Remove NUL bytes and problematic control characters from ``value``.

    - strip NUL bytes that Postgres rejects outright;
    - drop lone surrogates left behind by lenient decoders;
    - filter out non-printable control characters except line breaks and tabs;
    - trim surrounding whitespace.

    Returns ``None`` when nothing printable remains.
    """

    if value is None:
        return None

    cleaned = NULL_BYTE_RE.sub("", value)
    cleaned = cleaned.encode("utf-8", "ignore").decode("utf-8", "ignore")
    cleaned = "".join(
        ch for ch in cleaned if ch in _ALLOWED_CONTROL_CHARS or ord(ch) >= 32
    )
    cleaned = cleaned.strip()
    return cleaned if cleaned else None
