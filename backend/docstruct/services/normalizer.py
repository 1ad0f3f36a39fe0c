"""Canonical text normalization.

Every offset stored for a document points into the string produced here, so
the pipeline order is part of the contract: later rewrites assume the earlier
ones already ran. Offsets are counted in Unicode code points (``len`` of a
Python ``str``).
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from docstruct.core.config import settings


LINE_BREAK_RE = re.compile("\r\n|\r|\u2028|\u2029")
# Letter, hyphen, optional whitespace, newline, optional whitespace, letter.
HYPHEN_BREAK_RE = re.compile(r"(?<=[^\W\d_])-\s*\n\s*(?=[^\W\d_])")
SPACE_RUN_RE = re.compile(" {2,}")
ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")

_QUOTE_TABLE = str.maketrans(
    {
        "\u201c": '"',
        "\u201d": '"',
        "\u201e": '"',
        "\u2018": "'",
        "\u2019": "'",
        "\u201a": "'",
    }
)
_DASH_TABLE = str.maketrans({"\u2013": "-", "\u2014": "-"})

# A single pass is not always a projection: stripping a zero-width character
# can leave two adjacent spaces, and an en dash at a line break only becomes a
# joinable hyphen after the dash step. Re-running converges in one or two
# extra passes.
MAX_PASSES = 4


@dataclass(frozen=True)
class NormalizationResult:
    text: str
    char_count: int


def normalize_text(
    text: Optional[str],
    *,
    dehyphenate: Optional[bool] = None,
    collapse_spaces: Optional[bool] = None,
) -> NormalizationResult:
    """Return the canonical form of ``text`` and its length in code points.

    ``None`` yields an empty result. The function never raises.
    """

    if text is None:
        return NormalizationResult(text="", char_count=0)

    if dehyphenate is None:
        dehyphenate = settings.normalization_dehyphenate
    if collapse_spaces is None:
        collapse_spaces = settings.normalization_collapse_spaces

    value = text
    for _ in range(MAX_PASSES):
        updated = _apply_pipeline(
            value, dehyphenate=dehyphenate, collapse_spaces=collapse_spaces
        )
        if updated == value:
            break
        value = updated

    return NormalizationResult(text=value, char_count=len(value))


def _apply_pipeline(value: str, *, dehyphenate: bool, collapse_spaces: bool) -> str:
    value = LINE_BREAK_RE.sub("\n", value)
    if dehyphenate:
        value = HYPHEN_BREAK_RE.sub("", value)
    if collapse_spaces:
        value = SPACE_RUN_RE.sub(" ", value)
    value = unicodedata.normalize("NFC", value)
    value = ZERO_WIDTH_RE.sub("", value)
    value = value.translate(_QUOTE_TABLE)
    return value.translate(_DASH_TABLE)
