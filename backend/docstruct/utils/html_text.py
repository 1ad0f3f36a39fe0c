"""HTML to plain text conversion shared by uploads and fetched links."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

STRIPPED_TAGS = ("script", "style", "noscript", "template", "svg", "canvas")
BLOCK_TAGS = (
    "p",
    "div",
    "br",
    "li",
    "tr",
    "section",
    "article",
    "header",
    "footer",
    "blockquote",
    "pre",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
)

_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*(\n\s*)+")


def html_to_text(raw_html: str) -> str:
    """Extract readable text, keeping block boundaries as line breaks."""

    if not raw_html:
        return ""

    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(list(STRIPPED_TAGS)):
        tag.decompose()
    for tag in soup.find_all(list(BLOCK_TAGS)):
        tag.insert_before("\n")

    text = soup.get_text(separator=" ")
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()
