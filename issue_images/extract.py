"""Locate markdown and HTML image references in issue text."""

from __future__ import annotations

import re
from typing import Iterator, List

from .models import ImageReference, ReferenceKind

# ![alt](url "title"); the URL stops at whitespace or ")".
MARKDOWN_IMAGE_PATTERN = re.compile(
    r'!\[(?P<alt>[^\]]*)\]\((?P<url>[^)\s]+)(?:\s+"(?P<title>[^"]*)")?\)'
)

IMG_TAG_PATTERN = re.compile(r"<img\b(?P<attrs>[^>]*)>", re.IGNORECASE)
SRC_ATTR_PATTERN = re.compile(
    r"""(?<![\w:-])src\s*=\s*(?:"(?P<dq>[^"]+)"|'(?P<sq>[^']+)')""",
    re.IGNORECASE,
)


def scan_markdown(text: str) -> Iterator[ImageReference]:
    """Yield markdown image references in order of appearance."""
    for match in MARKDOWN_IMAGE_PATTERN.finditer(text):
        yield ImageReference(
            kind=ReferenceKind.MARKDOWN,
            raw_match=match.group(0),
            span=match.span(),
            url=match.group("url"),
            url_span=match.span("url"),
            alt_or_attributes=match.group("alt"),
            title=match.group("title"),
        )


def scan_html(text: str) -> Iterator[ImageReference]:
    """Yield ``<img>`` tags carrying a quoted ``src`` attribute."""
    for tag in IMG_TAG_PATTERN.finditer(text):
        attrs = tag.group("attrs")
        src = SRC_ATTR_PATTERN.search(attrs)
        if src is None:
            continue
        group = "dq" if src.group("dq") is not None else "sq"
        offset = tag.start("attrs")
        url_start, url_end = src.span(group)
        yield ImageReference(
            kind=ReferenceKind.HTML,
            raw_match=tag.group(0),
            span=tag.span(),
            url=src.group(group),
            url_span=(offset + url_start, offset + url_end),
            alt_or_attributes=attrs.rstrip("/").strip(),
        )


def extract_references(text: str) -> List[ImageReference]:
    """Return every image reference in ``text`` sorted left to right.

    Markdown and HTML are scanned independently. A match that falls inside
    an already accepted reference (e.g. an ``<img>`` written in alt text)
    is dropped so spans never overlap.
    """
    if not isinstance(text, str):
        raise TypeError(f"Expected text, got {type(text).__name__}")

    candidates = sorted(
        [*scan_markdown(text), *scan_html(text)],
        key=lambda ref: (ref.start, -ref.end),
    )
    references: List[ImageReference] = []
    last_end = -1
    for reference in candidates:
        if reference.start < last_end:
            continue
        references.append(reference)
        last_end = reference.end
    return references
