"""Point image references at their local copies."""

from __future__ import annotations

import re
from typing import Iterable, List

from .models import DownloadOutcome, ImageReference, ReferenceKind


def _markdown_pattern(url: str) -> "re.Pattern[str]":
    return re.compile(
        r"(!\[[^\]]*\]\()" + re.escape(url) + r'((?:\s+"[^"]*")?\))'
    )


def rewrite_span(reference: ImageReference, local_path: str) -> str:
    """Return the reference's original syntax with its URL swapped out."""
    raw = reference.raw_match
    if reference.kind is ReferenceKind.MARKDOWN:
        pattern = _markdown_pattern(reference.url)
        rewritten, count = pattern.subn(
            lambda match: match.group(1) + local_path + match.group(2), raw, count=1
        )
        if count:
            return rewritten

    # HTML src values, and markdown the pattern above could not anchor,
    # are replaced at the URL offsets recorded during extraction.
    url_start = reference.url_span[0] - reference.start
    url_end = reference.url_span[1] - reference.start
    if raw[url_start:url_end] != reference.url:
        raise ValueError(f"Reference span does not contain its URL: {reference.url!r}")
    return raw[:url_start] + local_path + raw[url_end:]


def rewrite_reference(text: str, reference: ImageReference, local_path: str) -> str:
    """Substitute a single reference's URL inside ``text``."""
    start, end = reference.span
    if text[start:end] != reference.raw_match:
        raise ValueError("Reference does not belong to this text")
    return text[:start] + rewrite_span(reference, local_path) + text[end:]


def apply_rewrites(text: str, outcomes: Iterable[DownloadOutcome]) -> str:
    """Rewrite every successful outcome in one pass over the original text."""
    successful = sorted(
        (outcome for outcome in outcomes if outcome.succeeded),
        key=lambda outcome: outcome.reference.start,
    )
    if not successful:
        return text

    pieces: List[str] = []
    cursor = 0
    for outcome in successful:
        reference = outcome.reference
        start, end = reference.span
        if start < cursor:
            raise ValueError("Overlapping image references cannot be rewritten")
        if text[start:end] != reference.raw_match:
            raise ValueError("Reference does not belong to this text")
        pieces.append(text[cursor:start])
        pieces.append(rewrite_span(reference, outcome.local_path))
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)
