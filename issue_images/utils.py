"""Utility helpers for issue-number resolution and log-safe URLs."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Mapping, Optional, Union
from urllib.parse import urlsplit, urlunsplit

ISSUE_URL_PATTERN = re.compile(r"/(?:issues|pull)/(?P<number>\d+)(?:[/?#]|$)")
ISSUE_NUMBER_PATTERN = re.compile(r"#?(?P<number>\d+)")


def parse_issue_number(value: Union[int, str]) -> int:
    """Parse ``123``, ``"#123"`` or a GitHub issue/PR URL into a number."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid issue number: {value!r}")
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        match = ISSUE_NUMBER_PATTERN.fullmatch(text) or ISSUE_URL_PATTERN.search(text)
        if not match:
            raise ValueError(f"Invalid issue number or URL: {value!r}")
        number = int(match.group("number"))
    if number <= 0:
        raise ValueError(f"Issue number must be positive, got {number}")
    return number


def _number_from_event(event_path: str) -> Optional[int]:
    path = Path(event_path)
    if not path.is_file():
        return None
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        return None
    for key in ("issue", "pull_request"):
        section = payload.get(key)
        if isinstance(section, dict) and section.get("number"):
            return int(section["number"])
    return None


def resolve_issue_number(
    value: Union[int, str, None] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    """Resolve the issue number from an explicit value or the environment.

    Falls back to ``ISSUE_NUMBER`` and then to the GitHub Actions event
    payload referenced by ``GITHUB_EVENT_PATH``.
    """
    if value is not None and value != "":
        return parse_issue_number(value)

    env = os.environ if environ is None else environ
    if env.get("ISSUE_NUMBER"):
        return parse_issue_number(env["ISSUE_NUMBER"])

    event_path = env.get("GITHUB_EVENT_PATH")
    if event_path:
        number = _number_from_event(event_path)
        if number is not None:
            return parse_issue_number(number)

    raise ValueError(
        "No issue number given; pass --issue or set ISSUE_NUMBER / GITHUB_EVENT_PATH"
    )


def redact_url(url: str) -> str:
    """Drop query string and fragment, which may hold pre-signed tokens."""
    parts = urlsplit(url)
    if not parts.query and not parts.fragment:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
