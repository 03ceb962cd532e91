"""Data models used throughout the localization pipeline."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ReferenceKind(str, Enum):
    """Syntax an image reference was written in."""

    MARKDOWN = "markdown"
    HTML = "html"


class OutcomeStatus(str, Enum):
    """Result of processing one image reference."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    INVALID_FORMAT = "invalid_format"
    NETWORK_ERROR = "network_error"
    STORAGE_ERROR = "storage_error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ImageReference:
    """One textual occurrence of an image link in the source text."""

    kind: ReferenceKind
    raw_match: str
    span: Tuple[int, int]
    url: str
    url_span: Tuple[int, int]
    alt_or_attributes: str = ""
    title: Optional[str] = None

    @property
    def start(self) -> int:
        return self.span[0]

    @property
    def end(self) -> int:
        return self.span[1]


@dataclass(frozen=True)
class DownloadOutcome:
    """Per-reference result of fetching, validating and storing an image."""

    reference: ImageReference
    status: OutcomeStatus
    local_path: Optional[str] = None
    detected_format: Optional[str] = None
    bytes_written: Optional[int] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.status is OutcomeStatus.SUCCESS) != (self.local_path is not None):
            raise ValueError(
                f"local_path must be set exactly for successful outcomes (status={self.status.value})"
            )

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": self.reference.url,
            "kind": self.reference.kind.value,
            "status": self.status.value,
        }
        if self.local_path is not None:
            payload["localPath"] = self.local_path
        if self.detected_format is not None:
            payload["format"] = self.detected_format
        if self.bytes_written is not None:
            payload["bytesWritten"] = self.bytes_written
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class PipelineSummary:
    """Aggregate view over every outcome of a run."""

    outcomes: List[DownloadOutcome] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        counter = Counter(outcome.status for outcome in self.outcomes)
        return {status.value: counter.get(status, 0) for status in OutcomeStatus}

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is OutcomeStatus.SUCCESS)

    @property
    def skipped(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded - self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass(frozen=True)
class LocalizationResult:
    """Rewritten text plus the summary of the run that produced it."""

    content: str
    summary: PipelineSummary
