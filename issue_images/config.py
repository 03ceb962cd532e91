"""Configuration objects and constants for the localizer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_RETRIES = 2
DEFAULT_MAX_IMAGE_BYTES = 25 * 1024 * 1024
DEFAULT_USER_AGENT = "issue-image-localizer/0.1.0"


@dataclass
class LocalizerConfig:
    """Top-level settings that control downloading and rewriting behaviour."""

    issue_number: int
    output_root: Path = Path(".")
    download_images: bool = True
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    retries: int = DEFAULT_RETRIES
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if isinstance(self.issue_number, bool) or int(self.issue_number) <= 0:
            raise ValueError(f"Issue number must be a positive integer, got {self.issue_number!r}")
        self.issue_number = int(self.issue_number)
        self.output_root = Path(self.output_root)
        if self.timeout <= 0:
            raise ValueError("Timeout must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.retries < 0:
            raise ValueError("retries cannot be negative")
