"""Persist validated images under the per-issue directory."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Union

from .validate import ImageFormat, normalize_format

logger = logging.getLogger("issue_images")

Writer = Callable[[Path, bytes], None]


class StorageError(OSError):
    """Raised when an image cannot be written to disk."""


class ImageDirectoryError(StorageError):
    """Raised when the issue image directory cannot be created at all."""


def image_dir_name(issue_number: int) -> str:
    return f"issue-{issue_number}-images"


def image_filename(index: int, image_format: Union[ImageFormat, str]) -> str:
    """Build ``image-{index}{ext}`` from the validated format."""
    resolved = normalize_format(image_format)
    if resolved is None:
        raise ValueError(f"Unknown image format: {image_format!r}")
    if index < 1:
        raise ValueError(f"Image index is 1-based, got {index}")
    return f"image-{index}{resolved.extension}"


def _write_bytes(path: Path, data: bytes) -> None:
    path.write_bytes(data)


class LocalStore:
    """Write images to ``<output_root>/issue-{n}-images/``."""

    def __init__(
        self,
        output_root: Union[Path, str],
        issue_number: int,
        writer: Optional[Writer] = None,
    ) -> None:
        self.output_root = Path(output_root)
        self.issue_number = issue_number
        self.image_dir = self.output_root / image_dir_name(issue_number)
        self._writer = writer or _write_bytes
        self._lock = threading.Lock()
        self._prepared = False

    def ensure_directory(self) -> Path:
        """Create the image directory once; safe to call repeatedly."""
        with self._lock:
            if self._prepared:
                return self.image_dir
            try:
                self.image_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ImageDirectoryError(
                    f"Cannot create image directory {self.image_dir}: {exc}"
                ) from exc
            self._prepared = True
            logger.debug("Using image directory %s", self.image_dir)
        return self.image_dir

    def save(self, data: bytes, image_format: Union[ImageFormat, str], index: int) -> str:
        """Write ``data`` and return its path relative to the output root."""
        filename = image_filename(index, image_format)
        self.ensure_directory()
        destination = self.image_dir / filename
        try:
            self._writer(destination, data)
        except OSError as exc:
            try:
                destination.unlink(missing_ok=True)
            except OSError as cleanup_exc:
                logger.debug("Could not remove partial file %s: %s", destination, cleanup_exc)
            raise StorageError(f"Failed to write {destination}: {exc}") from exc
        return f"{image_dir_name(self.issue_number)}/{filename}"
