"""Content-based image validation.

Downloaded bytes are accepted only when their leading bytes match a known
image signature. The URL extension and the ``Content-Type`` header are
treated as hints that reorder the checks; they never cause acceptance on
their own.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote, urlparse

import filetype

SNIFF_BYTES = 1024


class ImageFormat(str, Enum):
    """Image formats that may be stored locally."""

    PNG = "png"
    JPEG = "jpeg"
    GIF = "gif"
    WEBP = "webp"
    BMP = "bmp"
    ICO = "ico"
    SVG = "svg"

    @property
    def extension(self) -> str:
        return EXTENSIONS[self]


EXTENSIONS: Dict[ImageFormat, str] = {
    ImageFormat.PNG: ".png",
    ImageFormat.JPEG: ".jpg",
    ImageFormat.GIF: ".gif",
    ImageFormat.WEBP: ".webp",
    ImageFormat.BMP: ".bmp",
    ImageFormat.ICO: ".ico",
    ImageFormat.SVG: ".svg",
}

_FORMAT_ALIASES = {
    "png": ImageFormat.PNG,
    "jpg": ImageFormat.JPEG,
    "jpeg": ImageFormat.JPEG,
    "gif": ImageFormat.GIF,
    "webp": ImageFormat.WEBP,
    "bmp": ImageFormat.BMP,
    "ico": ImageFormat.ICO,
    "svg": ImageFormat.SVG,
}

HTML_MARKERS = ("<!doctype html", "<html")


class InvalidImageError(ValueError):
    """Raised when a buffer is not an acceptable image."""


def _decoded_head(data: bytes) -> str:
    text = data[:SNIFF_BYTES].decode("utf-8", errors="ignore")
    return text.lstrip("\ufeff").strip().lower()


def _is_png(data: bytes) -> bool:
    return data.startswith(b"\x89PNG")


def _is_jpeg(data: bytes) -> bool:
    return data.startswith(b"\xff\xd8\xff")


def _is_gif(data: bytes) -> bool:
    return data.startswith(b"GIF")


def _is_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _is_bmp(data: bytes) -> bool:
    return data.startswith(b"BM")


def _is_ico(data: bytes) -> bool:
    return data.startswith(b"\x00\x00\x01\x00")


def _is_svg(data: bytes) -> bool:
    head = _decoded_head(data)
    if head.startswith("<svg"):
        return True
    # An XML prolog alone also fronts S3/GCS error documents.
    return head.startswith("<?xml") and "<svg" in head


SIGNATURES: Dict[ImageFormat, Callable[[bytes], bool]] = {
    ImageFormat.PNG: _is_png,
    ImageFormat.JPEG: _is_jpeg,
    ImageFormat.GIF: _is_gif,
    ImageFormat.WEBP: _is_webp,
    ImageFormat.BMP: _is_bmp,
    ImageFormat.ICO: _is_ico,
    ImageFormat.SVG: _is_svg,
}


def normalize_format(value: Optional[str]) -> Optional[ImageFormat]:
    """Map a loose format name such as ``"jpg"`` or ``".PNG"`` to a format."""
    if not value:
        return None
    if isinstance(value, ImageFormat):
        return value
    return _FORMAT_ALIASES.get(value.strip().lower().lstrip("."))


def hint_from_content_type(content_type: Optional[str]) -> Optional[ImageFormat]:
    """Guess a format from an HTTP ``Content-Type`` header."""
    if not content_type:
        return None
    mime = content_type.split(";")[0].strip().lower()
    if mime == "image/svg+xml":
        return ImageFormat.SVG
    kind = filetype.get_type(mime=mime)
    if kind is None:
        return None
    return normalize_format(kind.extension)


def hint_from_url(url: str) -> Optional[ImageFormat]:
    """Guess a format from the file extension in a URL path."""
    suffix = PurePosixPath(unquote(urlparse(url).path)).suffix.lower().lstrip(".")
    if not suffix:
        return None
    kind = filetype.get_type(ext=suffix)
    if kind is not None:
        return normalize_format(kind.extension)
    return normalize_format(suffix)


def looks_like_html(data: bytes) -> bool:
    """Return True for HTML documents such as CDN or login error pages."""
    return _decoded_head(data).startswith(HTML_MARKERS)


def _check_order(hint: Optional[ImageFormat]) -> List[ImageFormat]:
    order = list(SIGNATURES)
    if hint is not None:
        order.remove(hint)
        order.insert(0, hint)
    return order


def detect_image_format(data: bytes, hint: Optional[str] = None) -> Optional[ImageFormat]:
    """Return the format whose signature matches ``data``, if any."""
    for image_format in _check_order(normalize_format(hint)):
        if SIGNATURES[image_format](data):
            return image_format
    return None


def validate_image(
    data: bytes,
    hint: Optional[str] = None,
    max_bytes: Optional[int] = None,
) -> ImageFormat:
    """Validate downloaded bytes and return the detected image format."""
    if not data:
        raise InvalidImageError("Response body is empty")
    if max_bytes is not None and len(data) > max_bytes:
        raise InvalidImageError(f"Image is larger than {max_bytes} bytes")
    if looks_like_html(data):
        raise InvalidImageError("Response is an HTML page, not an image")

    detected = detect_image_format(data, hint)
    if detected is None:
        raise InvalidImageError(
            f"Unrecognized image signature: {bytes(data[:12]).hex(' ')}"
        )
    return detected
