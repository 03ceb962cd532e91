"""HTTP retrieval of referenced images."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional
from urllib.parse import parse_qsl, urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_RETRIES, DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from .models import OutcomeStatus
from .utils import redact_url
from .validate import ImageFormat, hint_from_content_type, hint_from_url

logger = logging.getLogger("issue_images")

CHUNK_SIZE = 64 * 1024
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
ACCEPT_HEADER = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"


class FetchError(Exception):
    """Base class for failures to retrieve an image."""

    status = OutcomeStatus.NETWORK_ERROR

    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class NotFoundError(FetchError):
    """The server answered with a 4xx status."""

    status = OutcomeStatus.NOT_FOUND


class ExpiredError(NotFoundError):
    """A pre-signed URL was rejected after its embedded expiry passed."""

    status = OutcomeStatus.EXPIRED


class NetworkError(FetchError):
    """Connection, DNS, timeout or server-side failure."""

    status = OutcomeStatus.NETWORK_ERROR


@dataclass
class FetchedContent:
    """Body of a successful HTTP response plus format hints."""

    url: str
    final_url: str
    data: bytes
    content_type: str
    format_hint: Optional[ImageFormat]


def _parse_compact_timestamp(value: str) -> datetime:
    return datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)


def _jwt_expiry(token: str) -> Optional[datetime]:
    parts = token.split(".")
    if len(parts) < 2:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def signed_url_expiry(url: str) -> Optional[datetime]:
    """Return the expiry time a pre-signed URL carries, if any.

    Understands AWS SigV4 and GCS V4 signatures, ``Expires=<epoch>`` (S3 V2,
    CloudFront) and the ``exp`` claim of a ``jwt`` parameter as used by
    GitHub's private user image links.
    """
    params: Dict[str, str] = {
        key.lower(): value
        for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True)
    }
    if not params:
        return None
    try:
        for prefix in ("x-amz", "x-goog"):
            date, expires = params.get(f"{prefix}-date"), params.get(f"{prefix}-expires")
            if date and expires:
                return _parse_compact_timestamp(date) + timedelta(seconds=int(expires))
        if params.get("expires", "").isdigit():
            return datetime.fromtimestamp(int(params["expires"]), tz=timezone.utc)
        if params.get("jwt"):
            return _jwt_expiry(params["jwt"])
    except (ValueError, TypeError, OverflowError, OSError):
        return None
    return None


def build_session(retries: int = DEFAULT_RETRIES, user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    """Create a requests session that retries transient failures."""
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, "Accept": ACCEPT_HEADER})
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=0.5,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentFetcher:
    """Download image bytes and classify failures."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = _utcnow,
        max_bytes: Optional[int] = None,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.session = session or build_session(retries, user_agent)
        self._clock = clock

    def __enter__(self) -> "ContentFetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def _has_expired(self, *urls: str) -> bool:
        now = self._clock()
        for candidate in urls:
            expiry = signed_url_expiry(candidate) if candidate else None
            if expiry is not None and expiry <= now:
                return True
        return False

    def _read_body(self, url: str, response: requests.Response) -> bytes:
        """Read the body, stopping one byte past ``max_bytes``."""
        body = bytearray()
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                body.extend(chunk)
                if self.max_bytes is not None and len(body) > self.max_bytes:
                    logger.debug("Stopped reading %s past %d bytes", redact_url(url), self.max_bytes)
                    del body[self.max_bytes + 1 :]
                    break
        except requests.RequestException as exc:
            raise NetworkError(url, f"Download interrupted: {exc.__class__.__name__}") from exc
        return bytes(body)

    def fetch(self, url: str) -> FetchedContent:
        """Fetch ``url``, following redirects, and return the response body."""
        logger.debug("Fetching %s", redact_url(url))
        try:
            response = self.session.get(
                url, timeout=self.timeout, allow_redirects=True, stream=True
            )
        except requests.Timeout as exc:
            raise NetworkError(url, f"Timed out after {self.timeout:g}s") from exc
        except requests.RequestException as exc:
            raise NetworkError(url, f"Request failed: {exc.__class__.__name__}") from exc

        try:
            status_code = response.status_code
            final_url = response.url or url
            if 400 <= status_code < 500:
                if self._has_expired(url, final_url):
                    raise ExpiredError(
                        url, f"HTTP {status_code}: pre-signed URL has expired", status_code
                    )
                raise NotFoundError(url, f"HTTP {status_code}", status_code)
            if status_code >= 500:
                raise NetworkError(url, f"HTTP {status_code}", status_code)

            content_type = response.headers.get("Content-Type", "")
            hint = (
                hint_from_content_type(content_type)
                or hint_from_url(final_url)
                or hint_from_url(url)
            )
            return FetchedContent(
                url=url,
                final_url=final_url,
                data=self._read_body(url, response),
                content_type=content_type,
                format_hint=hint,
            )
        finally:
            response.close()
