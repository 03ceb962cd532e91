"""
Integration tests for the localization pipeline
"""
import base64
import json
import threading
import time
from pathlib import Path

import pytest
import requests

from issue_images.config import LocalizerConfig
from issue_images.fetch import ContentFetcher
from issue_images.models import OutcomeStatus
from issue_images.pipeline import ImageLocalizer, localize_images
from issue_images.store import ImageDirectoryError, LocalStore
from conftest import FakeResponse, FakeSession, GIF_HEAD, HTML_ERROR_PAGE, JPEG_HEAD, PNG_1X1


def run(text, tmp_path, routes, **overrides):
    config = LocalizerConfig(issue_number=overrides.pop("issue_number", 1), output_root=tmp_path, **overrides)
    fetcher = ContentFetcher(session=FakeSession(routes))
    return localize_images(text, config, fetcher=fetcher)


def stored_files(tmp_path: Path, issue_number=1):
    image_dir = tmp_path / f"issue-{issue_number}-images"
    if not image_dir.exists():
        return []
    return sorted(path.name for path in image_dir.iterdir())


class TestEndToEnd:
    """Full pipeline runs against fake HTTP"""

    def test_one_missing_one_success(self, tmp_path: Path):
        """A 404 and a success produce a partial result"""
        text = (
            "Broken: ![old](https://e.com/missing.png)\n"
            "Working: ![new](https://e.com/present.png)\n"
        )
        result = run(text, tmp_path, {"https://e.com/present.png": FakeResponse(200, PNG_1X1)})

        summary = result.summary
        assert (summary.total, summary.succeeded, summary.failed, summary.skipped) == (2, 1, 1, 0)
        assert summary.outcomes[0].status is OutcomeStatus.NOT_FOUND
        assert summary.outcomes[1].local_path == "issue-1-images/image-1.png"
        assert result.content == (
            "Broken: ![old](https://e.com/missing.png)\n"
            "Working: ![new](issue-1-images/image-1.png)\n"
        )
        assert stored_files(tmp_path) == ["image-1.png"]

    def test_extension_comes_from_content_not_url(self, tmp_path: Path):
        """A JPEG served under a .png URL is stored as .jpg"""
        url = "https://e.com/photo.png"
        result = run(
            f"![p]({url})",
            tmp_path,
            {url: FakeResponse(200, JPEG_HEAD, {"Content-Type": "image/png"})},
        )
        assert result.content == "![p](issue-1-images/image-1.jpg)"
        assert result.summary.outcomes[0].detected_format == "jpeg"

    def test_error_page_with_200_is_invalid(self, tmp_path: Path):
        """HTML served with 200 and image content type is rejected"""
        url = "https://e.com/a.png"
        result = run(
            f"![a]({url})",
            tmp_path,
            {url: FakeResponse(200, HTML_ERROR_PAGE, {"Content-Type": "image/png"})},
        )
        assert result.summary.outcomes[0].status is OutcomeStatus.INVALID_FORMAT
        assert result.content == f"![a]({url})"
        assert stored_files(tmp_path) == []
        assert not (tmp_path / "issue-1-images").exists()

    def test_success_index_skips_failures(self, tmp_path: Path):
        """Indices count successes only, in extraction order"""
        text = (
            '<img src="https://e.com/1.gif">'
            "![x](https://e.com/broken.png)"
            "![y](https://e.com/3.png)"
        )
        routes = {
            "https://e.com/1.gif": FakeResponse(200, GIF_HEAD),
            "https://e.com/broken.png": FakeResponse(200, b"garbage"),
            "https://e.com/3.png": FakeResponse(200, PNG_1X1),
        }
        result = run(text, tmp_path, routes, issue_number=9)
        assert [o.local_path for o in result.summary.outcomes] == [
            "issue-9-images/image-1.gif",
            None,
            "issue-9-images/image-2.png",
        ]
        assert stored_files(tmp_path, 9) == ["image-1.gif", "image-2.png"]

    def test_every_reference_gets_one_outcome(self, tmp_path: Path):
        url = "https://e.com/dup.png"
        text = f"![a]({url}) ![b]({url})"
        result = run(text, tmp_path, {url: FakeResponse(200, PNG_1X1)})
        assert result.summary.total == 2
        assert result.content == "![a](issue-1-images/image-1.png) ![b](issue-1-images/image-2.png)"

    def test_network_errors_do_not_abort(self, tmp_path: Path):
        routes = {
            "https://e.com/slow.png": requests.exceptions.ConnectTimeout("slow"),
            "https://e.com/ok.png": FakeResponse(200, PNG_1X1),
        }
        result = run("![s](https://e.com/slow.png) ![o](https://e.com/ok.png)", tmp_path, routes)
        statuses = [o.status for o in result.summary.outcomes]
        assert statuses == [OutcomeStatus.NETWORK_ERROR, OutcomeStatus.SUCCESS]

    def test_malformed_jwt_claim_does_not_abort(self, tmp_path: Path):
        """A 4xx on a token URL with an unusable exp claim is just not_found"""
        claims = base64.urlsafe_b64encode(json.dumps({"exp": None}).encode()).decode().rstrip("=")
        broken = f"https://private-user-images.githubusercontent.com/1/2.png?jwt=eyJ.{claims}.sig"
        text = f"![a]({broken}) ![b](https://e.com/ok.png)"
        result = run(text, tmp_path, {"https://e.com/ok.png": FakeResponse(200, PNG_1X1)})
        statuses = [o.status for o in result.summary.outcomes]
        assert statuses == [OutcomeStatus.NOT_FOUND, OutcomeStatus.SUCCESS]
        assert result.content == f"![a]({broken}) ![b](issue-1-images/image-1.png)"

    def test_oversized_download_is_invalid(self, tmp_path: Path):
        url = "https://e.com/huge.png"
        response = FakeResponse(200, PNG_1X1 + b"\0" * (300 * 1024))
        config = LocalizerConfig(issue_number=1, output_root=tmp_path, max_image_bytes=100)
        fetcher = ContentFetcher(session=FakeSession({url: response}), max_bytes=100)
        result = localize_images(f"![h]({url})", config, fetcher=fetcher)
        assert result.summary.outcomes[0].status is OutcomeStatus.INVALID_FORMAT
        assert response.bytes_read < len(response.content)
        assert stored_files(tmp_path) == []

    def test_default_fetcher_caps_downloads(self, tmp_path: Path):
        config = LocalizerConfig(issue_number=1, output_root=tmp_path, max_image_bytes=1234)
        with ImageLocalizer(config) as localizer:
            assert localizer.fetcher.max_bytes == 1234

    def test_no_references(self, tmp_path: Path):
        result = run("No images here.", tmp_path, {})
        assert result.content == "No images here."
        assert result.summary.total == 0
        assert not (tmp_path / "issue-1-images").exists()


class TestSkipMode:
    """Extraction-only runs"""

    def test_all_references_skipped(self, tmp_path: Path):
        session = FakeSession({"https://e.com/a.png": FakeResponse(200, PNG_1X1)})
        config = LocalizerConfig(issue_number=1, output_root=tmp_path, download_images=False)
        text = '![a](https://e.com/a.png) <img src="https://e.com/b.png">'

        result = localize_images(text, config, fetcher=ContentFetcher(session=session))

        assert result.content == text
        assert result.summary.skipped == 2
        assert all(o.local_path is None for o in result.summary.outcomes)
        assert session.calls == []
        assert not (tmp_path / "issue-1-images").exists()


class TestStorageFailures:
    """Filesystem problems"""

    def test_write_failure_downgrades_one_reference(self, tmp_path: Path):
        """A failed write does not consume an index or stop the run"""
        attempts = []

        def flaky_writer(path, data):
            attempts.append(path.name)
            if len(attempts) == 1:
                raise OSError(28, "No space left on device")
            path.write_bytes(data)

        config = LocalizerConfig(issue_number=1, output_root=tmp_path)
        routes = {
            "https://e.com/a.png": FakeResponse(200, PNG_1X1),
            "https://e.com/b.png": FakeResponse(200, PNG_1X1),
        }
        result = localize_images(
            "![a](https://e.com/a.png) ![b](https://e.com/b.png)",
            config,
            fetcher=ContentFetcher(session=FakeSession(routes)),
            store=LocalStore(tmp_path, 1, writer=flaky_writer),
        )
        statuses = [o.status for o in result.summary.outcomes]
        assert statuses == [OutcomeStatus.STORAGE_ERROR, OutcomeStatus.SUCCESS]
        assert attempts == ["image-1.png", "image-1.png"]
        assert result.content == "![a](https://e.com/a.png) ![b](issue-1-images/image-1.png)"

    def test_partial_write_is_removed(self, tmp_path: Path):
        """A write that dies halfway leaves nothing behind"""
        attempts = []

        def half_writer(path, data):
            attempts.append(path.name)
            if len(attempts) == 1:
                path.write_bytes(data[: len(data) // 2])
                raise OSError(28, "No space left on device")
            path.write_bytes(data)

        config = LocalizerConfig(issue_number=1, output_root=tmp_path)
        routes = {
            "https://e.com/a.png": FakeResponse(200, PNG_1X1),
            "https://e.com/b.jpg": FakeResponse(200, JPEG_HEAD),
        }
        result = localize_images(
            "![a](https://e.com/a.png) ![b](https://e.com/b.jpg)",
            config,
            fetcher=ContentFetcher(session=FakeSession(routes)),
            store=LocalStore(tmp_path, 1, writer=half_writer),
        )
        assert result.summary.succeeded == 1
        assert stored_files(tmp_path) == ["image-1.jpg"]

    def test_directory_failure_is_fatal(self, tmp_path: Path):
        (tmp_path / "issue-1-images").write_text("in the way")
        with pytest.raises(ImageDirectoryError):
            run("![a](https://e.com/a.png)", tmp_path, {"https://e.com/a.png": FakeResponse(200, PNG_1X1)})


class _SlowFirstSession(FakeSession):
    """Delays the first URL so later fetches complete first."""

    def __init__(self, routes, slow_url):
        super().__init__(routes)
        self.slow_url = slow_url
        self.completed = []
        self._done_lock = threading.Lock()

    def get(self, url, **kwargs):
        if url == self.slow_url:
            time.sleep(0.2)
        response = super().get(url, **kwargs)
        with self._done_lock:
            self.completed.append(url)
        return response


class TestConcurrency:
    """Order is preserved whatever the completion order"""

    def test_indices_follow_extraction_order(self, tmp_path: Path):
        urls = [f"https://e.com/{n}.png" for n in range(1, 5)]
        routes = {url: FakeResponse(200, PNG_1X1) for url in urls}
        routes[urls[1]] = FakeResponse(200, GIF_HEAD)
        session = _SlowFirstSession(routes, slow_url=urls[0])
        config = LocalizerConfig(issue_number=5, output_root=tmp_path, max_workers=4)
        text = " ".join(f"![{n}]({url})" for n, url in enumerate(urls))

        with ImageLocalizer(config, fetcher=ContentFetcher(session=session)) as localizer:
            result = localizer.run(text)

        assert session.completed[-1] == urls[0]
        assert [o.reference.url for o in result.summary.outcomes] == urls
        assert [o.local_path for o in result.summary.outcomes] == [
            "issue-5-images/image-1.png",
            "issue-5-images/image-2.gif",
            "issue-5-images/image-3.png",
            "issue-5-images/image-4.png",
        ]

    def test_sequential_mode(self, tmp_path: Path):
        url = "https://e.com/a.png"
        result = run(f"![a]({url})", tmp_path, {url: FakeResponse(200, PNG_1X1)}, max_workers=1)
        assert result.summary.succeeded == 1
