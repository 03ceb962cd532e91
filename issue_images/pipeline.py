"""High-level orchestration: extract, fetch, validate, store and rewrite."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Union

from .config import LocalizerConfig
from .extract import extract_references
from .fetch import ContentFetcher, FetchError
from .models import (
    DownloadOutcome,
    ImageReference,
    LocalizationResult,
    OutcomeStatus,
    PipelineSummary,
)
from .rewrite import apply_rewrites
from .store import ImageDirectoryError, LocalStore, StorageError
from .utils import redact_url
from .validate import ImageFormat, InvalidImageError, validate_image

logger = logging.getLogger("issue_images")


@dataclass
class ValidatedImage:
    """Fetched bytes that passed validation but are not yet stored."""

    reference: ImageReference
    data: bytes
    image_format: ImageFormat


Prepared = Union[ValidatedImage, DownloadOutcome]


class ImageLocalizer:
    """Download the images an issue body references and rewrite the body."""

    def __init__(
        self,
        config: LocalizerConfig,
        fetcher: Optional[ContentFetcher] = None,
        store: Optional[LocalStore] = None,
    ) -> None:
        self.config = config
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or ContentFetcher(
            timeout=config.timeout,
            retries=config.retries,
            user_agent=config.user_agent,
            max_bytes=config.max_image_bytes,
        )
        self.store = store or LocalStore(config.output_root, config.issue_number)

    def __enter__(self) -> "ImageLocalizer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_fetcher:
            self.fetcher.close()

    def _failure(
        self, reference: ImageReference, status: OutcomeStatus, message: str
    ) -> DownloadOutcome:
        logger.warning(
            "Could not localize %s [%s]: %s",
            redact_url(reference.url),
            status.value,
            message,
        )
        return DownloadOutcome(reference=reference, status=status, error=message)

    def prepare(self, reference: ImageReference) -> Prepared:
        """Fetch and validate one reference without touching the filesystem."""
        try:
            fetched = self.fetcher.fetch(reference.url)
            image_format = validate_image(
                fetched.data,
                hint=fetched.format_hint,
                max_bytes=self.config.max_image_bytes,
            )
        except FetchError as exc:
            return self._failure(reference, exc.status, str(exc))
        except InvalidImageError as exc:
            return self._failure(reference, OutcomeStatus.INVALID_FORMAT, str(exc))
        return ValidatedImage(reference=reference, data=fetched.data, image_format=image_format)

    def _prepare_all(self, references: List[ImageReference]) -> List[Prepared]:
        workers = min(self.config.max_workers, len(references))
        if workers <= 1:
            return [self.prepare(reference) for reference in references]

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="issue-images")
        try:
            # map() yields in submission order, whatever the completion order.
            prepared = list(executor.map(self.prepare, references))
        except BaseException:
            # Interrupted: drop pending fetches, leave written files alone.
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return prepared

    def _store_all(self, prepared: List[Prepared]) -> List[DownloadOutcome]:
        if any(isinstance(item, ValidatedImage) for item in prepared):
            self.store.ensure_directory()

        outcomes: List[DownloadOutcome] = []
        success_index = 0
        for item in prepared:
            if isinstance(item, DownloadOutcome):
                outcomes.append(item)
                continue
            try:
                local_path = self.store.save(item.data, item.image_format, success_index + 1)
            except ImageDirectoryError:
                raise
            except StorageError as exc:
                outcomes.append(
                    self._failure(item.reference, OutcomeStatus.STORAGE_ERROR, str(exc))
                )
                continue
            success_index += 1
            logger.info("Saved %s -> %s", redact_url(item.reference.url), local_path)
            outcomes.append(
                DownloadOutcome(
                    reference=item.reference,
                    status=OutcomeStatus.SUCCESS,
                    local_path=local_path,
                    detected_format=item.image_format.value,
                    bytes_written=len(item.data),
                )
            )
        return outcomes

    def run(self, text: str) -> LocalizationResult:
        """Process every image reference in ``text``."""
        start = time.perf_counter()
        references = extract_references(text)
        logger.info(
            "Found %d image reference(s) for issue #%d",
            len(references),
            self.config.issue_number,
        )

        if not self.config.download_images:
            outcomes = [
                DownloadOutcome(reference=reference, status=OutcomeStatus.SKIPPED)
                for reference in references
            ]
            return LocalizationResult(content=text, summary=PipelineSummary(outcomes))

        outcomes = self._store_all(self._prepare_all(references))
        summary = PipelineSummary(outcomes)
        content = apply_rewrites(text, outcomes)
        logger.info(
            "Finished in %.2fs (%d/%d succeeded, %d failed)",
            time.perf_counter() - start,
            summary.succeeded,
            summary.total,
            summary.failed,
        )
        return LocalizationResult(content=content, summary=summary)


def localize_images(
    text: str,
    config: LocalizerConfig,
    fetcher: Optional[ContentFetcher] = None,
    store: Optional[LocalStore] = None,
) -> LocalizationResult:
    """Run the pipeline once over ``text``."""
    with ImageLocalizer(config, fetcher=fetcher, store=store) as localizer:
        return localizer.run(text)
