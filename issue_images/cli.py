"""Command-line entry point for localizing issue images."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence, TextIO

from .config import (
    DEFAULT_MAX_WORKERS,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    LocalizerConfig,
)
from .models import LocalizationResult, PipelineSummary
from .pipeline import localize_images
from .store import ImageDirectoryError
from .utils import redact_url, resolve_issue_number

logger = logging.getLogger("issue_images.cli")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Download images referenced in GitHub issue text and rewrite the "
            "references to point at local copies."
        ),
    )
    parser.add_argument(
        "input",
        nargs="?",
        default="-",
        help="File holding the issue or comment body ('-' reads stdin)",
    )
    parser.add_argument(
        "--issue",
        default=None,
        help="Issue number, '#123' or issue URL (defaults to ISSUE_NUMBER / GITHUB_EVENT_PATH)",
    )
    parser.add_argument(
        "--output-root",
        default=".",
        type=Path,
        help="Directory in which issue-<n>-images/ is created",
    )
    parser.add_argument(
        "--output",
        "-o",
        default=None,
        type=Path,
        help="Write the rewritten body to this file instead of stdout",
    )
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Report format",
    )
    parser.add_argument(
        "--no-download",
        dest="download_images",
        action="store_false",
        help="Only list image references; do not download or rewrite",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="Per-image request timeout in seconds",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_MAX_WORKERS,
        help="Number of images fetched concurrently",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help="Retries for transient network and server errors",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def read_input(source: str) -> str:
    """Read the issue body as UTF-8 text from a path or stdin."""
    if source == "-":
        raw = sys.stdin.buffer.read()
    else:
        raw = Path(source).read_bytes()
    return raw.decode("utf-8")


def format_text_summary(summary: PipelineSummary) -> str:
    lines = [
        f"Images: {summary.total} found, {summary.succeeded} localized, "
        f"{summary.failed} failed, {summary.skipped} skipped"
    ]
    for outcome in summary.outcomes:
        line = f"  [{outcome.status.value}] {redact_url(outcome.reference.url)}"
        if outcome.local_path:
            line += f" -> {outcome.local_path}"
        elif outcome.error:
            line += f" ({outcome.error})"
        lines.append(line)
    return "\n".join(lines) + "\n"


def _emit(result: LocalizationResult, args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> None:
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(result.content, encoding="utf-8")
        logger.info("Saved rewritten body to %s", args.output)

    if args.format == "json":
        payload = result.summary.to_dict()
        payload["content"] = result.content
        stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")
        return

    if args.output is None:
        stdout.write(result.content)
    stderr.write(format_text_summary(result.summary))


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.ERROR,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    try:
        text = read_input(args.input)
    except UnicodeDecodeError as exc:
        logger.error("Input is not valid UTF-8 text: %s", exc)
        raise SystemExit(1) from exc
    except OSError as exc:
        logger.error("Cannot read %s: %s", args.input, exc)
        raise SystemExit(1) from exc

    try:
        config = LocalizerConfig(
            issue_number=resolve_issue_number(args.issue),
            output_root=args.output_root.resolve(),
            download_images=args.download_images,
            timeout=args.timeout,
            max_workers=args.workers,
            retries=args.retries,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    try:
        result = localize_images(text, config)
    except ImageDirectoryError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    _emit(result, args, sys.stdout, sys.stderr)


if __name__ == "__main__":
    main()
