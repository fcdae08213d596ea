"""
Batch processing: describe every image in the input folder and move it to the output folder.

Images are handled one at a time in listing order. A failure on one image is recorded and the
batch moves on; only an unreadable input folder aborts the run.
"""

import asyncio
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from loguru import logger

from image_metadata_cli.embedder import MetadataEmbedder
from image_metadata_cli.generators import MetadataGenerator
from image_metadata_cli.metadata import MetadataRecord


IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp"})

Sleeper = Callable[[float], Awaitable[None]]


class BatchError(Exception):
    """The batch could not start, e.g. the input folder cannot be listed."""


@dataclass
class ItemResult:
    """Outcome of one image."""

    path: Path
    record: MetadataRecord | None = None
    error: str | None = None
    original_deleted: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchStats:
    """Counts reported back to the caller after a batch."""

    total: int = 0
    success: int = 0
    failed: int = 0
    results: list[ItemResult] = field(default_factory=list)

    def record(self, result: ItemResult) -> None:
        self.results.append(result)
        if result.ok:
            self.success += 1
        else:
            self.failed += 1

    def as_dict(self) -> dict[str, int]:
        return {"total": self.total, "success": self.success, "failed": self.failed}


class BatchReporter(Protocol):
    """Progress hooks a user interface can implement to follow a batch."""

    def item_started(self, index: int, total: int, path: Path) -> None: ...

    def item_finished(self, result: ItemResult) -> None: ...

    def waiting(self, seconds: float) -> None: ...


def find_image_files(input_dir: Path, extensions: frozenset[str] = IMAGE_EXTENSIONS) -> list[Path]:
    """
    List candidate images directly inside ``input_dir``.

    Matching is on the extension only, case-insensitively. Names are sorted instead of kept in
    raw directory-listing order, which the filesystem does not guarantee, so that runs over the
    same folder are repeatable.

    Raises:
        BatchError: if the folder cannot be listed.

    """
    try:
        names = sorted(os.listdir(input_dir))
    except OSError as exc:
        logger.error("input_dir_unreadable", input_dir=str(input_dir), error=str(exc))
        msg = f"cannot read input directory {input_dir}: {exc}"
        raise BatchError(msg) from exc

    image_files = [
        input_dir / name
        for name in names
        if Path(name).suffix.lower() in extensions and (input_dir / name).is_file()
    ]
    logger.info("image_files_discovered", count=len(image_files), input_dir=str(input_dir))
    return image_files


async def process_image(
    image_path: Path,
    output_dir: Path,
    generator: MetadataGenerator,
    embedder: MetadataEmbedder,
    *,
    max_title_chars: int,
    max_tags: int,
) -> ItemResult:
    """Generate, embed, then delete the original. Never raises; failures end up in the result."""
    with logger.contextualize(file=image_path.name):
        try:
            record = await generator.generate(
                image_path,
                max_title_chars=max_title_chars,
                max_tags=max_tags,
            )
            await asyncio.to_thread(embedder.embed, image_path, output_dir / image_path.name, record)
            await asyncio.to_thread(image_path.unlink)
        except Exception as exc:  # noqa: BLE001
            logger.exception("processing_exception", error=str(exc))
            return ItemResult(path=image_path, error=str(exc))

        logger.info("processing_success", title_chars=len(record.title), tags=len(record.tags))
        return ItemResult(path=image_path, record=record, original_deleted=True)


async def process_all_images(
    input_dir: Path,
    output_dir: Path,
    generator: MetadataGenerator,
    embedder: MetadataEmbedder,
    *,
    max_title_chars: int,
    max_tags: int,
    delay: float = 0,
    reporter: BatchReporter | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> BatchStats:
    """
    Run one batch over ``input_dir``.

    Between consecutive images (never after the last one) the batch pauses for ``delay``
    seconds to throttle requests to the provider.

    Raises:
        BatchError: if the input folder cannot be listed.

    """
    image_files = find_image_files(input_dir)
    stats = BatchStats(total=len(image_files))
    if not image_files:
        logger.warning("no_image_files_found", input_dir=str(input_dir))
        return stats

    logger.info(
        "batch_started",
        provider=generator.provider_name,
        files=stats.total,
        output_dir=str(output_dir),
        delay=delay,
    )
    for idx, image_path in enumerate(image_files, start=1):
        if reporter is not None:
            reporter.item_started(idx, stats.total, image_path)

        result = await process_image(
            image_path,
            output_dir,
            generator,
            embedder,
            max_title_chars=max_title_chars,
            max_tags=max_tags,
        )
        stats.record(result)
        if reporter is not None:
            reporter.item_finished(result)

        if idx < stats.total and delay > 0:
            if reporter is not None:
                reporter.waiting(delay)
            logger.debug("waiting_before_next_request", seconds=delay)
            await sleep(delay)

    logger.info("processing_summary", **stats.as_dict())
    if stats.failed:
        logger.error(
            "files_failed",
            files=[result.path.name for result in stats.results if not result.ok],
        )
    return stats
