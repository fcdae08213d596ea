"""Copy an image to the output folder and embed its title and keywords with ExifTool."""

import shutil
from pathlib import Path
from types import TracebackType

from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolExecuteError
from loguru import logger

from image_metadata_cli.metadata import MetadataRecord


class EmbeddingError(Exception):
    """The image could not be copied or its metadata could not be written."""


class MetadataEmbedder:
    """
    Writes metadata through one ExifTool process kept alive for the whole session.

    The process starts on first use. Use the embedder as a context manager, or call ``close``,
    so the process is terminated before the program exits.
    """

    def __init__(self, *, write_subject: bool = True) -> None:
        self.write_subject = write_subject
        self._exiftool: ExifToolHelper | None = None

    def __enter__(self) -> "MetadataEmbedder":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def exiftool(self) -> ExifToolHelper:
        if self._exiftool is None:
            self._exiftool = ExifToolHelper()  # type: ignore[no-untyped-call]
            self._exiftool.run()
            logger.debug("exiftool_started")
        return self._exiftool

    def close(self) -> None:
        if self._exiftool is not None:
            self._exiftool.terminate()
            self._exiftool = None
            logger.debug("exiftool_terminated")

    def build_tags(self, record: MetadataRecord) -> dict[str, str | list[str]]:
        """
        Map a record to ExifTool tag names.

        Examples:
            >>> MetadataEmbedder().build_tags(MetadataRecord(title="Red fox", tags=["fox", "snow"]))
            {'Title': 'Red fox', 'Description': 'Red fox', 'Keywords': ['fox', 'snow'], 'Subject': 'fox, snow'}

        """
        tags: dict[str, str | list[str]] = {
            "Title": record.title,
            "Description": record.title,
            "Keywords": list(record.tags),
        }
        if self.write_subject:
            tags["Subject"] = ", ".join(record.tags)
        return tags

    def embed(self, source: Path, destination: Path, record: MetadataRecord) -> bool:
        """
        Copy ``source`` to ``destination`` and write the record into the copy.

        The copy is modified in place (``-overwrite_original``), so no ``_original`` backup is
        left next to it. The source file is never touched.

        Raises:
            EmbeddingError: if the copy or the metadata write fails.

        """
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
            self.exiftool.set_tags(
                files=[str(destination)],
                tags=self.build_tags(record),
                params=["-overwrite_original"],
            )
        except (OSError, ValueError, TypeError, ExifToolExecuteError) as exc:
            logger.exception("metadata_write_failed", error=str(exc), target=str(destination))
            msg = f"failed to write metadata to {destination.name}: {exc}"
            raise EmbeddingError(msg) from exc

        logger.info(
            "metadata_written_successfully",
            target=str(destination),
            keywords=len(record.tags),
            title_chars=len(record.title),
        )
        return True
