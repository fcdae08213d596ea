"""Shrink images before sending them to a provider, and package their bytes for the request."""

import mimetypes
import os
import tempfile
from pathlib import Path

from loguru import logger
from PIL import Image
from pydantic_ai import BinaryContent


DEFAULT_MAX_DIMENSION = 300
DEFAULT_JPEG_QUALITY = 80
TEMP_PREFIX = "temp_"
JPEG_SUFFIXES = {".jpg", ".jpeg", ".jpe"}


def compress_image(
    image_path: Path,
    max_size: int = DEFAULT_MAX_DIMENSION,
    jpg_quality: int = DEFAULT_JPEG_QUALITY,
) -> Path:
    """
    Write a downscaled JPEG copy of an image next to the original.

    The copy gets a fresh ``temp_<stem>_*.jpg`` name from ``tempfile.mkstemp``, so neither the
    source nor any other file already in the folder is overwritten. Compression is best effort:
    on any failure the original path is returned and a warning is logged. Callers delete the
    returned file only when it differs from ``image_path``.

    Args:
        image_path: Source image
        max_size: Longest side of the copy, in pixels
        jpg_quality: JPEG quality (1-100)

    Returns:
        Path to the temporary copy, or ``image_path`` if compression failed

    """
    temp_path: Path | None = None
    try:
        with Image.open(image_path) as opened:
            img = opened
            # Composite alpha onto white background if present
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                alpha = img.convert("RGBA")
                bg = Image.new("RGBA", alpha.size, (255, 255, 255, 255))
                img = Image.alpha_composite(bg, alpha).convert("RGB")
            else:
                img = img.convert("RGB")
            img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

            fd, name = tempfile.mkstemp(
                prefix=f"{TEMP_PREFIX}{image_path.stem}_",
                suffix=".jpg",
                dir=image_path.parent,
            )
            temp_path = Path(name)
            with os.fdopen(fd, "wb") as handle:
                img.save(handle, format="JPEG", quality=jpg_quality)
    except (OSError, ValueError) as exc:
        logger.warning("image_compression_failed_using_original", error=str(exc))
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        return image_path

    logger.debug(
        "image_compressed",
        temp_file=temp_path.name,
        size_kb=temp_path.stat().st_size // 1024,
    )
    return temp_path


def encode_image(image_path: Path) -> BinaryContent:
    """
    Read an image file into a request payload part.

    BinaryContent is serialized as base64 text inside the provider request body.

    Raises:
        OSError: if the file cannot be read.

    """
    data = image_path.read_bytes()
    suffix = image_path.suffix.lower()
    if suffix in JPEG_SUFFIXES:
        media_type = "image/jpeg"
    else:
        media_type = mimetypes.guess_type(image_path.name)[0] or "image/jpeg"
    logger.debug("image_encoded", media_type=media_type, size_kb=len(data) // 1024)
    return BinaryContent(data=data, media_type=media_type)
