"""Image decoding into a shared host/device RGBA buffer.

The buffer keeps one float32 RGBA allocation and exposes it through two
views: ``host`` (writable, for the caller) and ``device`` (read-only, handed
to the inference runtime). Both views alias the same storage, so they always
describe identical pixels.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from os import PathLike
    from types import TracebackType

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class ImageBuffer:
    """Float32 RGBA raster with host and device views of one allocation."""

    def __init__(self, pixels: NDArray[np.float32]) -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected HxWx4 RGBA array, got shape {pixels.shape}")
        self._pixels: NDArray[np.float32] | None = np.ascontiguousarray(pixels, dtype=np.float32)
        self._height, self._width = pixels.shape[:2]

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def host(self) -> NDArray[np.float32]:
        """Writable view for host-side access."""
        return self._storage()

    @property
    def device(self) -> NDArray[np.float32]:
        """Read-only view of the same memory, for the inference runtime."""
        view = self._storage().view()
        view.flags.writeable = False
        return view

    @property
    def released(self) -> bool:
        return self._pixels is None

    def release(self) -> None:
        """Drop the pixel storage. Safe to call more than once."""
        if self._pixels is not None:
            self._pixels = None
            logger.debug("Released %dx%d image buffer", self._width, self._height)

    def __enter__(self) -> ImageBuffer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def _storage(self) -> NDArray[np.float32]:
        if self._pixels is None:
            raise RuntimeError("Image buffer has been released")
        return self._pixels


def load_image(path: str | PathLike[str], *, max_pixels: int | None = None) -> ImageBuffer | None:
    """Decode an image file as float32 RGBA (values in [0, 255]).

    Returns None if the file cannot be read or decoded, or if it holds more
    than ``max_pixels`` pixels.
    """
    try:
        with Image.open(path) as img:
            width, height = img.size
            if max_pixels is not None and width * height > max_pixels:
                logger.warning("Image %s is %dx%d, exceeding the %d pixel limit", path, width, height, max_pixels)
                return None
            rgba = ImageOps.exif_transpose(img).convert("RGBA")
            pixels = np.asarray(rgba, dtype=np.float32)
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError, ValueError) as exc:
        logger.warning("Failed to decode %s: %s", path, exc)
        return None

    logger.debug("Loaded %s (%dx%d)", path, pixels.shape[1], pixels.shape[0])
    return ImageBuffer(pixels)
