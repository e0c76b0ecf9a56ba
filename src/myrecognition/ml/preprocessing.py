"""Image preprocessing for ImageNet classifiers.

Turns a float32 RGBA raster into the NCHW tensor an ONNX classifier expects:
center crop at the shortest-edge resize ratio, resize of that window only,
scaling to [0, 1] and per-channel normalization.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray

IMAGENET_MEAN: tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, float, float] = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class PreprocessConfig:
    """Per-architecture input geometry and normalization."""

    resize: int = 256
    crop_size: int = 224
    mean: tuple[float, float, float] = IMAGENET_MEAN
    std: tuple[float, float, float] = IMAGENET_STD
    resample: Image.Resampling = Image.Resampling.BILINEAR


def preprocess_for_classification(image: NDArray[np.float32], config: PreprocessConfig) -> NDArray[np.float32]:
    """Prepare an RGBA raster for a classification model.

    Args:
        image: HxWx4 float32 RGBA array with channel values in [0, 255].
        config: Resize, crop and normalization parameters.

    Returns:
        1x3xCxC float32 tensor, where C is ``config.crop_size``.

    Raises:
        ValueError: If the array is not HxWx4.
    """
    if image.ndim != 3 or image.shape[2] != 4:
        raise ValueError(f"Expected HxWx4 RGBA array, got shape {image.shape}")

    rgb = np.clip(image[:, :, :3], 0.0, 255.0).astype(np.uint8)
    pil_image = Image.fromarray(rgb)

    # Crop window in source pixels; only that region is resampled.
    width, height = pil_image.size
    side = min(width, height) * min(1.0, config.crop_size / config.resize)
    left = (width - side) / 2
    top = (height - side) / 2
    cropped = pil_image.resize(
        (config.crop_size, config.crop_size),
        resample=config.resample,
        box=(left, top, left + side, top + side),
    )

    x = np.asarray(cropped, dtype=np.float32) / 255.0
    x = (x - np.asarray(config.mean, dtype=np.float32)) / np.asarray(config.std, dtype=np.float32)
    x = np.transpose(x, (2, 0, 1))  # HWC -> CHW
    return np.expand_dims(x, 0).astype(np.float32)
