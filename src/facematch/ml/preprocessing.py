"""Image decoding for detection and feature extraction."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


class ImageDecodeError(ValueError):
    """Raised when uploaded bytes cannot be turned into an image."""


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> NDArray[np.uint8]:
    """Decode raw image bytes into a grayscale uint8 array.

    Args:
        image_bytes: Raw file bytes in any format OpenCV can read.
        max_pixels: Optional upper bound on width * height.

    Returns:
        HxW grayscale uint8 numpy array.

    Raises:
        ImageDecodeError: If the data is empty, cannot be decoded, or the
            image exceeds ``max_pixels``.
    """
    if not image_bytes:
        raise ImageDecodeError("Empty image data")

    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ImageDecodeError("Could not read image file")

    height, width = image.shape[:2]
    if max_pixels is not None and height * width > max_pixels:
        raise ImageDecodeError(f"Image is {width}x{height}, exceeding the {max_pixels} pixel limit")

    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
