"""Feature extraction: raw resized grayscale pixels.

Implementations: PixelFeatureExtractor (the face crop resized to a fixed
square and flattened).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

from facematch.core.matching import FeatureVector

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facematch.core.matching import FaceRegion

PIXEL_MAX_VALUE: float = 255.0


class FeatureExtractor(Protocol):
    """Protocol for face feature extractors."""

    @property
    def output_size(self) -> int:
        """Return the length of every vector this extractor produces."""
        ...

    @property
    def max_channel_value(self) -> float:
        """Return the upper bound of a single feature component."""
        ...

    def extract(self, image: NDArray[np.uint8], region: FaceRegion) -> FeatureVector | None:
        """Extract features for one detected face.

        Args:
            image: HxW grayscale uint8 array the region was detected in.
            region: Face bounding box.

        Returns:
            A vector of ``output_size`` components, or None if the region
            holds no pixels.
        """
        ...


class PixelFeatureExtractor:
    """Resizes the face crop to ``face_size`` x ``face_size`` and flattens it."""

    def __init__(self, face_size: int = 100) -> None:
        if face_size < 1:
            raise ValueError("face_size must be positive")
        self._face_size = face_size

    @property
    def output_size(self) -> int:
        return self._face_size * self._face_size

    @property
    def max_channel_value(self) -> float:
        return PIXEL_MAX_VALUE

    def extract(self, image: NDArray[np.uint8], region: FaceRegion) -> FeatureVector | None:
        crop = image[region.y : region.y + region.height, region.x : region.x + region.width]
        if crop.size == 0:
            return None
        resized = cv2.resize(crop, (self._face_size, self._face_size))
        return FeatureVector(resized.astype(np.float64).ravel(), max_channel_value=PIXEL_MAX_VALUE)
