"""Face detection with OpenCV Haar cascades."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import cv2

from facematch.core.matching import FaceRegion

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"


class ClassifierLoadError(RuntimeError):
    """Raised when a cascade classifier file cannot be loaded."""


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[FaceRegion]:
        """Detect faces in an image.

        Args:
            image: HxW grayscale uint8 array.

        Returns:
            Face regions in detection order.
        """
        ...


def default_cascade_path() -> Path:
    """Return the frontal face cascade bundled with opencv-python."""
    return Path(cv2.data.haarcascades) / DEFAULT_CASCADE


class HaarCascadeDetector:
    """Pre-trained Haar cascade face detector."""

    def __init__(
        self,
        cascade_path: str | Path | None = None,
        scale_factor: float = 1.1,
        min_neighbors: int = 3,
        min_size: int = 30,
    ) -> None:
        path = Path(cascade_path) if cascade_path is not None else default_cascade_path()
        if not path.is_file():
            raise ClassifierLoadError(f"Could not find Haar cascade file: {path}")

        classifier = cv2.CascadeClassifier()
        if not classifier.load(str(path)) or classifier.empty():
            raise ClassifierLoadError(f"Could not load Haar cascade classifier: {path}")

        self._classifier = classifier
        self._model_name = path.stem
        self._scale_factor = scale_factor
        self._min_neighbors = min_neighbors
        self._min_size = (min_size, min_size)
        logger.info("Loaded face detector %s", self._model_name)

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, image: NDArray[np.uint8]) -> list[FaceRegion]:
        faces = self._classifier.detectMultiScale(
            image,
            scaleFactor=self._scale_factor,
            minNeighbors=self._min_neighbors,
            minSize=self._min_size,
        )
        return [FaceRegion(x=int(x), y=int(y), width=int(w), height=int(h)) for (x, y, w, h) in faces]
