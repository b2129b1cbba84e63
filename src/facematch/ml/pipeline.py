"""Decode -> detect -> extract pipeline feeding the matching core."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from facematch.core.matching import LabeledFace
from facematch.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from facematch.core.matching import FaceRegion
    from facematch.ml.face_detector import FaceDetector
    from facematch.ml.feature_extractor import FeatureExtractor

logger = logging.getLogger(__name__)


class FacePipeline:
    """Turns uploaded image bytes into face regions and feature vectors.

    All methods are synchronous and CPU-bound; callers run them through the
    inference pool.
    """

    def __init__(
        self,
        detector: FaceDetector,
        extractor: FeatureExtractor,
        max_image_pixels: int | None = None,
    ) -> None:
        self.detector = detector
        self.extractor = extractor
        self._max_image_pixels = max_image_pixels

    def detect_faces(self, image_bytes: bytes) -> list[FaceRegion]:
        """Return every face region found in the image.

        Raises:
            ImageDecodeError: If the bytes are not a readable image.
        """
        image = decode_image(image_bytes, self._max_image_pixels)
        regions = self.detector.detect(image)
        logger.debug("Detected %d face(s) in %dx%d image", len(regions), image.shape[1], image.shape[0])
        return regions

    def extract_face(self, image_bytes: bytes) -> LabeledFace | None:
        """Return the first detected face with its features, or None if there is none.

        Raises:
            ImageDecodeError: If the bytes are not a readable image.
        """
        image = decode_image(image_bytes, self._max_image_pixels)
        regions = self.detector.detect(image)
        if not regions:
            logger.debug("No face detected")
            return None

        region = regions[0]
        features = self.extractor.extract(image, region)
        if features is None:
            logger.warning("Feature extraction produced no data for region %s", region)
            return None
        return LabeledFace(features=features, region=region)
