"""Face detector wrapper used by capture and enrollment."""

import logging
from typing import List, Optional

import numpy as np

from ..config import DetectionConfig
from ..errors import DetectionUnavailable
from .base import BaseFaceDetector
from .haar import HaarCascadeDetector
from .types import DetectedFace

logger = logging.getLogger(__name__)


class FaceDetector:
    """Finds and crops the primary face in a frame.

    A detector whose backend failed to load stays usable as an object but
    reports ``available = False``; ``crop_largest_face`` then raises
    DetectionUnavailable so each caller applies its own policy.
    """

    def __init__(self, backend: Optional[BaseFaceDetector] = None, padding: float = 0.2):
        self.backend = backend
        self.padding = padding

    @classmethod
    def from_config(cls, config: DetectionConfig) -> "FaceDetector":
        """Load the Haar backend, degrading to an unavailable detector."""
        try:
            backend = HaarCascadeDetector(
                cascade_path=config.cascade_path,
                scale_factor=config.scale_factor,
                min_neighbors=config.min_neighbors,
                min_size=config.min_size,
            )
        except DetectionUnavailable as e:
            logger.warning(f"Face detection disabled: {e}")
            backend = None
        return cls(backend=backend, padding=config.padding)

    @property
    def available(self) -> bool:
        return self.backend is not None

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """Detect faces in an image."""
        if self.backend is None:
            raise DetectionUnavailable("No face detector loaded")
        return self.backend.detect(image)

    def largest_face(self, image: np.ndarray) -> Optional[DetectedFace]:
        """Return the largest detected face, or None."""
        faces = self.detect(image)
        if not faces:
            return None
        if len(faces) > 1:
            logger.debug(f"{len(faces)} faces detected, using largest")
        return max(faces, key=lambda f: f.area)

    def crop_largest_face(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Crop the largest face with padding.

        Returns:
            Cropped copy of the face region, or None if no face was found

        Raises:
            DetectionUnavailable: if no detector backend is loaded
        """
        face = self.largest_face(image)
        if face is None:
            return None

        height, width = image.shape[:2]
        box = face.padded(self.padding, width, height)
        if box.width <= 0 or box.height <= 0:
            return None
        return image[box.y:box.y + box.height, box.x:box.x + box.width].copy()
