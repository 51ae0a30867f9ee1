"""Haar Cascade face detector."""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..errors import DetectionUnavailable
from .base import BaseFaceDetector
from .types import DetectedFace

logger = logging.getLogger(__name__)

CASCADE_FILENAME = "haarcascade_frontalface_default.xml"

SYSTEM_CASCADE_DIRS = [
    "/usr/share/opencv4/haarcascades",
    "/usr/local/share/opencv4/haarcascades",
    "/usr/share/opencv/haarcascades",
    "/usr/local/share/opencv/haarcascades",
    "/app/share/opencv4/haarcascades",
    "/opt/homebrew/share/opencv4/haarcascades",
]


def cascade_candidates(cascade_path: Optional[Path] = None) -> List[Path]:
    """Locations searched for the frontal face cascade, in order."""
    candidates = []
    if cascade_path is not None:
        candidates.append(Path(cascade_path))
    data = getattr(cv2, "data", None)
    if data is not None:
        candidates.append(Path(data.haarcascades) / CASCADE_FILENAME)
    candidates.extend(Path(d) / CASCADE_FILENAME for d in SYSTEM_CASCADE_DIRS)
    candidates.append(Path(CASCADE_FILENAME))
    return candidates


class HaarCascadeDetector(BaseFaceDetector):
    """Face detector using OpenCV Haar Cascades."""

    def __init__(
        self,
        cascade_path: Optional[Path] = None,
        scale_factor: float = 1.1,
        min_neighbors: int = 3,
        min_size: Tuple[int, int] = (30, 30),
    ):
        """Initialize Haar Cascade detector.

        Args:
            cascade_path: Preferred cascade file, searched before the defaults
            scale_factor: Scale factor for multi-scale detection
            min_neighbors: Minimum neighbors for detection
            min_size: Minimum face size to detect

        Raises:
            DetectionUnavailable: if no cascade file could be loaded
        """
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = tuple(min_size)
        self.cascade = None
        self.cascade_path = None

        for candidate in cascade_candidates(cascade_path):
            if not candidate.is_file():
                continue
            cascade = cv2.CascadeClassifier(str(candidate))
            if cascade.empty():
                logger.warning(f"Could not load Haar cascade from {candidate}")
                continue
            self.cascade = cascade
            self.cascade_path = candidate
            break

        if self.cascade is None:
            raise DetectionUnavailable(
                f"Haar cascade {CASCADE_FILENAME} not found; install the opencv data files"
            )
        logger.debug(f"Face detector using {self.cascade_path}")

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """Detect faces using Haar Cascade."""
        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image
        gray = cv2.equalizeHist(gray)

        faces = self.cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=self.min_size,
        )

        return [DetectedFace(x=int(x), y=int(y), width=int(w), height=int(h)) for (x, y, w, h) in faces]
