"""Face detection module.

Contains:
- HaarCascadeDetector: OpenCV Haar cascade backend
- FaceDetector: largest-face crop used by capture and enrollment
"""

from .base import BaseFaceDetector
from .detector import FaceDetector
from .haar import HaarCascadeDetector
from .types import DetectedFace

__all__ = [
    "BaseFaceDetector",
    "DetectedFace",
    "FaceDetector",
    "HaarCascadeDetector",
]
