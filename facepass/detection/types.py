"""Detected face data type."""

from dataclasses import dataclass
from typing import Tuple


@dataclass
class DetectedFace:
    """Represents a detected face bounding box."""

    x: int
    y: int
    width: int
    height: int

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        """Return bounding box as (x, y, w, h)."""
        return (self.x, self.y, self.width, self.height)

    @property
    def area(self) -> int:
        """Return area of bounding box."""
        return self.width * self.height

    def padded(self, padding: float, frame_width: int, frame_height: int) -> "DetectedFace":
        """Grow the box by ``padding`` of its size on each side, clamped to the frame."""
        pad_x = int(self.width * padding)
        pad_y = int(self.height * padding)
        x = max(0, self.x - pad_x)
        y = max(0, self.y - pad_y)
        right = min(frame_width, self.x + self.width + pad_x)
        bottom = min(frame_height, self.y + self.height + pad_y)
        return DetectedFace(x=x, y=y, width=right - x, height=bottom - y)
