"""Frame acquisition.

Contains:
- Frame sources (camera devices, static images)
- CaptureSession: warmup, accumulation, retry and reconnection
"""

from .session import CaptureOutcome, CaptureResult, CaptureSession
from .source import CameraSource, Frame, FrameSource, ImageSource, open_source

__all__ = [
    "CameraSource",
    "CaptureOutcome",
    "CaptureResult",
    "CaptureSession",
    "Frame",
    "FrameSource",
    "ImageSource",
    "open_source",
]
