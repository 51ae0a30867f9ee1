"""Frame sources: camera devices and static images."""

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from ..config import CameraConfig
from ..errors import CaptureError

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".pgm", ".ppm", ".tif", ".tiff", ".webp"}
STREAM_PREFIXES = ("rtsp://", "http://", "https://")

_VIDEO_NODE = re.compile(r"^/dev/video(\d+)$")


@dataclass
class Frame:
    """A captured frame with metadata."""
    image: np.ndarray
    timestamp: float
    frame_number: int

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @property
    def width(self) -> int:
        return self.image.shape[1]


class FrameSource(ABC):
    """Something frames can be read from: open, read, release."""

    #: True when every read returns the same picture
    is_static = False

    def __init__(self):
        self._frame_count = 0

    @abstractmethod
    def open(self):
        """Open the source.

        Raises:
            CaptureError: if the source cannot be opened
        """

    @abstractmethod
    def _read_image(self) -> Optional[np.ndarray]:
        pass

    @abstractmethod
    def release(self):
        """Release the underlying handle. Safe to call more than once."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    def read(self) -> Optional[Frame]:
        """Read one frame.

        Returns:
            Frame object or None if the read failed
        """
        image = self._read_image()
        if image is None or image.size == 0:
            return None
        self._frame_count += 1
        return Frame(image=image, timestamp=time.time(), frame_number=self._frame_count)

    @property
    def frame_count(self) -> int:
        """Get total frames read."""
        return self._frame_count

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class CameraSource(FrameSource):
    """V4L2 camera, numeric device index or network stream."""

    def __init__(self, device: Union[int, str] = "/dev/video0", config: Optional[CameraConfig] = None):
        super().__init__()
        self.device = device
        self.config = config or CameraConfig()
        self._capture = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"CameraSource({self.device!r})"

    def _candidates(self):
        device = self.device
        if isinstance(device, str) and device.isdigit():
            device = int(device)

        if isinstance(device, str) and device.startswith(STREAM_PREFIXES):
            yield "stream", lambda: cv2.VideoCapture(device)
            return

        yield "v4l2", lambda: cv2.VideoCapture(device, cv2.CAP_V4L2)
        yield "default", lambda: cv2.VideoCapture(device)

        if isinstance(device, str):
            match = _VIDEO_NODE.match(device)
            if match:
                index = int(match.group(1))
                yield "index", lambda: cv2.VideoCapture(index, cv2.CAP_V4L2)

    def open(self):
        with self._lock:
            if self._capture is not None:
                return

            for backend, factory in self._candidates():
                try:
                    capture = factory()
                except cv2.error as e:
                    logger.debug(f"Camera {self.device} via {backend} failed: {e}")
                    continue
                if capture.isOpened():
                    self._apply_defaults(capture)
                    self._capture = capture
                    logger.info(f"Opened camera {self.device} ({backend})")
                    return
                capture.release()

            raise CaptureError(f"Failed to open camera device {self.device}")

    def _apply_defaults(self, capture):
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        capture.set(cv2.CAP_PROP_FPS, self.config.fps)
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    def _read_image(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._capture is None:
                return None
            try:
                ret, image = self._capture.read()
            except cv2.error as e:
                logger.warning(f"Error reading frame from {self.device}: {e}")
                return None
        return image if ret else None

    def release(self):
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.debug(f"Released camera {self.device}")

    @property
    def is_open(self) -> bool:
        return self._capture is not None


class ImageSource(FrameSource):
    """A single image file, returned by every read."""

    is_static = True

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self._image: Optional[np.ndarray] = None

    def __repr__(self) -> str:
        return f"ImageSource({str(self.path)!r})"

    def open(self):
        if self._image is not None:
            return
        image = cv2.imread(str(self.path))
        if image is None:
            raise CaptureError(f"Could not read image {self.path}")
        self._image = image
        logger.debug(f"Loaded image {self.path} ({image.shape[1]}x{image.shape[0]})")

    def _read_image(self) -> Optional[np.ndarray]:
        if self._image is None:
            return None
        return self._image.copy()

    def release(self):
        self._image = None

    @property
    def is_open(self) -> bool:
        return self._image is not None


def is_image_path(spec: str) -> bool:
    """Guess whether ``spec`` names an image file rather than a camera."""
    if spec.startswith("/dev/") or spec.startswith(STREAM_PREFIXES) or spec.isdigit():
        return False
    path = Path(spec).expanduser()
    return path.suffix.lower() in IMAGE_SUFFIXES or path.is_file()


def open_source(spec: Union[int, str], camera: Optional[CameraConfig] = None) -> FrameSource:
    """Create (but do not open) the source named by ``spec``.

    Args:
        spec: Device node, numeric index, stream URL or image file path
        camera: Camera settings applied to device sources
    """
    if isinstance(spec, int):
        return CameraSource(spec, camera)
    if is_image_path(spec):
        return ImageSource(Path(spec).expanduser())
    return CameraSource(spec, camera)
