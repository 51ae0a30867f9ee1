"""Capture protocol: warmup, time-boxed accumulation, retry, reconnection.

Both modes poll a cancellation event once per loop iteration and always
release the source before returning.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from ..config import CaptureConfig
from ..detection import FaceDetector
from ..errors import CaptureError, DetectionUnavailable
from .source import Frame, FrameSource

logger = logging.getLogger(__name__)

# Pause between discarded warmup reads
WARMUP_READ_PAUSE = 0.03


class CaptureOutcome(Enum):
    """How a capture run ended."""
    FACES = "faces"
    # No face detected; the last raw frame stands in for one
    FALLBACK = "fallback"
    NO_FACE = "no-face"
    CANCELLED = "cancelled"


@dataclass
class CaptureResult:
    """Images collected by one capture run."""
    outcome: CaptureOutcome
    faces: List[np.ndarray] = field(default_factory=list)
    total_frames: int = 0
    frames_with_faces: int = 0

    @property
    def cancelled(self) -> bool:
        return self.outcome is CaptureOutcome.CANCELLED

    @property
    def has_faces(self) -> bool:
        return bool(self.faces)


class CaptureSession:
    """One capture run against a frame source.

    Args:
        source: Frame source; opened by the session and released on exit
        detector: Face detector used to crop frames
        config: Timing and reconnection settings
        cancel: Cooperative cancellation flag, polled once per iteration
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(
        self,
        source: FrameSource,
        detector: FaceDetector,
        config: Optional[CaptureConfig] = None,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.detector = detector
        self.config = config or CaptureConfig()
        self.cancel = cancel or threading.Event()
        self.clock = clock

        self.total_frames = 0
        self.frames_with_faces = 0
        self._consecutive_failures = 0
        self._detector_warned = False

    # -------------------------------------------------------------------------
    # Public modes
    # -------------------------------------------------------------------------

    def accumulate(
        self,
        warmup: Optional[float] = None,
        duration: Optional[float] = None,
        interval: Optional[float] = None,
        fallback: bool = True,
    ) -> CaptureResult:
        """Collect every face crop seen during a time window.

        Args:
            warmup: Seconds of frames to discard first (config default if None)
            duration: Window length in seconds; <= 0 stops after one good frame
            interval: Pause between reads in seconds
            fallback: When no face was found at all, return the last raw
                frame instead of nothing

        Returns:
            CaptureResult; CANCELLED carries whatever was collected so far

        Raises:
            CaptureError: if the source cannot be opened or reconnected
        """
        warmup = self.config.warmup_delay if warmup is None else warmup
        duration = self.config.capture_duration if duration is None else duration
        interval = self.config.frame_interval if interval is None else interval

        faces: List[np.ndarray] = []
        last_frame: Optional[np.ndarray] = None

        try:
            self._open()
            if not self.source.is_static:
                self._warmup(warmup)

            deadline = self.clock() + duration
            while True:
                if self.cancel.is_set():
                    return self._result(CaptureOutcome.CANCELLED, faces)

                frame = self._read()
                if frame is not None:
                    self.total_frames += 1
                    last_frame = frame.image
                    face = self._crop(frame.image)
                    if face is not None:
                        faces.append(face)
                        self.frames_with_faces += 1
                    if duration <= 0 or self.source.is_static:
                        break

                if duration > 0 and self.clock() >= deadline:
                    break
                if self._pause(interval):
                    return self._result(CaptureOutcome.CANCELLED, faces)
        finally:
            self.source.release()

        logger.debug(
            f"Capture finished: {self.frames_with_faces}/{self.total_frames} frames with faces"
        )

        if faces:
            return self._result(CaptureOutcome.FACES, faces)
        if fallback and last_frame is not None:
            logger.info("No face detected, using the last full frame")
            return self._result(CaptureOutcome.FALLBACK, [last_frame])
        return self._result(CaptureOutcome.NO_FACE, [])

    def until_face(self, interval: Optional[float] = None) -> CaptureResult:
        """Read frames until one contains a face or the run is cancelled.

        There is no timeout; cancellation is the only other way out. A static
        source is tried once.

        Raises:
            DetectionUnavailable: if no face detector is loaded
            CaptureError: if the source cannot be opened or reconnected
        """
        if not self.detector.available:
            raise DetectionUnavailable("Face detection is required to capture an enrollment sample")

        interval = self.config.frame_interval if interval is None else interval

        try:
            self._open()
            if not self.source.is_static:
                self._warmup(self.config.warmup_delay)

            while True:
                if self.cancel.is_set():
                    return self._result(CaptureOutcome.CANCELLED, [])

                frame = self._read()
                if frame is not None:
                    self.total_frames += 1
                    face = self.detector.crop_largest_face(frame.image)
                    if face is not None:
                        self.frames_with_faces += 1
                        return self._result(CaptureOutcome.FACES, [face])
                    if self.source.is_static:
                        return self._result(CaptureOutcome.NO_FACE, [])
                    logger.debug("No face in frame, retrying")

                if self._pause(interval):
                    return self._result(CaptureOutcome.CANCELLED, [])
        finally:
            self.source.release()

    # -------------------------------------------------------------------------
    # Loop primitives
    # -------------------------------------------------------------------------

    def _result(self, outcome: CaptureOutcome, faces: List[np.ndarray]) -> CaptureResult:
        if outcome is CaptureOutcome.CANCELLED:
            logger.info("Capture cancelled")
        return CaptureResult(
            outcome=outcome,
            faces=faces,
            total_frames=self.total_frames,
            frames_with_faces=self.frames_with_faces,
        )

    def _open(self):
        self.source.open()
        self._consecutive_failures = 0

    def _pause(self, seconds: float) -> bool:
        """Sleep, waking early on cancellation. Returns True if cancelled."""
        if seconds <= 0:
            return self.cancel.is_set()
        return self.cancel.wait(seconds)

    def _warmup(self, seconds: float):
        """Discard frames while the sensor's auto-exposure settles."""
        if seconds > 0:
            deadline = self.clock() + seconds
            while self.clock() < deadline:
                self._read()
                if self._pause(WARMUP_READ_PAUSE):
                    return
        else:
            for _ in range(self.config.warmup_frames):
                if self.cancel.is_set():
                    return
                self._read()

    def _read(self) -> Optional[Frame]:
        """Read one frame, reconnecting after too many consecutive failures."""
        frame = self.source.read()
        if frame is not None:
            self._consecutive_failures = 0
            return frame

        self._consecutive_failures += 1
        logger.debug(f"Frame read failed ({self._consecutive_failures} in a row)")
        if self._consecutive_failures > self.config.max_read_failures:
            self._reconnect()
        return None

    def _reconnect(self):
        attempts = self.config.max_reconnect_attempts
        for attempt in range(1, attempts + 1):
            logger.warning(f"Frame source lost, reconnecting (attempt {attempt}/{attempts})")
            self.source.release()
            if self._pause(self.config.reconnect_delay):
                return
            try:
                self._open()
            except CaptureError as e:
                logger.warning(f"Reconnect failed: {e}")
                continue
            logger.info("Frame source reconnected")
            return

        raise CaptureError(f"Frame source unavailable after {attempts} reconnect attempts")

    def _crop(self, image: np.ndarray) -> Optional[np.ndarray]:
        try:
            return self.detector.crop_largest_face(image)
        except DetectionUnavailable as e:
            if not self._detector_warned:
                logger.warning(f"{e}; frames will not be cropped")
                self._detector_warned = True
            return None
