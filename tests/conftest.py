"""Pytest configuration and fixtures.

Fakes stand in for the camera, the face detector and the embedding model so
no device or model file is needed.
"""

import time
from typing import List, Optional

import numpy as np
import pytest

from facepass.capture import FrameSource
from facepass.config import CaptureConfig, Settings
from facepass.detection import BaseFaceDetector, DetectedFace, FaceDetector
from facepass.errors import CaptureError, EmbeddingError
from facepass.recognition import BaseEmbeddingBackend


def unit(vector) -> np.ndarray:
    """Return ``vector`` L2-normalised as float32."""
    vector = np.asarray(vector, dtype=np.float64)
    return (vector / np.linalg.norm(vector)).astype(np.float32)


def random_embedding(dim: int = 128, seed: int = 0) -> np.ndarray:
    return unit(np.random.default_rng(seed).standard_normal(dim))


def face_frame() -> np.ndarray:
    """Bright frame the fake detector reports a face in."""
    return np.full((120, 160, 3), 255, dtype=np.uint8)


def blank_frame() -> np.ndarray:
    """Dark frame with no face."""
    return np.zeros((120, 160, 3), dtype=np.uint8)


class FakeSource(FrameSource):
    """Frame source replaying a script of frames.

    ``None`` entries are failed reads. Once the script is used up the last
    entry repeats.
    """

    def __init__(
        self,
        frames: List[Optional[np.ndarray]],
        is_static: bool = False,
        open_failures: int = 0,
        read_delay: float = 0.0,
    ):
        super().__init__()
        self.frames = list(frames)
        self.is_static = is_static
        self.open_failures = open_failures
        self.read_delay = read_delay
        self.opened = 0
        self.released = 0
        self.reads = 0
        self._open = False
        self._position = 0

    def open(self):
        if self.open_failures > 0:
            self.open_failures -= 1
            raise CaptureError("fake device unavailable")
        self._open = True
        self.opened += 1

    def _read_image(self):
        if not self._open:
            return None
        if self.read_delay:
            time.sleep(self.read_delay)
        self.reads += 1
        index = min(self._position, len(self.frames) - 1)
        self._position += 1
        frame = self.frames[index]
        return None if frame is None else frame.copy()

    def release(self):
        self._open = False
        self.released += 1

    @property
    def is_open(self) -> bool:
        return self._open


class BrightFaceBackend(BaseFaceDetector):
    """Reports one face in bright frames and none in dark ones."""

    def __init__(self, boxes: Optional[List[DetectedFace]] = None):
        self.boxes = boxes or [DetectedFace(x=40, y=30, width=40, height=40)]

    def detect(self, image):
        if image.mean() > 127:
            return list(self.boxes)
        return []


class FakeExtractor(BaseEmbeddingBackend):
    """Returns a fixed embedding for every face."""

    def __init__(self, embedding: np.ndarray, fail: bool = False):
        self.embedding = unit(embedding)
        self.fail = fail
        self.calls = 0

    @property
    def name(self) -> str:
        return "fake"

    @property
    def embedding_dim(self) -> int:
        return self.embedding.size

    def extract(self, face_image):
        self.calls += 1
        if self.fail:
            raise EmbeddingError("fake extraction failure")
        return self.embedding.copy()


@pytest.fixture
def detector():
    """Face detector backed by the bright-frame fake."""
    return FaceDetector(backend=BrightFaceBackend(), padding=0.2)


@pytest.fixture
def no_detector():
    """Face detector with no backend loaded."""
    return FaceDetector(backend=None)


@pytest.fixture
def capture_config():
    """Fast capture settings for tests."""
    return CaptureConfig(
        warmup_delay=0.0,
        warmup_frames=0,
        capture_duration=0.0,
        frame_interval=0.0,
        max_read_failures=3,
        max_reconnect_attempts=2,
        reconnect_delay=0.0,
    )


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def settings(store_path, capture_config):
    """Settings pointing at a temporary store."""
    settings = Settings()
    settings.storage.path = store_path
    settings.capture = capture_config
    settings.verification.profile = "alice"
    return settings


@pytest.fixture
def alice_embedding():
    return random_embedding(128, seed=1)


@pytest.fixture
def bob_embedding():
    return random_embedding(128, seed=2)
