"""Enrollment and one-shot query.

Enrollment needs a detected face: a full frame is never stored. Queries use
the accumulate capture mode and fall back to the full frame when no face is
detected.
"""

import logging
import threading
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from .capture import CaptureOutcome, CaptureSession, FrameSource, open_source
from .config import Settings
from .detection import FaceDetector
from .recognition import BaseEmbeddingBackend, MatchCandidate, OnnxEmbeddingBackend, best_match
from .storage import EmbeddingStore
from .verification import extract_embeddings

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentResult:
    """Result of one enrollment attempt."""
    name: str
    outcome: CaptureOutcome
    sample_count: int = 0

    @property
    def enrolled(self) -> bool:
        return self.outcome is CaptureOutcome.FACES and self.sample_count > 0


@dataclass
class QueryResult:
    """Best profile for a captured face, if any."""
    outcome: CaptureOutcome
    candidate: Optional[MatchCandidate] = None
    embeddings: int = 0
    total_frames: int = 0
    frames_with_faces: int = 0


class FacePipeline:
    """Capture, extract and store or match, for the command-line tool.

    Args:
        settings: Loaded settings
        detector: Face detector (loaded from settings if None)
        extractor_factory: Embedding backend factory (ONNX model from settings if None)
        source_factory: Frame source factory (camera or image by source name if None)
    """

    def __init__(
        self,
        settings: Settings,
        detector: Optional[FaceDetector] = None,
        extractor_factory: Optional[Callable[[], BaseEmbeddingBackend]] = None,
        source_factory: Optional[Callable[[str], FrameSource]] = None,
    ):
        self.settings = settings
        self.detector = detector or FaceDetector.from_config(settings.detection)
        self.source_factory = source_factory or partial(open_source, camera=settings.camera)
        self._extractor_factory = extractor_factory or partial(
            OnnxEmbeddingBackend.from_config, settings.model
        )
        self._extractor: Optional[BaseEmbeddingBackend] = None

    @property
    def extractor(self) -> BaseEmbeddingBackend:
        if self._extractor is None:
            self._extractor = self._extractor_factory()
        return self._extractor

    def _capture(self, source: str, cancel: Optional[threading.Event]) -> CaptureSession:
        return CaptureSession(
            self.source_factory(source),
            self.detector,
            self.settings.capture,
            cancel,
        )

    def enroll(self, source: str, name: str, cancel: Optional[threading.Event] = None) -> EnrollmentResult:
        """Capture one face and append its embedding to ``name``.

        A camera is read until a face appears or ``cancel`` is set; an image
        file is tried once.

        Raises:
            DetectionUnavailable: if no face detector is loaded
            CaptureError, EmbeddingError, StorageError, DimensionMismatch
        """
        if not name:
            raise ValueError("Profile name must not be empty")

        # Load the model before opening the camera
        extractor = self.extractor
        capture = self._capture(source, cancel).until_face()
        if capture.outcome is not CaptureOutcome.FACES:
            logger.info(f"Enrollment for {name} ended without a face ({capture.outcome.value})")
            return EnrollmentResult(name, capture.outcome)

        embedding = extractor.extract(capture.faces[0])
        with EmbeddingStore(self.settings.storage.path) as store:
            count = store.store(name, embedding)
        return EnrollmentResult(name, CaptureOutcome.FACES, count)

    def query(self, source: str, cancel: Optional[threading.Event] = None) -> QueryResult:
        """Find the best-matching profile across all enrolled users.

        Raises:
            CaptureError, EmbeddingError, StorageError
        """
        extractor = self.extractor
        capture = self._capture(source, cancel).accumulate()
        result = QueryResult(
            outcome=capture.outcome,
            total_frames=capture.total_frames,
            frames_with_faces=capture.frames_with_faces,
        )
        if capture.cancelled or not capture.has_faces:
            return result

        embeddings = extract_embeddings(extractor, capture.faces)
        result.embeddings = len(embeddings)
        if not embeddings:
            return result

        with EmbeddingStore(self.settings.storage.path, read_only=True) as store:
            profiles = store.get_all()
        result.candidate = best_match(embeddings, profiles, allow_all=True)
        return result
