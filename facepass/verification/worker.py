"""Verification worker body: capture, extract, match."""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from ..capture import CaptureSession, FrameSource, open_source
from ..config import CaptureConfig
from ..detection import FaceDetector
from ..errors import EmbeddingError
from ..recognition import BaseEmbeddingBackend, best_match
from ..storage import EmbeddingStore
from .types import StatusEvent, StatusListener, VerificationRequest, VerificationStatus

logger = logging.getLogger(__name__)

NO_ENROLLMENT = "no-enrollment"
NO_VALID_FRAMES = "no-valid-frames"
EMBEDDING_FAILED = "embedding-failed"


def similarity_message(name: str, similarity: float) -> str:
    """Detail string for a scored candidate."""
    return f"{name}:{similarity:.6f}"


def extract_embeddings(extractor: BaseEmbeddingBackend, faces: List[np.ndarray]) -> List[np.ndarray]:
    """Extract one embedding per face, skipping faces that fail."""
    embeddings = []
    for face in faces:
        try:
            embeddings.append(extractor.extract(face))
        except EmbeddingError as e:
            logger.warning(f"Skipping face: {e}")
    return embeddings


class VerificationWorker:
    """Runs one verification from capture to match decision.

    The extractor is created on first use and reused. The store is opened
    read-only for each run so every run sees the latest committed profiles.

    Args:
        store_path: Embedding store directory
        detector: Face detector shared by all runs
        extractor_factory: Creates the embedding backend
        capture_config: Reconnection and warmup settings
        source_factory: Turns a request source into a FrameSource
    """

    def __init__(
        self,
        store_path: Union[str, Path],
        detector: FaceDetector,
        extractor_factory: Callable[[], BaseEmbeddingBackend],
        capture_config: Optional[CaptureConfig] = None,
        source_factory: Callable[[str], FrameSource] = open_source,
    ):
        self.store_path = Path(store_path)
        self.detector = detector
        self.capture_config = capture_config or CaptureConfig()
        self.source_factory = source_factory

        self._extractor_factory = extractor_factory
        self._extractor: Optional[BaseEmbeddingBackend] = None
        self._extractor_lock = threading.Lock()

    @property
    def extractor(self) -> BaseEmbeddingBackend:
        """Embedding backend, loaded on first access.

        Raises:
            EmbeddingError: if the model cannot be loaded
        """
        with self._extractor_lock:
            if self._extractor is None:
                self._extractor = self._extractor_factory()
            return self._extractor

    def load_profiles(self) -> Dict[str, List[np.ndarray]]:
        """Read every profile from one snapshot of the store."""
        with EmbeddingStore(self.store_path, read_only=True) as store:
            return store.get_all()

    def run(
        self,
        request: VerificationRequest,
        cancel: threading.Event,
        on_event: Optional[StatusListener] = None,
    ) -> StatusEvent:
        """Run one verification.

        Args:
            request: Verification parameters
            cancel: Cooperative cancellation flag
            on_event: Receives the STARTED notification

        Returns:
            The terminal status event (not passed to ``on_event``)

        Raises:
            FacePassError: on capture, model or storage failure
        """
        extractor = self.extractor

        if on_event is not None:
            on_event(StatusEvent(VerificationStatus.STARTED))
        logger.info(f"Verification started on {request.source}")

        session = CaptureSession(
            self.source_factory(request.source),
            self.detector,
            self.capture_config,
            cancel,
        )
        capture = session.accumulate(request.warmup, request.duration, request.interval)
        counts = {
            "total_frames": capture.total_frames,
            "frames_with_faces": capture.frames_with_faces,
        }

        if capture.cancelled or cancel.is_set():
            return StatusEvent(VerificationStatus.CANCELLED, **counts)

        if not capture.has_faces:
            return StatusEvent(VerificationStatus.NO_FACE, NO_VALID_FRAMES, **counts)

        embeddings = extract_embeddings(extractor, capture.faces)
        if not embeddings:
            return StatusEvent(VerificationStatus.ERROR, EMBEDDING_FAILED, **counts)

        target = None if request.allow_all else request.target_name
        candidate = best_match(embeddings, self.load_profiles(), target, request.allow_all)
        if candidate is None:
            logger.info("Verification found no enrolled candidate")
            return StatusEvent(VerificationStatus.NO_MATCH, NO_ENROLLMENT, **counts)

        status = VerificationStatus.MATCH if candidate.meets(request.threshold) else VerificationStatus.NO_MATCH
        logger.info(
            f"Verification {status.value}: {candidate.name} "
            f"avg={candidate.average:.4f} max={candidate.maximum:.4f} "
            f"pairs={candidate.pairs} threshold={request.threshold:.2f}"
        )
        return StatusEvent(
            status,
            similarity_message(candidate.name, candidate.average),
            name=candidate.name,
            similarity=candidate.average,
            **counts,
        )
