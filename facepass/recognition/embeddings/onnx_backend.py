"""ONNX Runtime face embedding backend."""

import logging
from pathlib import Path
from typing import Sequence, Tuple, Union

import cv2
import numpy as np

from ...config import ModelConfig
from ...errors import EmbeddingError
from .base import BaseEmbeddingBackend

logger = logging.getLogger(__name__)


class OnnxEmbeddingBackend(BaseEmbeddingBackend):
    """Image-to-embedding model exported to ONNX.

    The face crop is converted to RGB, resized to ``input_size``, scaled to
    [0, 1] and normalised per channel before inference. The model output is
    flattened and L2-normalised.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        input_size: Tuple[int, int] = (224, 224),
        mean: Sequence[float] = (0.485, 0.456, 0.406),
        std: Sequence[float] = (0.229, 0.224, 0.225),
    ):
        """Load the model.

        Args:
            model_path: Path to the .onnx model file
            input_size: Network input (width, height)
            mean: Per-channel mean, RGB order
            std: Per-channel standard deviation, RGB order

        Raises:
            EmbeddingError: if the model file is missing or cannot be loaded
        """
        self.model_path = Path(model_path)
        self.input_size = tuple(input_size)
        self._mean = np.asarray(mean, dtype=np.float32).reshape(1, 1, 3)
        self._std = np.asarray(std, dtype=np.float32).reshape(1, 1, 3)

        if not self.model_path.is_file():
            raise EmbeddingError(f"Model file not found: {self.model_path}")

        try:
            import onnxruntime as ort

            self._session = ort.InferenceSession(
                str(self.model_path), providers=["CPUExecutionProvider"]
            )
        except Exception as e:
            raise EmbeddingError(f"Failed to load model {self.model_path}: {e}") from e

        self._input_name = self._session.get_inputs()[0].name
        self._dim = self._probe_dimension()
        logger.info(f"Loaded embedding model from {self.model_path} ({self._dim}D)")

    @property
    def name(self) -> str:
        return "onnx"

    @property
    def embedding_dim(self) -> int:
        return self._dim

    def _probe_dimension(self) -> int:
        shape = self._session.get_outputs()[0].shape
        dims = [d for d in shape[1:] if isinstance(d, int)]
        if dims and len(dims) == len(shape) - 1:
            return int(np.prod(dims))
        # Dynamic output shape: run once on a blank image
        blank = np.zeros((self.input_size[1], self.input_size[0], 3), dtype=np.uint8)
        return int(self.extract(blank).size)

    def preprocess(self, face_image: np.ndarray) -> np.ndarray:
        """Convert a BGR crop to a normalised NCHW float32 tensor."""
        if face_image.ndim == 2:
            face_image = cv2.cvtColor(face_image, cv2.COLOR_GRAY2BGR)
        rgb = cv2.cvtColor(face_image, cv2.COLOR_BGR2RGB)
        resized = cv2.resize(rgb, self.input_size)
        scaled = resized.astype(np.float32) / 255.0
        normalised = (scaled - self._mean) / self._std
        return np.ascontiguousarray(normalised.transpose(2, 0, 1)[np.newaxis])

    def extract(self, face_image: np.ndarray) -> np.ndarray:
        """Extract a unit-norm embedding.

        Raises:
            EmbeddingError: if preprocessing or inference fails
        """
        if face_image is None or face_image.size == 0:
            raise EmbeddingError("Empty face image")

        try:
            tensor = self.preprocess(face_image)
            output = self._session.run(None, {self._input_name: tensor})[0]
        except Exception as e:
            raise EmbeddingError(f"Embedding extraction failed: {e}") from e

        embedding = np.asarray(output, dtype=np.float32).reshape(-1)
        norm = np.linalg.norm(embedding)
        if not np.isfinite(norm) or norm < 1e-10:
            raise EmbeddingError("Model produced a zero or invalid embedding")
        return embedding / norm

    @classmethod
    def from_config(cls, config: ModelConfig) -> "OnnxEmbeddingBackend":
        """Create from model settings."""
        return cls(
            model_path=config.path,
            input_size=config.input_size,
            mean=config.mean,
            std=config.std,
        )
