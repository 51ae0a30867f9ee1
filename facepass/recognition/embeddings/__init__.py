"""Face embedding backends."""

from .base import BaseEmbeddingBackend
from .onnx_backend import OnnxEmbeddingBackend

__all__ = ["BaseEmbeddingBackend", "OnnxEmbeddingBackend"]
