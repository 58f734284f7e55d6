"""Embedding model management."""

from __future__ import annotations

import logging
import platform
import sys
from dataclasses import dataclass
from typing import Iterable, Literal, Protocol, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

DEFAULT_MODEL = "google/embeddinggemma-300m"
DEFAULT_DIMENSION = 256

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns text into fixed-dimension vectors."""

    dimension: int

    def embed(self, texts: Sequence[str]) -> np.ndarray: ...

    def embed_query(self, text: str) -> np.ndarray: ...


def _check_gpu_type() -> str | None:
    """Return "cuda", "rocm" or "mps" when torch sees a GPU, else None."""
    try:
        import torch
    except ImportError:
        logger.debug("PyTorch not available for GPU detection")
        return None

    if torch.cuda.is_available():
        logger.debug("CUDA GPU detected: %s", torch.cuda.get_device_name(0))
        return "cuda"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        logger.debug("Apple MPS GPU detected")
        return "mps"
    if getattr(torch.version, "hip", None) is not None:
        logger.debug("AMD ROCm GPU detected")
        return "rocm"
    return None


def _check_onnx_providers() -> list[str]:
    try:
        import onnxruntime as ort
    except ImportError:
        return []
    return ort.get_available_providers()


def detect_optimal_backend() -> tuple[Literal["torch", "onnx"], str | None]:
    """Pick a SentenceTransformer backend for this machine.

    Returns:
        ``(backend_name, onnx_model_file)``; the model file is only set for
        the quantized Apple Silicon build.
    """
    try:
        gpu_type = _check_gpu_type()
        onnx_providers = _check_onnx_providers()

        if sys.platform == "darwin" and (
            platform.processor() == "arm" or platform.machine() == "arm64"
        ):
            logger.info("Detected Apple Silicon - using ONNX with ARM64 quantized model")
            return ("onnx", "onnx/model_qint8_arm64.onnx")

        if gpu_type == "cuda" and "CUDAExecutionProvider" in onnx_providers:
            logger.info("Detected NVIDIA GPU with CUDA - using ONNX with CUDA acceleration")
            return ("onnx", None)

        if gpu_type == "rocm" and "ROCMExecutionProvider" in onnx_providers:
            logger.info("Detected AMD GPU with ROCm - using ONNX with ROCm acceleration")
            return ("onnx", None)

        if onnx_providers:
            logger.info(
                "Using ONNX backend on %s (providers: %s)",
                sys.platform,
                ", ".join(onnx_providers),
            )
            return ("onnx", None)

        logger.info("ONNX not available, using PyTorch backend on %s", sys.platform)
        return ("torch", None)
    except Exception as exc:
        logger.warning("Failed to detect optimal backend: %s, falling back to PyTorch", exc)
        return ("torch", None)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    dimension: int = DEFAULT_DIMENSION
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] | None = None
    onnx_model_file: str | None = None
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` producing D-dimensional vectors.

    Matryoshka-trained models are truncated to ``config.dimension`` so every
    vector handed to the store has the index's fixed width.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()

        if self.config.backend is None:
            self.config.backend, self.config.onnx_model_file = detect_optimal_backend()

        try:
            self._model = self._load_model()
        except Exception as exc:
            if self.config.backend == "torch":
                raise
            logger.warning(
                "Failed to load model with backend '%s': %s. Falling back to PyTorch.",
                self.config.backend,
                exc,
            )
            self.config.backend = "torch"
            self.config.onnx_model_file = None
            self._model = self._load_model()

        self.dimension = int(self._model.get_sentence_embedding_dimension())
        if self.dimension != self.config.dimension:
            raise ValueError(
                f"Model {self.config.model_name} produces {self.dimension}-d vectors, "
                f"expected {self.config.dimension}"
            )
        logger.info(
            "Loaded %s (backend: %s, dimension: %d)",
            self.config.model_name,
            self.config.backend,
            self.dimension,
        )

    def _load_model(self) -> SentenceTransformer:
        model_kwargs = {}
        if self.config.backend == "onnx" and self.config.onnx_model_file:
            model_kwargs["file_name"] = self.config.onnx_model_file

        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
            truncate_dim=self.config.dimension,
            model_kwargs=model_kwargs or None,
        )

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        if not sentences:
            return np.empty((0, self.dimension), dtype="float32")
        embeddings = self._model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return self.embed([text])[0]
