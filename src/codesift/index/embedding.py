"""Embedding capability for the semantic index.

Uses fastembed (ONNX-based) when it is installed; the model is loaded lazily
on first use. When fastembed is missing or the model cannot be loaded, the
embedder reports ``available = False`` and semantic indexing degrades to
``Unsupported``.

Model: BAAI/bge-small-en-v1.5  (384-dim, 67 MB, 512-token context) by default.
The vector dimension is read from the loaded model, so any fastembed model
works; ``EMBEDDING_DIMENSION_DEFAULT`` is only reported until it loads.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import numpy as np
import structlog

from codesift.config.constants import EMBEDDING_DIMENSION_DEFAULT
from codesift.core.errors import UnsupportedError

log = structlog.get_logger()


@runtime_checkable
class EmbeddingFunction(Protocol):
    """Anything that turns texts into fixed-size vectors."""

    @property
    def name(self) -> str: ...

    @property
    def dimension(self) -> int: ...

    @property
    def available(self) -> bool: ...

    def embed(self, texts: list[str]) -> np.ndarray:
        """Return a ``(len(texts), dimension)`` float32 matrix."""
        ...


def _detect_providers() -> list[str]:
    """Detect available ONNX Runtime execution providers."""
    try:
        import onnxruntime as ort  # type: ignore[import-not-found]
    except ImportError:
        return []

    available = set(ort.get_available_providers())
    providers: list[str] = []
    if "CUDAExecutionProvider" in available:
        providers.append("CUDAExecutionProvider")
    providers.append("CPUExecutionProvider")
    return providers


class FastEmbedder:
    """fastembed ``TextEmbedding`` adapter with lazy model loading."""

    def __init__(
        self,
        model_name: str = "BAAI/bge-small-en-v1.5",
        *,
        cache_dir: Path | None = None,
        batch_size: int = 64,
        dimension: int = EMBEDDING_DIMENSION_DEFAULT,
    ) -> None:
        self._model_name = model_name
        self._cache_dir = cache_dir
        self._batch_size = batch_size
        self._dimension = dimension
        self._model: Any | None = None
        self._disabled_reason: str | None = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        self._ensure_model()
        return self._dimension

    @property
    def available(self) -> bool:
        self._ensure_model()
        return self._model is not None

    def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self._dimension), dtype=np.float32)
        self._ensure_model()
        if self._model is None:
            raise UnsupportedError.embeddings(self._disabled_reason or "model unavailable")
        start = time.monotonic()
        vectors = np.array(
            list(self._model.embed(texts, batch_size=self._batch_size)),
            dtype=np.float32,
        )
        log.debug(
            "embedding.batch",
            texts=len(texts),
            elapsed_ms=round((time.monotonic() - start) * 1000),
        )
        return vectors

    def _ensure_model(self) -> None:
        """Lazy-load fastembed TextEmbedding model with GPU auto-detect."""
        if self._model is not None or self._disabled_reason is not None:
            return
        with self._lock:
            if self._model is not None or self._disabled_reason is not None:
                return
            try:
                from fastembed import TextEmbedding  # type: ignore[import-not-found]
            except ImportError:
                log.warning("embedding.fastembed_not_installed", hint="pip install fastembed")
                self._disabled_reason = "fastembed is not installed"
                return

            providers = _detect_providers()
            threads = max(1, (os.cpu_count() or 4) // 2)
            kwargs: dict[str, Any] = {"model_name": self._model_name, "threads": threads}
            if providers:
                kwargs["providers"] = providers
            if self._cache_dir is not None:
                kwargs["cache_dir"] = str(self._cache_dir)
            start = time.monotonic()
            try:
                model = TextEmbedding(**kwargs)
            except Exception as e:  # model download / ONNX runtime failures
                log.warning("embedding.model_load_failed", model=self._model_name, exc_info=True)
                self._disabled_reason = f"could not load {self._model_name}: {e}"
                return
            try:
                sample = next(iter(model.embed(["dimension"], batch_size=1)))
            except Exception as e:  # ONNX runtime failures on first inference
                log.warning("embedding.model_sample_failed", model=self._model_name, exc_info=True)
                self._disabled_reason = f"could not run {self._model_name}: {e}"
                return
            self._dimension = len(sample)
            self._model = model
            log.info(
                "embedding.model_loaded",
                model=self._model_name,
                dimension=self._dimension,
                providers=providers or ["CPUExecutionProvider"],
                threads=threads,
                elapsed_s=round(time.monotonic() - start, 2),
            )
