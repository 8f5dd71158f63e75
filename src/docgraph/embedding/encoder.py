"""Embedding model management."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that maps text to comparable fixed-length vectors."""

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray: ...

    def embed_query(self, text: str) -> np.ndarray: ...


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for query and section embeddings.

    Queries and indexed sections go through the same model so their vectors
    live in one space.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model = SentenceTransformer(self.config.model_name, device=self.config.device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded embedding model %s (dimension %d)", self.config.model_name, self.dimension
        )

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
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


def embed_texts(embedder: Embedder, texts: Sequence[str]) -> List[Optional[np.ndarray]]:
    """Embed a batch, tolerating failures.

    A failed batch is retried text by text; texts that still fail map to
    ``None`` and are stored without a vector.
    """
    if not texts:
        return []
    try:
        vectors = embedder.embed(list(texts))
        if len(vectors) != len(texts):
            raise ValueError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return [np.asarray(vector, dtype="float32") for vector in vectors]
    except Exception as exc:
        logger.warning("Batch embedding failed (%s), falling back to single texts", exc)

    results: List[Optional[np.ndarray]] = []
    for text in texts:
        try:
            results.append(np.asarray(embedder.embed_query(text), dtype="float32"))
        except Exception as exc:
            logger.warning("Embedding failed, storing section without vector: %s", exc)
            results.append(None)
    return results


def embed_query(embedder: Embedder, text: str) -> Optional[np.ndarray]:
    try:
        return np.asarray(embedder.embed_query(text), dtype="float32")
    except Exception as exc:
        logger.warning("Query embedding failed: %s", exc)
        return None
