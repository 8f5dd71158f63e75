"""Shared fixtures: a deterministic embedder and a throwaway knowledge store."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np
import pytest

from docgraph.config import AppConfig
from docgraph.context import KnowledgeContext
from docgraph.index.storage import SQLiteGraphStore

_TOKEN = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """Bag-of-words embedder: each token bumps one bucket picked by md5.

    Vectors are non-negative, so cosine similarity never drops below zero and
    texts sharing words score higher than texts that do not.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension
        self.batches: list[list[str]] = []

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype="float32")
        for token in _TOKEN.findall(text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        texts = list(texts)
        self.batches.append(texts)
        return np.vstack([self._vector(text) for text in texts])

    def embed_query(self, text: str) -> np.ndarray:
        return self._vector(text)


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def context(tmp_path: Path, embedder: HashingEmbedder):
    """Knowledge context over a temporary database."""
    config = AppConfig(db_path=tmp_path / "test.db", cache_dir=tmp_path / "external-docs")
    store = SQLiteGraphStore(config.db_path)
    ctx = KnowledgeContext(store, embedder, config=config, base_dir=tmp_path)
    yield ctx
    ctx.close()


@pytest.fixture
def add_code_entity(context: KnowledgeContext):
    """Register symbols the way the code-graph indexer would."""

    def _add(entity_id: str, name: str, kind: str = "function") -> None:
        with context.store.transaction() as conn:
            conn.execute(
                "INSERT INTO graph_entities(id, name, type) VALUES (?, ?, ?)",
                (entity_id, name, kind),
            )

    return _add
