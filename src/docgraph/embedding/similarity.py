"""Vector helpers for semantic search."""

from __future__ import annotations

import sqlite3
from typing import Optional

import numpy as np


def to_blob(vector: Optional[np.ndarray]) -> Optional[sqlite3.Binary]:
    if vector is None:
        return None
    return sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes())


def from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="float32")


def cosine_similarity_matrix(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between ``query`` and each row of ``matrix``."""
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    scores = np.zeros(matrix.shape[0], dtype="float64")
    nonzero = denom > 0
    scores[nonzero] = (matrix[nonzero] @ query) / denom[nonzero]
    return np.clip(scores, -1.0, 1.0)
