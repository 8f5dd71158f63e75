"""Explicit handle bundling everything an indexing or search call needs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from docgraph.config import AppConfig
from docgraph.embedding.encoder import Embedder, EmbeddingConfig, EmbeddingModel
from docgraph.index.code_graph import CodeGraph, SQLiteCodeGraph
from docgraph.index.storage import SQLiteGraphStore

LOGGER = logging.getLogger(__name__)


class KnowledgeContext:
    """Store, embedder and code graph with an open -> use -> close lifecycle.

    The embedding model is loaded on first use, so commands that never embed
    (status, clean) do not pay for it. Tests build a context around an
    in-memory store and a fake embedder.
    """

    def __init__(
        self,
        store: SQLiteGraphStore,
        embedder: Optional[Embedder] = None,
        *,
        config: Optional[AppConfig] = None,
        code_graph: Optional[CodeGraph] = None,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.config = config or AppConfig()
        self.code_graph: CodeGraph = code_graph or SQLiteCodeGraph(store.connection)
        self.base_dir = base_dir
        self._embedder = embedder

    @classmethod
    def open(
        cls,
        config: AppConfig | None = None,
        *,
        embedder: Embedder | None = None,
        base_dir: Path | None = None,
    ) -> "KnowledgeContext":
        config = config or AppConfig()
        db_path = config.resolve_db_path(base_dir)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        LOGGER.debug("Opening knowledge store at %s", db_path)
        return cls(SQLiteGraphStore(db_path), embedder, config=config, base_dir=base_dir)

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = EmbeddingModel(EmbeddingConfig(model_name=self.config.model_name))
        return self._embedder

    @property
    def cache_dir(self) -> Path:
        return self.config.resolve_cache_dir(self.base_dir)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "KnowledgeContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
