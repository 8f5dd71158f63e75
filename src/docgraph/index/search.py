"""Semantic search interface."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

from docgraph.context import KnowledgeContext
from docgraph.embedding.encoder import embed_query
from docgraph.embedding.similarity import cosine_similarity_matrix, from_blob
from docgraph.models import (
    CODE_DOC,
    DOC_SECTION,
    DOCUMENTS,
    CodeEntity,
    DocSearchResult,
    decode_entity,
)

LOGGER = logging.getLogger(__name__)


def _to_result(row: sqlite3.Row, similarity: float) -> DocSearchResult:
    section = decode_entity(row["type"], row["data"])
    return DocSearchResult(
        section=section,
        similarity=similarity,
        location=section.location,
        entity_type=row["type"],
    )


class DocSearcher:
    """Ranks stored sections against a natural-language query."""

    def __init__(self, context: KnowledgeContext) -> None:
        self.context = context
        self.store = context.store

    def search(
        self,
        query: str,
        *,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        file_paths: Optional[Sequence[Path | str]] = None,
        docs_only: bool = False,
        code_docs_only: bool = False,
    ) -> List[DocSearchResult]:
        """Cosine-rank DocSection/CodeDoc entities against ``query``.

        Results below ``threshold`` are dropped; at most ``limit`` are
        returned, highest similarity first. ``file_paths`` are resolved the
        same way indexed documents are, so relative paths match.
        """
        if not query or not query.strip():
            raise ValueError("Empty query")
        limit = self.context.config.search_limit if limit is None else limit
        threshold = self.context.config.search_threshold if threshold is None else threshold

        if docs_only:
            entity_types = [DOC_SECTION]
        elif code_docs_only:
            entity_types = [CODE_DOC]
        else:
            entity_types = [DOC_SECTION, CODE_DOC]

        query_vector = embed_query(self.context.embedder, query)
        if query_vector is None:
            return []

        resolved = [str(Path(path).resolve()) for path in file_paths] if file_paths else None
        rows = self.store.embedded_candidates(entity_types, resolved)
        candidates = []
        vectors = []
        for row in rows:
            vector = from_blob(row["embedding"])
            if vector.shape != query_vector.shape:
                LOGGER.debug("Skipping %s: embedding dimension %d", row["id"], vector.shape[0])
                continue
            candidates.append(row)
            vectors.append(vector)
        if not candidates:
            return []

        scores = cosine_similarity_matrix(query_vector, np.vstack(vectors))
        ranked = sorted(
            (
                (float(score), row)
                for score, row in zip(scores, candidates)
                if score >= threshold and score > 0.0
            ),
            key=lambda item: item[0],
            reverse=True,
        )
        return [_to_result(row, min(score, 1.0)) for score, row in ranked[:limit]]

    def docs_for_code(self, entity_id: str) -> List[DocSearchResult]:
        """Sections and code docs linked to a code entity by DOCUMENTS edges."""
        rows = self.store.documenting_entities(entity_id, [DOC_SECTION, CODE_DOC])
        return [_to_result(row, 1.0) for row in rows]

    def code_for_doc(self, section_id: str) -> List[CodeEntity]:
        """Code entities a section documents."""
        code_graph = self.context.code_graph
        entities: List[CodeEntity] = []
        for target in self.store.targets_of(section_id, DOCUMENTS):
            entity = code_graph.get(target)
            if entity is not None:
                entities.append(entity)
        return entities
