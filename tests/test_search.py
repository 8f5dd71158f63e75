"""Tests for semantic search interface."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from docgraph.index.indexer import DocIndexer, section_id
from docgraph.index.search import DocSearcher
from docgraph.models import CODE_DOC, DOC_SECTION, CodeDoc, CodeEntity, DocSection

AUTH = """\
# Authentication Login

Authentication login uses a password and a login token for authentication.
"""

DATABASE = """\
# Database Configuration

Database configuration sets the database host, port and configuration file.
"""


@pytest.fixture
def corpus(context, tmp_path: Path) -> dict[str, Path]:
    """Index one authentication page and one database page."""
    paths = {}
    for name, text in (("auth", AUTH), ("database", DATABASE)):
        path = tmp_path / f"{name}.md"
        path.write_text(text, encoding="utf-8")
        paths[name] = path.resolve()
        DocIndexer(context).index_document(path)
    return paths


@pytest.fixture
def code_doc(context, embedder) -> CodeDoc:
    doc = CodeDoc(
        id="codedoc-login",
        entity_id="pkg:src/auth.py:function:login",
        content="Authentication login helper that checks the password",
        summary="Log a user in",
    )
    with context.store.transaction():
        context.store.upsert_entity(CODE_DOC, doc.id, doc, embedder.embed_query(doc.content))
    return doc


class TestSearch:
    """Test DocSearcher.search ranking and filters."""

    def test_ranks_matching_section_first(self, context, corpus) -> None:
        results = DocSearcher(context).search("authentication login", threshold=0.0)

        assert results
        assert results[0].section.file_path == str(corpus["auth"])
        assert results[0].entity_type == DOC_SECTION
        assert all(0.0 < r.similarity <= 1.0 for r in results)

    def test_results_sorted_descending(self, context, corpus) -> None:
        results = DocSearcher(context).search("database login configuration", threshold=0.0)

        scores = [r.similarity for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_location_is_path_and_anchor(self, context, corpus) -> None:
        results = DocSearcher(context).search("database configuration", threshold=0.0)

        assert results[0].location == f"{corpus['database']}#database-configuration"

    def test_threshold(self, context, corpus) -> None:
        results = DocSearcher(context).search("authentication login", threshold=0.5)

        assert results
        assert all(r.similarity >= 0.5 for r in results)

    def test_threshold_above_one_returns_nothing(self, context, corpus) -> None:
        assert DocSearcher(context).search("authentication login", threshold=1.01) == []

    def test_limit(self, context, corpus) -> None:
        results = DocSearcher(context).search("authentication database", limit=1, threshold=0.0)

        assert len(results) == 1

    def test_defaults_from_config(self, context, corpus) -> None:
        context.config.search_limit = 1
        context.config.search_threshold = 0.0

        assert len(DocSearcher(context).search("authentication database")) == 1

    def test_file_paths_filter(self, context, corpus) -> None:
        results = DocSearcher(context).search(
            "database configuration", threshold=0.0, file_paths=[str(corpus["database"])]
        )

        assert results
        assert all(r.section.file_path == str(corpus["database"]) for r in results)

    def test_relative_file_paths_filter(
        self, context, corpus, tmp_path: Path, monkeypatch
    ) -> None:
        """Relative filter paths match the absolute paths stored at index time."""
        monkeypatch.chdir(tmp_path)

        results = DocSearcher(context).search(
            "database configuration", threshold=0.0, file_paths=["database.md"]
        )

        assert results
        assert {r.section.file_path for r in results} == {str(corpus["database"])}

    @pytest.mark.parametrize("query", ["", "   ", "\n"])
    def test_blank_query(self, context, query: str) -> None:
        with pytest.raises(ValueError):
            DocSearcher(context).search(query)

    def test_query_embedding_failure(self, context, corpus) -> None:
        broken = MagicMock()
        broken.embed_query.side_effect = RuntimeError("model offline")
        context._embedder = broken

        assert DocSearcher(context).search("authentication login") == []

    def test_empty_store(self, context) -> None:
        assert DocSearcher(context).search("anything") == []

    def test_dimension_mismatch_skipped(self, context, corpus) -> None:
        """Vectors from another model are ignored instead of failing."""
        stray = DocSection(
            id="doc-stray",
            file_path="/old.md",
            heading="Authentication login",
            content="authentication login",
            level=1,
            anchor="old",
        )
        with context.store.transaction():
            context.store.upsert_entity(
                DOC_SECTION, stray.id, stray, np.ones(3, dtype="float32")
            )

        results = DocSearcher(context).search("authentication login", threshold=0.0)

        assert "doc-stray" not in {r.section.id for r in results}
        assert results


class TestEntityTypeFilters:
    """Test docs_only and code_docs_only."""

    def test_mixed_results(self, context, corpus, code_doc) -> None:
        results = DocSearcher(context).search("authentication login", threshold=0.0)

        assert {r.entity_type for r in results} == {DOC_SECTION, CODE_DOC}

    def test_docs_only(self, context, corpus, code_doc) -> None:
        results = DocSearcher(context).search("authentication login", threshold=0.0, docs_only=True)

        assert results
        assert {r.entity_type for r in results} == {DOC_SECTION}

    def test_code_docs_only(self, context, corpus, code_doc) -> None:
        results = DocSearcher(context).search(
            "authentication login", threshold=0.0, code_docs_only=True
        )

        assert len(results) == 1
        assert results[0].entity_type == CODE_DOC
        assert results[0].section == code_doc
        assert results[0].location == "src/auth.py"


class TestGraphLookups:
    """Test DOCUMENTS traversal in both directions."""

    @pytest.fixture
    def linked(self, context, tmp_path: Path, add_code_entity) -> Path:
        add_code_entity("pkg:src/auth.py:function:login", "login")
        doc = tmp_path / "guide.md"
        doc.write_text(
            "# Guide\n\nThis guide explains how the service handles user sessions.\n\n"
            "## Login\n\nCall `login()` with a username and password to open a session.\n",
            encoding="utf-8",
        )
        DocIndexer(context).index_document(doc)
        return doc.resolve()

    def test_docs_for_code(self, context, linked: Path) -> None:
        results = DocSearcher(context).docs_for_code("pkg:src/auth.py:function:login")

        assert len(results) == 1
        assert results[0].similarity == 1.0
        assert results[0].location == f"{linked}#login"

    def test_docs_for_code_includes_code_docs(self, context, linked: Path, code_doc) -> None:
        with context.store.transaction():
            context.store.create_relationship(
                code_doc.id, "pkg:src/auth.py:function:login", "DOCUMENTS"
            )

        results = DocSearcher(context).docs_for_code("pkg:src/auth.py:function:login")

        assert {r.entity_type for r in results} == {DOC_SECTION, CODE_DOC}

    def test_docs_for_unknown_code(self, context, linked: Path) -> None:
        assert DocSearcher(context).docs_for_code("pkg:src/none.py:function:x") == []

    def test_code_for_doc(self, context, linked: Path) -> None:
        entities = DocSearcher(context).code_for_doc(section_id(linked, "login"))

        assert entities == [
            CodeEntity(id="pkg:src/auth.py:function:login", name="login", type="function")
        ]

    def test_code_for_undocumented_section(self, context, linked: Path) -> None:
        assert DocSearcher(context).code_for_doc(section_id(linked, "guide")) == []
