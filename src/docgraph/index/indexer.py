"""Documentation indexing pipeline.

Markdown files are parsed into sections, embedded and written to the graph
store in one transaction per file. The ``doc_index`` table remembers the
content hash of every indexed file so unchanged files are skipped.
"""

from __future__ import annotations

import base64
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Set

import numpy as np

from docgraph.context import KnowledgeContext
from docgraph.embedding.encoder import embed_texts
from docgraph.index.code_graph import CodeGraph
from docgraph.ingestion.markdown_parser import parse_markdown
from docgraph.models import (
    CHILD_OF,
    DOC_SECTION,
    DOCUMENTS,
    FILE,
    IN_DOC,
    REFERENCES,
    DirectoryIndexResult,
    DocSection,
    FileData,
    IndexRecord,
    IndexResult,
    Section,
)
from docgraph.utils.files import DEFAULT_PATTERN, compute_sha256, iter_markdown_paths

LOGGER = logging.getLogger(__name__)

_CODE_REFERENCE = re.compile(r"`([a-zA-Z_][a-zA-Z0-9_]*(?:\(\))?)`")
_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+\.md(?:#[^)]*)?)\)")


def _encode_path(path: Path | str) -> str:
    return base64.urlsafe_b64encode(str(path).encode("utf-8")).decode("ascii").rstrip("=")


def file_entity_id(path: Path | str) -> str:
    return f"file-{_encode_path(path)}"


def section_id(path: Path | str, anchor: str) -> str:
    """Stable id: re-indexing the same file reproduces the same ids."""
    return f"doc-{_encode_path(path)}-{anchor}"


def extract_code_references(content: str, code_graph: CodeGraph) -> List[str]:
    """Code entity ids for every backtick mention that names a known symbol."""
    linked: List[str] = []
    for match in _CODE_REFERENCE.finditer(content):
        name = match.group(1).removesuffix("()")
        entity_id = code_graph.find_by_name(name)
        if entity_id and entity_id not in linked:
            linked.append(entity_id)
    return linked


def extract_cross_doc_links(content: str, current_path: Path) -> List[Path]:
    """Absolute paths of the markdown files that ``content`` links to relatively."""
    targets: List[Path] = []
    for match in _MARKDOWN_LINK.finditer(content):
        target = match.group(2).split("#", 1)[0]
        if "://" in target or target.startswith(("/", "mailto:")):
            continue
        resolved = (Path(current_path).parent / target).resolve()
        if resolved not in targets:
            targets.append(resolved)
    return targets


class DocIndexer:
    """Coordinates markdown parsing, embedding and graph persistence."""

    def __init__(self, context: KnowledgeContext) -> None:
        self.context = context
        self.store = context.store
        self.config = context.config

    def index_document(
        self,
        path: Path | str,
        *,
        force: bool = False,
        link_to_code: bool = True,
        min_content_length: Optional[int] = None,
        prune: bool = False,
    ) -> IndexResult:
        """Index one markdown file.

        Returns ``unchanged`` without touching the graph when the file's hash
        matches the cached one (unless ``force``). With ``prune`` the sections
        that disappeared from the file are deleted as well.
        """
        path = Path(path).resolve()
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        file_key = str(path)
        content_hash = compute_sha256(path)
        text = path.read_text(encoding="utf-8")

        existing = self.store.get_index_record(file_key)
        if not force and existing and existing.content_hash == content_hash:
            LOGGER.debug("Unchanged, skipping: %s", path)
            return IndexResult(status="unchanged")

        min_length = self.config.min_content_length if min_content_length is None else min_content_length
        sections = parse_markdown(
            text,
            max_tokens=self.config.max_section_tokens,
            overlap_tokens=self.config.overlap_tokens,
        )
        kept = [section for section in sections if len(section.content) >= min_length]
        embeddings = embed_texts(
            self.context.embedder, [f"{section.heading}\n\n{section.content}" for section in kept]
        )

        result = IndexResult(status="updated" if existing else "indexed")
        try:
            with self.store.transaction():
                self._write_document(path, kept, embeddings, result, link_to_code, prune)
                self.store.put_index_record(file_key, content_hash)
        except Exception as exc:
            LOGGER.error("Failed to index document %s: %s", path, exc)
            self._invalidate(file_key)
            raise

        LOGGER.info(
            "%s %s: %d sections, %d code links, %d cross-refs",
            result.status.capitalize(),
            path,
            result.sections_indexed,
            result.linked_to_code,
            result.cross_refs_created,
        )
        return result

    def _write_document(
        self,
        path: Path,
        sections: List[Section],
        embeddings: List[Optional[np.ndarray]],
        result: IndexResult,
        link_to_code: bool,
        prune: bool,
    ) -> None:
        file_id = file_entity_id(path)
        self.store.upsert_entity(FILE, file_id, FileData(path=str(path)))

        written: Set[str] = set()
        for section, embedding in zip(sections, embeddings):
            doc_id = section_id(path, section.anchor)
            payload = DocSection(
                id=doc_id,
                file_path=str(path),
                heading=section.heading,
                content=section.content,
                level=section.level,
                anchor=section.anchor,
                parent_anchor=section.parent_anchor,
                is_chunk=section.is_chunk,
                chunk_index=section.chunk_index,
            )
            self.store.upsert_entity(DOC_SECTION, doc_id, payload, embedding)
            written.add(doc_id)
            result.sections_indexed += 1

            self.store.create_relationship(doc_id, file_id, IN_DOC)

            if section.parent_anchor:
                parent_id = section_id(path, section.parent_anchor)
                # the parent may have been filtered out for being too short
                if parent_id in written:
                    self.store.create_relationship(doc_id, parent_id, CHILD_OF)

            if link_to_code:
                result.linked_to_code += self._link_code(doc_id, section)

            result.cross_refs_created += self._link_documents(doc_id, section, path)

        if prune:
            stale = [sid for sid in self.store.sections_in_file(file_id) if sid not in written]
            if stale:
                LOGGER.info("Pruning %d stale sections from %s", len(stale), path)
                self.store.delete_entities(stale)

    def _link_code(self, doc_id: str, section: Section) -> int:
        code_graph = self.context.code_graph
        linked = 0
        for entity_id in extract_code_references(section.content, code_graph):
            if not code_graph.exists(entity_id):
                LOGGER.debug("Skipped code ref %s in %s: entity not found", entity_id, section.heading)
                continue
            self.store.create_relationship(doc_id, entity_id, DOCUMENTS)
            linked += 1
        return linked

    def _link_documents(self, doc_id: str, section: Section, path: Path) -> int:
        created = 0
        for target in extract_cross_doc_links(section.content, path):
            if target == path:
                continue
            target_id = file_entity_id(target)
            if self.store.entity_exists(target_id, FILE):
                self.store.create_relationship(doc_id, target_id, REFERENCES)
                created += 1
            else:
                # re-indexing the source after the target completes the link
                LOGGER.debug("Cross-doc link target not indexed yet: %s -> %s", path, target)
        return created

    def _invalidate(self, file_key: str) -> None:
        try:
            self.store.delete_index_record(file_key)
        except Exception as exc:
            LOGGER.warning("Could not clear index record for %s: %s", file_key, exc)

    def index_directory(
        self,
        root: Path | str,
        *,
        pattern: str = DEFAULT_PATTERN,
        force: bool = False,
        link_to_code: bool = True,
        min_content_length: Optional[int] = None,
        prune: bool = False,
    ) -> DirectoryIndexResult:
        """Index every file under ``root`` matching ``pattern``.

        A failing file is recorded and the batch continues.
        """
        root = Path(root)
        if not root.exists():
            raise FileNotFoundError(f"Directory not found: {root}")

        paths = list(iter_markdown_paths(root, pattern))
        if not paths:
            LOGGER.warning("No files matching %s under %s", pattern, root)

        stats = DirectoryIndexResult()
        for path in paths:
            try:
                result = self.index_document(
                    path,
                    force=force,
                    link_to_code=link_to_code,
                    min_content_length=min_content_length,
                    prune=prune,
                )
            except Exception as exc:
                LOGGER.error("Failed to index %s: %s", path, exc)
                stats.record_failure(path, exc)
                continue
            stats.record(path, result)
        return stats

    def index_paths(self, paths: Iterable[Path], **options) -> DirectoryIndexResult:
        """Index a mix of files and directories into one aggregate result."""
        pattern = options.pop("pattern", DEFAULT_PATTERN)
        stats = DirectoryIndexResult()
        for path in paths:
            if Path(path).is_dir():
                sub = self.index_directory(path, pattern=pattern, **options)
                stats.files_indexed += sub.files_indexed
                stats.files_skipped += sub.files_skipped
                stats.total_sections += sub.total_sections
                stats.failures.extend(sub.failures)
                continue
            try:
                stats.record(Path(path), self.index_document(path, **options))
            except Exception as exc:
                LOGGER.error("Failed to index %s: %s", path, exc)
                stats.record_failure(Path(path), exc)
        return stats

    def index_status(self, path: Path | str) -> Optional[IndexRecord]:
        """Cached hash, timestamp and section count for an indexed file."""
        resolved = Path(path).resolve()
        record = self.store.get_index_record(str(resolved))
        if record is None:
            return None
        record.section_count = len(self.store.sections_in_file(file_entity_id(resolved)))
        return record

    def clean_orphans(self) -> tuple[int, int]:
        """Drop sections and index records of files that no longer exist."""
        removed = self.store.remove_missing_files()
        LOGGER.info("Removed %d orphaned sections and %d index entries", *removed)
        return removed
