"""External specification fetching, caching and indexing.

Specification pages are downloaded once and reused for ``cache_ttl_days``.
The HTML is sanitized into markdown and indexed with source attribution.
A changed specification replaces all of its previous sections.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Set

import httpx

from docgraph.context import KnowledgeContext
from docgraph.embedding.encoder import embed_texts
from docgraph.index.indexer import file_entity_id, section_id
from docgraph.ingestion.html_converter import convert_html_to_markdown
from docgraph.ingestion.markdown_parser import parse_markdown
from docgraph.models import (
    CHILD_OF,
    DOC_SECTION,
    FILE,
    IN_DOC,
    DocSection,
    ExternalDocSpec,
    ExternalFetchError,
    FileData,
    IndexResult,
)
from docgraph.utils.files import hash_content

LOGGER = logging.getLogger(__name__)

SPEC_DEFINITIONS: Dict[str, ExternalDocSpec] = {
    "ob3": ExternalDocSpec(
        url="https://www.imsglobal.org/spec/ob/v3p0/",
        source_type="ob3",
        spec_version="3.0",
    ),
    "ob2": ExternalDocSpec(
        url="https://www.imsglobal.org/sites/default/files/Badges/OBv2p0Final/index.html",
        source_type="ob2",
        spec_version="2.0",
    ),
    "vc": ExternalDocSpec(
        url="https://www.w3.org/TR/vc-data-model/",
        source_type="vc",
    ),
}


def get_spec_definition(name: str) -> Optional[ExternalDocSpec]:
    return SPEC_DEFINITIONS.get(name)


def _parse_timestamp(value: str) -> datetime:
    stamp = datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


class ExternalDocIngester:
    """Feeds third-party specification pages into the documentation graph."""

    def __init__(
        self,
        context: KnowledgeContext,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.context = context
        self.store = context.store
        self.config = context.config
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, follow_redirects=True)
        return self._client

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "ExternalDocIngester":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def cached_copy(self, spec: ExternalDocSpec) -> Optional[Path]:
        """The cached HTML for ``spec`` if it still exists and is fresh."""
        record = self.store.get_external_doc(spec.url)
        if record is None:
            return None

        age = datetime.now(timezone.utc) - _parse_timestamp(record["fetched_at"])
        if age >= timedelta(days=self.config.cache_ttl_days):
            LOGGER.info("Cached copy of %s expired (%d days old)", spec.url, age.days)
            return None

        cached_path = Path(record["cached_path"])
        if not cached_path.is_file():
            LOGGER.info("Cached file for %s is missing: %s", spec.url, cached_path)
            return None
        return cached_path

    def fetch(self, spec: ExternalDocSpec) -> Path:
        """Return a local copy of the specification, downloading when needed."""
        cached = self.cached_copy(spec)
        if cached is not None:
            LOGGER.info("Using cached external doc: %s", cached)
            return cached

        LOGGER.info("Fetching external doc from: %s", spec.url)
        try:
            response = self.client.get(spec.url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalFetchError(f"Failed to fetch {spec.url}: {exc}") from exc

        cache_dir = self.context.cache_dir
        cache_dir.mkdir(parents=True, exist_ok=True)
        cached_path = (cache_dir / f"{spec.cache_stem}.html").resolve()
        cached_path.write_text(response.text, encoding="utf-8")
        LOGGER.info("Cached external doc to: %s", cached_path)

        self.store.put_external_doc(
            spec.url, str(cached_path), spec.source_type, spec.spec_version
        )
        return cached_path

    def ingest(self, spec: ExternalDocSpec) -> IndexResult:
        """Fetch, sanitize and index a specification with source attribution."""
        html_path = self.fetch(spec)
        markdown = convert_html_to_markdown(html_path.read_text(encoding="utf-8"))

        markdown_path = html_path.with_suffix(".md")
        markdown_path.write_text(markdown, encoding="utf-8")
        file_key = str(markdown_path)

        content_hash = hash_content(markdown)
        existing = self.store.get_index_record(file_key)
        if existing and existing.content_hash == content_hash:
            LOGGER.info("External doc unchanged: %s (hash: %s)", spec.source_type, content_hash)
            return IndexResult(status="unchanged")

        sections = parse_markdown(
            markdown,
            max_tokens=self.config.max_section_tokens,
            overlap_tokens=self.config.overlap_tokens,
        )
        result = IndexResult(status="updated" if existing else "indexed")
        file_id = file_entity_id(markdown_path)
        batch_size = max(self.config.batch_size, 1)

        try:
            # full replace: specs change rarely and wholesale
            removed = self.store.delete_entities(self.store.sections_in_file(file_id))
            if removed:
                LOGGER.info("Removed %d previous sections of %s", removed, spec.source_type)
            self.store.upsert_entity(FILE, file_id, FileData(path=file_key))

            written: Set[str] = set()
            for start in range(0, len(sections), batch_size):
                batch = sections[start : start + batch_size]
                embeddings = embed_texts(
                    self.context.embedder,
                    [f"{section.heading}\n\n{section.content}" for section in batch],
                )
                for section, embedding in zip(batch, embeddings):
                    doc_id = section_id(markdown_path, section.anchor)
                    payload = DocSection(
                        id=doc_id,
                        file_path=file_key,
                        heading=section.heading,
                        content=section.content,
                        level=section.level,
                        anchor=section.anchor,
                        parent_anchor=section.parent_anchor,
                        is_chunk=section.is_chunk,
                        chunk_index=section.chunk_index,
                        source="external",
                        source_url=spec.url,
                        source_type=spec.source_type,
                        spec_version=spec.spec_version,
                    )
                    self.store.upsert_entity(DOC_SECTION, doc_id, payload, embedding)
                    self.store.create_relationship(doc_id, file_id, IN_DOC)
                    if section.parent_anchor:
                        parent_id = section_id(markdown_path, section.parent_anchor)
                        if parent_id in written:
                            self.store.create_relationship(doc_id, parent_id, CHILD_OF)
                    written.add(doc_id)
                    result.sections_indexed += 1

                # bound how long the write lock is held on large specs
                self.store.commit()
                LOGGER.info("Indexed %d/%d sections...", result.sections_indexed, len(sections))

            self.store.put_index_record(file_key, content_hash)
            self.store.commit()
        except Exception as exc:
            self.store.rollback()
            LOGGER.error("Failed to index external doc %s: %s", spec.source_type, exc)
            try:
                self.store.delete_index_record(file_key)
            except Exception as cleanup_exc:
                LOGGER.warning("Could not clear index record for %s: %s", file_key, cleanup_exc)
            raise

        LOGGER.info(
            "Indexed external doc: %s (%d sections)", spec.source_type, result.sections_indexed
        )
        return result
