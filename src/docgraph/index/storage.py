"""SQLite persistence for the documentation knowledge graph."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import numpy as np

from docgraph.embedding.similarity import to_blob
from docgraph.models import (
    DOC_SECTION,
    FILE,
    IN_DOC,
    EntityPayload,
    IndexRecord,
    decode_entity,
    encode_entity,
)

LOGGER = logging.getLogger(__name__)

MEMORY = ":memory:"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteGraphStore:
    """Entities, typed relationships and the two cache tables."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path if db_path == MEMORY else Path(db_path)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        if db_path != MEMORY:
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    data TEXT NOT NULL,
                    embedding BLOB,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS relationships (
                    id INTEGER PRIMARY KEY,
                    from_id TEXT NOT NULL,
                    to_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    data TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE(from_id, to_id, type),
                    FOREIGN KEY(from_id) REFERENCES entities(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_relationships_to
                    ON relationships(to_id, type)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS doc_index (
                    file_path TEXT PRIMARY KEY,
                    content_hash TEXT NOT NULL,
                    indexed_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS external_docs (
                    url TEXT PRIMARY KEY,
                    cached_path TEXT NOT NULL,
                    fetched_at TEXT NOT NULL,
                    spec_version TEXT,
                    source_type TEXT NOT NULL
                )
                """
            )
            # Owned by the code-graph indexer; created so lookups work on a fresh db
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS graph_entities (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL,
                    data TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_graph_entities_name ON graph_entities(name)"
            )

    # -- entities -----------------------------------------------------------

    def upsert_entity(
        self,
        entity_type: str,
        entity_id: str,
        payload: EntityPayload,
        embedding: Optional[np.ndarray] = None,
    ) -> None:
        """Insert or replace an entity's payload and vector.

        Must run inside a transaction. Reusing an id under another type is an
        error.
        """
        existing = self._conn.execute(
            "SELECT type FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        if existing and existing["type"] != entity_type:
            raise ValueError(
                f"Entity {entity_id!r} already exists with type {existing['type']!r}, "
                f"cannot update as {entity_type!r}"
            )

        now = utc_now()
        self._conn.execute(
            """
            INSERT INTO entities(id, type, data, embedding, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                data = excluded.data,
                embedding = excluded.embedding,
                updated_at = excluded.updated_at
            """,
            (entity_id, entity_type, encode_entity(payload), to_blob(embedding), now, now),
        )

    def entity_exists(self, entity_id: str, entity_type: str | None = None) -> bool:
        if entity_type is None:
            row = self._conn.execute(
                "SELECT 1 FROM entities WHERE id = ?", (entity_id,)
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT 1 FROM entities WHERE id = ? AND type = ?", (entity_id, entity_type)
            ).fetchone()
        return row is not None

    def get_entity(self, entity_id: str) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            "SELECT id, type, data, embedding FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()

    def delete_entities(self, entity_ids: Sequence[str]) -> int:
        for entity_id in entity_ids:
            self._conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
        return len(entity_ids)

    def count_entities(self, entity_type: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM entities WHERE type = ?", (entity_type,)
        ).fetchone()
        return int(row[0])

    def iter_entities(self, entity_type: str) -> List[sqlite3.Row]:
        return self._conn.execute(
            "SELECT id, type, data FROM entities WHERE type = ?", (entity_type,)
        ).fetchall()

    def embedded_candidates(
        self, entity_types: Sequence[str], file_paths: Optional[Sequence[str]] = None
    ) -> List[sqlite3.Row]:
        """Rows of the given types that carry an embedding."""
        sql = (
            "SELECT id, type, data, embedding FROM entities "
            f"WHERE type IN ({', '.join('?' for _ in entity_types)}) "
            "AND embedding IS NOT NULL"
        )
        params: List[str] = list(entity_types)
        if file_paths:
            sql += (
                " AND json_extract(data, '$.file_path') IN "
                f"({', '.join('?' for _ in file_paths)})"
            )
            params.extend(str(path) for path in file_paths)
        return self._conn.execute(sql, params).fetchall()

    # -- relationships ------------------------------------------------------

    def create_relationship(self, from_id: str, to_id: str, rel_type: str) -> bool:
        """Create an edge once; returns False if it already existed."""
        cursor = self._conn.execute(
            """
            INSERT OR IGNORE INTO relationships(from_id, to_id, type, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (from_id, to_id, rel_type, utc_now()),
        )
        return cursor.rowcount > 0

    def relationship_exists(self, from_id: str, to_id: str, rel_type: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM relationships WHERE from_id = ? AND to_id = ? AND type = ?",
            (from_id, to_id, rel_type),
        ).fetchone()
        return row is not None

    def sources_of(self, to_id: str, rel_type: str) -> List[str]:
        rows = self._conn.execute(
            "SELECT from_id FROM relationships WHERE to_id = ? AND type = ?",
            (to_id, rel_type),
        ).fetchall()
        return [row["from_id"] for row in rows]

    def targets_of(self, from_id: str, rel_type: str) -> List[str]:
        rows = self._conn.execute(
            "SELECT to_id FROM relationships WHERE from_id = ? AND type = ?",
            (from_id, rel_type),
        ).fetchall()
        return [row["to_id"] for row in rows]

    def sections_in_file(self, file_entity_id: str) -> List[str]:
        return self.sources_of(file_entity_id, IN_DOC)

    def documenting_entities(self, code_entity_id: str, entity_types: Sequence[str]) -> List[sqlite3.Row]:
        """Entities with a DOCUMENTS edge pointing at ``code_entity_id``."""
        return self._conn.execute(
            f"""
            SELECT e.id, e.type, e.data
            FROM entities e
            JOIN relationships r ON r.from_id = e.id
            WHERE r.to_id = ? AND r.type = 'DOCUMENTS'
              AND e.type IN ({', '.join('?' for _ in entity_types)})
            ORDER BY e.id
            """,
            (code_entity_id, *entity_types),
        ).fetchall()

    # -- doc_index cache ----------------------------------------------------

    def get_index_record(self, file_path: str) -> Optional[IndexRecord]:
        row = self._conn.execute(
            "SELECT file_path, content_hash, indexed_at FROM doc_index WHERE file_path = ?",
            (file_path,),
        ).fetchone()
        if row is None:
            return None
        return IndexRecord(
            file_path=row["file_path"],
            content_hash=row["content_hash"],
            indexed_at=row["indexed_at"],
        )

    def put_index_record(self, file_path: str, content_hash: str) -> None:
        self._conn.execute(
            """
            INSERT INTO doc_index(file_path, content_hash, indexed_at)
            VALUES (?, ?, ?)
            ON CONFLICT(file_path) DO UPDATE SET
                content_hash = excluded.content_hash,
                indexed_at = excluded.indexed_at
            """,
            (file_path, content_hash, utc_now()),
        )

    def delete_index_record(self, file_path: str) -> None:
        """Forget a file's hash so the next run re-indexes it."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM doc_index WHERE file_path = ?", (file_path,))

    # -- external_docs cache ------------------------------------------------

    def get_external_doc(self, url: str) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            """
            SELECT url, cached_path, fetched_at, spec_version, source_type
            FROM external_docs WHERE url = ?
            """,
            (url,),
        ).fetchone()

    def put_external_doc(
        self, url: str, cached_path: str, source_type: str, spec_version: Optional[str]
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO external_docs(url, cached_path, fetched_at, spec_version, source_type)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(url) DO UPDATE SET
                    cached_path = excluded.cached_path,
                    fetched_at = excluded.fetched_at,
                    spec_version = excluded.spec_version,
                    source_type = excluded.source_type
                """,
                (url, cached_path, utc_now(), spec_version, source_type),
            )

    # -- maintenance --------------------------------------------------------

    def remove_missing_files(self) -> tuple[int, int]:
        """Remove sections and index records whose files no longer exist.

        Returns ``(sections_removed, index_entries_removed)``.
        """
        sections_removed = 0
        with self.transaction() as conn:
            missing_files = set()
            for row in self.iter_entities(DOC_SECTION):
                section = decode_entity(DOC_SECTION, row["data"])
                if not Path(section.file_path).exists():
                    conn.execute("DELETE FROM entities WHERE id = ?", (row["id"],))
                    missing_files.add(section.file_path)
                    sections_removed += 1
            for row in self.iter_entities(FILE):
                file_data = decode_entity(FILE, row["data"])
                if file_data.path in missing_files or not Path(file_data.path).exists():
                    conn.execute("DELETE FROM entities WHERE id = ?", (row["id"],))

            records = conn.execute("SELECT file_path FROM doc_index").fetchall()
            stale = [row["file_path"] for row in records if not Path(row["file_path"]).exists()]
            for file_path in stale:
                conn.execute("DELETE FROM doc_index WHERE file_path = ?", (file_path,))

        return sections_removed, len(stale)
