"""Read-only access to the code-symbol graph.

The code graph is built by a separate indexer; documentation only needs to
resolve names mentioned in backticks and confirm that an id exists.
"""

from __future__ import annotations

import sqlite3
from typing import Optional, Protocol

from docgraph.models import CodeEntity


class CodeGraph(Protocol):
    def find_by_name(self, name: str) -> Optional[str]: ...

    def exists(self, entity_id: str) -> bool: ...

    def get(self, entity_id: str) -> Optional[CodeEntity]: ...


class SQLiteCodeGraph:
    """Code graph backed by the ``graph_entities`` table."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    def find_by_name(self, name: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT id FROM graph_entities WHERE name = ? ORDER BY id LIMIT 1", (name,)
        ).fetchone()
        return row[0] if row else None

    def exists(self, entity_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM graph_entities WHERE id = ?", (entity_id,)
        ).fetchone()
        return row is not None

    def get(self, entity_id: str) -> Optional[CodeEntity]:
        row = self._conn.execute(
            "SELECT id, name, type FROM graph_entities WHERE id = ?", (entity_id,)
        ).fetchone()
        if row is None:
            return None
        return CodeEntity(id=row[0], name=row[1], type=row[2])
