"""Core DocGraph data models."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

# Entity type tags stored in ``entities.type``
DOC_SECTION = "DocSection"
CODE_DOC = "CodeDoc"
FILE = "File"

# Relationship types stored in ``relationships.type``
CHILD_OF = "CHILD_OF"
IN_DOC = "IN_DOC"
DOCUMENTS = "DOCUMENTS"
REFERENCES = "REFERENCES"

IndexStatus = Literal["indexed", "updated", "unchanged"]


class DocGraphError(Exception):
    """Base error raised by DocGraph."""


class ExternalFetchError(DocGraphError):
    """Raised when an external specification cannot be downloaded."""


@dataclass(slots=True)
class Section:
    """A heading plus its directly owned body, fresh from the parser."""

    heading: str
    content: str
    level: int
    anchor: str
    parent_anchor: Optional[str] = None
    is_chunk: bool = False
    chunk_index: Optional[int] = None


@dataclass(slots=True)
class DocSection:
    """Persisted documentation section payload."""

    id: str
    file_path: str
    heading: str
    content: str
    level: int
    anchor: str
    parent_anchor: Optional[str] = None
    is_chunk: bool = False
    chunk_index: Optional[int] = None
    source: Literal["local", "external"] = "local"
    source_url: Optional[str] = None
    source_type: Optional[str] = None
    spec_version: Optional[str] = None

    @property
    def location(self) -> str:
        return f"{self.file_path}#{self.anchor}" if self.anchor else self.file_path


@dataclass(slots=True)
class FileData:
    path: str


@dataclass(slots=True)
class CodeDoc:
    """Documentation extracted from code comments by the code-graph subsystem."""

    id: str
    entity_id: str
    content: str
    summary: Optional[str] = None

    @property
    def location(self) -> str:
        # entity ids look like ``package:filePath:type:name``
        parts = self.entity_id.split(":")
        return parts[1] if len(parts) > 1 else "unknown"


EntityPayload = Union[DocSection, CodeDoc, FileData]

_PAYLOAD_TYPES = {
    DOC_SECTION: DocSection,
    CODE_DOC: CodeDoc,
    FILE: FileData,
}


def encode_entity(payload: EntityPayload) -> str:
    """Serialize an entity payload for the ``entities.data`` column."""
    return json.dumps(asdict(payload), ensure_ascii=True)


def decode_entity(entity_type: str, data: str | Dict[str, Any]) -> EntityPayload:
    """Rebuild the typed payload for a stored entity row.

    Unknown keys are dropped so rows written by newer versions still load.
    """
    try:
        cls = _PAYLOAD_TYPES[entity_type]
    except KeyError as exc:
        raise ValueError(f"Unknown entity type: {entity_type}") from exc
    raw = json.loads(data) if isinstance(data, str) else dict(data)
    known = set(cls.__dataclass_fields__)
    return cls(**{key: value for key, value in raw.items() if key in known})


@dataclass(slots=True)
class CodeEntity:
    id: str
    name: str
    type: str


@dataclass(slots=True)
class DocSearchResult:
    section: Union[DocSection, CodeDoc]
    similarity: float
    location: str
    entity_type: str


@dataclass(slots=True)
class IndexResult:
    status: IndexStatus
    sections_indexed: int = 0
    linked_to_code: int = 0
    cross_refs_created: int = 0


@dataclass(slots=True)
class IndexFailure:
    path: Path
    error: str


@dataclass(slots=True)
class DirectoryIndexResult:
    files_indexed: int = 0
    files_skipped: int = 0
    total_sections: int = 0
    failures: List[IndexFailure] = field(default_factory=list)
    processed_files: List[Path] = field(default_factory=list)

    @property
    def files_failed(self) -> int:
        return len(self.failures)

    def record(self, path: Path, result: IndexResult) -> None:
        if result.status == "unchanged":
            self.files_skipped += 1
        else:
            self.files_indexed += 1
            self.total_sections += result.sections_indexed
        self.processed_files.append(path)

    def record_failure(self, path: Path, error: Exception | str) -> None:
        self.failures.append(IndexFailure(path=path, error=str(error)))
        self.processed_files.append(path)


@dataclass(slots=True)
class IndexRecord:
    """Row of the ``doc_index`` cache table."""

    file_path: str
    content_hash: str
    indexed_at: str
    section_count: int = 0


@dataclass(slots=True)
class ExternalDocSpec:
    """Where to fetch an external specification and how to label it."""

    url: str
    source_type: str
    spec_version: Optional[str] = None

    @property
    def cache_stem(self) -> str:
        if self.spec_version:
            return f"{self.source_type}-{self.spec_version}"
        return self.source_type
