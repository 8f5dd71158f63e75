"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from docgraph.embedding.encoder import DEFAULT_MODEL


def _get_default_db_path() -> Path:
    """Prefer a project-local ``data/`` database, else one in the home folder."""
    local_db = Path("data/docgraph.db")
    if local_db.exists():
        return local_db
    return Path.home() / ".docgraph" / "docgraph.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL
    max_section_tokens: int = 512
    overlap_tokens: int = 50
    min_content_length: int = 50
    search_limit: int = 10
    search_threshold: float = 0.3
    cache_dir: Path = Path("data/external-docs")
    cache_ttl_days: int = 90
    batch_size: int = 50

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.overlap_tokens < 0:
            raise ValueError("overlap_tokens must be non-negative")
        if self.max_section_tokens <= 0:
            raise ValueError("max_section_tokens must be positive")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def resolve_cache_dir(self, base_dir: Path | None = None) -> Path:
        if self.cache_dir.is_absolute() or base_dir is None:
            return self.cache_dir
        return base_dir / self.cache_dir
