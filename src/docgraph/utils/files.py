"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterator

DEFAULT_PATTERN = "**/*.md"


def iter_markdown_paths(root: Path, pattern: str = DEFAULT_PATTERN) -> Iterator[Path]:
    """Yield absolute file paths under ``root`` matching a glob pattern."""
    root = Path(root)
    if root.is_file():
        yield root.resolve()
        return
    for item in sorted(root.glob(pattern)):
        if item.is_file():
            yield item.resolve()


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def hash_content(content: str) -> str:
    """SHA256 of text encoded as UTF-8."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
