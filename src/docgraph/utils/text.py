"""Text helpers: slugs, token estimates and overlapping chunking."""

from __future__ import annotations

import math
import re
from typing import Iterator

CHARS_PER_TOKEN = 4

_NON_WORD = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")


def slugify(text: str) -> str:
    """GitHub-style anchor: lowercase, drop punctuation, hyphenate spaces."""
    slug = _NON_WORD.sub("", text.lower().strip())
    slug = _WHITESPACE.sub("-", slug)
    return _HYPHENS.sub("-", slug)


def estimate_tokens(text: str) -> int:
    """Rough token count, ~4 characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def chunk_text(text: str, *, max_chars: int = 2048, overlap: int = 200) -> Iterator[str]:
    """Split text into overlapping character chunks.

    The window always advances by at least one character, even when
    ``overlap >= max_chars``.
    """
    if not text:
        return

    step = max(max_chars - overlap, 1)
    start = 0
    while start < len(text):
        yield text[start : start + max_chars]
        if start + max_chars >= len(text):
            break
        start += step


def chunk_lines(text: str, *, max_chars: int = 2048, overlap: int = 200) -> Iterator[str]:
    """Split text on line boundaries into chunks of at most ``max_chars``.

    The last ``overlap`` characters of each chunk are carried into the next
    one: whole lines where they fit, topped up with the end of the line before
    them. Lines longer than ``max_chars`` fall back to :func:`chunk_text`.
    Blank lines never open or close a chunk.
    """
    if not text:
        return

    buffer: list[str] = []
    size = 0
    fresh = False

    for line in text.split("\n"):
        if len(line) > max_chars:
            if fresh and _join(buffer):
                yield _join(buffer)
            buffer, size, fresh = [], 0, False
            pieces = list(chunk_text(line, max_chars=max_chars, overlap=overlap))
            yield from pieces[:-1]
            line = pieces[-1]

        added = len(line) + (1 if buffer else 0)
        if buffer and size + added > max_chars:
            if fresh and _join(buffer):
                yield _join(buffer)
            buffer, size = _overlap_tail(buffer, overlap, max_chars - len(line) - 1)
            fresh = False
            added = len(line) + (1 if buffer else 0)

        buffer.append(line)
        size += added
        fresh = True

    if fresh and _join(buffer):
        yield _join(buffer)


def _join(lines: list[str]) -> str:
    return "\n".join(lines).strip("\n")


def _overlap_tail(lines: list[str], overlap: int, budget: int) -> tuple[list[str], int]:
    """Trailing text of ``lines`` totalling at most ``min(overlap, budget)`` characters."""
    limit = min(overlap, budget)
    tail: list[str] = []
    size = 0
    start = len(lines)
    for line in reversed(lines):
        added = len(line) + (1 if tail else 0)
        if size + added > limit:
            break
        tail.insert(0, line)
        size += added
        start -= 1

    # top up from the end of the first line that did not fit whole
    if start > 0:
        joiner = 1 if tail else 0
        room = limit - size - joiner
        if room > 0:
            piece = lines[start - 1][-room:].lstrip()
            if piece:
                tail.insert(0, piece)
                size += len(piece) + joiner

    while tail and not tail[0].strip():
        size -= len(tail.pop(0)) + (1 if tail else 0)
    return tail, size
