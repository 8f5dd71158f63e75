"""Markdown parsing into hierarchical, size-bounded sections.

Headings define the hierarchy; everything between two headings is the body of
the first one. Sections whose body exceeds the token budget are split into
overlapping chunks that repeat the heading metadata.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

from docgraph.models import Section
from docgraph.utils.text import CHARS_PER_TOKEN, chunk_lines, estimate_tokens, slugify

LOGGER = logging.getLogger(__name__)

# 512 tokens is roughly 2048 characters, 50 tokens roughly 200
MAX_SECTION_TOKENS = 512
OVERLAP_TOKENS = 50

_LIST_TYPES = ("bullet_list", "ordered_list")

_markdown = MarkdownIt("commonmark").enable("table")


class _AnchorRegistry:
    """Hands out document-unique anchors (``examples``, ``examples-1``, ...)."""

    def __init__(self) -> None:
        self._used: Set[str] = set()
        self._counters: Dict[str, int] = {}

    def claim(self, heading: str) -> str:
        return self.reserve(slugify(heading) or "section")

    def reserve(self, base: str) -> str:
        """Return ``base`` if it is free, else the first free ``base-N``."""
        if base not in self._used:
            self._used.add(base)
            return base
        counter = self._counters.get(base, 0)
        while True:
            counter += 1
            candidate = f"{base}-{counter}"
            if candidate not in self._used:
                break
        self._counters[base] = counter
        self._used.add(candidate)
        return candidate


def _inline_text(node: SyntaxTreeNode) -> str:
    return "".join(child.content for child in node.children if child.type == "inline")


def _render_list(node: SyntaxTreeNode, depth: int = 0) -> str:
    ordered = node.type == "ordered_list"
    start = int(node.attrs.get("start", 1)) if ordered else 1
    indent = "  " * depth
    lines: List[str] = []

    for offset, item in enumerate(node.children):
        marker = f"{start + offset}. " if ordered else "- "
        body: List[str] = []
        nested: List[str] = []
        for child in item.children:
            if child.type in _LIST_TYPES:
                nested.append(_render_list(child, depth + 1))
            else:
                rendered = _render_block(child)
                if rendered:
                    body.append(rendered)

        text_lines = "\n".join(body).split("\n")
        lines.append(f"{indent}{marker}{text_lines[0]}".rstrip())
        continuation = indent + " " * len(marker)
        lines.extend(f"{continuation}{line}" if line else "" for line in text_lines[1:])
        lines.extend(nested)

    return "\n".join(lines)


def _render_table(node: SyntaxTreeNode) -> str:
    rows: List[List[str]] = []
    header_cells = 0
    for part in node.children:
        for row in part.children:
            cells = [_inline_text(cell).strip() for cell in row.children]
            if part.type == "thead":
                header_cells = len(cells)
            rows.append(cells)

    lines = [f"| {' | '.join(cells)} |" for cells in rows]
    if header_cells:
        separator = "| " + " | ".join("---" for _ in range(header_cells)) + " |"
        lines.insert(1, separator)
    return "\n".join(lines)


def _render_block(node: SyntaxTreeNode) -> str:
    """Serialize a non-heading block back to normalized markdown."""
    kind = node.type
    if kind == "paragraph":
        return _inline_text(node).strip()
    if kind in _LIST_TYPES:
        return _render_list(node)
    if kind in ("fence", "code_block"):
        language = node.info.strip() if kind == "fence" else ""
        code = node.content.rstrip("\n")
        return f"```{language}\n{code}\n```"
    if kind == "blockquote":
        inner = "\n\n".join(filter(None, (_render_block(child) for child in node.children)))
        return "\n".join(f"> {line}" if line else ">" for line in inner.split("\n"))
    if kind == "table":
        return _render_table(node)
    if kind == "html_block":
        return node.content.strip("\n")
    if kind == "inline":
        return node.content.strip()
    if kind == "hr":
        return ""
    return "\n\n".join(filter(None, (_render_block(child) for child in node.children)))


def _collect_sections(markdown: str, *, max_tokens: int, overlap_tokens: int) -> List[Section]:
    root = SyntaxTreeNode(_markdown.parse(markdown))
    anchors = _AnchorRegistry()
    stack: List[tuple[int, str]] = []
    sections: List[Section] = []
    renamed: Dict[str, str] = {}
    body: List[str] = []
    current: Optional[Section] = None

    def flush() -> None:
        if current is None:
            return
        current.content = "\n\n".join(body).strip()
        if current.parent_anchor is not None:
            current.parent_anchor = renamed.get(current.parent_anchor, current.parent_anchor)
        pieces = chunk_section(
            current, max_tokens=max_tokens, overlap_tokens=overlap_tokens, anchors=anchors
        )
        if pieces[0].is_chunk:
            renamed[current.anchor] = pieces[0].anchor
            LOGGER.debug("Split section %s into %d chunks", current.anchor, len(pieces))
        sections.extend(pieces)

    for node in root.children:
        if node.type != "heading":
            if current is not None:
                rendered = _render_block(node)
                if rendered:
                    body.append(rendered)
            continue

        flush()
        level = int(node.tag[1])
        heading = _inline_text(node).strip()
        anchor = anchors.claim(heading)

        while stack and stack[-1][0] >= level:
            stack.pop()
        parent_anchor = stack[-1][1] if stack else None
        stack.append((level, anchor))

        current = Section(
            heading=heading,
            content="",
            level=level,
            anchor=anchor,
            parent_anchor=parent_anchor,
        )
        body = []

    flush()
    return sections


def chunk_section(
    section: Section,
    *,
    max_tokens: int = MAX_SECTION_TOKENS,
    overlap_tokens: int = OVERLAP_TOKENS,
    anchors: Optional[_AnchorRegistry] = None,
) -> List[Section]:
    """Split an oversized section into chunks sharing its heading metadata.

    With ``anchors`` the chunk anchors are claimed from the document's
    registry, so they cannot collide with a heading elsewhere in the file.
    """
    if estimate_tokens(section.content) <= max_tokens:
        return [section]

    pieces = chunk_lines(
        section.content,
        max_chars=max_tokens * CHARS_PER_TOKEN,
        overlap=overlap_tokens * CHARS_PER_TOKEN,
    )
    chunks: List[Section] = []
    for index, piece in enumerate(pieces):
        anchor = f"{section.anchor}-chunk-{index}"
        chunks.append(
            Section(
                heading=section.heading,
                content=piece,
                level=section.level,
                anchor=anchors.reserve(anchor) if anchors is not None else anchor,
                parent_anchor=section.parent_anchor,
                is_chunk=True,
                chunk_index=index,
            )
        )
    return chunks


def parse_markdown(
    markdown: str,
    *,
    max_tokens: int = MAX_SECTION_TOKENS,
    overlap_tokens: int = OVERLAP_TOKENS,
) -> List[Section]:
    """Parse markdown into sections in document order.

    Every ``parent_anchor`` names a section returned earlier in the list. When
    a parent had to be chunked, its children point at the first chunk. Heading
    and chunk anchors are unique within the document.
    """
    if not isinstance(markdown, str):
        raise TypeError(f"markdown must be str, not {type(markdown).__name__}")

    return _collect_sections(markdown, max_tokens=max_tokens, overlap_tokens=overlap_tokens)
