"""HTML to markdown conversion for untrusted specification pages.

The steps run in a fixed order:

1. decode entities (numeric, then named, ``&amp;`` last) so encoded markup is
   exposed before stripping;
2. remove dangerous elements until the text stops changing, then any
   orphaned open/close tags of those names;
3. remove layout elements (nav, header, footer), repeating steps 1-3 until
   stable so each pass peels one entity layer and a double-encoded payload
   is removed on the second pass;
4. convert structural tags to markdown;
5. strip every remaining tag until stable;
6. replace any surviving ``<``/``>`` with ``[``/``]``;
7. collapse runs of blank lines.
"""

from __future__ import annotations

import re
from typing import Tuple

DANGEROUS_TAGS = ("script", "style", "iframe", "object", "embed", "form", "input", "button")
LAYOUT_TAGS = ("nav", "header", "footer")

_DECIMAL_ENTITY = re.compile(r"&#(\d+);")
_HEX_ENTITY = re.compile(r"&#[xX]([0-9a-fA-F]+);")

# &amp; must stay last so "&amp;lt;" loses only one layer per pass
_NAMED_ENTITIES: Tuple[Tuple[str, str], ...] = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    ("&nbsp;", " "),
    ("&amp;", "&"),
)

_STRUCTURE: Tuple[Tuple[re.Pattern, str], ...] = (
    *(
        (
            re.compile(rf"<h{level}[^>]*>(.*?)</h{level}>", re.IGNORECASE),
            "\n" + "#" * level + r" \1" + "\n",
        )
        for level in range(1, 7)
    ),
    (re.compile(r"<pre[^>]*><code[^>]*>(.*?)</code></pre>", re.IGNORECASE | re.DOTALL), "\n```\n\\1\n```\n"),
    (re.compile(r"<pre[^>]*>(.*?)</pre>", re.IGNORECASE | re.DOTALL), "\n```\n\\1\n```\n"),
    (re.compile(r"<code[^>]*>(.*?)</code>", re.IGNORECASE), r"`\1`"),
    (re.compile(r"""<a[^>]*href=["']([^"']*)["'][^>]*>(.*?)</a>""", re.IGNORECASE), r"[\2](\1)"),
    (re.compile(r"<li[^>]*>(.*?)</li>", re.IGNORECASE), "- \\1\n"),
    (re.compile(r"</ul>|</ol>", re.IGNORECASE), "\n"),
    (re.compile(r"<ul[^>]*>|<ol[^>]*>", re.IGNORECASE), "\n"),
    (re.compile(r"<p[^>]*>(.*?)</p>", re.IGNORECASE), "\n\\1\n"),
    (re.compile(r"<br\s*/?>", re.IGNORECASE), "\n"),
)

_ANY_TAG = re.compile(r"<[^>]+>")
_BLANK_RUNS = re.compile(r"\n{3,}")
_REPLACEMENT_CHAR = "\ufffd"


def _decode_codepoint(match: re.Match, base: int) -> str:
    # NUL, surrogates and out-of-range references cannot be written as UTF-8
    codepoint = int(match.group(1), base)
    if codepoint == 0 or 0xD800 <= codepoint <= 0xDFFF or codepoint > 0x10FFFF:
        return _REPLACEMENT_CHAR
    return chr(codepoint)


def decode_html_entities(text: str) -> str:
    """Decode the entities the converter understands, ``&amp;`` last."""
    text = _DECIMAL_ENTITY.sub(lambda match: _decode_codepoint(match, 10), text)
    text = _HEX_ENTITY.sub(lambda match: _decode_codepoint(match, 16), text)
    for entity, replacement in _NAMED_ENTITIES:
        text = text.replace(entity, replacement)
    return text


def _sub_until_stable(pattern: re.Pattern, text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        text = pattern.sub("", text)
    return text


def remove_element(html: str, tag: str) -> str:
    """Remove every ``tag`` element with its content, nested or malformed."""
    name = re.escape(tag)
    element = re.compile(rf"<{name}\b[^>]*>.*?</{name}\s*>", re.IGNORECASE | re.DOTALL)
    html = _sub_until_stable(element, html)
    html = re.sub(rf"<{name}\b[^>]*>", "", html, flags=re.IGNORECASE)
    return re.sub(rf"</{name}\s*>", "", html, flags=re.IGNORECASE)


def convert_html_to_markdown(html: str) -> str:
    """Convert an untrusted HTML page to markdown without any live markup."""
    markdown = html
    previous = None
    while previous != markdown:
        previous = markdown
        markdown = decode_html_entities(markdown)
        for tag in DANGEROUS_TAGS + LAYOUT_TAGS:
            markdown = remove_element(markdown, tag)

    for pattern, replacement in _STRUCTURE:
        markdown = pattern.sub(replacement, markdown)

    markdown = _sub_until_stable(_ANY_TAG, markdown)
    markdown = markdown.replace("<", "[").replace(">", "]")

    markdown = _BLANK_RUNS.sub("\n\n", markdown)
    return markdown.strip()

