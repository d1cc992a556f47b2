"""Cross-document reference and hashtag extraction."""

from __future__ import annotations

import re
from urllib.parse import unquote

from ..config import DOCUMENT_EXTENSIONS
from ..models import RawReference

# [text](path) - destination may be wrapped in <...>
MARKDOWN_LINK_PATTERN = re.compile(r"(?<!!)\[([^\]]+)\]\(\s*<?([^)>]+?)>?\s*\)")

# [[target]] and [[target|label]]
WIKILINK_PATTERN = re.compile(r"\[\[([^\[\]\n]+)\]\]")

# #tag - must start with a letter, not preceded by a word char, '&', '#' or '/'
HASHTAG_PATTERN = re.compile(r"(?<![\w&#/])#([^\W\d_][\w-]*)")

# Anything with a URI scheme or protocol-relative prefix is external
_EXTERNAL_PATTERN = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*:|//)")


def is_document_path(path: str) -> bool:
    """True for relative paths to a document in the archive."""
    if _EXTERNAL_PATTERN.match(path):
        return False
    return path.lower().endswith(DOCUMENT_EXTENSIONS)


def extract_references(content: str) -> list[RawReference]:
    """Extract raw cross-document references from a Markdown body.

    Markdown links count only when they point at a relative document path;
    every wikilink counts. The result is flat and keeps duplicates, markdown
    links first, then wikilinks, each in document order.
    """
    references: list[RawReference] = []

    for match in MARKDOWN_LINK_PATTERN.finditer(content):
        path = unquote(match.group(2).strip())
        if is_document_path(path):
            references.append(RawReference(text=match.group(1), target_path=path, syntax="markdown"))

    for match in WIKILINK_PATTERN.finditer(content):
        inner = match.group(1)
        target = inner.split("|", 1)[0].strip()
        if target:
            references.append(RawReference(text=inner, target_path=target, syntax="wikilink"))

    return references


def extract_hashtags(content: str) -> list[str]:
    """Extract hashtag names (without '#'), deduplicated case-insensitively.

    The first spelling seen is kept; order follows the document.
    """
    seen: set[str] = set()
    tags: list[str] = []
    for match in HASHTAG_PATTERN.finditer(content):
        name = match.group(1)
        key = name.lower()
        if key not in seen:
            seen.add(key)
            tags.append(name)
    return tags
