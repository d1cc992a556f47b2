"""Markdown export of objects: YAML frontmatter plus a Markdown body.

Used when objects are written to external storage. The frontmatter carries
the object's identity, tags, outbound links, timestamps and plain property
values; the body is the rich text walked with BeautifulSoup and written
back as Markdown. Mention spans become wikilinks.
"""

from __future__ import annotations

import re

import yaml
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .models import KnowledgeObject

_HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_INLINE_MARKERS = {"strong": "**", "b": "**", "em": "*", "i": "*", "s": "~~", "del": "~~"}
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")


def _children(tag: Tag) -> str:
    return "".join(_convert(child) for child in tag.children)


def _list_items(tag: Tag) -> str:
    lines = []
    for number, item in enumerate(tag.find_all("li", recursive=False), start=1):
        marker = f"{number}." if tag.name == "ol" else "-"
        lines.append(f"{marker} {_children(item).strip()}\n")
    return "".join(lines) + "\n"


def _convert(node) -> str:
    if isinstance(node, Comment):
        return ""
    if isinstance(node, NavigableString):
        return str(node)
    if not isinstance(node, Tag):
        return ""

    name = node.name
    if name in _HEADING_LEVELS:
        return f"{'#' * _HEADING_LEVELS[name]} {_children(node).strip()}\n\n"
    if name == "p":
        return f"{_children(node).strip()}\n\n"
    if name in ("ul", "ol"):
        return _list_items(node)
    if name in _INLINE_MARKERS:
        marker = _INLINE_MARKERS[name]
        return f"{marker}{_children(node)}{marker}"
    if name == "code":
        return f"`{node.get_text()}`"
    if name == "pre":
        return f"```\n{node.get_text().rstrip()}\n```\n\n"
    if name == "br":
        return "\n"
    if name == "hr":
        return "---\n\n"
    if name == "blockquote":
        lines = _children(node).strip().splitlines()
        return "\n".join(f"> {line}".rstrip() for line in lines) + "\n\n"
    if name == "span" and "mention" in (node.get("class") or []):
        return f"[[{node.get_text()}]]"
    if name == "a" and node.get("href"):
        return f"[{_children(node)}]({node['href']})"
    if name == "img" and node.get("src"):
        return f"![{node.get('alt', '')}]({node['src']})"
    return _children(node)


def html_to_markdown(html: str) -> str:
    """Convert stored rich text to Markdown; mentions become wikilinks."""
    soup = BeautifulSoup(html, "html.parser")
    text = _convert(soup)
    return _EXTRA_BLANK_LINES.sub("\n\n", text).strip()


def build_frontmatter(obj: KnowledgeObject) -> str:
    """Build the YAML frontmatter block for an object.

    Property values are exported in their plain form; reserved fields
    (id, type, tags, links, timestamps) always come first and are never
    shadowed by a property of the same name.

    Returns:
        Frontmatter string including the --- delimiters and a trailing newline.
    """
    data: dict[str, object] = {
        "id": obj.id,
        "title": obj.title,
        "type": obj.type,
        "tags": list(obj.tags),
        "links": list(obj.links),
        "created": obj.created_at.isoformat(),
        "updated": obj.updated_at.isoformat(),
    }
    for key, value in obj.properties.items():
        data.setdefault(key, value.plain())

    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n"


def object_to_markdown(obj: KnowledgeObject) -> str:
    """Full Markdown document for an object: frontmatter, title heading, body."""
    body = html_to_markdown(obj.content)
    parts = [build_frontmatter(obj), f"# {obj.title}\n"]
    if body:
        parts.append(f"\n{body}\n")
    return "".join(parts)
