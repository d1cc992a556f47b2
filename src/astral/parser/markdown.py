"""Document parsing: YAML frontmatter, category hints and body rendering."""

from __future__ import annotations

import logging
from html import escape
from pathlib import PurePosixPath
from typing import Any

import frontmatter
import yaml

from ..archive import ArchiveEntry
from ..config import DEFAULT_CATEGORY, DOCUMENT_EXTENSIONS, GENERIC_CONTAINER_FOLDERS
from ..models import ParsedDocument
from .links import extract_references
from .md_renderer import render_markdown

log = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when a document cannot be parsed at all."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


def split_frontmatter(text: str) -> tuple[dict[str, Any], str, str | None]:
    """Split a document into its metadata mapping and body.

    A document without a frontmatter block is all body. A block that fails
    to parse yields empty metadata, the text after the block as body, and a
    warning message.

    Returns:
        Tuple of (metadata, body, warning).
    """
    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        try:
            _, body = frontmatter.YAMLHandler().split(text.strip())
        except ValueError:
            body = text
        return {}, body.strip(), f"invalid frontmatter ({e.__class__.__name__})"

    metadata = {str(key): value for key, value in post.metadata.items()}
    return metadata, post.content, None


def derive_category_hint(path: str) -> tuple[str, str]:
    """Derive (category_hint, base_name) from an archive path.

    The category is the folder immediately enclosing the file. Generic
    wrapper folders ("Export", "content", ...) are skipped by walking one
    level further up. Files at the archive root fall back to the default
    category.
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    file_name = parts[-1] if parts else path

    base_name = file_name
    lowered = file_name.lower()
    for ext in DOCUMENT_EXTENSIONS:
        if lowered.endswith(ext):
            base_name = file_name[: -len(ext)]
            break

    category = DEFAULT_CATEGORY
    if len(parts) >= 2:
        parent = parts[-2]
        if parent.lower() not in GENERIC_CONTAINER_FOLDERS:
            category = parent
        elif len(parts) >= 3:
            category = parts[-3]

    return category, base_name


def _render_body(body: str, path: str, warnings: list[str]) -> str:
    try:
        return render_markdown(body).html
    except Exception as e:
        log.warning("Markdown conversion failed for %s: %s", path, e)
        warnings.append(f"{path}: body conversion failed, kept as plain text ({e})")
        paragraphs = [p.strip() for p in body.split("\n\n") if p.strip()]
        return "".join(f"<p>{escape(p)}</p>\n" for p in paragraphs)


def parse_document(entry: ArchiveEntry) -> tuple[ParsedDocument, list[str]]:
    """Parse one archive document.

    Args:
        entry: Document member of the archive.

    Returns:
        Tuple of (parsed document, warnings). Metadata and conversion
        problems degrade gracefully and only produce warnings.

    Raises:
        ParseError: If the entry has no usable file name.
    """
    warnings: list[str] = []

    category, base_name = derive_category_hint(entry.path)
    if not base_name.strip():
        raise ParseError(entry.path, "empty file name")

    metadata, body, problem = split_frontmatter(entry.text)
    if problem:
        log.warning("%s: %s", entry.path, problem)
        warnings.append(f"{entry.path}: {problem}, metadata ignored")

    document = ParsedDocument(
        source_path=str(PurePosixPath(entry.path)),
        category_hint=category,
        base_name=base_name,
        declared_metadata=metadata,
        body_plain_text=body,
        body_rich_text=_render_body(body, entry.path, warnings),
        raw_references=extract_references(body),
    )
    return document, warnings
