"""Document parsing: frontmatter, references and Markdown rendering."""

from .links import extract_hashtags, extract_references
from .markdown import ParseError, derive_category_hint, parse_document, split_frontmatter
from .md_renderer import MarkdownResult, render_markdown

__all__ = [
    "MarkdownResult",
    "ParseError",
    "derive_category_hint",
    "extract_hashtags",
    "extract_references",
    "parse_document",
    "render_markdown",
    "split_frontmatter",
]
