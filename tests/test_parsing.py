"""Tests for document parsing.

Coverage:
- src/astral/parser/markdown.py - frontmatter split, category hints, parse_document
- src/astral/parser/links.py - reference and hashtag extraction
- src/astral/parser/md_renderer.py - markdown rendering with wikilinks

Philosophy: Test behaviors, not regex internals. Use parametrize for variations.
"""

from __future__ import annotations

from datetime import date

import pytest

from astral.archive import ArchiveEntry
from astral.parser import (
    ParseError,
    derive_category_hint,
    extract_hashtags,
    extract_references,
    parse_document,
    render_markdown,
    split_frontmatter,
)
from astral.parser.md_renderer import normalize_link

# ─────────────────────────────────────────────────────────────────────────────
# Frontmatter
# ─────────────────────────────────────────────────────────────────────────────


class TestSplitFrontmatter:
    def test_metadata_and_body(self):
        text = "---\ntitle: Dune\ntags: [scifi, classic]\npublished: 1965-08-01\n---\n\nA desert planet.\n"

        metadata, body, warning = split_frontmatter(text)

        assert metadata == {"title": "Dune", "tags": ["scifi", "classic"], "published": date(1965, 8, 1)}
        assert body.strip() == "A desert planet."
        assert warning is None

    def test_no_block_is_all_body(self):
        metadata, body, warning = split_frontmatter("# Just a heading\n\nText")

        assert metadata == {}
        assert body.startswith("# Just a heading")
        assert warning is None

    def test_invalid_yaml_keeps_body_and_warns(self):
        text = "---\ntitle: [unclosed\n---\nBody text\n"

        metadata, body, warning = split_frontmatter(text)

        assert metadata == {}
        assert body == "Body text"
        assert warning is not None and "invalid frontmatter" in warning


# ─────────────────────────────────────────────────────────────────────────────
# Category hints
# ─────────────────────────────────────────────────────────────────────────────


class TestDeriveCategoryHint:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("Libros/Dune.md", ("Libros", "Dune")),
            ("Export/Pages/Note.md", ("Pages", "Note")),
            ("export/Content/Idea.markdown", ("export", "Idea")),
            ("Note.md", ("page", "Note")),
            ("content/Note.md", ("page", "Note")),
            ("A/B/C/Deep.md", ("C", "Deep")),
        ],
    )
    def test_paths(self, path, expected):
        assert derive_category_hint(path) == expected


# ─────────────────────────────────────────────────────────────────────────────
# parse_document
# ─────────────────────────────────────────────────────────────────────────────


class TestParseDocument:
    def test_full_document(self):
        entry = ArchiveEntry(
            path="Export/Books/dune.md",
            text=(
                "---\ntitle: Dune\nauthor: Frank Herbert\n---\n"
                "# Dune\n\nSee [the author](People/Frank%20Herbert.md) and [[Arrakis]].\n"
            ),
        )

        document, warnings = parse_document(entry)

        assert warnings == []
        assert document.category_hint == "Books"
        assert document.base_name == "dune"
        assert document.title == "Dune"
        assert document.alias_path == "Books/dune"
        assert document.declared_metadata["author"] == "Frank Herbert"
        assert "<h1>Dune</h1>" in document.body_rich_text
        assert '<a class="wikilink" data-path="Arrakis">Arrakis</a>' in document.body_rich_text
        assert [r.target_path for r in document.raw_references] == ["People/Frank Herbert.md", "Arrakis"]

    def test_title_falls_back_to_file_name(self):
        document, _ = parse_document(ArchiveEntry(path="Pages/Plain Note.md", text="text"))

        assert document.title == "Plain Note"

    def test_declared_type_ignores_structured_values(self):
        document, _ = parse_document(ArchiveEntry(path="a.md", text="---\ntype: [a, b]\n---\nx"))

        assert document.declared_type is None

    def test_bad_frontmatter_is_a_warning(self):
        document, warnings = parse_document(
            ArchiveEntry(path="Pages/Bad.md", text="---\ntitle: [oops\n---\nStill here\n")
        )

        assert document.declared_metadata == {}
        assert "Still here" in document.body_rich_text
        assert len(warnings) == 1
        assert "Pages/Bad.md" in warnings[0]

    def test_empty_file_name_raises(self):
        with pytest.raises(ParseError):
            parse_document(ArchiveEntry(path="Pages/.md", text="x"))


# ─────────────────────────────────────────────────────────────────────────────
# References and hashtags
# ─────────────────────────────────────────────────────────────────────────────


class TestExtractReferences:
    def test_both_syntaxes_without_dedup(self):
        body = "[One](Pages/One.md) then [[One]] and again [One](Pages/One.md)"

        refs = extract_references(body)

        assert [(r.syntax, r.target_path) for r in refs] == [
            ("markdown", "Pages/One.md"),
            ("markdown", "Pages/One.md"),
            ("wikilink", "One"),
        ]

    @pytest.mark.parametrize(
        "body",
        [
            "[site](https://example.com/page.md)",
            "[proto](//cdn.example.com/x.md)",
            "![image](Media/pic.png)",
            "[pdf](Files/doc.pdf)",
        ],
    )
    def test_non_document_links_are_ignored(self, body):
        assert extract_references(body) == []

    def test_wikilink_label_is_not_the_target(self):
        refs = extract_references("[[Projects/Apollo|the project]]")

        assert refs[0].target_path == "Projects/Apollo"
        assert refs[0].text == "Projects/Apollo|the project"


class TestExtractHashtags:
    def test_dedup_keeps_first_spelling(self):
        assert extract_hashtags("#Work on #ideas and #work again") == ["Work", "ideas"]

    @pytest.mark.parametrize(
        "text",
        [
            "# Heading",
            "issue #42",
            "a#b",
            "https://example.com/#anchor",
            "&#39;quoted&#39;",
        ],
    )
    def test_non_hashtags(self, text):
        assert extract_hashtags(text) == []

    def test_hyphenated_and_accented(self):
        assert extract_hashtags("#año-nuevo #read-later") == ["año-nuevo", "read-later"]


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────


class TestRenderMarkdown:
    def test_block_structure(self):
        result = render_markdown("# Title\n\nSome *emphasis* and **bold**.")

        assert "<h1>Title</h1>" in result.html
        assert "<em>emphasis</em>" in result.html
        assert "<strong>bold</strong>" in result.html

    def test_wikilink_with_label(self):
        result = render_markdown("See [[Target Page|this page]].")

        assert '<a class="wikilink" data-path="Target Page">this page</a>' in result.html
        assert result.links == []
        assert result.unresolved == []

    def test_wikilink_in_code_stays_literal(self):
        result = render_markdown("Use `[[not a link]]` syntax.")

        assert "<code>[[not a link]]</code>" in result.html
        assert result.links == []

    def test_empty_body(self):
        assert render_markdown("   \n").html == ""

    @pytest.mark.parametrize(
        "target,expected",
        [
            ("Pages/Note.md", "Pages/Note"),
            (" Note.markdown ", "Note"),
            ("Folder\\Note", "Folder/Note"),
            ("/Pages/Note/", "Pages/Note"),
        ],
    )
    def test_normalize_link(self, target, expected):
        assert normalize_link(target) == expected
