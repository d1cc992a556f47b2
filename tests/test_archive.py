"""Tests for archive extraction and entry classification."""

from __future__ import annotations

import pytest

from astral.archive import classify_entry, extract_archive
from astral.errors import ArchiveError, ErrorCode
from conftest import corrupt_member, make_zip, mark_encrypted


class TestClassifyEntry:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("Pages/Note.md", "document"),
            ("Notes/Long.MARKDOWN", "document"),
            ("Media/photo.PNG", "media"),
            ("Media/scan.pdf", "media"),
            ("Media/diagram.svg", "media"),
            ("__MACOSX/Pages/Note.md", "ignored"),
            ("Pages/.draft.md", "ignored"),
            (".trash/Note.md", "ignored"),
            ("Pages/", "ignored"),
            ("Pages/notes.txt", "ignored"),
        ],
    )
    def test_classification(self, path, expected):
        assert classify_entry(path) == expected

    def test_directory_flag_wins(self):
        assert classify_entry("Pages.md", is_dir=True) == "ignored"


class TestExtractArchive:
    def test_documents_in_archive_order(self):
        data = make_zip(
            {
                "Pages/B.md": "# B",
                "Pages/A.md": "# A",
                "Media/pic.png": b"\x89PNG",
                "readme.txt": "ignored",
            }
        )

        contents = extract_archive(data)

        assert [d.path for d in contents.documents] == ["Pages/B.md", "Pages/A.md"]
        assert contents.media == {"Media/pic.png": b"\x89PNG"}
        assert contents.warnings == []

    def test_media_skipped_when_not_requested(self):
        data = make_zip({"Pages/A.md": "# A", "Media/pic.png": b"\x89PNG"})

        contents = extract_archive(data, include_media=False)

        assert contents.media == {}
        assert len(contents.documents) == 1

    def test_reads_from_path(self, tmp_path):
        archive = tmp_path / "export.zip"
        archive.write_bytes(make_zip({"Pages/A.md": "# A"}))

        contents = extract_archive(archive)

        assert contents.documents[0].text == "# A"

    def test_byte_order_mark_is_dropped(self):
        data = make_zip({"Pages/A.md": "\ufeff---\ntitle: A\n---\nBody".encode("utf-8")})

        contents = extract_archive(data)

        assert contents.documents[0].text.startswith("---")

    def test_unreadable_archive_raises(self):
        with pytest.raises(ArchiveError) as exc_info:
            extract_archive(b"this is not a zip file")

        assert exc_info.value.code == ErrorCode.ARCHIVE_INVALID
        assert "Cannot open archive" in exc_info.value.message

    def test_corrupt_member_is_skipped_with_warning(self):
        data = make_zip(
            {
                "Pages/Good.md": "# Good",
                "Pages/Broken.md": "BROKEN-PAYLOAD-MARKER",
            },
            stored=True,
        )
        data = corrupt_member(data, b"BROKEN-PAYLOAD-MARKER")

        contents = extract_archive(data)

        assert [d.path for d in contents.documents] == ["Pages/Good.md"]
        assert len(contents.warnings) == 1
        assert "Pages/Broken.md" in contents.warnings[0]

    def test_encrypted_member_is_skipped_with_warning(self):
        data = make_zip({"Pages/Open.md": "open", "Pages/Locked.md": "secret"}, stored=True)
        data = mark_encrypted(data, "Pages/Locked.md")

        contents = extract_archive(data)

        assert [d.path for d in contents.documents] == ["Pages/Open.md"]
        assert len(contents.warnings) == 1
        assert "Pages/Locked.md" in contents.warnings[0]

    def test_non_utf8_document_is_skipped_with_warning(self):
        data = make_zip({"Pages/Latin.md": "caf\xe9".encode("latin-1"), "Pages/Ok.md": "ok"})

        contents = extract_archive(data)

        assert [d.path for d in contents.documents] == ["Pages/Ok.md"]
        assert "Pages/Latin.md" in contents.warnings[0]
