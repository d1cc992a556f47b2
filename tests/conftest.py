"""Shared test fixtures for the astral test suite.

Design:
- store: MemoryStore seeded with the default types
- make_zip: builds an in-memory ZIP export from {path: text or bytes}
- runner / cli_invoke: CliRunner against an isolated on-disk store
- Async tests use pytest-asyncio with explicit markers
"""

from __future__ import annotations

import io
import struct
import zipfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from astral.cli import cli
from astral.models import KnowledgeObject, ParsedDocument
from astral.store import MemoryStore


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> MemoryStore:
    """Empty object graph with the default schema."""
    return MemoryStore()


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def store_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """On-disk store location; the working directory holds no .astralconfig."""
    monkeypatch.chdir(tmp_path)
    return tmp_path / "store"


@pytest.fixture
def cli_invoke(runner: CliRunner, store_root: Path):
    """Helper for invoking the CLI against the temporary store.

    Usage:
        def test_types(cli_invoke):
            result = cli_invoke(["types"])
            assert result.exit_code == 0
    """

    def _invoke(args: list[str], input: str | None = None, catch_exceptions: bool = False):
        return runner.invoke(
            cli,
            args,
            input=input,
            catch_exceptions=catch_exceptions,
            env={"ASTRAL_STORE_ROOT": str(store_root)},
        )

    return _invoke


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def make_zip(files: dict[str, str | bytes], stored: bool = False) -> bytes:
    """Build a ZIP archive in memory, members in dict order.

    Usage in tests:
        from conftest import make_zip
        data = make_zip({"Pages/Note.md": "# Note"})
    """
    buffer = io.BytesIO()
    compression = zipfile.ZIP_STORED if stored else zipfile.ZIP_DEFLATED
    with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
        for path, content in files.items():
            payload = content.encode("utf-8") if isinstance(content, str) else content
            archive.writestr(path, payload)
    return buffer.getvalue()


def corrupt_member(data: bytes, marker: bytes) -> bytes:
    """Flip the bytes of ``marker`` inside a stored member so its CRC check fails."""
    assert data.count(marker) == 1, "marker must appear exactly once in the archive"
    return data.replace(marker, bytes(b ^ 0x20 for b in marker))


# (signature, flags offset, name length offset, name offset) of local and central headers
_ZIP_HEADERS = ((b"PK\x03\x04", 6, 26, 30), (b"PK\x01\x02", 8, 28, 46))


def mark_encrypted(data: bytes, name: str) -> bytes:
    """Set the "encrypted" flag bit on one member in both of its headers."""
    buffer = bytearray(data)
    encoded = name.encode("utf-8")
    for signature, flags_at, name_len_at, name_at in _ZIP_HEADERS:
        start = buffer.find(signature)
        while start != -1:
            (length,) = struct.unpack_from("<H", buffer, start + name_len_at)
            if bytes(buffer[start + name_at : start + name_at + length]) == encoded:
                (flags,) = struct.unpack_from("<H", buffer, start + flags_at)
                struct.pack_into("<H", buffer, start + flags_at, flags | 0x1)
            start = buffer.find(signature, start + 4)
    return bytes(buffer)


def make_document(
    path: str,
    category: str,
    metadata: dict | None = None,
    body: str = "",
) -> ParsedDocument:
    """A parsed document without going through the parser."""
    base_name = path.rsplit("/", 1)[-1].rsplit(".", 1)[0]
    return ParsedDocument(
        source_path=path,
        category_hint=category,
        base_name=base_name,
        declared_metadata=metadata or {},
        body_plain_text=body,
        body_rich_text=f"<p>{body}</p>" if body else "",
    )


def make_object(object_id: str, title: str, type_id: str = "page", **fields) -> KnowledgeObject:
    return KnowledgeObject(id=object_id, type=type_id, title=title, **fields)


async def objects_by_title(store) -> dict[str, KnowledgeObject]:
    return {obj.title: obj for obj in await store.list_objects()}
