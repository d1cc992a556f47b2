"""Archive extraction for knowledge-base exports.

Opens a ZIP export, classifies each member as a document, a media asset or
noise, and reads the payload of the members that matter. A member that fails
to read (bad CRC, truncated stream, encryption, undecodable text) is skipped with a
warning; only an archive that cannot be opened at all is an error.
"""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .config import DOCUMENT_EXTENSIONS, MEDIA_EXTENSIONS, VENDOR_METADATA_DIRS
from .errors import ArchiveError

log = logging.getLogger(__name__)

EntryKind = Literal["document", "media", "ignored"]


@dataclass
class ArchiveEntry:
    """A document member of the archive, decoded to text."""

    path: str
    text: str


@dataclass
class ArchiveContents:
    """Everything useful extracted from one archive."""

    documents: list[ArchiveEntry] = field(default_factory=list)
    media: dict[str, bytes] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def _is_hidden(path: str) -> bool:
    parts = [p for p in path.split("/") if p]
    if any(part in VENDOR_METADATA_DIRS for part in parts):
        return True
    return any(part.startswith(".") for part in parts)


def classify_entry(path: str, is_dir: bool = False) -> EntryKind:
    """Classify an archive member by its path.

    Directories, members under vendor metadata directories and dotfiles at
    any path segment are ignored.
    """
    if is_dir or path.endswith("/") or _is_hidden(path):
        return "ignored"

    lowered = path.lower()
    if lowered.endswith(DOCUMENT_EXTENSIONS):
        return "document"
    if lowered.endswith(MEDIA_EXTENSIONS):
        return "media"
    return "ignored"


def _open_archive(source: bytes | Path | str) -> zipfile.ZipFile:
    try:
        if isinstance(source, bytes):
            return zipfile.ZipFile(io.BytesIO(source))
        return zipfile.ZipFile(Path(source))
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveError(f"Cannot open archive: {e}", {"source": str(source)[:200]}) from e


def extract_archive(source: bytes | Path | str, include_media: bool = True) -> ArchiveContents:
    """Extract documents (and optionally media) from a ZIP export.

    Args:
        source: Archive bytes or a path to the archive file.
        include_media: Read media payloads too. When False media members are
            classified but their bytes are never read.

    Returns:
        ArchiveContents with documents in archive order.

    Raises:
        ArchiveError: If the archive itself is unreadable.
    """
    contents = ArchiveContents()

    with _open_archive(source) as archive:
        members = archive.infolist()
        log.debug("Archive contains %d members", len(members))

        for info in members:
            kind = classify_entry(info.filename, info.is_dir())
            if kind == "ignored":
                continue
            if kind == "media" and not include_media:
                continue

            try:
                payload = archive.read(info)
            except Exception as e:
                log.warning("Skipping unreadable archive member %s: %s", info.filename, e)
                contents.warnings.append(f"Skipped unreadable entry '{info.filename}': {e}")
                continue

            if kind == "media":
                contents.media[info.filename] = payload
                continue

            try:
                text = payload.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                log.warning("Skipping non-UTF-8 document %s: %s", info.filename, e)
                contents.warnings.append(f"Skipped undecodable entry '{info.filename}': {e}")
                continue

            contents.documents.append(ArchiveEntry(path=info.filename, text=text))

    log.info(
        "Extracted %d documents and %d media files",
        len(contents.documents),
        len(contents.media),
    )
    return contents
