"""Synchronization of objects to external storage.

An object counts as persisted once external storage has returned a
reference for it; ``external_storage_ref`` on the object records that
reference and is what the cleanup pass uses to tell synced objects from
unsynced ones.

``SyncSession`` owns the folder ids it has looked up (root folder and one
folder per type), so several sessions can run side by side, each with its
own cache. ``LocalMirrorStorage`` is a directory-backed storage backend.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from pathlib import Path, PurePosixPath
from typing import Protocol

from pydantic import BaseModel, Field

from .errors import AstralError, ErrorCode
from .frontmatter import object_to_markdown
from .models import KnowledgeObject
from .store import ObjectStore

log = logging.getLogger(__name__)

ROOT_FOLDER_NAME = "Astral"
MEDIA_FOLDER_NAME = "Media"

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\?%*:|"<>]')


class SyncError(AstralError):
    """Raised when external storage rejects a write."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.SYNC_ERROR, message)


class ExternalStorage(Protocol):
    """Folder/file storage addressed by opaque ids."""

    async def find_or_create_folder(self, name: str, parent_id: str | None) -> str: ...

    async def write_file(
        self,
        folder_id: str,
        name: str,
        content: bytes,
        existing_ref: str | None = None,
    ) -> str: ...

    async def delete_file(self, ref: str) -> None: ...


def safe_filename(title: str, suffix: str = ".md") -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("-", title).strip() or "untitled"
    return f"{cleaned}{suffix}"


class LocalMirrorStorage:
    """ExternalStorage backed by a local directory. Ids are root-relative paths."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _resolve(self, ref: str | None) -> Path:
        path = (self.root / ref) if ref else self.root
        resolved = path.resolve()
        if not resolved.is_relative_to(self.root.resolve()):
            raise SyncError(f"Reference escapes the mirror root: {ref}")
        return resolved

    async def find_or_create_folder(self, name: str, parent_id: str | None) -> str:
        folder = self._resolve(parent_id) / safe_filename(name, suffix="")
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SyncError(f"Cannot create folder {folder}: {e}") from e
        return str(folder.relative_to(self.root.resolve()))

    async def write_file(
        self,
        folder_id: str,
        name: str,
        content: bytes,
        existing_ref: str | None = None,
    ) -> str:
        target = self._resolve(existing_ref) if existing_ref else self._resolve(folder_id) / name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, content)
        except OSError as e:
            raise SyncError(f"Cannot write {target}: {e}") from e
        return str(target.relative_to(self.root.resolve()))

    async def delete_file(self, ref: str) -> None:
        try:
            self._resolve(ref).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise SyncError(f"Cannot delete {ref}: {e}") from e


class SyncResult(BaseModel):
    synced_count: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncSession:
    """One client's connection to external storage, with its folder cache.

    Folder lookups are serialized by a lock: concurrent uploads share one
    ``find_or_create_folder`` call per folder instead of racing to create
    duplicates.
    """

    def __init__(self, storage: ExternalStorage) -> None:
        self.storage = storage
        self.root_folder_id: str | None = None
        self.type_folders: dict[str, str] = {}
        self.media_folders: dict[tuple[str, str], str] = {}  # (parent id, name) -> folder id
        self._folder_lock = asyncio.Lock()

    async def _root_folder(self) -> str:
        if self.root_folder_id is None:
            self.root_folder_id = await self.storage.find_or_create_folder(ROOT_FOLDER_NAME, None)
        return self.root_folder_id

    async def _type_folder(self, type_name: str) -> str:
        if type_name not in self.type_folders:
            parent = await self._root_folder()
            self.type_folders[type_name] = await self.storage.find_or_create_folder(type_name, parent)
        return self.type_folders[type_name]

    async def root_folder(self) -> str:
        async with self._folder_lock:
            return await self._root_folder()

    async def type_folder(self, type_name: str) -> str:
        async with self._folder_lock:
            return await self._type_folder(type_name)

    async def _media_folder(self, directories: list[str]) -> str:
        async with self._folder_lock:
            folder = await self._type_folder(MEDIA_FOLDER_NAME)
            for name in directories:
                key = (folder, name)
                if key not in self.media_folders:
                    self.media_folders[key] = await self.storage.find_or_create_folder(name, folder)
                folder = self.media_folders[key]
            return folder

    async def sync_object(self, obj: KnowledgeObject, type_name: str) -> str:
        """Write the object's Markdown rendering and return its storage ref."""
        folder = await self.type_folder(type_name)
        content = object_to_markdown(obj).encode("utf-8")
        return await self.storage.write_file(
            folder,
            safe_filename(obj.title),
            content,
            existing_ref=obj.external_storage_ref,
        )

    async def upload_media(self, path: str, data: bytes) -> str:
        """Store an archive media file under the media folder.

        The file keeps its archive folders (minus a leading media folder), so
        ``Libros/cover.png`` and ``Personas/cover.png`` never overwrite each
        other.
        """
        parts = [p for p in PurePosixPath(path).parts if p not in ("/", ".", "..")]
        *directories, file_name = parts
        if directories and directories[0].lower() == MEDIA_FOLDER_NAME.lower():
            directories = directories[1:]
        folder = await self._media_folder(directories)
        name = safe_filename(PurePosixPath(file_name).stem, suffix=PurePosixPath(file_name).suffix)
        return await self.storage.write_file(folder, name, data)


async def sync_unsynced(
    store: ObjectStore,
    session: SyncSession,
    on_progress: Callable[[int, int, str], None] | None = None,
) -> SyncResult:
    """Persist every object without an external storage ref.

    Each successful write stamps the returned ref on the object. Failures
    are collected and the loop continues.
    """
    result = SyncResult()
    types = {t.id: t for t in await store.list_types()}
    pending = [obj for obj in await store.list_objects() if not obj.is_synced]
    log.info("Syncing %d unsynced objects", len(pending))

    for index, obj in enumerate(pending, start=1):
        object_type = types.get(obj.type)
        type_name = object_type.name_plural if object_type else obj.type
        try:
            ref = await session.sync_object(obj, type_name)
            await store.update_object(obj.id, external_storage_ref=ref)
            result.synced_count += 1
        except AstralError as e:
            log.warning("Sync failed for %s: %s", obj.id, e.message)
            result.errors.append(f"Error syncing '{obj.title}': {e.message}")
        if on_progress is not None:
            on_progress(index, len(pending), obj.title)

    return result
