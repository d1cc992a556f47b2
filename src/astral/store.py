"""Object store: the durable home of objects and types.

The import and cleanup pipelines only talk to the ``ObjectStore`` protocol.
``MemoryStore`` keeps everything in dicts; ``JsonFileStore`` adds
persistence to two JSON files under a store root, rewritten atomically on
every change.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from .config import default_object_types
from .errors import ObjectNotFoundError, StoreError
from .models import KnowledgeObject, ObjectDraft, ObjectType

log = logging.getLogger(__name__)

TYPES_FILENAME = "types.json"
OBJECTS_FILENAME = "objects.json"

_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "content",
        "properties",
        "tags",
        "links",
        "backlinks",
        "external_storage_ref",
        "last_import_batch",
    }
)


class ObjectStore(Protocol):
    """Async store interface used by the pipelines."""

    async def list_types(self) -> list[ObjectType]: ...

    async def list_objects(self) -> list[KnowledgeObject]: ...

    async def get_object(self, object_id: str) -> KnowledgeObject: ...

    async def create_object(self, draft: ObjectDraft) -> KnowledgeObject: ...

    async def update_object(self, object_id: str, **changes: Any) -> KnowledgeObject: ...

    async def delete_object(self, object_id: str) -> None: ...

    async def save_type(self, object_type: ObjectType) -> None: ...

    async def delete_type(self, type_id: str) -> None: ...


def _new_id() -> str:
    return uuid.uuid4().hex


class MemoryStore:
    """Dict-backed store. Returned records are copies; mutate through the API."""

    def __init__(
        self,
        types: list[ObjectType] | None = None,
        objects: list[KnowledgeObject] | None = None,
    ) -> None:
        self._types: dict[str, ObjectType] = {}
        self._objects: dict[str, KnowledgeObject] = {}
        for object_type in types if types is not None else default_object_types():
            self._types[object_type.id] = object_type.model_copy(deep=True)
        for obj in objects or []:
            self._objects[obj.id] = obj.model_copy(deep=True)

    async def list_types(self) -> list[ObjectType]:
        return [t.model_copy(deep=True) for t in self._types.values()]

    async def list_objects(self) -> list[KnowledgeObject]:
        return [o.model_copy(deep=True) for o in self._objects.values()]

    async def get_object(self, object_id: str) -> KnowledgeObject:
        try:
            return self._objects[object_id].model_copy(deep=True)
        except KeyError:
            raise ObjectNotFoundError(object_id) from None

    async def create_object(self, draft: ObjectDraft) -> KnowledgeObject:
        now = datetime.now(UTC)
        obj = KnowledgeObject(
            id=_new_id(),
            created_at=now,
            updated_at=now,
            **draft.model_dump(),
        )
        self._commit(self._objects, obj.id, obj)
        return obj.model_copy(deep=True)

    async def update_object(self, object_id: str, **changes: Any) -> KnowledgeObject:
        current = self._objects.get(object_id)
        if current is None:
            raise ObjectNotFoundError(object_id)

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise StoreError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.now(UTC)
        try:
            updated = KnowledgeObject.model_validate(data)
        except ValidationError as e:
            raise StoreError(f"Invalid update for {object_id}: {e}") from e

        self._commit(self._objects, object_id, updated)
        return updated.model_copy(deep=True)

    async def delete_object(self, object_id: str) -> None:
        if object_id not in self._objects:
            raise ObjectNotFoundError(object_id)
        self._commit(self._objects, object_id, None)

    async def save_type(self, object_type: ObjectType) -> None:
        self._commit(self._types, object_type.id, object_type.model_copy(deep=True))

    async def delete_type(self, type_id: str) -> None:
        if type_id not in self._types:
            raise ObjectNotFoundError(type_id, kind="type")
        self._commit(self._types, type_id, None)

    def _commit(self, table: dict[str, Any], key: str, value: Any | None) -> None:
        """Set or remove (``value`` None) one entry, then persist.

        If persisting fails the table is restored, so a failed write never
        leaves a record behind in memory.
        """
        previous = dict(table)
        if value is None:
            del table[key]
        else:
            table[key] = value
        try:
            self._changed()
        except Exception:
            table.clear()
            table.update(previous)
            raise

    def _changed(self) -> None:
        """Hook for subclasses that persist state."""


_types_adapter = TypeAdapter(list[ObjectType])
_objects_adapter = TypeAdapter(list[KnowledgeObject])


def _atomic_write(path: Path, payload: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class JsonFileStore(MemoryStore):
    """Store persisted as ``types.json`` and ``objects.json`` under ``root``.

    A new root is seeded with the default object types.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        types_path = root / TYPES_FILENAME
        objects_path = root / OBJECTS_FILENAME

        types: list[ObjectType] | None = None
        objects: list[KnowledgeObject] = []
        try:
            if types_path.exists():
                types = _types_adapter.validate_json(types_path.read_bytes())
            if objects_path.exists():
                objects = _objects_adapter.validate_json(objects_path.read_bytes())
        except (OSError, ValidationError) as e:
            raise StoreError(f"Cannot load store at {root}: {e}") from e

        super().__init__(types=types, objects=objects)
        log.debug("Loaded store %s: %d types, %d objects", root, len(self._types), len(self._objects))

    def _changed(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            _atomic_write(
                self.root / TYPES_FILENAME,
                json.dumps(
                    [t.model_dump(mode="json") for t in self._types.values()],
                    indent=2,
                    ensure_ascii=False,
                ),
            )
            _atomic_write(
                self.root / OBJECTS_FILENAME,
                json.dumps(
                    [o.model_dump(mode="json") for o in self._objects.values()],
                    indent=2,
                    ensure_ascii=False,
                ),
            )
        except OSError as e:
            raise StoreError(f"Cannot write store at {self.root}: {e}") from e
