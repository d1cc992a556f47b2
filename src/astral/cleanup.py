"""Revert of imports: delete unsynced objects, then types left without members.

An object that has never been written to external storage has no
``external_storage_ref``; that absence is what marks it as revertible. When a
batch id is given, only unsynced objects created by that import are
deleted. Without one, every unsynced object goes, whichever import created
it.

Type usage is recounted over the objects that remain after the deletion
pass (objects whose deletion failed included), and types in the protected
set are never deleted. Individual failures are collected in the result and
the pass continues.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Collection
from enum import Enum

from .config import PROTECTED_TYPE_IDS
from .models import CleanupProgress, CleanupResult
from .store import ObjectStore

log = logging.getLogger(__name__)

CleanupCallback = Callable[[CleanupProgress], None]


class RevertState(str, Enum):
    IDLE = "idle"
    DELETING_OBJECTS = "deleting-objects"
    DELETING_TYPES = "deleting-types"
    DONE = "done"


def _notify(
    on_progress: CleanupCallback | None,
    state: RevertState,
    current: int = 0,
    total: int = 0,
    current_item: str | None = None,
) -> None:
    if on_progress is not None:
        on_progress(CleanupProgress(state=state.value, current=current, total=total, current_item=current_item))


async def delete_unsynced_objects(
    store: ObjectStore,
    batch_id: str | None = None,
    on_progress: CleanupCallback | None = None,
) -> CleanupResult:
    """Delete every object without an external storage ref.

    Args:
        store: Store to clean up.
        batch_id: Only delete unsynced objects created by this import.
        on_progress: Called before the first deletion and after each one.

    Returns:
        CleanupResult with ``deleted_object_count`` and per-object errors.
    """
    result = CleanupResult()
    targets = [
        obj
        for obj in await store.list_objects()
        if not obj.is_synced and (batch_id is None or obj.import_batch == batch_id)
    ]
    total = len(targets)
    log.info("Deleting %d unsynced objects", total)

    _notify(on_progress, RevertState.DELETING_OBJECTS, 0, total)
    for index, obj in enumerate(targets, start=1):
        try:
            await store.delete_object(obj.id)
            result.deleted_object_count += 1
        except Exception as e:
            log.warning("Could not delete object %s: %s", obj.id, e)
            result.errors.append(f"Failed to delete object '{obj.title}': {e}")
        _notify(on_progress, RevertState.DELETING_OBJECTS, index, total, obj.title)

    return result


async def delete_orphan_types(
    store: ObjectStore,
    protected_type_ids: Collection[str] = PROTECTED_TYPE_IDS,
    on_progress: CleanupCallback | None = None,
) -> CleanupResult:
    """Delete types with no member objects, except protected ones.

    Returns:
        CleanupResult with ``deleted_type_count`` and per-type errors.
    """
    result = CleanupResult()
    usage = Counter(obj.type for obj in await store.list_objects())
    orphans = [
        object_type
        for object_type in await store.list_types()
        if usage[object_type.id] == 0 and object_type.id not in protected_type_ids
    ]
    total = len(orphans)
    log.info("Deleting %d unused types", total)

    _notify(on_progress, RevertState.DELETING_TYPES, 0, total)
    for index, object_type in enumerate(orphans, start=1):
        try:
            await store.delete_type(object_type.id)
            result.deleted_type_count += 1
        except Exception as e:
            log.warning("Could not delete type %s: %s", object_type.id, e)
            result.errors.append(f"Failed to delete type '{object_type.name}': {e}")
        _notify(on_progress, RevertState.DELETING_TYPES, index, total, object_type.name)

    return result


async def revert_import(
    store: ObjectStore,
    on_progress: CleanupCallback | None = None,
    batch_id: str | None = None,
    protected_type_ids: Collection[str] = PROTECTED_TYPE_IDS,
) -> CleanupResult:
    """Undo unsynced imports: objects first, then the types they leave empty.

    States advance idle → deleting-objects → deleting-types → done, with a
    progress notification at every step.
    """
    _notify(on_progress, RevertState.IDLE)

    objects = await delete_unsynced_objects(store, batch_id=batch_id, on_progress=on_progress)
    types = await delete_orphan_types(store, protected_type_ids=protected_type_ids, on_progress=on_progress)

    result = CleanupResult(
        deleted_object_count=objects.deleted_object_count,
        deleted_type_count=types.deleted_type_count,
        errors=[*objects.errors, *types.errors],
    )
    deleted = result.deleted_object_count + result.deleted_type_count
    _notify(on_progress, RevertState.DONE, deleted, deleted)
    log.info(
        "Revert finished: %d objects and %d types deleted, %d errors",
        result.deleted_object_count,
        result.deleted_type_count,
        len(result.errors),
    )
    return result
