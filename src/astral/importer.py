"""Import pipeline: knowledge-base ZIP export → objects in the store.

Phases run strictly in order and report progress through one callback:

    extracting → parsing → types → objects → links → media → complete

Documents are processed sequentially inside each phase. Media uploads are
the only concurrent work: they are scheduled as soon as the archive has been
read and only awaited in the media phase, so object creation never waits on
them.

Failures are layered. An unreadable archive, or one without documents, is a
single run-level error. Parse, create and update failures of one document
become warnings and the run continues. Anything else unexpected (for example
a store that cannot be listed) ends the run with one "Import failed" error.
The caller always receives an ImportOutcome.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import get_args

from .archive import ArchiveContents, extract_archive
from .context import RunContext
from .errors import ArchiveError
from .linker import link_objects
from .models import ImportOptions, ImportOutcome, ImportPhase, ImportProgress, ParsedDocument
from .parser import ParseError, parse_document
from .reconcile import Reconciler
from .store import ObjectStore
from .sync import SyncSession

log = logging.getLogger(__name__)

PHASES: tuple[str, ...] = get_args(ImportPhase)

NO_DOCUMENTS_MESSAGE = "No Markdown documents found in the archive"

ProgressCallback = Callable[[ImportProgress], None]


class ImportCancelled(Exception):
    """Raise from a progress callback to stop the run after the current unit of work."""


def new_batch_id() -> str:
    return f"{datetime.now(UTC):%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}"


class ProgressReporter:
    """Forwards progress to a callback, enforcing phase order.

    Phases may be skipped but never revisited, and ``current`` never goes
    down within a phase.
    """

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self.callback = callback
        self.phase: str | None = None
        self.current = 0

    def report(self, phase: ImportPhase, current: int, total: int, current_item: str | None = None) -> None:
        index = PHASES.index(phase)
        if self.phase is not None:
            previous = PHASES.index(self.phase)
            if index < previous:
                raise ValueError(f"Progress phase went backwards: {self.phase} -> {phase}")
            if index == previous and current < self.current:
                raise ValueError(f"Progress in phase {phase} went backwards: {self.current} -> {current}")

        self.phase = phase
        self.current = current
        if self.callback is not None:
            self.callback(ImportProgress(phase=phase, current=current, total=total, current_item=current_item))


def _schedule_media(
    contents: ArchiveContents,
    options: ImportOptions,
    session: SyncSession | None,
    outcome: ImportOutcome,
) -> dict[str, asyncio.Task[str]]:
    if not options.import_media or not contents.media:
        return {}
    if session is None:
        outcome.warnings.append(
            f"{len(contents.media)} media files found but no storage session was given; media not uploaded"
        )
        return {}
    return {
        path: asyncio.create_task(session.upload_media(path, data), name=f"media:{path}")
        for path, data in contents.media.items()
    }


async def _parse_documents(
    contents: ArchiveContents,
    progress: ProgressReporter,
    outcome: ImportOutcome,
) -> list[ParsedDocument]:
    documents: list[ParsedDocument] = []
    total = len(contents.documents)
    for index, entry in enumerate(contents.documents, start=1):
        try:
            document, warnings = parse_document(entry)
        except ParseError as e:
            log.warning("Skipping %s: %s", entry.path, e)
            outcome.warnings.append(f"Skipped '{entry.path}': {e}")
        else:
            documents.append(document)
            outcome.warnings.extend(warnings)
            log.debug("Parsed %s: %d references", entry.path, len(document.raw_references))
        progress.report("parsing", index, total, entry.path)
        # Markdown conversion is CPU work; give other tasks (media uploads) a turn
        await asyncio.sleep(0)
    return documents


async def _resolve_types(
    documents: list[ParsedDocument],
    context: RunContext,
    store: ObjectStore,
    progress: ProgressReporter,
    outcome: ImportOutcome,
) -> list[str]:
    type_ids: list[str] = []
    total = len(documents)
    for index, document in enumerate(documents, start=1):
        type_ids.append(context.resolve_type(document))
        progress.report("types", index, total, document.base_name)

    for object_type in context.new_types.values():
        try:
            await store.save_type(object_type)
        except Exception as e:
            log.warning("Could not save type %s: %s", object_type.id, e, exc_info=True)
            outcome.warnings.append(f"Could not create type '{object_type.name}': {e}")
            continue
        outcome.new_types_created.append(object_type)

    if outcome.new_types_created:
        log.info("Created %d new types", len(outcome.new_types_created))
    return type_ids


async def _finish_media(
    tasks: dict[str, asyncio.Task[str]],
    progress: ProgressReporter,
    outcome: ImportOutcome,
) -> None:
    if not tasks:
        return
    results = await asyncio.gather(*tasks.values(), return_exceptions=True)
    total = len(tasks)
    for index, (path, result) in enumerate(zip(tasks, results), start=1):
        if isinstance(result, BaseException):
            log.warning("Media upload failed for %s: %s", path, result)
            outcome.warnings.append(f"Could not upload media '{path}': {result}")
        else:
            outcome.media_count += 1
        progress.report("media", index, total, path)


async def _run(
    source: bytes | Path | str,
    store: ObjectStore,
    options: ImportOptions,
    progress: ProgressReporter,
    session: SyncSession | None,
    outcome: ImportOutcome,
    media_tasks: dict[str, asyncio.Task[str]],
) -> None:
    progress.report("extracting", 0, 1)
    try:
        contents = await asyncio.to_thread(extract_archive, source, options.import_media)
    except ArchiveError as e:
        outcome.errors.append(e.message)
        return
    outcome.warnings.extend(contents.warnings)
    progress.report("extracting", 1, 1)

    if not contents.documents:
        outcome.errors.append(NO_DOCUMENTS_MESSAGE)
        return

    media_tasks.update(_schedule_media(contents, options, session, outcome))

    documents = await _parse_documents(contents, progress, outcome)

    context = RunContext(outcome.batch_id, await store.list_types(), await store.list_objects())
    type_ids = await _resolve_types(documents, context, store, progress, outcome)

    reconciler = Reconciler(store, context, options, outcome)
    if options.convert_hashtags == "mentions":
        await reconciler.promote_hashtags(documents)

    total = len(documents)
    for index, (document, type_id) in enumerate(zip(documents, type_ids), start=1):
        await reconciler.reconcile(document, type_id)
        progress.report("objects", index, total, document.title)

    snapshot = context.freeze()
    progress.report("links", 0, len(snapshot.touched))
    await link_objects(
        store,
        snapshot,
        options,
        outcome,
        on_object=lambda index, count, obj: progress.report("links", index, count, obj.title),
    )

    await _finish_media(media_tasks, progress, outcome)
    progress.report("complete", 1, 1)


async def import_archive(
    source: bytes | Path | str,
    store: ObjectStore,
    options: ImportOptions | None = None,
    on_progress: ProgressCallback | None = None,
    session: SyncSession | None = None,
) -> ImportOutcome:
    """Import a knowledge-base export into the store.

    Args:
        source: Archive bytes or path to the ZIP file.
        store: Object store receiving types and objects.
        options: Conflict policy, media and hashtag handling. Defaults apply when None.
        on_progress: Called after every unit of work. Raising ImportCancelled
            from it stops the run; work already done is kept.
        session: Storage session used for media uploads.

    Returns:
        The run's ImportOutcome. Objects created or updated by the run carry
        its ``batch_id``.
    """
    options = options or ImportOptions()
    outcome = ImportOutcome(batch_id=new_batch_id())
    progress = ProgressReporter(on_progress)
    media_tasks: dict[str, asyncio.Task[str]] = {}

    log.info("Starting import %s (conflicts=%s)", outcome.batch_id, options.handle_conflicts)
    try:
        await _run(source, store, options, progress, session, outcome, media_tasks)
    except ImportCancelled:
        log.info("Import %s cancelled", outcome.batch_id)
        outcome.errors.append("Import cancelled")
    except Exception as e:
        log.error("Import %s failed: %s", outcome.batch_id, e, exc_info=True)
        outcome.errors.append(f"Import failed: {e}")
    finally:
        for task in media_tasks.values():
            if not task.done():
                task.cancel()

    log.info(
        "Import %s finished: %d created, %d updated, %d skipped, %d warnings",
        outcome.batch_id,
        outcome.created_count,
        outcome.updated_count,
        outcome.skipped_count,
        len(outcome.warnings),
    )
    return outcome
