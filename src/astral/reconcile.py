"""Reconciliation of parsed documents against the existing object graph.

For every document the engine looks for a pre-existing object with the same
type and title (ignoring case) and applies the run's conflict policy:

    policy      match found                               no match
    skip        keep existing, record as skipped          create
    merge       union tags, shallow-merge properties,     create
                replace body
    overwrite   replace tags, properties and body         create
    duplicate   create with a suffixed title              create

Every mapped object is registered in the run context under all of its
aliases so that the link pass can resolve references to it. A failure while
creating or updating one document becomes a warning; the batch continues.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from .config import DUPLICATE_TITLE_SUFFIX, TAG_TYPE_ID
from .context import RunContext
from .models import (
    ImportOptions,
    ImportOutcome,
    KnowledgeObject,
    ObjectDraft,
    ParsedDocument,
    PropertyValue,
    SkippedItem,
)
from .parser.links import extract_hashtags
from .properties import extract_properties
from .store import ObjectStore

log = logging.getLogger(__name__)

SKIP_REASON = "An object with the same title already exists"


def normalize_tags(raw: Any) -> list[str]:
    """Turn a declared ``tags`` value into a clean tag list.

    Accepts a YAML list or a comma-separated string; leading '#' is dropped
    and duplicates (ignoring case) are removed, keeping the first spelling.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        items: list[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple, set)):
        items = list(raw)
    else:
        items = [raw]

    return union_tags([], [str(item).strip().lstrip("#").strip() for item in items if item is not None])


def union_tags(existing: Sequence[str], incoming: Sequence[str]) -> list[str]:
    """Ordered union of two tag lists, ignoring case."""
    seen: set[str] = set()
    merged: list[str] = []
    for tag in [*existing, *incoming]:
        key = tag.lower()
        if tag and key not in seen:
            seen.add(key)
            merged.append(tag)
    return merged


def merge_properties(
    existing: dict[str, PropertyValue],
    incoming: dict[str, PropertyValue],
) -> dict[str, PropertyValue]:
    """Shallow merge: incoming keys win, other existing keys are kept."""
    merged = dict(existing)
    merged.update(incoming)
    return merged


class Reconciler:
    """Applies one run's conflict policy to parsed documents, in order."""

    def __init__(
        self,
        store: ObjectStore,
        context: RunContext,
        options: ImportOptions,
        outcome: ImportOutcome,
    ) -> None:
        self.store = store
        self.context = context
        self.options = options
        self.outcome = outcome

    async def promote_hashtags(self, documents: Sequence[ParsedDocument]) -> None:
        """Find or create a tag object for every distinct hashtag in the batch.

        Must complete before any body is rewritten so every hashtag target
        resolves in the link pass.
        """
        names: dict[str, str] = {}
        for document in documents:
            for name in extract_hashtags(document.body_plain_text):
                names.setdefault(name.lower(), name)

        if not names:
            return

        tag_type = self.context.find_type(TAG_TYPE_ID)
        if tag_type is None:
            self.outcome.warnings.append(
                f"No '{TAG_TYPE_ID}' type in the schema; {len(names)} hashtags left as text"
            )
            return

        for key in names:
            existing = self.context.find_existing(tag_type.id, key)
            if existing is not None:
                self.context.register_hashtag(key, existing.id)
                continue
            try:
                created = await self.store.create_object(
                    ObjectDraft(type=tag_type.id, title=key, import_batch=self.context.batch_id)
                )
            except Exception as e:
                log.warning("Could not create tag object %r: %s", key, e, exc_info=True)
                self.outcome.warnings.append(f"Could not create tag '{key}': {e}")
                continue
            self.context.register_hashtag(key, created.id)

        log.info("Promoted %d hashtags to tag objects", len(self.context.hashtags))

    def _tags_for(self, document: ParsedDocument) -> list[str]:
        tags = normalize_tags(document.declared_metadata.get("tags"))
        if self.options.convert_hashtags == "tags":
            tags = union_tags(tags, extract_hashtags(document.body_plain_text))
        return tags

    async def _save_new_properties(self, type_id: str, document: ParsedDocument) -> dict[str, PropertyValue]:
        object_type = self.context.get_type(type_id)
        extraction = extract_properties(document.declared_metadata, object_type)
        if extraction.new_properties:
            updated = self.context.add_properties(type_id, extraction.new_properties)
            if updated is not None:
                await self.store.save_type(updated)
        return extraction.values

    async def reconcile(self, document: ParsedDocument, type_id: str) -> KnowledgeObject | None:
        """Reconcile one document. Never raises for per-document failures.

        Returns:
            The created or updated object, or None when skipped or failed.
        """
        try:
            return await self._reconcile(document, type_id)
        except Exception as e:
            log.warning("Error importing %s: %s", document.source_path, e, exc_info=True)
            self.outcome.warnings.append(f"Error importing '{document.base_name}': {e}")
            return None

    async def _reconcile(self, document: ParsedDocument, type_id: str) -> KnowledgeObject | None:
        properties = await self._save_new_properties(type_id, document)
        title = document.title
        tags = self._tags_for(document)
        policy = self.options.handle_conflicts

        existing = self.context.find_existing(type_id, title)

        if existing is not None and policy == "skip":
            self.outcome.skipped_count += 1
            self.outcome.skipped_items.append(SkippedItem(title=title, reason=SKIP_REASON))
            self.context.register(document, existing)
            log.debug("Skipped %r (existing %s)", title, existing.id)
            return None

        if existing is not None and policy in ("merge", "overwrite"):
            if policy == "merge":
                new_properties = merge_properties(existing.properties, properties)
                new_tags = union_tags(existing.tags, tags)
            else:
                new_properties = properties
                new_tags = tags

            updated = await self.store.update_object(
                existing.id,
                content=document.body_rich_text,
                properties=new_properties,
                tags=new_tags,
                last_import_batch=self.context.batch_id,
            )
            self.outcome.updated_count += 1
            self.context.register(document, updated)
            self.context.touch(updated, document)
            return updated

        if existing is not None and policy == "duplicate":
            title = f"{title}{DUPLICATE_TITLE_SUFFIX}"

        created = await self.store.create_object(
            ObjectDraft(
                type=type_id,
                title=title,
                content=document.body_rich_text,
                properties=properties,
                tags=tags,
                import_batch=self.context.batch_id,
            )
        )
        self.outcome.created_count += 1
        self.context.register(document, created)
        self.context.touch(created, document)
        return created
