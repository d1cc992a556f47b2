"""Second pass: rewrite in-body references into object-id mention spans.

Runs over every object the reconciliation pass created or updated, against
the frozen alias map. Each object's body is rendered again from its Markdown
source with a ``ReferenceRenderer`` that resolves wikilinks and document
links while rendering (and promotes hashtags when that is on). Unresolved
references become visible broken-mention spans and are reported per object;
they are never dropped. The outbound ``links`` list is the set of mention
ids the rendered body carries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence

from .context import LinkSnapshot
from .models import (
    ImportOptions,
    ImportOutcome,
    KnowledgeObject,
    ObjectRef,
    ParsedDocument,
    PropertyValue,
    RelationValue,
)
from .parser.md_renderer import MarkdownResult, render_markdown
from .store import ObjectStore

log = logging.getLogger(__name__)


def link_body(
    document: ParsedDocument,
    snapshot: LinkSnapshot,
    hashtags: Mapping[str, str] | None = None,
) -> MarkdownResult:
    """Render a document body with its references resolved against the snapshot."""

    def _resolve(keys: Sequence[str]) -> str | None:
        mapped = snapshot.resolve(keys)
        return mapped.id if mapped is not None else None

    return render_markdown(document.body_plain_text, resolve=_resolve, hashtags=hashtags)


def resolve_relation_properties(
    properties: Mapping[str, PropertyValue],
    snapshot: LinkSnapshot,
) -> dict[str, PropertyValue] | None:
    """Fill in ids of relation refs that name an object of the run.

    Returns:
        The new property dict when anything was resolved, else None.
    """
    changed = False
    resolved: dict[str, PropertyValue] = dict(properties)
    for key, value in properties.items():
        if not isinstance(value, RelationValue):
            continue
        refs: list[ObjectRef] = []
        for ref in value.value:
            if not ref.id:
                mapped = snapshot.resolve([ref.title])
                if mapped is not None:
                    ref = ObjectRef(id=mapped.id, title=mapped.title)
                    changed = True
            refs.append(ref)
        resolved[key] = RelationValue(value=refs)
    return resolved if changed else None


async def link_objects(
    store: ObjectStore,
    snapshot: LinkSnapshot,
    options: ImportOptions,
    outcome: ImportOutcome,
    on_object: Callable[[int, int, KnowledgeObject], None] | None = None,
) -> None:
    """Rewrite references in every object touched by the run.

    Args:
        store: Store receiving the rewritten bodies.
        snapshot: Frozen alias map of the run.
        options: Run options (hashtag handling).
        outcome: Accumulator for warnings and unresolved counts.
        on_object: Called after each object with (index, total, object).
    """
    total = len(snapshot.touched)
    hashtags = snapshot.hashtags if options.convert_hashtags == "mentions" else None
    for index, touched in enumerate(snapshot.touched, start=1):
        obj = touched.obj
        try:
            result = link_body(touched.document, snapshot, hashtags)
            distinct = {target.strip().lower() for target in result.unresolved}
            if distinct:
                outcome.unresolved_references[obj.id] = len(distinct)
                outcome.warnings.append(f"{obj.title}: {len(distinct)} unresolved references")

            changes: dict = {}
            if result.html != obj.content:
                changes["content"] = result.html
            if result.links != obj.links:
                changes["links"] = result.links
            properties = resolve_relation_properties(obj.properties, snapshot)
            if properties is not None:
                changes["properties"] = properties

            if changes:
                await store.update_object(obj.id, **changes)
        except Exception as e:
            log.warning("Link pass failed for %s: %s", obj.id, e, exc_info=True)
            outcome.warnings.append(f"Could not resolve links in '{obj.title}': {e}")

        if on_object is not None:
            on_object(index, total, obj)
