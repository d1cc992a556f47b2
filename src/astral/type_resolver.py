"""Mapping of document categories onto the live type schema.

Resolution order for a document:

1. The static alias table (``config.TYPE_ALIASES``), when the aliased type
   exists in the schema.
2. Any existing type whose id, name or plural name normalizes to the same
   string as the declared type or the category hint (first match wins, in
   schema order).
3. A synthesized type with a slug id and a color derived from that id.
"""

from __future__ import annotations

import hashlib
import logging
import re
import unicodedata
from collections.abc import Sequence

from .config import (
    DEFAULT_TYPE_ICON,
    TYPE_ALIASES,
    TYPE_COLOR_LIGHTNESS,
    TYPE_COLOR_SATURATION,
)
from .models import ObjectType, TypeResolution

log = logging.getLogger(__name__)

FALLBACK_TYPE_ID = "imported"


def strip_accents(value: str) -> str:
    """Remove combining diacritics (é -> e, ñ -> n)."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_type_name(value: str) -> str:
    """Normalize a type name for comparison.

    Lower-cases, strips diacritics and removes one trailing plural suffix,
    trying ``es`` before ``s``. Singular words ending in s are shortened too
    ("atlas" -> "atla"); both sides of a comparison go through the same
    function, so this only matters against names that differ in that letter.
    """
    normalized = strip_accents(value.strip().lower())
    if normalized.endswith("es"):
        return normalized[:-2]
    if normalized.endswith("s"):
        return normalized[:-1]
    return normalized


def slugify_type_id(value: str) -> str:
    """Turn a category name into a type id: ascii, lowercase, hyphen-separated."""
    slug = strip_accents(value.strip().lower())
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-")


def type_color(type_id: str) -> str:
    """Deterministic HSL color for a type id."""
    digest = hashlib.sha256(type_id.encode("utf-8")).digest()
    hue = int.from_bytes(digest[:4], "big") % 360
    return f"hsl({hue}, {TYPE_COLOR_SATURATION}%, {TYPE_COLOR_LIGHTNESS}%)"


def _capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


def _alias_target(candidate: str) -> str | None:
    normalized = normalize_type_name(candidate)
    lowered = candidate.strip().lower()
    for alias, target in TYPE_ALIASES.items():
        if normalize_type_name(alias) == normalized or alias == lowered:
            return target
    return None


def build_new_type(type_id: str, category_hint: str) -> ObjectType:
    """Synthesize a type definition for a category with no schema match."""
    display = _capitalize(category_hint.strip()) or _capitalize(type_id)
    return ObjectType(
        id=type_id,
        name=display,
        name_plural=display,
        icon=DEFAULT_TYPE_ICON,
        color=type_color(type_id),
        properties=[],
    )


def resolve_type(
    category_hint: str,
    declared_type: str | None,
    existing_types: Sequence[ObjectType],
) -> TypeResolution:
    """Map a document's declared type or category onto the schema.

    Args:
        category_hint: Folder-derived category of the document.
        declared_type: ``type`` field from the document metadata, if any.
        existing_types: Live schema, in its current order.

    Returns:
        TypeResolution naming the type id, with a new type definition when
        nothing matched.
    """
    candidate = declared_type or category_hint
    normalized = normalize_type_name(candidate)
    normalized_hint = normalize_type_name(category_hint)
    existing_ids = {t.id for t in existing_types}

    target = _alias_target(candidate)
    if target and target in existing_ids:
        return TypeResolution(type_id=target)

    for object_type in existing_types:
        names = {
            normalize_type_name(object_type.id),
            normalize_type_name(object_type.name),
            normalize_type_name(object_type.name_plural),
        }
        if normalized in names or normalized_hint in names:
            log.debug("Mapped type %r to existing %r", candidate, object_type.id)
            return TypeResolution(type_id=object_type.id)

    type_id = slugify_type_id(candidate) or FALLBACK_TYPE_ID
    if type_id in existing_ids:
        return TypeResolution(type_id=type_id)

    log.debug("Synthesizing type %r from category %r", type_id, category_hint)
    return TypeResolution(
        type_id=type_id,
        is_new_type=True,
        new_type=build_new_type(type_id, category_hint),
    )
