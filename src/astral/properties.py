"""Typed property extraction from document metadata."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from .config import RESERVED_METADATA_KEYS
from .models import (
    BooleanValue,
    DateValue,
    NumberValue,
    ObjectRef,
    ObjectType,
    PropertyDefinition,
    PropertyExtraction,
    PropertyType,
    PropertyValue,
    RelationValue,
    StringListValue,
    TextValue,
)

log = logging.getLogger(__name__)

DATE_PREFIX_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


def property_id_for(key: str) -> str:
    """Property id for a metadata key: lowercase with whitespace runs as hyphens."""
    return re.sub(r"\s+", "-", key.strip().lower())


def parse_date(value: str) -> date | datetime | None:
    """Parse an ISO-like date or datetime string, or return None."""
    text = value.strip()
    if not DATE_PREFIX_PATTERN.match(text):
        return None
    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def infer_property_type(value: Any) -> PropertyType:
    """Infer a property type from the shape of a raw metadata value."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (date, datetime)):
        return "date"
    if isinstance(value, str):
        if parse_date(value) is not None:
            return "date"
        if URL_PATTERN.match(value):
            return "url"
        if EMAIL_PATTERN.match(value):
            return "email"
        return "text"
    if isinstance(value, (list, tuple, set)):
        return "multiselect"
    return "text"


def _as_text(value: Any) -> TextValue:
    if isinstance(value, (dict, list)):
        return TextValue(value=json.dumps(value, default=str, ensure_ascii=False))
    if isinstance(value, (date, datetime)):
        return TextValue(value=value.isoformat())
    return TextValue(value=str(value))


def _as_string_list(value: Any) -> StringListValue:
    if isinstance(value, (list, tuple, set)):
        return StringListValue(value=[str(item) for item in value if item is not None])
    if isinstance(value, str):
        return StringListValue(value=[part.strip() for part in value.split(",") if part.strip()])
    return StringListValue(value=[str(value)])


def _as_date(value: Any) -> PropertyValue:
    if isinstance(value, (date, datetime)):
        return DateValue(value=value)
    if isinstance(value, str):
        parsed = parse_date(value)
        if parsed is not None:
            return DateValue(value=parsed)
    return _as_text(value)


def _as_number(value: Any) -> PropertyValue:
    if isinstance(value, bool):
        return NumberValue(value=int(value))
    if isinstance(value, (int, float)):
        return NumberValue(value=value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return _as_text(value)
        return NumberValue(value=int(number) if number.is_integer() else number)
    return _as_text(value)


def _as_boolean(value: Any) -> PropertyValue:
    if isinstance(value, bool):
        return BooleanValue(value=value)
    lowered = str(value).strip().lower()
    if lowered in _TRUE_STRINGS:
        return BooleanValue(value=True)
    if lowered in _FALSE_STRINGS:
        return BooleanValue(value=False)
    return _as_text(value)


def _as_relation(value: Any) -> RelationValue:
    titles = _as_string_list(value).value
    return RelationValue(value=[ObjectRef(title=_strip_wikilink(title)) for title in titles])


def _strip_wikilink(title: str) -> str:
    title = title.strip()
    if title.startswith("[[") and title.endswith("]]"):
        title = title[2:-2].split("|", 1)[0].strip()
    return title


def coerce_value(value: Any, prop_type: PropertyType) -> PropertyValue:
    """Coerce a raw metadata value to a property type.

    Values that cannot be represented as the declared type are kept as text
    rather than dropped or turned into invalid values.
    """
    if prop_type in ("date", "datetime"):
        return _as_date(value)
    if prop_type in ("number", "rating"):
        return _as_number(value)
    if prop_type == "boolean":
        return _as_boolean(value)
    if prop_type in ("multiselect", "tags"):
        return _as_string_list(value)
    if prop_type == "relation":
        return _as_relation(value)
    if isinstance(value, (list, tuple, set)):
        return _as_string_list(value)
    return _as_text(value)


def extract_properties(
    metadata: Mapping[str, Any],
    object_type: ObjectType | None,
) -> PropertyExtraction:
    """Convert declared metadata into typed property values.

    Reserved keys (type, title, tags, id) and null values are skipped. Keys
    matching a property of the resolved type (by id or by name, ignoring
    case) are coerced to that property's type; unknown keys get an inferred
    type and a new property definition.

    Args:
        metadata: Declared metadata of one document.
        object_type: Resolved type, or None when the type is not known yet.

    Returns:
        PropertyExtraction with values keyed by property id and the new
        property definitions in metadata order.
    """
    extraction = PropertyExtraction()
    pending_ids: set[str] = set()

    for key, raw in metadata.items():
        if key.strip().lower() in RESERVED_METADATA_KEYS:
            continue
        if raw is None:
            continue

        prop_id = property_id_for(key)
        if not prop_id:
            continue

        existing = None
        if object_type is not None:
            existing = object_type.find_property(prop_id) or object_type.find_property(key)

        if existing is not None:
            extraction.values[existing.id] = coerce_value(raw, existing.type)
            continue

        prop_type = infer_property_type(raw)
        if prop_id not in pending_ids:
            pending_ids.add(prop_id)
            extraction.new_properties.append(
                PropertyDefinition(id=prop_id, name=key.strip(), type=prop_type)
            )
        extraction.values[prop_id] = coerce_value(raw, prop_type)

    if extraction.new_properties:
        log.debug(
            "Discovered %d new properties: %s",
            len(extraction.new_properties),
            ", ".join(p.id for p in extraction.new_properties),
        )
    return extraction
