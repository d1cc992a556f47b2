"""Pydantic models for the object graph and the import/cleanup pipeline."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

PropertyType = Literal[
    "text",
    "number",
    "date",
    "datetime",
    "boolean",
    "select",
    "multiselect",
    "relation",
    "rating",
    "tags",
    "url",
    "email",
    "image",
]

ConflictPolicy = Literal["skip", "merge", "overwrite", "duplicate"]
HashtagMode = Literal["mentions", "tags", "plain"]
ImportPhase = Literal["extracting", "parsing", "types", "objects", "links", "media", "complete"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ─────────────────────────────────────────────────────────────────────────────
# Property values (tagged union on ``kind``)
# ─────────────────────────────────────────────────────────────────────────────


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    value: str

    def plain(self) -> Any:
        return self.value


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    value: int | float

    def plain(self) -> Any:
        return self.value


class BooleanValue(BaseModel):
    kind: Literal["boolean"] = "boolean"
    value: bool

    def plain(self) -> Any:
        return self.value


class DateValue(BaseModel):
    kind: Literal["date"] = "date"
    value: date | datetime

    def plain(self) -> Any:
        return self.value.isoformat()


class StringListValue(BaseModel):
    kind: Literal["string_list"] = "string_list"
    value: list[str] = Field(default_factory=list)

    def plain(self) -> Any:
        return list(self.value)


class ObjectRef(BaseModel):
    """Reference to another object. ``id`` is empty until the link pass resolves it."""

    id: str = ""
    title: str


class RelationValue(BaseModel):
    kind: Literal["relation"] = "relation"
    value: list[ObjectRef] = Field(default_factory=list)

    def plain(self) -> Any:
        return [ref.title for ref in self.value]


PropertyValue = Annotated[
    Union[TextValue, NumberValue, BooleanValue, DateValue, StringListValue, RelationValue],
    Field(discriminator="kind"),
]


# ─────────────────────────────────────────────────────────────────────────────
# Schema and objects
# ─────────────────────────────────────────────────────────────────────────────


class PropertyDefinition(BaseModel):
    """A typed property slot on an ObjectType."""

    id: str
    name: str
    type: PropertyType
    options: list[str] | None = None  # For select/multiselect
    relation_type_id: str | None = None  # Restricts relation targets to one type


class ObjectType(BaseModel):
    """A user-visible object type (page, person, book, ...)."""

    id: str
    name: str
    name_plural: str
    icon: str = "📄"
    color: str = "#6366f1"
    properties: list[PropertyDefinition] = Field(default_factory=list)

    def find_property(self, key: str) -> PropertyDefinition | None:
        """Find a property by id, or by display name case-insensitively."""
        lowered = key.lower()
        for prop in self.properties:
            if prop.id == key or prop.name.lower() == lowered:
                return prop
        return None


class KnowledgeObject(BaseModel):
    """A typed object in the knowledge graph."""

    id: str
    type: str
    title: str
    content: str = ""  # Rich text (HTML)
    properties: dict[str, PropertyValue] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)  # Outbound object ids
    backlinks: list[str] = Field(default_factory=list)  # Inbound object ids
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    external_storage_ref: str | None = None  # Set once durably written to external storage
    import_batch: str | None = None  # Import run that created this object
    last_import_batch: str | None = None  # Last import run that updated this object

    @property
    def is_synced(self) -> bool:
        return bool(self.external_storage_ref)


class ObjectDraft(BaseModel):
    """Fields accepted by ObjectStore.create_object."""

    type: str
    title: str
    content: str = ""
    properties: dict[str, PropertyValue] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    import_batch: str | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────


class RawReference(BaseModel):
    """A cross-document reference as written in the source body."""

    text: str
    target_path: str
    syntax: Literal["markdown", "wikilink"]


class ParsedDocument(BaseModel):
    """One archive document split into metadata and body.

    ``body_plain_text`` keeps the Markdown source: the link pass renders it
    again with references resolved. ``raw_references`` is what the parser
    saw before resolution and feeds the per-document reference count in the
    parse log.
    """

    source_path: str
    category_hint: str
    base_name: str
    declared_metadata: dict[str, Any] = Field(default_factory=dict)
    body_plain_text: str = ""
    body_rich_text: str = ""
    raw_references: list[RawReference] = Field(default_factory=list)

    @property
    def declared_title(self) -> str | None:
        title = self.declared_metadata.get("title")
        if title is None:
            return None
        title = str(title).strip()
        return title or None

    @property
    def declared_type(self) -> str | None:
        declared = self.declared_metadata.get("type")
        if declared is None or isinstance(declared, (list, dict)):
            return None
        declared = str(declared).strip()
        return declared or None

    @property
    def title(self) -> str:
        return self.declared_title or self.base_name

    @property
    def alias_path(self) -> str:
        """The synthesized ``category/filename`` alias."""
        return f"{self.category_hint}/{self.base_name}"


class TypeResolution(BaseModel):
    type_id: str
    is_new_type: bool = False
    new_type: ObjectType | None = None


class PropertyExtraction(BaseModel):
    values: dict[str, PropertyValue] = Field(default_factory=dict)
    new_properties: list[PropertyDefinition] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# Import pipeline records
# ─────────────────────────────────────────────────────────────────────────────


class ImportOptions(BaseModel):
    """Per-run import configuration."""

    handle_conflicts: ConflictPolicy = "skip"
    import_media: bool = False
    convert_hashtags: HashtagMode = "mentions"


class ImportProgress(BaseModel):
    phase: ImportPhase
    current: int
    total: int
    current_item: str | None = None


class SkippedItem(BaseModel):
    title: str
    reason: str


class ImportOutcome(BaseModel):
    """Accumulated result of one import run."""

    batch_id: str = ""
    created_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    skipped_items: list[SkippedItem] = Field(default_factory=list)
    new_types_created: list[ObjectType] = Field(default_factory=list)
    unresolved_references: dict[str, int] = Field(default_factory=dict)  # object id -> count
    media_count: int = 0


# ─────────────────────────────────────────────────────────────────────────────
# Cleanup records
# ─────────────────────────────────────────────────────────────────────────────


class CleanupProgress(BaseModel):
    state: Literal["idle", "deleting-objects", "deleting-types", "done"]
    current: int = 0
    total: int = 0
    current_item: str | None = None


class CleanupResult(BaseModel):
    deleted_object_count: int = 0
    deleted_type_count: int = 0
    errors: list[str] = Field(default_factory=list)
