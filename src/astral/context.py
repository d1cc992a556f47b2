"""Run-scoped state for one import.

``RunContext`` is owned by a single import run. It accumulates the alias map
(every string a reference may use for an object), the live type list with
the types and properties discovered during the run, the hashtag map and the
objects touched by reconciliation. The link pass never sees the builder: it
receives the immutable ``LinkSnapshot`` returned by ``freeze()``, after which
the builder refuses further alias registrations.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from .models import KnowledgeObject, ObjectType, ParsedDocument, PropertyDefinition
from .type_resolver import resolve_type


class ContextFrozenError(RuntimeError):
    """Raised when the alias map is modified after the link pass started."""


@dataclass(frozen=True)
class MappedObject:
    id: str
    title: str


@dataclass(frozen=True)
class TouchedObject:
    """An object created or updated by the run, with the document it came from."""

    obj: KnowledgeObject
    document: ParsedDocument


@dataclass(frozen=True)
class LinkSnapshot:
    """Immutable view of the finished alias map, used by the link pass."""

    aliases: Mapping[str, MappedObject]
    hashtags: Mapping[str, str]  # lowercase tag name -> tag object id
    touched: tuple[TouchedObject, ...]
    existing_titles: Mapping[str, MappedObject]  # lowercase title -> pre-existing object
    _folded_aliases: Mapping[str, MappedObject] = field(init=False, repr=False, compare=False)
    _folded_titles: Mapping[str, MappedObject] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        folded_aliases: dict[str, MappedObject] = {}
        folded_titles: dict[str, MappedObject] = {}
        for alias, mapped in self.aliases.items():
            folded_aliases.setdefault(alias.strip().lower(), mapped)
            folded_titles.setdefault(mapped.title.strip().lower(), mapped)
        object.__setattr__(self, "_folded_aliases", MappingProxyType(folded_aliases))
        object.__setattr__(self, "_folded_titles", MappingProxyType(folded_titles))

    def resolve(self, keys: Iterable[str]) -> MappedObject | None:
        """Resolve the first key that matches anything.

        For each key in order: exact alias, alias ignoring case, title of a
        mapped object ignoring case. Pre-existing objects outside the run are
        matched by title only after every key failed against the run's map.
        """
        candidates = [key for key in keys if key and key.strip()]
        for key in candidates:
            exact = self.aliases.get(key)
            if exact is not None:
                return exact
            folded = key.strip().lower()
            mapped = self._folded_aliases.get(folded) or self._folded_titles.get(folded)
            if mapped is not None:
                return mapped
        for key in candidates:
            mapped = self.existing_titles.get(key.strip().lower())
            if mapped is not None:
                return mapped
        return None


class RunContext:
    """Mutable builder for one import run."""

    def __init__(
        self,
        batch_id: str,
        types: Sequence[ObjectType],
        existing_objects: Sequence[KnowledgeObject],
    ) -> None:
        self.batch_id = batch_id
        self.types: list[ObjectType] = [t.model_copy(deep=True) for t in types]
        self.existing_objects: tuple[KnowledgeObject, ...] = tuple(existing_objects)
        self.new_types: dict[str, ObjectType] = {}
        self.hashtags: dict[str, str] = {}
        self._aliases: dict[str, MappedObject] = {}
        self._touched: dict[str, TouchedObject] = {}
        self._frozen = False

    # ── types ──────────────────────────────────────────────────────────────

    def get_type(self, type_id: str) -> ObjectType | None:
        for object_type in self.types:
            if object_type.id == type_id:
                return object_type
        return None

    def find_type(self, type_id: str) -> ObjectType | None:
        """Find a type by id, or by singular name ignoring case."""
        found = self.get_type(type_id)
        if found is not None:
            return found
        for object_type in self.types:
            if object_type.name.lower() == type_id.lower():
                return object_type
        return None

    def resolve_type(self, document: ParsedDocument) -> str:
        """Resolve a document's type against the schema as it was at run start.

        A synthesized type is recorded the first time its id appears; later
        documents of the same category reuse it.
        """
        existing = [t for t in self.types if t.id not in self.new_types]
        resolution = resolve_type(document.category_hint, document.declared_type, existing)
        if resolution.is_new_type and resolution.new_type is not None:
            if resolution.type_id not in self.new_types:
                self.new_types[resolution.type_id] = resolution.new_type
                self.types.append(resolution.new_type)
        return resolution.type_id

    def add_properties(self, type_id: str, definitions: Sequence[PropertyDefinition]) -> ObjectType | None:
        """Append property definitions not yet on the type.

        Returns:
            The updated type when anything was appended, else None.
        """
        object_type = self.get_type(type_id)
        if object_type is None:
            return None

        known = {p.id for p in object_type.properties}
        added = [d for d in definitions if d.id not in known]
        if not added:
            return None

        object_type.properties.extend(d.model_copy() for d in added)
        return object_type

    # ── objects ────────────────────────────────────────────────────────────

    def find_existing(self, type_id: str, title: str) -> KnowledgeObject | None:
        """Pre-existing object with the same type and title (ignoring case).

        An object this run already updated is returned as updated, so a
        second merge builds on the first.
        """
        folded = title.strip().lower()
        for obj in self.existing_objects:
            if obj.type == type_id and obj.title.strip().lower() == folded:
                touched = self._touched.get(obj.id)
                return touched.obj if touched is not None else obj
        return None

    def register(self, document: ParsedDocument, obj: KnowledgeObject | MappedObject) -> None:
        """Map every alias of a document to the object it became."""
        self._check_open()
        mapped = MappedObject(id=obj.id, title=obj.title)
        source_no_ext = document.source_path.rsplit(".", 1)[0]
        for alias in (
            document.base_name,
            document.title,
            document.alias_path,
            f"{document.alias_path}.md",
            document.source_path,
            source_no_ext,
        ):
            if alias:
                self._aliases.setdefault(alias, mapped)

    def register_hashtag(self, name: str, object_id: str) -> None:
        self._check_open()
        self.hashtags[name.lower()] = object_id

    def touch(self, obj: KnowledgeObject, document: ParsedDocument) -> None:
        """Record an object created or updated by this run for the link pass."""
        self._check_open()
        self._touched[obj.id] = TouchedObject(obj=obj, document=document)

    # ── snapshot ───────────────────────────────────────────────────────────

    def freeze(self) -> LinkSnapshot:
        self._frozen = True
        run_ids = {mapped.id for mapped in self._aliases.values()}
        existing_titles: dict[str, MappedObject] = {}
        for obj in self.existing_objects:
            if obj.id not in run_ids:
                existing_titles.setdefault(
                    obj.title.strip().lower(), MappedObject(id=obj.id, title=obj.title)
                )
        return LinkSnapshot(
            aliases=MappingProxyType(dict(self._aliases)),
            hashtags=MappingProxyType(dict(self.hashtags)),
            touched=tuple(self._touched.values()),
            existing_titles=MappingProxyType(existing_titles),
        )

    def _check_open(self) -> None:
        if self._frozen:
            raise ContextFrozenError("Run context is frozen; the link pass has started")
