"""Configuration management for astral.

This module contains the configurable constants of the import pipeline and
the store location lookup. Magic values are documented here rather than
scattered throughout the codebase.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import ImportOptions, ObjectType, PropertyDefinition


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Archive classification
# =============================================================================

# Archive members with these extensions are parsed as documents
DOCUMENT_EXTENSIONS = (".md", ".markdown")

# Archive members with these extensions are carried along as media
MEDIA_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".pdf")

# Directories written by archivers rather than by the exporting app
VENDOR_METADATA_DIRS = ("__MACOSX",)


# =============================================================================
# Document parsing
# =============================================================================

# Wrapper folders that never name a category; the hint walks one level up
GENERIC_CONTAINER_FOLDERS = ("export", "content", "data", "markdown")

# Category used for documents sitting at the archive root
DEFAULT_CATEGORY = "page"


# =============================================================================
# Type resolution
# =============================================================================

# Common export folder names (English and Spanish) -> canonical type ids
TYPE_ALIASES: dict[str, str] = {
    "personas": "person",
    "person": "person",
    "people": "person",
    "libros": "book",
    "books": "book",
    "book": "book",
    "proyectos": "project",
    "projects": "project",
    "project": "project",
    "ideas": "idea",
    "idea": "idea",
    "dailynotes": "daily",
    "dailynote": "daily",
    "daily": "daily",
    "notas diarias": "daily",
    "reuniones": "meeting",
    "meetings": "meeting",
    "meeting": "meeting",
    "pages": "page",
    "page": "page",
    "notas": "page",
    "notes": "page",
}

# Icon assigned to synthesized types
DEFAULT_TYPE_ICON = "📄"

# Saturation/lightness of synthesized type colors (hue comes from the id hash)
TYPE_COLOR_SATURATION = 65
TYPE_COLOR_LIGHTNESS = 55


# =============================================================================
# Property extraction and reconciliation
# =============================================================================

# Metadata keys mapped to object-level fields instead of typed properties
RESERVED_METADATA_KEYS = frozenset({"type", "title", "tags", "id"})

# Appended to titles created under the "duplicate" conflict policy
DUPLICATE_TITLE_SUFFIX = " (imported)"

# Type whose objects hashtags are promoted to
TAG_TYPE_ID = "tag"


# =============================================================================
# Cleanup
# =============================================================================

# Types never deleted by the orphan-type pass, even with zero members
PROTECTED_TYPE_IDS = ("page", "daily", "tag", "task")


# =============================================================================
# Default schema
# =============================================================================


def default_object_types() -> list[ObjectType]:
    """Types a freshly created store is seeded with."""
    return [
        ObjectType(id="page", name="Page", name_plural="Pages", icon="📄", color="#6366f1"),
        ObjectType(
            id="person",
            name="Person",
            name_plural="People",
            icon="👤",
            color="#ec4899",
            properties=[
                PropertyDefinition(id="email", name="Email", type="email"),
                PropertyDefinition(id="phone", name="Phone", type="text"),
                PropertyDefinition(id="birthday", name="Birthday", type="date"),
            ],
        ),
        ObjectType(
            id="book",
            name="Book",
            name_plural="Books",
            icon="📚",
            color="#f59e0b",
            properties=[
                PropertyDefinition(
                    id="author", name="Author", type="relation", relation_type_id="person"
                ),
                PropertyDefinition(id="rating", name="Rating", type="rating"),
                PropertyDefinition(
                    id="status",
                    name="Status",
                    type="select",
                    options=["To read", "Reading", "Read"],
                ),
            ],
        ),
        ObjectType(
            id="meeting",
            name="Meeting",
            name_plural="Meetings",
            icon="📅",
            color="#10b981",
            properties=[
                PropertyDefinition(id="date", name="Date", type="date"),
                PropertyDefinition(
                    id="attendees", name="Attendees", type="relation", relation_type_id="person"
                ),
            ],
        ),
        ObjectType(
            id="project",
            name="Project",
            name_plural="Projects",
            icon="🎯",
            color="#8b5cf6",
            properties=[
                PropertyDefinition(
                    id="status",
                    name="Status",
                    type="select",
                    options=["Active", "Paused", "Done", "Cancelled"],
                ),
                PropertyDefinition(id="deadline", name="Deadline", type="date"),
            ],
        ),
        ObjectType(
            id="idea",
            name="Idea",
            name_plural="Ideas",
            icon="💡",
            color="#eab308",
            properties=[
                PropertyDefinition(
                    id="priority", name="Priority", type="select", options=["Low", "Medium", "High"]
                ),
            ],
        ),
        ObjectType(
            id="daily",
            name="Daily Note",
            name_plural="Daily Notes",
            icon="📓",
            color="#22c55e",
            properties=[PropertyDefinition(id="date", name="Date", type="date")],
        ),
        ObjectType(id="tag", name="Tag", name_plural="Tags", icon="#️⃣", color="#64748b"),
        ObjectType(
            id="task",
            name="Task",
            name_plural="Tasks",
            icon="✅",
            color="#f87171",
            properties=[
                PropertyDefinition(
                    id="status",
                    name="Status",
                    type="select",
                    options=["New", "In progress", "Done", "Cancelled"],
                ),
                PropertyDefinition(id="due-date", name="Due date", type="date"),
            ],
        ),
    ]


# =============================================================================
# Store location and import defaults
# =============================================================================

OPTIONS_FILENAME = ".astralconfig"


def get_store_root() -> Path:
    """Get the on-disk object store directory.

    Discovery order:
    1. ASTRAL_STORE_ROOT environment variable
    2. ~/.astral/store

    Raises:
        ConfigurationError: If the resolved path exists but is not a directory.
    """
    root = os.environ.get("ASTRAL_STORE_ROOT")
    path = Path(root) if root else Path.home() / ".astral" / "store"
    if path.exists() and not path.is_dir():
        raise ConfigurationError(f"Store root is not a directory: {path}")
    return path


def load_import_defaults(path: Path | None = None) -> ImportOptions:
    """Load default ImportOptions from a YAML file.

    The file is optional; a missing file yields the built-in defaults.
    Unknown keys are ignored so that the file can be shared with other tools.

    Args:
        path: File to read. Defaults to ``.astralconfig`` in the working directory.

    Raises:
        ConfigurationError: If the file is unreadable or holds invalid values.
    """
    path = path or Path.cwd() / OPTIONS_FILENAME
    if not path.exists():
        return ImportOptions()

    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping of option names to values")

    known = {key: data[key] for key in ImportOptions.model_fields if key in data}
    try:
        return ImportOptions.model_validate(known)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid import options in {path}: {e}") from e
