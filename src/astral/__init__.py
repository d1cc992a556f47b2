"""astral: import knowledge-base ZIP exports into a typed object graph."""

__version__ = "0.1.0"

from .cleanup import revert_import
from .importer import ImportCancelled, import_archive
from .models import ImportOptions, ImportOutcome
from .store import JsonFileStore, MemoryStore

__all__ = [
    "ImportCancelled",
    "ImportOptions",
    "ImportOutcome",
    "JsonFileStore",
    "MemoryStore",
    "__version__",
    "import_archive",
    "revert_import",
]
