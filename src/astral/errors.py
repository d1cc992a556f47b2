"""Structured errors for astral.

Errors carry a stable ``ErrorCode`` so the CLI can emit machine-readable
output with ``--json-errors``. Pipeline code converts these into entries on
the ImportOutcome / CleanupResult records; only the CLI turns them into exit
codes.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for programmatic consumers."""

    ARCHIVE_INVALID = "ARCHIVE_INVALID"
    STORE_ERROR = "STORE_ERROR"
    OBJECT_NOT_FOUND = "OBJECT_NOT_FOUND"
    TYPE_NOT_FOUND = "TYPE_NOT_FOUND"
    SYNC_ERROR = "SYNC_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AstralError(Exception):
    """Base error with a code, a human message and optional details."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class ArchiveError(AstralError):
    """Raised when the input archive cannot be opened at all."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.ARCHIVE_INVALID, message, details)


class StoreError(AstralError):
    """Raised when the object store rejects or fails a write."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.STORE_ERROR, message, details)


class ObjectNotFoundError(AstralError):
    """Raised when an object or type id is not present in the store."""

    def __init__(self, object_id: str, kind: str = "object") -> None:
        code = ErrorCode.TYPE_NOT_FOUND if kind == "type" else ErrorCode.OBJECT_NOT_FOUND
        super().__init__(code, f"{kind.capitalize()} not found: {object_id}", {"id": object_id})
        self.object_id = object_id


def format_error_json(code: str, message: str, details: dict | None = None) -> str:
    """Format an error as JSON for --json-errors output."""
    error: dict[str, dict[str, object]] = {"error": {"code": code, "message": message}}
    if details:
        error["error"]["details"] = details
    return json.dumps(error, default=str)
