"""Custom exceptions for the borescope data store."""
from __future__ import annotations

from utils.db import DatabaseNotOpenError


class BorescopeError(RuntimeError):
    """Base exception for data-store operations."""


class ValidationError(BorescopeError):
    """Raised when a caller supplies an incomplete request."""


class RecordValidationError(ValidationError):
    """Raised when a required inspection field is missing.

    ``field`` carries the user-facing label of the offending field so the
    form can highlight it.
    """

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"{field} is missing.")
        self.field = field


class ActiveAssignmentError(BorescopeError):
    """Raised when deleting a tail or engine that is currently attached."""


class StorageError(BorescopeError):
    """Raised when the database or filesystem refuses an operation."""


class SchemaError(StorageError):
    """Raised when creating or upgrading the schema fails."""


class PackageFormatError(BorescopeError):
    """Raised when a backup or transfer file is unreadable or of the wrong type."""


class PermissionDenied(BorescopeError):
    """Raised when a gated operation is called without an admin capability."""


__all__ = [
    "ActiveAssignmentError",
    "BorescopeError",
    "DatabaseNotOpenError",
    "PackageFormatError",
    "PermissionDenied",
    "RecordValidationError",
    "SchemaError",
    "StorageError",
    "ValidationError",
]
