# src/wpsched/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class WPSBaseError(Exception):
    """
    Base domain error.

    The API layer maps these to HTTP responses consistently.
    """
    message: str
    code: str = "WPS_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ConfigurationError(WPSBaseError):
    code: str = "CONFIG_ERROR"


@dataclass
class ValidationError(WPSBaseError):
    code: str = "VALIDATION_ERROR"


@dataclass
class NotFoundError(WPSBaseError):
    code: str = "NOT_FOUND"


@dataclass
class DependencyError(WPSBaseError):
    code: str = "DEPENDENCY_ERROR"


@dataclass
class NoActiveWorkPackageError(WPSBaseError):
    code: str = "NO_ACTIVE_WP"


@dataclass
class LockOwnershipError(WPSBaseError):
    code: str = "LOCK_NOT_OWNED"


@dataclass
class SchemaMismatchError(WPSBaseError):
    code: str = "SCHEMA_MISMATCH"


@dataclass
class OperationCancelled(WPSBaseError):
    code: str = "CANCELLED"


class TaskOverwriteWarning(UserWarning):
    """Issued when create() replaces the rows of an existing task id."""
