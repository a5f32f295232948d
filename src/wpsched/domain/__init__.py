"""
Domain layer for wpsched.

- states: WPStatus enum, claim and reset modes
- models: Pydantic views and API input/output
- errors: domain-level exceptions
"""

from .states import ClaimMode, ResetMode, WPStatus
from .models import (
    AffectedResponse,
    DependenciesUpdate,
    DependenciesView,
    ErrorResponse,
    ResetRequest,
    TaskCreate,
    TaskCreateResponse,
    TaskSummary,
    TaskView,
)
from .errors import (
    WPSBaseError,
    ConfigurationError,
    ValidationError,
    NotFoundError,
    DependencyError,
    NoActiveWorkPackageError,
    LockOwnershipError,
    SchemaMismatchError,
    OperationCancelled,
    TaskOverwriteWarning,
)

__all__ = [
    "WPStatus",
    "ClaimMode",
    "ResetMode",
    "TaskCreate",
    "TaskCreateResponse",
    "TaskSummary",
    "TaskView",
    "ResetRequest",
    "DependenciesUpdate",
    "DependenciesView",
    "AffectedResponse",
    "ErrorResponse",
    "WPSBaseError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "DependencyError",
    "NoActiveWorkPackageError",
    "LockOwnershipError",
    "SchemaMismatchError",
    "OperationCancelled",
    "TaskOverwriteWarning",
]
