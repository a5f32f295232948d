# src/wpsched/storage/__init__.py
"""
Storage layer for wpsched (SQLite).

- db: connection factory + pragmas + exclusive-section helpers
- schema: work-package table bootstrap and layout check
- repo: transactional data access operations
"""

from .db import SQLiteDB
from .repo import DEFAULT_TABLE, ClaimAttempt, WorkPackageRepo
from .schema import ensure_table

__all__ = ["SQLiteDB", "ensure_table", "WorkPackageRepo", "ClaimAttempt", "DEFAULT_TABLE"]
