# src/wpsched/api/__init__.py
"""
Admin API for wpsched (FastAPI).

- app: FastAPI instance + lifecycle hooks
- routes: REST endpoints for task administration and monitoring
- deps: dependency injection helpers
"""

from .app import app

__all__ = ["app"]
