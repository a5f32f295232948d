# src/wpsched/engine/__init__.py
"""
Worker-side engine for wpsched.

- scheduler: per-process task handle (claim/finish/lock/reset/...)
- worker: claim -> run -> finish loop
"""

from .scheduler import Scheduler
from .worker import run_worker

__all__ = ["Scheduler", "run_worker"]
