# src/wpsched/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from wpsched.config import load_settings
from wpsched.logging import configure_logging, get_logger
from wpsched.storage import ensure_table

from .routes import router

_LOG = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan handler.

    Responsible for:
    - loading settings
    - configuring logging
    - creating (or checking) the work-package table
    """
    settings = load_settings()
    configure_logging(settings.log_level)

    db = settings.db()

    conn = db.connect()
    try:
        ensure_table(conn, settings.table)
    finally:
        conn.close()

    # Store on app.state for DI
    app.state.settings = settings
    app.state.db = db

    _LOG.info("Admin API ready (db=%s table=%s).", settings.db_path, settings.table)

    yield

    _LOG.info("Shutdown complete.")


app = FastAPI(
    title="Work-Package Scheduler Admin",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)
