from __future__ import annotations

from wpsched.config import load_settings
from wpsched.logging import configure_logging, get_logger


def main() -> int:
    """
    Programmatic entrypoint for the admin API.

    Recommended dev command:
      uvicorn wpsched.api.app:app --reload

    This entrypoint exists so you can also do:
      python -m wpsched.main
    """
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    log.info("Starting wpsched admin API with DB path: %s (table %s)", settings.db_path, settings.table)

    import uvicorn

    uvicorn.run(
        "wpsched.api.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,  # prefer `uvicorn ... --reload` in dev
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
