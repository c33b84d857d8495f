from __future__ import annotations

import uvicorn

from taskcore.config import load_settings
from taskcore.logging import configure_logging, get_logger


def main() -> int:
    """
    Programmatic entrypoint.

    Recommended dev command:
      uvicorn taskcore.api.app:app --reload

    This entrypoint exists so you can also do:
      python -m taskcore.main
    """
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    log.info("Starting taskcore with DB path: %s", settings.db_path)

    uvicorn.run(
        "taskcore.api.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,  # prefer `uvicorn ... --reload` in dev
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
