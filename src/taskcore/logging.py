from __future__ import annotations

import logging
import sys
from typing import Optional

_ROOT = "taskcore"


def configure_logging(log_level: str = "info") -> None:
    """
    Configures root logging for the service.

    - logs to stdout with one consistent format
    - repeated calls (reload, tests) replace the handler instead of stacking
    """
    level = _parse_level(log_level)

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        if isinstance(h, logging.StreamHandler):
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s [%(threadName)s] - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(max(level, logging.INFO))
    logging.getLogger("uvicorn.error").setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name if name else _ROOT)


def step_logger(unit_key: str) -> logging.Logger:
    """Logger handed to step executables through the execution context."""
    return logging.getLogger(f"{_ROOT}.steps.{unit_key}")


def _parse_level(log_level: str) -> int:
    mapping = {
        "critical": logging.CRITICAL,
        "error": logging.ERROR,
        "warning": logging.WARNING,
        "warn": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "trace": logging.DEBUG,
    }
    return mapping.get(log_level.lower().strip(), logging.INFO)
