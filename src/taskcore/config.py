from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


@dataclass(frozen=True)
class Settings:
    # Database
    db_path: Path

    # Orchestration
    max_workers: int
    step_max_attempts: int
    step_timeout_ms: int
    step_backoff_ms: int

    # Sync engine
    history_size: int
    manual_root: Optional[Path]

    # Server (used by taskcore.main when starting uvicorn programmatically)
    host: str
    port: int
    log_level: str

    @property
    def step_timeout_s(self) -> float:
        return self.step_timeout_ms / 1000.0


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - TASKCORE_DB_PATH (default: ./var/taskcore.db)
      - TASKCORE_MAX_WORKERS (default: number of CPUs)
      - TASKCORE_STEP_MAX_ATTEMPTS (default: 3)
      - TASKCORE_STEP_TIMEOUT_MS (default: 30000)
      - TASKCORE_STEP_BACKOFF_MS (default: 200)
      - TASKCORE_HISTORY_SIZE (default: 5)
      - TASKCORE_MANUAL_ROOT (default: unset, no manual source)
      - TASKCORE_HOST (default: 127.0.0.1)
      - TASKCORE_PORT (default: 8000)
      - TASKCORE_LOG_LEVEL (default: info)
    """
    db_path = Path(_get_env_str("TASKCORE_DB_PATH", "./var/taskcore.db")).expanduser()

    max_workers = _get_env_int("TASKCORE_MAX_WORKERS", os.cpu_count() or 1)
    if max_workers <= 0:
        raise ValueError("TASKCORE_MAX_WORKERS must be > 0")

    step_max_attempts = _get_env_int("TASKCORE_STEP_MAX_ATTEMPTS", 3)
    if step_max_attempts <= 0:
        raise ValueError("TASKCORE_STEP_MAX_ATTEMPTS must be > 0")

    step_timeout_ms = _get_env_int("TASKCORE_STEP_TIMEOUT_MS", 30_000)
    if step_timeout_ms <= 0:
        raise ValueError("TASKCORE_STEP_TIMEOUT_MS must be > 0")

    step_backoff_ms = _get_env_int("TASKCORE_STEP_BACKOFF_MS", 200)
    if step_backoff_ms < 0:
        raise ValueError("TASKCORE_STEP_BACKOFF_MS must be >= 0")

    history_size = _get_env_int("TASKCORE_HISTORY_SIZE", 5)
    if history_size <= 0:
        raise ValueError("TASKCORE_HISTORY_SIZE must be > 0")

    raw_root = _get_env_str("TASKCORE_MANUAL_ROOT", "")
    manual_root = Path(raw_root).expanduser() if raw_root else None

    host = _get_env_str("TASKCORE_HOST", "127.0.0.1")
    port = _get_env_int("TASKCORE_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ValueError("TASKCORE_PORT must be between 1 and 65535")

    log_level = _get_env_str("TASKCORE_LOG_LEVEL", "info").lower()

    return Settings(
        db_path=db_path,
        max_workers=max_workers,
        step_max_attempts=step_max_attempts,
        step_timeout_ms=step_timeout_ms,
        step_backoff_ms=step_backoff_ms,
        history_size=history_size,
        manual_root=manual_root,
        host=host,
        port=port,
        log_level=log_level,
    )
