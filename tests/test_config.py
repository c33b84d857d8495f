# tests/test_config.py
from pathlib import Path

import pytest

from taskcore.config import load_settings


def test_defaults(monkeypatch):
    for name in ("TASKCORE_DB_PATH", "TASKCORE_MANUAL_ROOT", "TASKCORE_HISTORY_SIZE", "TASKCORE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.db_path == Path("./var/taskcore.db")
    assert settings.manual_root is None
    assert settings.history_size == 5
    assert settings.log_level == "info"


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("TASKCORE_MANUAL_ROOT", str(tmp_path))
    monkeypatch.setenv("TASKCORE_STEP_TIMEOUT_MS", "1500")
    monkeypatch.setenv("TASKCORE_LOG_LEVEL", "DEBUG")
    settings = load_settings()
    assert settings.manual_root == tmp_path
    assert settings.step_timeout_s == 1.5
    assert settings.log_level == "debug"


@pytest.mark.parametrize(
    "name,value",
    [
        ("TASKCORE_MAX_WORKERS", "0"),
        ("TASKCORE_STEP_MAX_ATTEMPTS", "abc"),
        ("TASKCORE_STEP_BACKOFF_MS", "-1"),
        ("TASKCORE_HISTORY_SIZE", "0"),
        ("TASKCORE_PORT", "70000"),
    ],
)
def test_invalid_values_fail_fast(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        load_settings()
