from __future__ import annotations

from pathlib import Path

import pytest

from pageview_pipeline.config import BATCH_SIZE, ImportSettings, SettingsError, load_settings
from pageview_pipeline.db.connect import DEFAULT_DSN

_ENV = (
    "PAGEVIEW_DSN",
    "PAGEVIEW_IMPORT_BATCH_SIZE",
    "PAGEVIEW_IMPORT_LOG_DIR",
    "PAGEVIEW_IMPORT_MAX_RETRIES",
    "PAGEVIEW_IMPORT_RETRY_BASE_DELAY",
    "PAGEVIEW_IMPORT_TX_TIMEOUT",
    "PAGEVIEW_IMPORT_POOL_SIZE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    s = load_settings()
    assert s.database_url == DEFAULT_DSN
    assert s.batch_size == BATCH_SIZE == 50
    assert s.log_dir == Path("logs")
    assert s.max_retries == 3
    assert s.retry_base_delay_s == 1.0
    assert s.transaction_timeout_s == 60.0
    assert s.pool_size == 2


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PAGEVIEW_DSN", "postgresql://x@h/db")
    monkeypatch.setenv("PAGEVIEW_IMPORT_BATCH_SIZE", "200")
    monkeypatch.setenv("PAGEVIEW_IMPORT_LOG_DIR", "/tmp/import-logs")
    monkeypatch.setenv("PAGEVIEW_IMPORT_MAX_RETRIES", "0")
    monkeypatch.setenv("PAGEVIEW_IMPORT_RETRY_BASE_DELAY", "0.25")
    monkeypatch.setenv("PAGEVIEW_IMPORT_TX_TIMEOUT", "5")

    s = load_settings()

    assert s.database_url == "postgresql://x@h/db"
    assert s.batch_size == 200
    assert s.log_dir == Path("/tmp/import-logs")
    assert s.max_retries == 0
    assert s.retry_base_delay_s == 0.25
    assert s.transaction_timeout_s == 5.0


def test_empty_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PAGEVIEW_IMPORT_BATCH_SIZE", "")
    monkeypatch.setenv("PAGEVIEW_IMPORT_LOG_DIR", "")
    s = load_settings()
    assert s.batch_size == BATCH_SIZE
    assert s.log_dir == Path("logs")


@pytest.mark.parametrize(
    "name, value",
    [
        ("PAGEVIEW_IMPORT_BATCH_SIZE", "0"),
        ("PAGEVIEW_IMPORT_BATCH_SIZE", "5000"),
        ("PAGEVIEW_IMPORT_BATCH_SIZE", "fifty"),
        ("PAGEVIEW_IMPORT_MAX_RETRIES", "-1"),
        ("PAGEVIEW_IMPORT_RETRY_BASE_DELAY", "-1"),
        ("PAGEVIEW_IMPORT_TX_TIMEOUT", "soon"),
        ("PAGEVIEW_IMPORT_POOL_SIZE", "0"),
    ],
)
def test_invalid_values_name_the_variable(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(SettingsError, match=name):
        load_settings()


def test_settings_error_is_a_value_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PAGEVIEW_IMPORT_POOL_SIZE", "none")
    with pytest.raises(ValueError):
        load_settings()


def test_settings_are_frozen_but_copyable() -> None:
    s = load_settings()
    with pytest.raises(Exception):
        s.batch_size = 10  # type: ignore[misc]

    copy = s.model_copy(update={"batch_size": 10})
    assert (copy.batch_size, s.batch_size) == (10, BATCH_SIZE)
    assert isinstance(copy, ImportSettings)
