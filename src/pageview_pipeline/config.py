"""
Import run settings, read from the environment.

    PAGEVIEW_DSN                        store DSN (default: the local docker database)
    PAGEVIEW_IMPORT_BATCH_SIZE          records per insert transaction, 1..1000
    PAGEVIEW_IMPORT_LOG_DIR             where run logs are written
    PAGEVIEW_IMPORT_MAX_RETRIES         retries after the first attempt
    PAGEVIEW_IMPORT_RETRY_BASE_DELAY    first backoff delay, seconds
    PAGEVIEW_IMPORT_TX_TIMEOUT          per transaction timeout, seconds
    PAGEVIEW_IMPORT_POOL_SIZE           max pooled connections

Empty values fall back to the defaults.
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from pageview_pipeline.db.batch_inserter import INITIAL_RETRY_DELAY_S, MAX_RETRIES, TRANSACTION_TIMEOUT_S
from pageview_pipeline.db.connect import DEFAULT_DSN


ENV_PREFIX = "PAGEVIEW_IMPORT_"
BATCH_SIZE = 50             # config: increase or decrease.
MAX_BATCH_SIZE = 1000       # keeps a bulk insert well under Postgres' 65535 bind parameter limit
DEFAULT_LOG_DIR = "logs"
DEFAULT_POOL_SIZE = 2       # one writer in flight, plus headroom for a reconnect


class SettingsError(ValueError):
    """An environment variable holds a value the import cannot run with."""


class ImportSettings(BaseSettings):
    """Tunables for an import run. Read from the environment by `load_settings()`."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        case_sensitive=False,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    database_url: str = Field(default=DEFAULT_DSN, validation_alias="PAGEVIEW_DSN", description="Store DSN")
    batch_size: int = Field(default=BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
    log_dir: Path = Field(default=Path(DEFAULT_LOG_DIR), description="Run log directory")
    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    retry_base_delay_s: float = Field(
        default=INITIAL_RETRY_DELAY_S,
        ge=0,
        validation_alias=f"{ENV_PREFIX}RETRY_BASE_DELAY",
    )
    transaction_timeout_s: float = Field(
        default=TRANSACTION_TIMEOUT_S,
        gt=0,
        validation_alias=f"{ENV_PREFIX}TX_TIMEOUT",
    )
    pool_size: int = Field(default=DEFAULT_POOL_SIZE, ge=1)


def _env_name(loc: tuple[int | str, ...]) -> str:
    """Environment variable behind an error location: aliases as is, other fields prefixed."""
    name = str(loc[0]) if loc else "?"
    if name.upper().startswith("PAGEVIEW_"):
        return name.upper()
    return f"{ENV_PREFIX}{name.upper()}"


def load_settings() -> ImportSettings:
    """
    Build `ImportSettings` from `PAGEVIEW_*` environment variables, falling back to defaults.

    Raises `SettingsError` naming every offending variable.
    """
    try:
        return ImportSettings()
    except ValidationError as e:
        problems = [f"{_env_name(err['loc'])}: {err['msg']} (got {err.get('input')!r})" for err in e.errors()]
        raise SettingsError("; ".join(problems)) from e
