"""
Central configuration: loads .env + YAML settings into Pydantic models.
All modules receive values from here; never read env vars directly elsewhere.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kline_backfill.core.errors import ConfigError
from kline_backfill.exchanges.base import INTERVALS

# ── Paths ─────────────────────────────────────────────────────────────────────
ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = ROOT / "config"
LOGS_DIR = ROOT / "logs"


# ── Pydantic Settings (reads from .env) ───────────────────────────────────────

class DatabaseSettings(BaseSettings):
    host: str = Field(alias="DB_HOST")
    port: int = Field(alias="DB_PORT", gt=0, lt=65536)
    username: str = Field(alias="DB_USERNAME")
    password: str | None = Field(None, alias="DB_PASSWORD")
    spaces_function: str = Field("get_spaces", alias="DB_SPACES_FUNCTION")
    connect_timeout: float = Field(5.0, alias="DB_CONNECT_TIMEOUT", gt=0)

    model_config = SettingsConfigDict(env_file=ROOT / ".env", extra="ignore")


class AppEnvSettings(BaseSettings):
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    settings_file: Path | None = Field(None, alias="BACKFILL_SETTINGS_FILE")

    # Deployment overrides of the YAML backfill section
    base_url: str | None = Field(None, alias="BASE_URL")
    start_time: str | None = Field(None, alias="START_TIME")
    pairs: str | None = Field(None, alias="PAIRS")
    intervals: str | None = Field(None, alias="TIMEFRAMES")

    model_config = SettingsConfigDict(env_file=ROOT / ".env", extra="ignore")


_OVERRIDE_KEYS = {"base_url", "start_time", "pairs", "intervals"}


# ── YAML Settings ─────────────────────────────────────────────────────────────

def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class BackfillSection(BaseModel):
    base_url: str
    start_time: int = Field(ge=0)
    pairs: list[str] = Field(min_length=1)
    intervals: list[str] = Field(min_length=1)
    batch_limit: int = Field(500, gt=0)
    max_concurrency: int = Field(10, gt=0)
    request_timeout_seconds: float = Field(30.0, gt=0)
    retry_attempts: int = Field(3, ge=1)
    retry_backoff_seconds: float = Field(1.0, ge=0)
    fail_fast: bool = False

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("base_url must not be empty")
        return v

    @field_validator("pairs", "intervals", mode="before")
    @classmethod
    def _accept_csv(cls, v: Any) -> Any:
        return _split_csv(v)

    @field_validator("intervals")
    @classmethod
    def _known_intervals(cls, v: list[str]) -> list[str]:
        unknown = [i for i in v if i not in INTERVALS]
        if unknown:
            raise ValueError(f"unknown intervals {unknown}, expected any of {sorted(INTERVALS)}")
        return v


def _load_yaml(path: Path) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Settings file not found: {path}", path=str(path)) from None
    except yaml.YAMLError as exc:
        raise ConfigError(f"Settings file is not valid YAML: {exc}", path=str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file must contain a mapping: {path}", path=str(path))
    return data


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    )


class Settings:
    """
    Validated settings for one backfill run.
    Construction fails with ConfigError before any pipeline component is built.
    `env_file` replaces ROOT/.env as the dotenv source.
    """

    def __init__(self, config_path: Path | None = None, env_file: Path | None = None) -> None:
        dotenv = {"_env_file": env_file} if env_file is not None else {}
        try:
            env = AppEnvSettings(**dotenv)
        except ValidationError as exc:
            raise ConfigError(f"Invalid environment: {_describe(exc)}") from exc

        path = config_path or env.settings_file or CONFIG_DIR / "settings.yaml"
        raw = _load_yaml(Path(path))

        section = raw.get("backfill")
        if not isinstance(section, dict):
            raise ConfigError("Missing 'backfill' section in settings", path=str(path))
        section = dict(section)
        overrides = env.model_dump(include=_OVERRIDE_KEYS)
        section.update({key: value for key, value in overrides.items() if value})

        try:
            backfill = BackfillSection(**section)
        except ValidationError as exc:
            raise ConfigError(f"Invalid backfill settings: {_describe(exc)}", path=str(path)) from exc

        try:
            self.database = DatabaseSettings(**dotenv)
        except ValidationError as exc:
            raise ConfigError(f"Invalid datastore settings: {_describe(exc)}") from exc

        self.log_level: str = env.log_level

        # Exchange
        self.base_url: str = backfill.base_url
        self.batch_limit: int = backfill.batch_limit
        self.request_timeout_seconds: float = backfill.request_timeout_seconds
        self.retry_attempts: int = backfill.retry_attempts
        self.retry_backoff_seconds: float = backfill.retry_backoff_seconds

        # Pipeline
        self.start_time: int = backfill.start_time
        self.pairs: list[str] = backfill.pairs
        self.intervals: list[str] = backfill.intervals
        self.max_concurrency: int = backfill.max_concurrency
        self.fail_fast: bool = backfill.fail_fast


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
