"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./mediasync.yaml (working directory)
3. ~/.mediasync/config.yaml (user home)

Environment variables override YAML: MEDIASYNC_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
With no config file at all, defaults plus env overrides are used.
"""

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from src.db.models import Platform
from src.orchestrator.sync.modes import SyncPolicy

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "MEDIASYNC_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class DatabaseConfig(BaseModel):
    """Database location. DATABASE_URL and MEDIASYNC_DB_PATH still win."""

    url: str | None = None


class LoggingConfig(BaseModel):
    """Log level and optional log file."""

    level: str = "info"
    file: str | None = None


class SyncConfig(BaseModel):
    """Pagination and timeout tunables, in operator-friendly units."""

    full_sync_interval_days: float = Field(default=7, gt=0)
    lookback_minutes: int = Field(default=60, ge=0)
    full_sync_max_pages: int = Field(default=10, ge=1)
    incremental_max_pages: int = Field(default=5, ge=1)
    early_stop_threshold: int = Field(default=3, ge=1)
    run_timeout_seconds: float = Field(default=25.0, gt=0)
    request_timeout_seconds: float = Field(default=15.0, gt=0)
    stale_job_minutes: int = Field(default=30, ge=1)

    def to_policy(self) -> SyncPolicy:
        """Convert to the orchestrator's SyncPolicy."""
        return SyncPolicy(
            full_sync_interval=timedelta(days=self.full_sync_interval_days),
            lookback=timedelta(minutes=self.lookback_minutes),
            full_sync_max_pages=self.full_sync_max_pages,
            incremental_max_pages=self.incremental_max_pages,
            early_stop_threshold=self.early_stop_threshold,
            run_timeout_seconds=self.run_timeout_seconds,
        )


class ScheduleConfig(BaseModel):
    """Recurring sweep settings for 'mediasync schedule'."""

    interval_hours: float = Field(default=3.0, gt=0)
    run_on_start: bool = True


class PlatformsConfig(BaseModel):
    """Which platforms a sweep covers."""

    enabled: list[str] = Field(default_factory=lambda: [p.value for p in Platform])

    @field_validator("enabled", mode="before")
    @classmethod
    def _split_and_check(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        known = {p.value for p in Platform}
        unknown = [name for name in value if name not in known]
        if unknown:
            raise ValueError(
                f"Unknown platform(s): {', '.join(unknown)}. "
                f"Expected any of: {', '.join(sorted(known))}"
            )
        return value


class MediaSyncConfig(BaseModel):
    """Top-level configuration for MediaSync."""

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    sync: SyncConfig = SyncConfig()
    schedule: ScheduleConfig = ScheduleConfig()
    platforms: PlatformsConfig = PlatformsConfig()


def find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    candidates = [
        Path.cwd() / "mediasync.yaml",
        Path.cwd() / "mediasync.yml",
        Path.home() / ".mediasync" / "config.yaml",
        Path.home() / ".mediasync" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply MEDIASYNC_<SECTION>_<KEY> env var overrides to config data.

    For example, ``MEDIASYNC_SYNC_RUN_TIMEOUT_SECONDS=40`` maps to section
    ``sync``, field ``run_timeout_seconds``. Variables that name no known
    section (such as MEDIASYNC_DB_PATH) are ignored here.
    """
    known_sections = sorted(
        MediaSyncConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_data = data.setdefault(matched_section, {})
        if not isinstance(section_data, dict):
            continue
        # Coerce to int or bool; pydantic handles the rest
        try:
            section_data[matched_field] = int(value)
        except ValueError:
            if value.lower() in ("true", "false"):
                section_data[matched_field] = value.lower() == "true"
            else:
                section_data[matched_field] = value
    return data


def load_config(config_path: str | None = None) -> MediaSyncConfig:
    """Load MediaSync configuration from YAML with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.mediasync/).

    Returns:
        Parsed and validated MediaSyncConfig (defaults when no file exists).

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
        pydantic.ValidationError: If the merged config is invalid.
    """
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return MediaSyncConfig(**data)
