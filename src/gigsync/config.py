"""gigsync configuration loading and validation.

Reads ``gigsync.toml``, resolves ``${VAR}`` references from the environment and
returns a validated :class:`GigsyncConfig` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gigsync.calendar.client import EVENT_LIST_PAGE_SIZE, GOOGLE_CALENDAR_API_BASE_URL
from gigsync.calendar.correlator import DEFAULT_TAG_KEY
from gigsync.calendar.store import (
    DEFAULT_RANGE_DAYS,
    DEFAULT_REFRESH_PERIOD_SECONDS,
    MIN_REFRESH_PERIOD_SECONDS,
)

CONFIG_ENV_VAR = "GIGSYNC_CONFIG"
DEFAULT_CONFIG_FILENAME = "gigsync.toml"

# Pattern matching ${VAR_NAME}; alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when gigsync configuration is malformed or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [gigsync.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class GoogleConfig:
    """Google access from [gigsync.google] section.

    ``credentials_json`` holds an OAuth client id/secret plus a refresh token;
    ``access_token`` is a fixed bearer token for short-lived use.
    """

    credentials_json: str | None = None
    access_token: str | None = None
    api_base_url: str = GOOGLE_CALENDAR_API_BASE_URL


@dataclass
class SyncConfig:
    """Store behaviour from [gigsync.sync] section."""

    refresh_period_seconds: float = DEFAULT_REFRESH_PERIOD_SECONDS
    range_days_back: int = DEFAULT_RANGE_DAYS
    range_days_forward: int = DEFAULT_RANGE_DAYS
    max_results: int = EVENT_LIST_PAGE_SIZE
    selected_calendars: list[str] = field(default_factory=list)


@dataclass
class CorrelationConfig:
    tag_key: str = DEFAULT_TAG_KEY


@dataclass
class GigsyncConfig:
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    source: Path | None = None


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Non-string leaf values (int, bool, float) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


def _section(parent: dict[str, Any], name: str) -> dict[str, Any]:
    section = parent.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"gigsync.{name} must be a TOML table")
    return section


def _optional_string(section: dict[str, Any], key: str, path: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{path}.{key} must be a string when set")
    return value.strip() or None


def _positive_int(section: dict[str, Any], key: str, path: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{path}.{key} must be a positive integer, got {value!r}")
    return value


def _parse_logging(gigsync_section: dict[str, Any]) -> LoggingConfig:
    logging_section = _section(gigsync_section, "logging")
    level = str(logging_section.get("level", "INFO")).upper()
    if level not in _VALID_LOG_LEVELS:
        raise ConfigError(
            f"Invalid gigsync.logging.level: {level!r}. "
            f"Expected one of {', '.join(_VALID_LOG_LEVELS)}."
        )
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid gigsync.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(
        level=level,
        format=log_format,
        log_file=_optional_string(logging_section, "log_file", "gigsync.logging"),
    )


def _parse_google(gigsync_section: dict[str, Any]) -> GoogleConfig:
    google_section = _section(gigsync_section, "google")
    path = "gigsync.google"
    return GoogleConfig(
        credentials_json=_optional_string(google_section, "credentials_json", path),
        access_token=_optional_string(google_section, "access_token", path),
        api_base_url=(
            _optional_string(google_section, "api_base_url", path)
            or GOOGLE_CALENDAR_API_BASE_URL
        ),
    )


def _parse_sync(gigsync_section: dict[str, Any]) -> SyncConfig:
    sync_section = _section(gigsync_section, "sync")
    path = "gigsync.sync"

    period = sync_section.get("refresh_period_seconds", DEFAULT_REFRESH_PERIOD_SECONDS)
    if isinstance(period, bool) or not isinstance(period, int | float):
        raise ConfigError(f"{path}.refresh_period_seconds must be a number, got {period!r}")
    if period < MIN_REFRESH_PERIOD_SECONDS:
        raise ConfigError(
            f"{path}.refresh_period_seconds must be at least {MIN_REFRESH_PERIOD_SECONDS:g}"
        )

    selected = sync_section.get("selected_calendars", [])
    if not isinstance(selected, list) or not all(isinstance(item, str) for item in selected):
        raise ConfigError(f"{path}.selected_calendars must be a list of strings")

    return SyncConfig(
        refresh_period_seconds=float(period),
        range_days_back=_positive_int(sync_section, "range_days_back", path, DEFAULT_RANGE_DAYS),
        range_days_forward=_positive_int(
            sync_section, "range_days_forward", path, DEFAULT_RANGE_DAYS
        ),
        max_results=_positive_int(sync_section, "max_results", path, EVENT_LIST_PAGE_SIZE),
        selected_calendars=[item.strip() for item in selected if item.strip()],
    )


def _parse_correlation(gigsync_section: dict[str, Any]) -> CorrelationConfig:
    correlation_section = _section(gigsync_section, "correlation")
    tag_key = _optional_string(correlation_section, "tag_key", "gigsync.correlation")
    return CorrelationConfig(tag_key=tag_key or DEFAULT_TAG_KEY)


def parse_config(data: dict[str, Any], *, source: Path | None = None) -> GigsyncConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)
    gigsync_section = data.get("gigsync", {})
    if not isinstance(gigsync_section, dict):
        raise ConfigError("[gigsync] must be a TOML table")

    return GigsyncConfig(
        logging=_parse_logging(gigsync_section),
        google=_parse_google(gigsync_section),
        sync=_parse_sync(gigsync_section),
        correlation=_parse_correlation(gigsync_section),
        source=source,
    )


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return Path.cwd() / DEFAULT_CONFIG_FILENAME


def load_config(path: Path | None = None) -> GigsyncConfig:
    """Load and validate ``gigsync.toml``.

    Without an explicit *path* the ``GIGSYNC_CONFIG`` env var is consulted,
    then ``./gigsync.toml``. A missing default file yields the defaults; a
    missing explicit file is an error.

    Raises
    ------
    ConfigError
        If the file is missing (explicit path only), is invalid TOML, or
        fails validation.
    """
    explicit = path is not None
    toml_path = Path(path) if path is not None else default_config_path()

    if not toml_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {toml_path}")
        return parse_config({})

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data, source=toml_path)
