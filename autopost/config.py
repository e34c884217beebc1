"""
Service settings: ``config/settings.yaml`` with environment overrides.

A missing YAML file means all defaults.  Values are validated when
``Settings`` is built.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from autopost.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


# Bounds for numeric settings: (min, max) inclusive.
_NUMERIC_BOUNDS: Dict[str, Tuple[int, int]] = {
    "default_monthly_limit": (1, 500),
    "content_sweep_interval_seconds": (1, 86400),
    "generation_sweep_interval_seconds": (1, 86400),
    "maintenance_interval_seconds": (60, 86400),
    "sweep_batch_size": (1, 500),
    "generation_batch_size": (1, 100),
    "publish_timeout_seconds": (1, 600),
    "stuck_processing_minutes": (1, 10080),
    "generation_retention_days": (1, 365),
    "max_preview_occurrences": (1, 10),
}

# Environment variable -> (attribute, cast)
_ENV_OVERRIDES: Dict[str, Tuple[str, Any]] = {
    "SWEEP_INTERVAL_SECONDS": ("content_sweep_interval_seconds", int),
    "GENERATION_SWEEP_INTERVAL_SECONDS": ("generation_sweep_interval_seconds", int),
    "SWEEP_BATCH_SIZE": ("sweep_batch_size", int),
    "PUBLISH_TIMEOUT_SECONDS": ("publish_timeout_seconds", int),
    "DEFAULT_TIMEZONE": ("default_timezone", str),
    "LOG_LEVEL": ("log_level", str),
}


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """Defaults for schedules, timer intervals, batch sizes and logging.

    ``default_timezone`` and ``default_monthly_limit`` apply to sites
    without an active schedule.  ``holidays`` are skipped by schedules
    that have ``skip_holidays`` set.
    """

    # Schedules
    default_timezone: str = "Asia/Tokyo"
    default_monthly_limit: int = 100
    max_preview_occurrences: int = 10
    holidays: List[date] = field(default_factory=list)

    # Timers (seconds)
    content_sweep_interval_seconds: int = 300
    generation_sweep_interval_seconds: int = 120
    maintenance_interval_seconds: int = 3600

    # Batches
    sweep_batch_size: int = 50
    generation_batch_size: int = 5

    # Publishing
    publish_timeout_seconds: int = 30

    # Maintenance
    stuck_processing_minutes: int = 30
    generation_retention_days: int = 7

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    def __post_init__(self) -> None:
        self.holidays = [_coerce_date(value) for value in self.holidays]
        self.validate()

    def validate(self) -> None:
        """Check numeric bounds and the default timezone.

        Raises:
            ConfigurationError: On any out-of-range or unknown value.
        """
        for name, (low, high) in _NUMERIC_BOUNDS.items():
            value = getattr(self, name)
            if not isinstance(value, int) or not low <= value <= high:
                raise ConfigurationError(
                    f"{name} must be an integer in [{low}, {high}], got {value!r}"
                )
        try:
            ZoneInfo(self.default_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(
                f"Unknown default_timezone {self.default_timezone!r}"
            ) from exc
        if self.log_level.upper() not in logging.getLevelNamesMapping():
            raise ConfigurationError(f"Unknown log_level {self.log_level!r}")

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """Build settings from *path* (default ``config/settings.yaml``).

        Keys listed in ``_ENV_OVERRIDES`` are then replaced by their
        environment variable when it is set.  Unknown YAML keys are logged
        and ignored.

        Raises:
            ConfigurationError: Unparseable YAML, a non-mapping document,
                an uncastable environment value, or an invalid setting.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"
        values = _read_yaml(path) if path.exists() else {}

        known = {f.name for f in fields(cls)}
        ignored = sorted(set(values) - known)
        if ignored:
            logger.warning("[CONFIG] Ignoring unknown settings keys: %s", ignored)
        values = {key: value for key, value in values.items() if key in known}

        for env_key, (attr_name, cast) in _ENV_OVERRIDES.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            try:
                values[attr_name] = cast(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{env_key}={raw!r} is not valid: {exc}") from exc

        return cls(**values)

    def is_holiday(self, day: date) -> bool:
        """Return ``True`` if *day* is one of the configured holidays."""
        return day in self.holidays


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse settings YAML at {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings YAML at {path} must be a mapping")
    return data


def _coerce_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ConfigurationError(f"Invalid holiday date {value!r}") from exc


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide ``Settings``, loaded from YAML on first use."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

REQUIRED_ENV_VARS: List[str] = ["SUPABASE_URL", "SUPABASE_SERVICE_KEY"]
OPTIONAL_ENV_VARS: List[str] = list(_ENV_OVERRIDES)


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """Report which known environment variables are set.

    Args:
        strict: Raise when a required variable is missing instead of
            only reporting it.

    Returns:
        Variable name -> whether it has a non-empty value.

    Raises:
        ConfigurationError: ``strict`` is set and Supabase credentials are
            missing.
    """
    status = {var: bool(os.environ.get(var)) for var in REQUIRED_ENV_VARS + OPTIONAL_ENV_VARS}
    missing = [var for var in REQUIRED_ENV_VARS if not status[var]]
    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)} "
            "(see .env.example)"
        )
    return status


__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "PROJECT_ROOT",
]
