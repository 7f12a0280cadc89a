"""Configuration loading for extperf."""

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from extperf.errors import ConfigurationError

log = structlog.get_logger()

MIN_INTERVAL_MS = 1000
MAX_INTERVAL_MS = 60000

DEFAULT_INTERVAL_MS = 5000
DEFAULT_CPU_THRESHOLD = 80.0
DEFAULT_MEMORY_THRESHOLD = 100.0
DEFAULT_RETENTION_DAYS = 7


def get_config_dir() -> Path:
    """Directory holding config.toml and the history file."""
    return Path.home() / ".extperf"


def get_config_path() -> Path:
    """Default location of config.toml."""
    return get_config_dir() / "config.toml"


def clamp_interval(value_ms: int) -> int:
    """Clamp a sampling interval into the supported range."""
    return max(MIN_INTERVAL_MS, min(MAX_INTERVAL_MS, int(value_ms)))


class MonitorConfig(BaseModel):
    """Values consumed by the monitor. Use with_overrides() to build variants."""

    model_config = ConfigDict(frozen=True)

    monitoring_interval_ms: int = DEFAULT_INTERVAL_MS
    enable_auto_monitoring: bool = True
    cpu_alert_threshold: float = Field(default=DEFAULT_CPU_THRESHOLD, ge=0.0)
    memory_alert_threshold: float = Field(default=DEFAULT_MEMORY_THRESHOLD, ge=0.0)  # MB
    history_retention_days: float = DEFAULT_RETENTION_DAYS
    history_path: Path = Field(default_factory=lambda: get_config_dir() / "history.json")
    excluded_prefixes: tuple[str, ...] = ("vscode.",)
    sample_timeout: float = Field(default=5.0, gt=0.0)  # Seconds
    cleanup_interval: float = Field(default=3600.0, gt=0.0)  # Seconds between retention sweeps
    log_level: str = "INFO"

    @field_validator("monitoring_interval_ms")
    @classmethod
    def clamp_monitoring_interval(cls, v: int) -> int:
        clamped = clamp_interval(v)
        if clamped != v:
            log.warning("config_interval_clamped", requested=v, used=clamped)
        return clamped

    @field_validator("history_retention_days")
    @classmethod
    def reset_bad_retention(cls, v: float) -> float:
        if v <= 0:
            log.warning("config_retention_invalid", requested=v)
            return DEFAULT_RETENTION_DAYS
        return v

    @field_validator("history_path")
    @classmethod
    def expand_history_path(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("excluded_prefixes", mode="before")
    @classmethod
    def require_prefix_list(cls, v: Any) -> Any:
        # A bare string would otherwise be split into single characters
        if isinstance(v, str):
            raise ValueError("excluded_prefixes must be a list of strings")
        return v

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def interval_seconds(self) -> float:
        """Monitoring interval in seconds."""
        return self.monitoring_interval_ms / 1000

    def with_overrides(self, **changes: Any) -> "MonitorConfig":
        """Return a copy with changes applied and validated."""
        return MonitorConfig.model_validate({**self.model_dump(), **changes})


# Config key -> field name
_FIELDS: dict[str, str] = {
    "monitoring_interval_ms": "monitoring_interval_ms",
    "enable_auto_monitoring": "enable_auto_monitoring",
    "history_retention_days": "history_retention_days",
    "history_path": "history_path",
    "excluded_prefixes": "excluded_prefixes",
    "sample_timeout": "sample_timeout",
    "cleanup_interval": "cleanup_interval",
    "log_level": "log_level",
    "alert_thresholds.cpu": "cpu_alert_threshold",
    "alert_thresholds.memory": "memory_alert_threshold",
}

_ENV: dict[str, str] = {
    "EXTPERF_INTERVAL_MS": "monitoring_interval_ms",
    "EXTPERF_AUTO_MONITORING": "enable_auto_monitoring",
    "EXTPERF_RETENTION_DAYS": "history_retention_days",
    "EXTPERF_HISTORY_PATH": "history_path",
    "EXTPERF_SAMPLE_TIMEOUT": "sample_timeout",
    "EXTPERF_LOG_LEVEL": "log_level",
    "EXTPERF_CPU_THRESHOLD": "alert_thresholds.cpu",
    "EXTPERF_MEMORY_THRESHOLD": "alert_thresholds.memory",
}


def _flatten(section: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in section.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def load_toml(path: Path) -> dict[str, Any]:
    """Load the [extperf] table of a TOML file."""
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Failed to load {path}: {e}") from e
    section = data.get("extperf", {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"[extperf] in {path} is not a table")
    return section


def load_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect EXTPERF_* overrides as flat config keys."""
    environ = os.environ if environ is None else environ
    return {key: environ[var] for var, key in _ENV.items() if environ.get(var)}


def build_config(values: Mapping[str, Any], base: MonitorConfig | None = None) -> MonitorConfig:
    """
    Apply flat config values on top of base.

    Unknown keys are ignored. A value that fails validation keeps the
    base value and logs a warning.
    """
    base = base or MonitorConfig()
    changes: dict[str, Any] = {}
    sources: dict[str, str] = {}
    for key, raw in values.items():
        field_name = _FIELDS.get(key)
        if field_name is None:
            log.debug("config_key_ignored", key=key)
            continue
        changes[field_name] = raw
        sources[field_name] = key

    try:
        return base.with_overrides(**changes)
    except ValidationError as exc:
        for error in exc.errors():
            field_name = str(error["loc"][0]) if error["loc"] else ""
            if field_name in changes:
                del changes[field_name]
                log.warning(
                    "config_value_invalid",
                    key=sources[field_name],
                    value=values[sources[field_name]],
                    error=error["msg"],
                )
    return base.with_overrides(**changes)


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> MonitorConfig:
    """
    Load configuration with priority: environment > file > defaults.

    A missing or unreadable file leaves the defaults in place.
    """
    values: dict[str, Any] = {}
    config_path = Path(path).expanduser() if path is not None else get_config_path()
    if config_path.exists():
        try:
            values.update(_flatten(load_toml(config_path)))
        except ConfigurationError as exc:
            log.warning("config_load_failed", path=str(config_path), error=str(exc))
    values.update(load_from_env(environ))
    return build_config(values)
