"""
Configuration management for routinekit.

Two layers:
- RoutineConfig: the per-routine retry/timeout value object handed to the
  retry controller at call time
- RoutinekitConfig: engine-wide settings loaded from config.yaml in the
  routinekit home directory (defaults for routines, logging, definitions)
"""

import os
from dataclasses import dataclass, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from routinekit.errors import ConfigurationError


DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_TIMEOUT_MS = 30000


@dataclass(frozen=True)
class RoutineConfig:
    """
    Retry and timeout policy for the subroutines of one routine.

    Attributes:
        max_retries: Attempts per subroutine, including the first (>= 1)
        retry_delay_ms: Base delay; the wait before retry n is retry_delay_ms * n (>= 0)
        timeout_ms: Per-attempt timeout (> 0)
    """
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self):
        for name in ("max_retries", "retry_delay_ms", "timeout_ms"):
            value = getattr(self, name)
            # bool is an int subclass but never a valid count
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"`{name}` must be an integer, got {value!r}")
        if self.max_retries < 1:
            raise ConfigurationError(f"`max_retries` must be >= 1, got {self.max_retries}")
        if self.retry_delay_ms < 0:
            raise ConfigurationError(f"`retry_delay_ms` must be >= 0, got {self.retry_delay_ms}")
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"`timeout_ms` must be > 0, got {self.timeout_ms}")

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000

    def delay_before_retry(self, attempt_n: int) -> float:
        """Seconds to wait after failed attempt `attempt_n` (linear backoff)."""
        return self.retry_delay_seconds * attempt_n

    def merged(self, **overrides: Any) -> "RoutineConfig":
        """Return a copy with the given fields overridden."""
        _check_keys(overrides)
        return replace(self, **overrides)

    def to_dict(self) -> dict[str, int]:
        return {
            "max_retries": self.max_retries,
            "retry_delay_ms": self.retry_delay_ms,
            "timeout_ms": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], base: Optional["RoutineConfig"] = None) -> "RoutineConfig":
        """Build a config from a (possibly partial) mapping on top of `base` or the defaults."""
        base = base or cls()
        if not data:
            return base
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Routine config must be a mapping, got {type(data).__name__}")
        # Checked before ** expansion so non-string keys fail as config errors
        _check_keys(data)
        return base.merged(**dict(data))


def _check_keys(data: Mapping[str, Any]) -> None:
    known = {f.name for f in fields(RoutineConfig)}
    unknown = sorted(str(key) for key in set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown routine config keys: {', '.join(unknown)}")


def coerce_config(config: "RoutineConfig | Mapping[str, Any] | None") -> RoutineConfig:
    """Accept a RoutineConfig, a partial mapping, or None (defaults)."""
    if config is None:
        return RoutineConfig()
    if isinstance(config, RoutineConfig):
        return config
    return RoutineConfig.from_dict(config)


def get_routinekit_home() -> Path:
    """Return the routinekit home directory ($ROUTINEKIT_HOME or ~/.config/routinekit)."""
    home = os.environ.get("ROUTINEKIT_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/routinekit").expanduser()


class RoutinekitConfig:
    """Engine configuration loaded from config.yaml."""

    def __init__(self, raw_config: Optional[dict[str, Any]] = None, config_path: Optional[Path] = None):
        self.config_path = config_path
        self.raw_config = raw_config or {}

        defaults = self.raw_config.get("defaults") or {}
        self.routine_defaults = RoutineConfig.from_dict(defaults)

        definitions_dir = self.raw_config.get("definitions_dir")
        if definitions_dir:
            self.definitions_dir = Path(definitions_dir).expanduser()
        else:
            self.definitions_dir = get_routinekit_home() / "definitions"

        logging_config = self.raw_config.get("logging") or {}
        if not isinstance(logging_config, dict):
            raise ConfigurationError(
                f"`logging` must be a mapping, got {type(logging_config).__name__}"
            )
        self.logging = logging_config

    @classmethod
    def from_file(cls, config_path: Path) -> "RoutinekitConfig":
        """Load and parse a YAML configuration file."""
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if not config:
            raise ConfigurationError(f"Configuration file is empty: {config_path}")
        if not isinstance(config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")
        return cls(config, config_path)

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return self.logging.get("console", True)

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation, or None when file logging is off."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(log_output).expanduser()

    def __repr__(self) -> str:
        return f"RoutinekitConfig(path={self.config_path}, defaults={self.routine_defaults.to_dict()})"


def load_config(config_path: Optional[Path] = None) -> RoutinekitConfig:
    """
    Load routinekit configuration.

    Args:
        config_path: Path to config file. Defaults to <routinekit home>/config.yaml

    Returns:
        RoutinekitConfig instance (built-in defaults when the default file is absent)

    Raises:
        ConfigurationError: If an explicit path is missing, or the file is invalid
    """
    if config_path is not None:
        return RoutinekitConfig.from_file(Path(config_path))

    default_path = get_routinekit_home() / "config.yaml"
    if not default_path.exists():
        return RoutinekitConfig()
    return RoutinekitConfig.from_file(default_path)
