"""
Configuration loader for the cost-control engine.

Loads settings from cost_control_config.yaml and provides typed access
to all configuration sections.
"""
import logging
from pathlib import Path
from typing import Any, Optional
from functools import lru_cache

import yaml


# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "cost_control_config.yaml"

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class CostControlConfig:
    """
    Configuration manager for the cost-control engine.

    Loads YAML configuration and provides typed access to all sections.
    Use get_config() to obtain the singleton instance.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            raise ConfigurationError(f"Config file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r') as f:
                self._config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

        self._validate()

    def _validate(self) -> None:
        if self.amount_epsilon_cents < 1:
            raise ConfigurationError("sync.amount_epsilon_cents must be at least 1")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ConfigurationError("sync.deadline_seconds must be positive or null")
        wait = self.import_wait_seconds
        if wait is not None and wait < 0:
            raise ConfigurationError("locking.import_wait_seconds must be non-negative or null")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load()
        # Clear the cached singleton to force reload on next get_config()
        get_config.cache_clear()

    @property
    def version(self) -> str:
        """Configuration file version."""
        return self._config.get("version", "unknown")

    # =========================================================================
    # Synchronization
    # =========================================================================

    @property
    def sync(self) -> dict:
        """Synchronization settings."""
        return self._config.get("sync", {}) or {}

    @property
    def recalculate_parents_default(self) -> bool:
        """Whether an import recomputes parent totals when the caller does not say."""
        return bool(self.sync.get("recalculate_parents_default", True))

    @property
    def deadline_seconds(self) -> Optional[float]:
        """Time budget for one synchronization run (None = unbounded)."""
        value = self.sync.get("deadline_seconds", 120)
        return float(value) if value is not None else None

    @property
    def amount_epsilon_cents(self) -> int:
        """Smallest amount difference treated as a change (1 cent = 0.01 major units)."""
        return int(self.sync.get("amount_epsilon_cents", 1))

    # =========================================================================
    # Locking
    # =========================================================================

    @property
    def locking(self) -> dict:
        """Per-project lock settings."""
        return self._config.get("locking", {}) or {}

    @property
    def import_wait_seconds(self) -> Optional[float]:
        """How long an import waits for the project lock (None = indefinitely)."""
        value = self.locking.get("import_wait_seconds")
        return float(value) if value is not None else None

    @property
    def edit_fail_fast(self) -> bool:
        """Whether direct-edit recomputes fail immediately on lock contention."""
        return bool(self.locking.get("edit_fail_fast", True))

    # =========================================================================
    # Logging
    # =========================================================================

    @property
    def logging(self) -> dict:
        """Logging configuration."""
        return self._config.get("logging", {}) or {}

    @property
    def log_level(self) -> int:
        """Numeric log level."""
        name = str(self.logging.get("level", "INFO")).upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ConfigurationError(f"Unknown log level: {name}")
        return level

    @property
    def log_format(self) -> str:
        """Log record format string."""
        return self.logging.get("format", DEFAULT_LOG_FORMAT)

    # =========================================================================
    # Raw Access
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level config value by key."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Dictionary-style access to config."""
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        return key in self._config


@lru_cache(maxsize=1)
def get_config(config_path: Optional[str] = None) -> CostControlConfig:
    """
    Get the singleton configuration instance.

    Args:
        config_path: Optional path to config file. Only used on first call.

    Returns:
        CostControlConfig singleton instance
    """
    path = Path(config_path) if config_path else None
    return CostControlConfig(path)


def reload_config() -> CostControlConfig:
    """Reload configuration from disk and return new instance."""
    get_config.cache_clear()
    return get_config()


def configure_logging(config: Optional[CostControlConfig] = None) -> None:
    """Configure root logging from the logging section."""
    config = config or get_config()
    logging.basicConfig(level=config.log_level, format=config.log_format)
