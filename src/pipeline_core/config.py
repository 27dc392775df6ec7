"""Unified configuration for pipeline-core.

Configuration is stored at ~/.pipeline-core/config.toml and organized into
sections.

Configuration loading priority:
1. Environment variables (highest)
2. Config file (PIPELINE_CORE_CONFIG or ~/.pipeline-core/config.toml)
3. Defaults (lowest)

Sections:
    [retry]        - Retry engine defaults (max retries, backoff, jitter)
    [checkpoints]  - Checkpoint storage backend and location
    [logging]      - Log level

Example:
    from pipeline_core.config import get_config

    config = get_config()
    print(config.retry.max_retries)
    print(config.checkpoints.directory)
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomli_w

if TYPE_CHECKING:
    from .checkpoint.store import CheckpointStore

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".pipeline-core"
DEFAULT_CONFIG_FILE = "config.toml"

STORE_BACKENDS = ("memory", "file")
LOG_LEVELS = ("debug", "info", "warning", "error")

# Singleton instance
_config: PipelineConfig | None = None


# =============================================================================
# Configuration Sections
# =============================================================================


@dataclass
class RetryConfig:
    """Retry engine defaults.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay_ms: Backoff delay for the first retry.
        max_delay_ms: Cap on the backoff delay.
        jitter: Jitter fraction between 0 and 1.
    """

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    jitter: float = 0.25

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        """Create from dictionary."""
        return cls(
            max_retries=int(data.get("max_retries", 3)),
            base_delay_ms=int(data.get("base_delay_ms", 1000)),
            max_delay_ms=int(data.get("max_delay_ms", 30000)),
            jitter=float(data.get("jitter", 0.25)),
        )

    @classmethod
    def from_env(cls) -> dict[str, Any]:
        """Read overrides from environment variables.

        Returns only the keys that are set, converted to their types.
        """
        overrides: dict[str, Any] = {}
        env_map = {
            "PIPELINE_MAX_RETRIES": ("max_retries", int),
            "PIPELINE_BASE_DELAY_MS": ("base_delay_ms", int),
            "PIPELINE_MAX_DELAY_MS": ("max_delay_ms", int),
            "PIPELINE_JITTER": ("jitter", float),
        }
        for env_name, (key, cast) in env_map.items():
            raw = os.environ.get(env_name)
            if raw:
                try:
                    overrides[key] = cast(raw)
                except ValueError:
                    logger.warning(f"Ignoring invalid {env_name}={raw!r}")
        return overrides

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_retries": self.max_retries,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "jitter": self.jitter,
        }


@dataclass
class CheckpointConfig:
    """Checkpoint storage settings.

    Attributes:
        store: Storage backend, "memory" or "file".
        directory: Directory for the file backend.
    """

    store: str = "file"
    directory: str = ".pipeline/checkpoints"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckpointConfig:
        """Create from dictionary."""
        store = data.get("store", "file")
        if store not in STORE_BACKENDS:
            logger.warning(f"Unknown checkpoint store '{store}', using 'file'")
            store = "file"
        return cls(
            store=store,
            directory=data.get("directory", ".pipeline/checkpoints"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "store": self.store,
            "directory": self.directory,
        }


@dataclass
class LoggingConfig:
    """Logging settings.

    Attributes:
        level: Logging level (debug, info, warning, error).
    """

    level: str = "info"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingConfig:
        """Create from dictionary."""
        return cls(level=str(data.get("level", "info")).lower())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"level": self.level}

    @property
    def numeric_level(self) -> int:
        return getattr(logging, self.level.upper(), logging.INFO)


@dataclass
class PipelineConfig:
    """Complete pipeline-core configuration."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    checkpoints: CheckpointConfig = field(default_factory=CheckpointConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Metadata
    config_version: str = "1.0"
    config_path: Path | None = None
    last_modified: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        """Create configuration from dictionary."""
        return cls(
            retry=RetryConfig.from_dict(data.get("retry", {})),
            checkpoints=CheckpointConfig.from_dict(data.get("checkpoints", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
            config_version=data.get("config", {}).get("version", "1.0"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "config": {
                "version": self.config_version,
            },
            "retry": self.retry.to_dict(),
            "checkpoints": self.checkpoints.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        for key, value in RetryConfig.from_env().items():
            setattr(self.retry, key, value)

        store = os.environ.get("PIPELINE_CHECKPOINT_STORE")
        if store:
            if store in STORE_BACKENDS:
                self.checkpoints.store = store
            else:
                logger.warning(f"Ignoring unknown PIPELINE_CHECKPOINT_STORE={store!r}")
        if directory := os.environ.get("PIPELINE_CHECKPOINT_DIR"):
            self.checkpoints.directory = directory

        if level := os.environ.get("PIPELINE_LOG_LEVEL"):
            self.logging.level = level.lower()

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key path.

        Example:
            config.get('retry.max_retries')  # Returns 3
            config.get('checkpoints.directory')
        """
        parts = key.split(".")
        obj: Any = self

        for part in parts:
            if hasattr(obj, part):
                obj = getattr(obj, part)
            elif isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default

        return obj

    def set(self, key: str, value: Any) -> bool:
        """Set a configuration value by dotted key path.

        Returns:
            True if set successfully, False for unknown keys.
        """
        parts = key.split(".")
        if len(parts) != 2:
            return False

        section_name, field_name = parts
        section = getattr(self, section_name, None)
        if section is None or not hasattr(section, field_name):
            return False

        setattr(section, field_name, value)
        return True


# =============================================================================
# Configuration Loading/Saving
# =============================================================================


def get_config_path() -> Path:
    """Get the path to the configuration file."""
    if custom_path := os.environ.get("PIPELINE_CORE_CONFIG"):
        return Path(custom_path)
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> PipelineConfig:
    """Load configuration from TOML file.

    A missing file yields defaults. An unreadable or malformed file is logged
    and also yields defaults, so a bad config never blocks the pipeline.

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        PipelineConfig with settings from file and environment.
    """
    path = config_path or get_config_path()

    config = PipelineConfig()
    config.config_path = path

    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            config = PipelineConfig.from_dict(data)
            config.config_path = path
            config.last_modified = datetime.fromtimestamp(path.stat().st_mtime)

        except (OSError, tomllib.TOMLDecodeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load config from {path}: {e}")
            config = PipelineConfig()
            config.config_path = path

    config.apply_env_overrides()

    return config


def save_config(config: PipelineConfig, config_path: Path | None = None) -> Path:
    """Save configuration to TOML file.

    Returns:
        The path written to.
    """
    path = config_path or config.config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "wb") as f:
        tomli_w.dump(config.to_dict(), f)

    config.config_path = path
    config.last_modified = datetime.now()
    logger.info(f"Saved config to {path}")
    return path


def get_config() -> PipelineConfig:
    """Get the singleton configuration instance.

    Loads from file on first call, returns cached instance after.
    Use reload_config() to force reload.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> PipelineConfig:
    """Force reload configuration from file."""
    global _config
    _config = load_config()
    return _config


def reset_config() -> None:
    """Reset singleton to force reload on next access."""
    global _config
    _config = None


def build_store(config: PipelineConfig, directory: Path | None = None) -> CheckpointStore:
    """Create the checkpoint store selected by ``[checkpoints]``.

    Args:
        config: Loaded configuration.
        directory: Overrides ``checkpoints.directory`` for the file backend.
    """
    from .checkpoint.store import FileCheckpointStore, InMemoryCheckpointStore

    if config.checkpoints.store == "memory":
        return InMemoryCheckpointStore()
    return FileCheckpointStore(directory or Path(config.checkpoints.directory))


# =============================================================================
# CLI Helpers
# =============================================================================


def format_config_for_display(config: PipelineConfig) -> str:
    """Format configuration for CLI display."""
    lines = []
    lines.append("pipeline-core Configuration")
    lines.append("=" * 50)
    lines.append("")

    if config.config_path:
        lines.append(f"Config file: {config.config_path}")
        if config.last_modified:
            lines.append(f"Last modified: {config.last_modified.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append("")

    for section, values in config.to_dict().items():
        if section == "config":
            continue
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"  {key} = {value}")
        lines.append("")

    return "\n".join(lines).rstrip()


def list_config_keys() -> list[str]:
    """List all available configuration keys as dotted paths."""
    config = PipelineConfig()
    keys = []
    for section, values in config.to_dict().items():
        if section == "config":
            continue
        keys.extend(f"{section}.{key}" for key in values)
    return keys
