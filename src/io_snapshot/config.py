"""
Configuration management for io-snapshot.

This module handles loading and managing configuration settings from the
project's ``.iosnapshotrc.json`` file, plus validation of user-supplied
options.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import CONFIG_FILE, CORS_ENV_VAR, DEFAULT_PATTERN, DEFAULT_PORT, DEFAULT_TIMEOUT, PORT_ENV_VAR, SNAPSHOT_FILE
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class SnapshotConfig:
    """Configuration for recording and verification."""

    # Collector
    port: int = DEFAULT_PORT
    timeout: int = DEFAULT_TIMEOUT
    cors_origin: str = "*"

    # Files
    pattern: str = DEFAULT_PATTERN
    snapshot_file: str = SNAPSHOT_FILE

    # Comparison settings
    tolerance: Dict[str, float] = field(default_factory=lambda: {"rtol": 0.0, "atol": 0.0})

    # Output settings
    verbose: bool = False
    quiet: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {sorted(unknown)}")
        config = cls(**{key: value for key, value in data.items() if key in known})
        config.port = validate_port(config.port)
        config.timeout = validate_timeout(config.timeout)
        return config

    @classmethod
    def from_file(cls, config_path: Path) -> "SnapshotConfig":
        """Load configuration from JSON file."""
        if not config_path.exists():
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return cls.from_dict(data)
        except Exception as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")
            return cls()

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    def apply_env(self) -> "SnapshotConfig":
        """Apply environment overrides."""
        if os.environ.get(PORT_ENV_VAR):
            self.port = validate_port(os.environ[PORT_ENV_VAR])
        if os.environ.get(CORS_ENV_VAR):
            self.cors_origin = os.environ[CORS_ENV_VAR]
        return self


class ConfigManager:
    """Manages configuration loading and saving."""

    def __init__(self, config_path: Optional[Path] = None, project_root: Optional[Path] = None):
        self.project_root = Path(project_root or Path.cwd())
        self.config_path = config_path or self.project_root / CONFIG_FILE
        self.config = SnapshotConfig.from_file(self.config_path).apply_env()

    def get_config(self) -> SnapshotConfig:
        """Get the current configuration."""
        return self.config

    def create_default_config(self) -> None:
        """Create a default configuration file."""
        default_config = SnapshotConfig()
        default_config.save_to_file(self.config_path)
        logger.info(f"Created default configuration at {self.config_path}")


def validate_port(port: Any) -> int:
    try:
        port_num = int(port)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port: {port}. Must be an integer between 1 and 65535.")
    if isinstance(port, float) and not port.is_integer():
        raise ConfigError(f"Invalid port: {port}. Must be an integer between 1 and 65535.")
    if port_num < 1 or port_num > 65535:
        raise ConfigError(f"Invalid port: {port}. Must be an integer between 1 and 65535.")
    return port_num


def validate_timeout(timeout: Any) -> int:
    try:
        timeout_num = int(timeout)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid timeout: {timeout}. Must be a positive integer.")
    if timeout_num < 1:
        raise ConfigError(f"Invalid timeout: {timeout}. Must be a positive integer.")
    return timeout_num


def validate_file_pattern(pattern: Any) -> str:
    if not isinstance(pattern, str) or not pattern.strip():
        raise ConfigError("File pattern must be a non-empty string.")
    return pattern.strip()
