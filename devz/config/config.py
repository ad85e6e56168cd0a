"""
Configuration management for DevZ.

This module provides classes and methods for loading, validating,
and managing application configuration with CLI integration support.
"""

import yaml
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, asdict, field
from .settings import Settings

_DEFAULTS = Settings()


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded."""
    pass


@dataclass
class PathsConfig:
    """Install and project locations."""
    client_dir: str = r"C:\Program Files (x86)\Steam\steamapps\common\DayZ"
    server_dir: str = r"C:\Program Files (x86)\Steam\steamapps\common\DayZServer"
    workshop_dir: str = r"C:\Program Files (x86)\Steam\steamapps\workshop\content\221100"
    project_dir: str = "."
    mission: str = _DEFAULTS.DEFAULT_MISSION
    server_config: str = _DEFAULTS.DEFAULT_SERVER_CONFIG


@dataclass
class ModConfig:
    """Mod being developed plus any extra mods to load."""
    name: str = "MyMod"
    additional_mods: List[str] = field(default_factory=list)


@dataclass
class NetworkConfig:
    """Configuration for server/client networking."""
    server_address: str = _DEFAULTS.DEFAULT_SERVER_ADDRESS
    server_port: int = _DEFAULTS.DEFAULT_SERVER_PORT


@dataclass
class ShutdownConfig:
    """Escalation timings used when stopping processes (seconds)."""
    client_grace_period: float = _DEFAULTS.CLIENT_GRACE_PERIOD
    client_force_window: float = _DEFAULTS.CLIENT_FORCE_WINDOW
    client_cleanup_window: float = _DEFAULTS.CLIENT_CLEANUP_WINDOW
    server_grace_period: float = _DEFAULTS.SERVER_GRACE_PERIOD
    server_force_window: float = _DEFAULTS.SERVER_FORCE_WINDOW
    server_cleanup_window: float = _DEFAULTS.SERVER_CLEANUP_WINDOW
    sweep_delay: float = _DEFAULTS.SWEEP_DELAY
    sweep_clear_delay: float = _DEFAULTS.SWEEP_CLEAR_DELAY
    client_start_delay: float = _DEFAULTS.CLIENT_START_DELAY


@dataclass
class MonitorConfig:
    """Configuration for log monitoring."""
    tail_backend: str = _DEFAULTS.DEFAULT_TAIL_BACKEND
    tail_command: str = _DEFAULTS.DEFAULT_TAIL_COMMAND
    poll_interval: float = _DEFAULTS.DEFAULT_POLL_INTERVAL
    clear_old_logs: bool = True


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = _DEFAULTS.DEFAULT_LOG_LEVEL
    file: Optional[str] = None


_SECTIONS = {
    'paths': PathsConfig,
    'mod': ModConfig,
    'network': NetworkConfig,
    'shutdown': ShutdownConfig,
    'monitor': MonitorConfig,
    'logging': LoggingConfig,
}


@dataclass
class Config:
    """Main configuration class for DevZ."""
    paths: PathsConfig = field(default_factory=PathsConfig)
    mod: ModConfig = field(default_factory=ModConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        # Environment variable overrides
        if os.getenv('DEVZ_LOG_LEVEL'):
            self.logging.level = os.getenv('DEVZ_LOG_LEVEL')
        if os.getenv('DEVZ_SERVER_DIR'):
            self.paths.server_dir = os.getenv('DEVZ_SERVER_DIR')
        if os.getenv('DEVZ_CLIENT_DIR'):
            self.paths.client_dir = os.getenv('DEVZ_CLIENT_DIR')
        if os.getenv('DEVZ_MOD_NAME'):
            self.mod.name = os.getenv('DEVZ_MOD_NAME')
        if os.getenv('DEVZ_SERVER_ADDRESS'):
            self.network.server_address = os.getenv('DEVZ_SERVER_ADDRESS')

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from a YAML file or return default configuration.

        Args:
            config_path: Path to configuration file

        Returns:
            Config instance

        Raises:
            ConfigError: If the file exists but is not valid YAML
        """
        # Check for config path in environment if not provided
        if not config_path:
            env_config_path = os.getenv('DEVZ_CONFIG')
            if env_config_path:
                config_path = Path(env_config_path)

        if config_path and config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid configuration file {config_path}: {e}") from e
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file {config_path} must contain a mapping")
            return cls.from_dict(data)
        else:
            # Return default configuration
            return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """
        Create Config instance from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Config instance
        """
        config_data = {}
        for name, section_cls in _SECTIONS.items():
            section_data = data.get(name)
            try:
                config_data[name] = section_cls(**section_data) if isinstance(section_data, dict) else section_cls()
            except TypeError as e:
                raise ConfigError(f"Invalid '{name}' section: {e}") from e
        return cls(**config_data)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert Config instance to dictionary.

        Returns:
            Configuration dictionary
        """
        return asdict(self)

    def save(self, config_path: Path) -> None:
        """
        Save configuration to a YAML file.

        Args:
            config_path: Path to save configuration file
        """
        with open(config_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    def validate(self) -> List[str]:
        """
        Validate the configuration and return a list of errors.

        Returns:
            List of validation errors, empty if valid
        """
        errors = []

        if not self.mod.name.strip():
            errors.append("Mod name must not be empty")

        host, _, port = self.network.server_address.rpartition(':')
        if not host or not port.isdigit():
            errors.append(f"Server address must look like host:port, got: {self.network.server_address}")
        if not 0 < self.network.server_port < 65536:
            errors.append(f"Server port out of range: {self.network.server_port}")

        for name, value in asdict(self.shutdown).items():
            if value < 0:
                errors.append(f"Shutdown timing {name} must not be negative")

        if self.monitor.tail_backend not in ('follow', 'poll'):
            errors.append(f"Invalid tail backend: {self.monitor.tail_backend}. Valid values: follow, poll")
        if self.monitor.poll_interval <= 0:
            errors.append("Monitor poll interval must be positive")

        # Validate logging level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.logging.level.upper() not in valid_log_levels:
            errors.append(f"Invalid logging level: {self.logging.level}. Valid values: {', '.join(valid_log_levels)}")

        return errors

    def get_env_overrides(self) -> Dict[str, Any]:
        """
        Get configuration values that are overridden by environment variables.

        Returns:
            Dictionary of environment variable overrides
        """
        overrides = {}

        if os.getenv('DEVZ_LOG_LEVEL'):
            overrides['logging.level'] = os.getenv('DEVZ_LOG_LEVEL')
        if os.getenv('DEVZ_SERVER_DIR'):
            overrides['paths.server_dir'] = os.getenv('DEVZ_SERVER_DIR')
        if os.getenv('DEVZ_CLIENT_DIR'):
            overrides['paths.client_dir'] = os.getenv('DEVZ_CLIENT_DIR')
        if os.getenv('DEVZ_MOD_NAME'):
            overrides['mod.name'] = os.getenv('DEVZ_MOD_NAME')
        if os.getenv('DEVZ_SERVER_ADDRESS'):
            overrides['network.server_address'] = os.getenv('DEVZ_SERVER_ADDRESS')

        return overrides

    # Derived locations

    @property
    def project_dir(self) -> Path:
        return Path(self.paths.project_dir).resolve()

    @property
    def out_dir(self) -> Path:
        return self.project_dir / _DEFAULTS.DEFAULT_OUT_DIR

    @property
    def server_profile_dir(self) -> Path:
        return self.out_dir / _DEFAULTS.SERVER_PROFILE_DIR

    @property
    def server_storage_dir(self) -> Path:
        return self.out_dir / _DEFAULTS.SERVER_STORAGE_DIR

    @property
    def client_profile_dir(self) -> Path:
        return self.out_dir / _DEFAULTS.CLIENT_PROFILE_DIR

    @property
    def server_executable(self) -> Path:
        return Path(self.paths.server_dir) / _DEFAULTS.SERVER_EXECUTABLE

    @property
    def client_executable(self) -> Path:
        return Path(self.paths.client_dir) / _DEFAULTS.CLIENT_EXECUTABLE
