"""Configuration module for DevZ."""

from .config import Config, ConfigError
from .settings import Settings

__all__ = ['Config', 'ConfigError', 'Settings']
