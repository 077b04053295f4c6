"""Configuration management for repokit."""

from repokit.config.exceptions import (
    ConfigurationError,
    InvalidConfigurationError,
    MissingConfigurationError,
)
from repokit.config.models import RepoKitSettings

__all__ = [
    "ConfigurationError",
    "InvalidConfigurationError",
    "MissingConfigurationError",
    "RepoKitSettings",
]
