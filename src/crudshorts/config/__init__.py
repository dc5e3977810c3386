"""Application configuration helpers."""

from __future__ import annotations

from .backends import UNSET, BackendConfig
from .database import DatabaseConfig, get_database_config
from .env import optional_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .logging import configure_logging

__all__ = [
    "UNSET",
    "BackendConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "MissingConfigurationError",
    "configure_logging",
    "get_database_config",
    "optional_env_var",
    "require_env_vars",
]
