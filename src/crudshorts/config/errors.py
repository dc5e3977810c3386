"""Errors raised while resolving crudshorts configuration."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """A configuration value is present but unusable."""


class MissingConfigurationError(ConfigurationError):
    """A backend or environment setting needed by the current call is absent."""
