"""Database connection settings read from the environment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .env import optional_env_var, require_env_vars

DATABASE_URI_ENV: Final[str] = "CRUDSHORTS_DATABASE_URI"
REPLICA_URI_ENV: Final[str] = "CRUDSHORTS_REPLICA_URI"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    replica_uri: str | None = None


def get_database_config() -> DatabaseConfig:
    values = require_env_vars([DATABASE_URI_ENV])
    return DatabaseConfig(
        uri=values[DATABASE_URI_ENV],
        replica_uri=optional_env_var(REPLICA_URI_ENV),
    )
