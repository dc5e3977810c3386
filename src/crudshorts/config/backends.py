"""Backend selection for primary (write) and replica (read) roles."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final, Literal

from .errors import MissingConfigurationError

if TYPE_CHECKING:
    from crudshorts.domain.ports.persistence import PersistenceBackend

    from .database import DatabaseConfig


class _Unset(Enum):
    UNSET = "unset"


UNSET: Final = _Unset.UNSET

type BackendOverride = PersistenceBackend | None | Literal[_Unset.UNSET]


@dataclass(frozen=True, slots=True)
class BackendConfig:
    """Backends an ``Actions`` instance talks to.

    Per-call overrides take precedence over the configured values. Passing ``None``
    explicitly disables a role for that call, which is mostly useful in tests.
    """

    repo: PersistenceBackend | None = None
    replica: PersistenceBackend | None = None

    def primary(self, repo: BackendOverride = UNSET) -> PersistenceBackend:
        backend = self.repo if repo is UNSET else repo
        if backend is None:
            raise MissingConfigurationError("repo not configured")
        return backend

    def reader(
        self,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> PersistenceBackend:
        replica_backend = self.replica if replica is UNSET else replica
        if replica_backend is not None:
            return replica_backend
        repo_backend = self.repo if repo is UNSET else repo
        if repo_backend is None:
            raise MissingConfigurationError("replica and repo not configured")
        return repo_backend

    def bind(self, backend: PersistenceBackend) -> BackendConfig:
        """Return a config routing both roles through ``backend``."""

        return BackendConfig(repo=backend, replica=backend)

    @classmethod
    def from_database_config(cls, config: DatabaseConfig) -> BackendConfig:
        from crudshorts.adapters.sqlalchemy import (  # noqa: PLC0415
            SqlAlchemyBackend,
            create_backend_engine,
        )

        repo = SqlAlchemyBackend(create_backend_engine(config.uri))
        replica = (
            SqlAlchemyBackend(create_backend_engine(config.replica_uri))
            if config.replica_uri
            else None
        )
        return cls(repo=repo, replica=replica)
