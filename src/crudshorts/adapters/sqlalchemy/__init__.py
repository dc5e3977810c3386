"""SQLAlchemy adapter package for crudshorts."""

from __future__ import annotations

from .backend import SOURCE_OPTION, SqlAlchemyBackend
from .constraints import violated_constraint
from .engine import create_backend_engine, enable_sqlite_foreign_keys
from .filters import SqlAlchemyFilterEngine
from .schema import SchemaMixin
from .unit_of_work import JoinedUnitOfWork, SqlAlchemyUnitOfWork, UnitOfWorkError

__all__ = [
    "SOURCE_OPTION",
    "JoinedUnitOfWork",
    "SchemaMixin",
    "SqlAlchemyBackend",
    "SqlAlchemyFilterEngine",
    "SqlAlchemyUnitOfWork",
    "UnitOfWorkError",
    "create_backend_engine",
    "enable_sqlite_foreign_keys",
    "violated_constraint",
]
