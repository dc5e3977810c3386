from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from crudshorts.adapters.sqlalchemy import SqlAlchemyBackend, create_backend_engine
from crudshorts.config import BackendConfig
from crudshorts.domain.actions import Actions
from tests.support.schemas import metadata, note_table, start_mappers

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(scope="session", autouse=True)
def mappers() -> None:
    start_mappers()


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_backend_engine(
        "sqlite+pysqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _attach_archive(dbapi_connection: Any, connection_record: Any) -> None:
        _ = connection_record
        dbapi_connection.execute("ATTACH DATABASE ':memory:' AS archive")

    metadata.create_all(engine)
    archive = engine.execution_options(schema_translate_map={None: "archive"})
    metadata.create_all(archive, tables=[note_table], checkfirst=False)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def backend(sqlite_engine: Engine) -> SqlAlchemyBackend:
    return SqlAlchemyBackend(sqlite_engine)


@pytest.fixture
def actions(backend: SqlAlchemyBackend) -> Actions:
    return Actions(BackendConfig(repo=backend))
