"""Engine construction for SQLAlchemy backends."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


def create_backend_engine(uri: str, **kwargs: Any) -> Engine:
    """Create an engine; SQLite engines get foreign key enforcement switched on."""

    url = make_url(uri)
    log.info("Creating engine for %s", url.render_as_string(hide_password=True))
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        enable_sqlite_foreign_keys(engine)
    return engine


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        _ = connection_record
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    event.listen(engine, "connect", _on_connect)
