from __future__ import annotations

import logging

import pytest
from sqlalchemy import text

from crudshorts.adapters.sqlalchemy import create_backend_engine


def test_sqlite_engines_enforce_foreign_keys(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="crudshorts.adapters.sqlalchemy.engine")

    engine = create_backend_engine("sqlite+pysqlite://")
    try:
        with engine.connect() as connection:
            assert connection.execute(text("PRAGMA foreign_keys")).scalar() == 1
    finally:
        engine.dispose()

    assert "Creating engine for sqlite+pysqlite://" in caplog.text
