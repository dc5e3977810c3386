from __future__ import annotations

import pytest

from crudshorts.config import (
    DatabaseConfig,
    MissingConfigurationError,
    get_database_config,
    optional_env_var,
    require_env_vars,
)


def test_require_env_vars_returns_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", " value ")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_lists_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_B", raising=False)
    monkeypatch.setenv("MISSING_A", "   ")

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_B", "MISSING_A"])

    assert "MISSING_A, MISSING_B" in str(exc.value)


def test_optional_env_var_treats_blank_as_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "")

    assert optional_env_var("EXAMPLE_VAR") is None


def test_database_config_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRUDSHORTS_DATABASE_URI", "sqlite+pysqlite://")
    monkeypatch.delenv("CRUDSHORTS_REPLICA_URI", raising=False)

    assert get_database_config() == DatabaseConfig(uri="sqlite+pysqlite://")

    monkeypatch.setenv("CRUDSHORTS_REPLICA_URI", "sqlite+pysqlite:///replica.db")
    assert get_database_config().replica_uri == "sqlite+pysqlite:///replica.db"


def test_database_config_requires_a_uri(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CRUDSHORTS_DATABASE_URI", raising=False)

    with pytest.raises(MissingConfigurationError, match="CRUDSHORTS_DATABASE_URI"):
        get_database_config()
