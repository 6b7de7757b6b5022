from __future__ import annotations

import pytest

from expense_backend.app import database
from expense_backend.app.errors import ConnectionStringInvalid
from expense_backend.app.migrations import run_database_migrations
from expense_backend.app.procedures import get_gateway


@pytest.fixture
def fresh_engine():
    database.reset_engine()
    yield
    database.reset_engine()


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_missing_url_is_reported(raw) -> None:
    with pytest.raises(ConnectionStringInvalid, match="not configured"):
        database.resolve_database_url(raw)


def test_malformed_url_is_reported() -> None:
    with pytest.raises(ConnectionStringInvalid, match="malformed"):
        database.resolve_database_url("not a url")


def test_unknown_driver_is_reported() -> None:
    with pytest.raises(ConnectionStringInvalid):
        database.build_engine("nosuchdialect://server/db")


def test_sqlite_parent_directory_is_created(tmp_path) -> None:
    target = tmp_path / "nested" / "expenses.db"

    database.resolve_database_url(f"sqlite:///{target}")

    assert target.parent.is_dir()


def test_sqlite_engines_enforce_foreign_keys(tmp_path) -> None:
    engine = database.build_engine(f"sqlite:///{tmp_path / 'fk.db'}")
    try:
        with engine.connect() as connection:
            assert connection.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
    finally:
        engine.dispose()


def test_pool_settings_share_the_integer_reader(monkeypatch) -> None:
    monkeypatch.setenv(database.POOL_SIZE_ENV, "12")
    assert database._engine_kwargs("postgresql://db/expenses")["pool_size"] == 12

    monkeypatch.setenv(database.POOL_SIZE_ENV, "many")
    with pytest.raises(ValueError, match="DATABASE_POOL_SIZE must be an integer"):
        database._engine_kwargs("postgresql://db/expenses")


def test_gateway_uses_configured_database(tmp_path, monkeypatch, fresh_engine) -> None:
    url = f"sqlite:///{tmp_path / 'expenses.db'}"
    run_database_migrations(url)
    monkeypatch.setenv("DATABASE_URL", url)
    database.reset_engine()

    categories = get_gateway().call("GetCategories")

    assert len(categories) == 5
    assert database.get_engine().url.database.endswith("expenses.db")


def test_unconfigured_gateway_fails_on_first_call(fresh_engine) -> None:
    gateway = get_gateway()

    with pytest.raises(ConnectionStringInvalid):
        gateway.call("GetStatuses")
