"""Database configuration for the expense API.

The engine is created lazily so the application can start, and render
placeholder data, even when no connection string has been configured.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL_ENV, read_int_env
from .errors import ConnectionStringInvalid

POOL_SIZE_ENV = "DATABASE_POOL_SIZE"
POOL_MAX_OVERFLOW_ENV = "DATABASE_MAX_OVERFLOW"
POOL_TIMEOUT_ENV = "DATABASE_POOL_TIMEOUT"
POOL_RECYCLE_ENV = "DATABASE_POOL_RECYCLE"

DEFAULT_POOL_SIZE = 5
DEFAULT_MAX_OVERFLOW = 10
DEFAULT_POOL_TIMEOUT = 30
DEFAULT_POOL_RECYCLE = 1800

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None
_lock = threading.Lock()


def _ensure_directory(path: str | os.PathLike[str]) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def resolve_database_url(raw_url: Optional[str]) -> str:
    """Validate ``raw_url`` and return its normalised string form."""

    if not raw_url or not raw_url.strip():
        raise ConnectionStringInvalid("Database connection string is not configured.")
    try:
        url = make_url(raw_url.strip())
    except ArgumentError as exc:
        raise ConnectionStringInvalid(f"Database connection string is malformed: {exc}") from exc
    if url.drivername.startswith("sqlite") and url.database not in (None, "", ":memory:"):
        _ensure_directory(url.database)
    return url.render_as_string(hide_password=False)


def _engine_kwargs(database_url: str) -> Dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": read_int_env(POOL_SIZE_ENV, DEFAULT_POOL_SIZE),
        "max_overflow": read_int_env(POOL_MAX_OVERFLOW_ENV, DEFAULT_MAX_OVERFLOW),
        "pool_timeout": read_int_env(POOL_TIMEOUT_ENV, DEFAULT_POOL_TIMEOUT),
        "pool_recycle": read_int_env(POOL_RECYCLE_ENV, DEFAULT_POOL_RECYCLE),
    }


def enable_sqlite_foreign_keys(engine: Engine) -> Engine:
    """SQLite ignores foreign keys unless each connection opts in."""

    @event.listens_for(engine, "connect")
    def _set_foreign_keys(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def build_engine(raw_url: Optional[str]) -> Engine:
    database_url = resolve_database_url(raw_url)
    try:
        engine = create_engine(database_url, **_engine_kwargs(database_url))
    except (ArgumentError, NoSuchModuleError) as exc:
        raise ConnectionStringInvalid(f"Unable to create a database engine: {exc}") from exc
    if engine.dialect.name == "sqlite":
        enable_sqlite_foreign_keys(engine)
    return engine


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""

    global _engine
    with _lock:
        if _engine is None:
            _engine = build_engine(os.getenv(DATABASE_URL_ENV))
        return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    engine = get_engine()
    with _lock:
        if _session_factory is None:
            _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        return _session_factory


def reset_engine() -> None:
    """Dispose the cached engine so the next call re-reads the configuration."""

    global _engine, _session_factory
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _session_factory = None

