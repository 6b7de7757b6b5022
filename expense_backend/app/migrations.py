"""Utility helpers to ensure the database schema is up to date."""

from __future__ import annotations

import errno
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from .config import DATABASE_URL_ENV
from . import models  # noqa: F401  (populates Base.metadata)
from .database import Base, build_engine

LOGGER = logging.getLogger(__name__)

LOCK_FILENAME = ".alembic-migration.lock"
LOCK_RETRY_DELAY = 0.25
LOCK_TIMEOUT_ENV = "ALEMBIC_MIGRATION_LOCK_TIMEOUT"
DEFAULT_LOCK_TIMEOUT = 30.0

if os.name == "posix":  # pragma: no cover - platform specific
    import fcntl
else:  # pragma: no cover - platform specific
    import msvcrt

BASE_DIR = Path(__file__).resolve().parent.parent


def _read_lock_timeout() -> float:
    raw = os.getenv(LOCK_TIMEOUT_ENV)
    if not raw:
        return DEFAULT_LOCK_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning(
            "Invalid %s=%s; falling back to %.1f seconds", LOCK_TIMEOUT_ENV, raw, DEFAULT_LOCK_TIMEOUT
        )
        return DEFAULT_LOCK_TIMEOUT
    if value <= 0:
        LOGGER.warning(
            "%s must be positive; using %.1f seconds", LOCK_TIMEOUT_ENV, DEFAULT_LOCK_TIMEOUT
        )
        return DEFAULT_LOCK_TIMEOUT
    return value


def _is_lock_conflict(error: OSError) -> bool:
    errno_value = getattr(error, "errno", None)
    if errno_value in {errno.EACCES, errno.EAGAIN, errno.EBUSY}:
        return True
    winerror = getattr(error, "winerror", None)
    # ERROR_LOCK_VIOLATION (33) and ERROR_SHARING_VIOLATION (32) are common
    # when another process already holds an exclusive lock on Windows.
    return winerror in {32, 33}


def _acquire_lock(fileobj, *, timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while True:
        try:
            if os.name == "posix":  # pragma: no cover - platform specific
                fcntl.flock(fileobj.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            else:  # pragma: no cover - platform specific
                msvcrt.locking(fileobj.fileno(), msvcrt.LK_NBLCK, 1)
            return
        except (BlockingIOError, OSError) as error:
            if not isinstance(error, BlockingIOError) and not _is_lock_conflict(error):
                raise
            if time.monotonic() >= deadline:
                raise TimeoutError("Timed out waiting for Alembic migration lock") from error
            time.sleep(LOCK_RETRY_DELAY)


def _release_lock(fileobj) -> None:
    try:
        if os.name == "posix":  # pragma: no cover - platform specific
            fcntl.flock(fileobj.fileno(), fcntl.LOCK_UN)
        else:  # pragma: no cover - platform specific
            msvcrt.locking(fileobj.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError:  # pragma: no cover - best effort cleanup
        pass


@contextmanager
def _migration_lock(path: Path, *, timeout: float) -> Iterator[None]:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a+") as handle:
        LOGGER.debug("Acquiring Alembic migration lock at %s", path)
        _acquire_lock(handle, timeout=timeout)
        try:
            yield
        finally:
            _release_lock(handle)
            LOGGER.debug("Released Alembic migration lock at %s", path)



def build_alembic_config(database_url: Optional[str] = None) -> Config:
    config = Config(str(BASE_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BASE_DIR / "alembic"))
    if database_url:
        # ConfigParser treats "%" as interpolation syntax.
        config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return config


def _upgrade(config: Config, connection: Connection) -> None:
    config.attributes["connection"] = connection
    inspector = inspect(connection)
    if not inspector.has_table("alembic_version"):
        existing = set(inspector.get_table_names())
        expected = set(Base.metadata.tables)
        if expected and expected <= existing:
            LOGGER.info(
                "Detected existing expense tables without Alembic metadata; stamping head"
            )
            command.stamp(config, "head")
            return
    command.upgrade(config, "head")


def upgrade_connection(connection: Connection) -> None:
    """Apply pending migrations over an already open connection."""

    LOGGER.info("Running database migrations over %s", connection.engine.url.host or "connection")
    _upgrade(build_alembic_config(), connection)


def run_database_migrations(database_url: Optional[str] = None) -> None:
    """Run Alembic migrations so the required tables exist before serving requests."""

    database_url = database_url or os.getenv(DATABASE_URL_ENV)
    engine = build_engine(database_url)
    config = build_alembic_config(engine.url.render_as_string(hide_password=False))
    LOGGER.info("Running database migrations at %s", engine.url)

    lock_path = BASE_DIR / LOCK_FILENAME
    timeout = _read_lock_timeout()

    with _migration_lock(lock_path, timeout=timeout):
        try:
            with engine.begin() as connection:
                _upgrade(config, connection)
        finally:
            engine.dispose()
