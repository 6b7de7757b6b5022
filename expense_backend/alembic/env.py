"""Alembic environment configuration for the expense backend."""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context

from expense_backend.app import models  # noqa: F401
from expense_backend.app.config import DATABASE_URL_ENV
from expense_backend.app.database import Base, build_engine, resolve_database_url

config = context.config

# Programmatic runs pass a connection and keep the host application's logging.
if config.config_file_name is not None and "connection" not in config.attributes:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _database_url() -> str:
    configured = config.get_main_option("sqlalchemy.url")
    return resolve_database_url(configured or os.getenv(DATABASE_URL_ENV))


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""

    url = _database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=url.startswith("sqlite"),
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""

    connection = config.attributes.get("connection")
    if connection is not None:
        _run_with_connection(connection)
        return

    connectable = build_engine(_database_url())
    try:
        with connectable.connect() as connection:
            _run_with_connection(connection)
    finally:
        connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
