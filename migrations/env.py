"""Alembic environment for Nearhand.

At app startup ``nearhand.database.init_db`` hands over its own connection
through ``config.attributes["connection"]``. From the command line a sync
SQLite engine is built from ``NEARHAND_DATABASE_URL``. Batch mode is always
on because SQLite cannot ALTER most constraints in place.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlmodel import SQLModel

import nearhand.db_models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata


def _cli_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    from nearhand.config import settings

    db_url = settings.database_url
    if not db_url.startswith("sqlite"):
        return f"sqlite:///{db_url}"
    return db_url.replace("sqlite+aiosqlite", "sqlite")


def _run(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    context.configure(
        url=_cli_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    injected = config.attributes.get("connection")
    if injected is not None:
        _run(injected)
        return

    engine = create_engine(_cli_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _run(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
