"""Alembic environment for the signal store tables."""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

from signal_executor.config import load_config
from signal_executor.db import Base, driver_url
from signal_executor.db.tables import SignalRow

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

SCHEMA = SignalRow.__table__.schema


def get_url() -> str:
    """Database URL from the executor's own config when one is given.

    EXECUTOR_CONFIG and EXECUTOR_DATABASE_URL are read the same way the
    running service reads them; otherwise alembic.ini's sqlalchemy.url is used.
    """
    config_path = os.environ.get("EXECUTOR_CONFIG")
    if config_path or os.environ.get("EXECUTOR_DATABASE_URL"):
        url = load_config(config_path).database.url
    else:
        url = config.get_main_option("sqlalchemy.url")
    return driver_url(url)


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table":
        return obj.schema == SCHEMA
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_schemas=True,
        include_object=include_object,
        version_table_schema=SCHEMA,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=get_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(get_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}"))
        connection.commit()
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
