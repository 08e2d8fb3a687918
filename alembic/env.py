# alembic/env.py
from __future__ import annotations
import asyncio
from logging.config import fileConfig
from sqlalchemy import pool
from alembic import context
from sqlalchemy.ext.asyncio import async_engine_from_config

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from vethub.core.config import settings
from vethub.core.db import Base
# registra users, animals, appointments, chats, messages y notifications en Base.metadata
import vethub.models  # noqa: F401

target_metadata = Base.metadata

def _database_url() -> str:
    # `alembic -x url=sqlite+aiosqlite:///tmp.db upgrade head` pisa la URL de .env
    return context.get_x_argument(as_dictionary=True).get("url") or settings.async_database_url

def _run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        # sqlite no soporta ALTER de columnas; alembic recrea la tabla
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_offline() -> None:
    # offline genera SQL plano: sin driver async
    url = _database_url().replace("+aiomysql", "").replace("+aiosqlite", "")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()

async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        {"sqlalchemy.url": _database_url()},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(_run_migrations)
    await connectable.dispose()

if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
