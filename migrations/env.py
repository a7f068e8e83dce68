"""
Alembic environment for the ledger store.

The URL is taken from application settings rather than ``alembic.ini``.
Offline mode renders SQL; online mode applies revisions over a single
async connection, using batch mode on SQLite so ALTERs work there too.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger
from marketplace.database import models  # noqa: F401
from marketplace.database.base import Base
from marketplace.database.connection import async_database_url

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

logger = get_logger(__name__)
DATABASE_URL = async_database_url(get_settings().database_url)


def _configure(**options) -> None:
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()


def _apply(connection: Connection) -> None:
    _configure(
        connection=connection,
        render_as_batch=connection.dialect.name == "sqlite",
        transaction_per_migration=True,
    )


async def run_migrations_online() -> None:
    engine = create_async_engine(DATABASE_URL, poolclass=NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_apply)
    finally:
        await engine.dispose()
    logger.info("Migrations applied", dialect=engine.dialect.name)


if context.is_offline_mode():
    logger.info("Rendering migrations as SQL")
    _configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(run_migrations_online())
