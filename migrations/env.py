"""
Alembic environment for the print shop schema.

Migrations run through asyncpg using the URL from the application
settings, never the placeholder in alembic.ini. Importing the models
package registers every table on Base.metadata so autogenerate can diff
orders, vouchers, loyalty and shipment tables.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from printshop.core.config import get_settings
from printshop.core.logging import get_logger
from printshop.database import models  # noqa: F401
from printshop.database.base import Base
from printshop.database.connection import _convert_database_url_to_async

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = get_logger(__name__)
target_metadata = Base.metadata

database_url = _convert_database_url_to_async(get_settings().database_url)
config.set_main_option("sqlalchemy.url", database_url)


def _skip_empty_revisions(context_, revision, directives) -> None:
    """Do not write an autogenerate revision when the models match the database."""
    if getattr(config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info("No schema changes detected, revision skipped")


def _configure(**options) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        process_revision_directives=_skip_empty_revisions,
        **options,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout without a database connection."""
    logger.info(
        "Generating offline migration script",
        url_scheme=database_url.split("://")[0],
    )
    _configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection, transaction_per_migration=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """
    Apply migrations over a dedicated async engine.

    The engine uses NullPool so the migration process holds no idle
    connections once it finishes.
    """
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = database_url

    connectable = async_engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    except Exception as e:
        logger.error(
            "Migration failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await connectable.dispose()

    logger.info("Migrations applied")


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
