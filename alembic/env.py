"""Alembic migration environment for snapmerge.

Configured for the synchronous SQLAlchemy engine the merge engine uses.  The
database URL comes from snapmerge settings unless the Alembic config already
carries one (tests point migrations at a scratch database that way).
"""

from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection

from alembic import context

# Alembic config object, gives access to alembic.ini values
config = context.config

# Set up logging from alembic.ini
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Import ORM models so Alembic autogenerate knows the target schema
from snapmerge.db.models import Base  # noqa: E402

target_metadata = Base.metadata

# Fall back to snapmerge settings when no URL was configured explicitly
from snapmerge.config import settings  # noqa: E402

if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", settings.database_url)


def do_run_migrations(connection: Connection) -> None:
    """Execute migrations against a live connection.

    Batch mode is enabled on SQLite so ALTER-style operations are rendered as
    table rebuilds.
    """
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (SQL script generation).

    Emits SQL to stdout instead of connecting to a database.  Useful for
    reviewing the DDL before running it.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (direct database connection).

    Uses NullPool so connections are not pooled during migrations.
    """
    from snapmerge.db.session import create_store_engine

    connectable = create_store_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        do_run_migrations(connection)

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
