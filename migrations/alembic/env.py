import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(__file__))))
from venmorph.configuration.configuration import load_config
from venmorph.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Same settings the attestor reads: optional TOML file, then DATABASE_URL
attestor_config = load_config(os.environ.get("VENMORPH_CONFIG"))
if not attestor_config.database_url:
    raise RuntimeError("DATABASE_URL (or [database] url) must be set to run migrations")
config.set_main_option("sqlalchemy.url", attestor_config.database_url)

target_metadata = Base.metadata

# SQLite cannot ALTER most constraints in place
render_as_batch = attestor_config.database_url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL for the audit tables without a database connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations against the audit database."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=render_as_batch,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
