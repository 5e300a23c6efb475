"""
Alembic entry point for the dataset catalog schema.

The database URL always comes from ``DATABASE_URL`` via the application
settings, so migrations and the running service target the same catalog.
"""

import sys
from logging.config import fileConfig
from pathlib import Path

# Make the insightdeck package importable when alembic runs from a checkout
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alembic import context  # noqa: E402
from sqlalchemy import engine_from_config, pool  # noqa: E402

from insightdeck.catalog.models import Base  # noqa: E402
from insightdeck.config.settings import get_settings  # noqa: E402

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

alembic_config.set_main_option("sqlalchemy.url", get_settings().database_url)
catalog_metadata = Base.metadata


def emit_sql() -> None:
    """Write the migration SQL to stdout instead of applying it."""
    context.configure(
        url=alembic_config.get_main_option("sqlalchemy.url"),
        target_metadata=catalog_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def apply_to_database() -> None:
    engine = engine_from_config(
        alembic_config.get_section(alembic_config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        # SQLite cannot ALTER most constraints in place
        context.configure(
            connection=connection,
            target_metadata=catalog_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    emit_sql()
else:
    apply_to_database()
