"""Alembic environment for the Propel schema.

The target URL comes from DATABASE_URL_MIGRATIONS, then the runtime
settings (DATABASE_URL, or the local default outside production), then
sqlalchemy.url in alembic.ini. Online runs connect through build_engine()
so pool settings match the API process.
"""

import os
import sys
from logging.config import fileConfig
from pathlib import Path
from typing import Optional

from alembic import context

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "apps" / "api"))

from propel_api.config.env import get_database_url  # noqa: E402
from propel_api.db.engine import build_engine  # noqa: E402
from propel_api.db.models import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def resolve_migration_url(ini_url: Optional[str]) -> str:
    """Pick the database the migration runs against.

    Raises:
        RuntimeError: In production when neither env variable is set
    """
    explicit = os.getenv("DATABASE_URL_MIGRATIONS") or os.getenv("DATABASE_URL")
    if explicit:
        return explicit
    if ini_url:
        return ini_url
    return get_database_url()


database_url = resolve_migration_url(config.get_main_option("sqlalchemy.url"))
config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))

# SQLite cannot ALTER most constraints in place
_render_as_batch = database_url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = build_engine(database_url)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
                render_as_batch=_render_as_batch,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
