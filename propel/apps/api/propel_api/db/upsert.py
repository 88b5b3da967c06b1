"""Dialect-aware INSERT ... ON CONFLICT builder.

PostgreSQL runs production; SQLite runs the test suite. Both support
``on_conflict_do_nothing`` / ``on_conflict_do_update`` with RETURNING, so every
atomic gate in the service is written once against this helper.
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def upsert_insert(db: Session, model: Any):
    """Return a dialect-specific ``insert(model)`` supporting ``on_conflict_*``."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")
