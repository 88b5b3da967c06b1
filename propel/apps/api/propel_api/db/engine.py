"""Database engine builder.

One engine (and therefore one connection pool) is built per process. The
pool mode is chosen by environment:

- ENV: PROPEL_DB_POOL=queuepool|nullpool (default: queuepool)
- ENV: PROPEL_DB_POOL_SIZE (default: 5, queuepool only)
- ENV: PROPEL_DB_MAX_OVERFLOW (default: 10, queuepool only)
- ENV: PROPEL_DB_APPLICATION_NAME (PostgreSQL connection tag)

``nullpool`` exists for deployments behind an external transaction pooler
(pgbouncer) where client-side pooling must be disabled.
"""

import logging
import os
import re
from typing import Any

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def build_engine(database_url: str) -> Engine:
    """
    Build the SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy database URL.

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        ValueError: If the URL is empty or PROPEL_DB_POOL is invalid.
    """
    if not database_url:
        raise ValueError("database_url is required to build an engine.")

    if database_url.startswith("sqlite"):
        # SQLite is used by tests and local tooling; pool settings do not apply
        return create_engine(database_url, connect_args={"check_same_thread": False})

    connect_args: dict[str, Any] = {}
    app_name = os.getenv("PROPEL_DB_APPLICATION_NAME", "propel-api")
    if app_name and database_url.startswith("postgresql"):
        connect_args["application_name"] = app_name

    pool_mode = os.getenv("PROPEL_DB_POOL", "queuepool").lower()

    if pool_mode == "queuepool":
        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=int(os.getenv("PROPEL_DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("PROPEL_DB_MAX_OVERFLOW", "10")),
            connect_args=connect_args,
        )
    elif pool_mode == "nullpool":
        engine = create_engine(
            database_url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    else:
        raise ValueError(
            f"Invalid PROPEL_DB_POOL value: {pool_mode}. "
            "Must be 'queuepool' or 'nullpool'."
        )

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(database_url),
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Build a sessionmaker with autocommit=False, autoflush=False, expire_on_commit=False."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
