"""Database session management.

The engine is created once per process by ``init_engine()`` (called from the
application lifespan, or lazily on first use) and reused by every request.
"""

import logging
from typing import Generator, Optional

from sqlalchemy import Engine, text
from sqlalchemy.orm import Session, sessionmaker

from propel_api.config.env import get_database_url
from propel_api.db.engine import build_engine, build_sessionmaker

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def init_engine(database_url: Optional[str] = None) -> Engine:
    """Create the process-wide engine if it does not exist yet and return it."""
    global _engine, _session_factory
    if _engine is None:
        _engine = build_engine(database_url or get_database_url())
        _session_factory = build_sessionmaker(_engine)
    return _engine


def get_engine() -> Engine:
    return init_engine()


def dispose_engine() -> None:
    """Close all pooled connections and forget the engine (shutdown / tests)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> sessionmaker[Session]:
    """Session factory bound to the process-wide engine.

    Raises:
        RuntimeError: If no factory exists after engine initialization
    """
    init_engine()
    if _session_factory is None:
        raise RuntimeError("Database session factory is not initialized")
    return _session_factory


def get_db() -> Generator[Session, None, None]:
    """
    Get database session.

    Yields:
        Session: SQLAlchemy session
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def check_database() -> str:
    """Health probe for the pool.

    Returns:
        str: "up" if healthy, "down: <reason>" otherwise
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return f"down: {str(e)[:50]}"
