"""Unit tests for the process-wide session factory."""

import pytest
from sqlalchemy.orm import Session

from propel_api.db import session as db_session_module


@pytest.fixture
def fresh_engine_state(monkeypatch):
    monkeypatch.setattr(db_session_module, "_engine", None)
    monkeypatch.setattr(db_session_module, "_session_factory", None)
    yield
    if db_session_module._engine is not None:
        db_session_module._engine.dispose()


def test_get_db_yields_session(fresh_engine_state, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")

    sessions = db_session_module.get_db()
    db = next(sessions)

    assert isinstance(db, Session)
    sessions.close()


def test_factory_is_reused(fresh_engine_state, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")

    assert db_session_module.get_session_factory() is db_session_module.get_session_factory()


def test_missing_factory_raises(fresh_engine_state, monkeypatch):
    monkeypatch.setattr(db_session_module, "init_engine", lambda database_url=None: None)

    with pytest.raises(RuntimeError, match="not initialized"):
        next(db_session_module.get_db())
