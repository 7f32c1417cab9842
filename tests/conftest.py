"""
recordhistory Test Suite - Shared fixtures and configuration.

Every test gets a fresh SQLite database file holding the live and history
tables of the models in ``history_models``.

Run:  pytest tests/ -v
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import history_models  # noqa: F401  (registers the versioned models)
from recordhistory.db.base import Base


# ---------------------------------------------------------------------------
# Global state - reset between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch):
    """Reset config, the locking switch and the event log between tests."""
    import recordhistory.engine.config as cfg_mod
    import recordhistory.engine.logging as log_mod
    from recordhistory.engine.context import optimistic_locking
    from recordhistory.engine.lifecycle import install

    monkeypatch.delenv("RECORDHISTORY_CONFIG", raising=False)
    cfg_mod._config = None
    log_mod._file_logger = None
    optimistic_locking.set(True)
    install()
    yield
    cfg_mod._config = None
    log_mod._file_logger = None
    optimistic_locking.set(True)
    logging.getLogger("recordhistory").setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine(tmp_path):
    """SQLite engine with every live and history table created."""
    eng = create_engine(f"sqlite:///{tmp_path / 'history.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """A session that is rolled back and closed after the test."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def event_log(tmp_path):
    """Enable the JSONL event log under a temp directory."""
    from recordhistory.engine.logging import init_logging

    return init_logging(str(tmp_path / "logs"))


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_rolle(session):
    """Create and flush a Rolle, returning it at version 1."""
    from history_models import Rolle

    def _make(name: str = "admin", description: str = "first") -> Rolle:
        rolle = Rolle(name=name, description=description)
        session.add(rolle)
        session.flush()
        return rolle

    return _make
