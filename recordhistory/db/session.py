"""
recordhistory Session Management.

A versioned write is only atomic when the live mutation, the history insert
and the retention delete share one transaction. The lifecycle hooks run on
the flush's own connection, so every flush already does; ``session_scope``
extends that to a whole unit of work (commit on success, rollback on error).
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from recordhistory.engine.lifecycle import install
from recordhistory.engine.logging import configure_from_config


def init_db(
    db_url: str,
    create_tables: bool = False,
    metadata: Any = None,
    **engine_kwargs: Any,
) -> sessionmaker:
    """
    Create an engine and a session factory with versioning hooks installed.

    The ``logging`` section of the loaded config is applied as well.

    Args:
        db_url:        SQLAlchemy connection URL.
        create_tables: When True, run ``metadata.create_all()``. History tables
                       of decorated classes live on the same MetaData as their
                       live tables, so they are created too. Dev/tests only.
        metadata:      MetaData to create (defaults to ``recordhistory.db.base.Base``).
        engine_kwargs: Passed through to ``create_engine``.

    Returns:
        A ``sessionmaker`` bound to the new engine.
    """
    engine = create_engine(db_url, **engine_kwargs)
    install()
    configure_from_config()

    if create_tables:
        if metadata is None:
            from recordhistory.db.base import Base
            metadata = Base.metadata
        metadata.create_all(engine)

    return sessionmaker(bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for sessions with auto-commit/rollback.

    Usage:
        with session_scope(Session) as session:
            page = session.get(Page, 1)
            page.title = "new title"
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
