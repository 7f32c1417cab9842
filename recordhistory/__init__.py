"""
recordhistory - Linear version history for SQLAlchemy records.

Every create, update, delete and restore of a versioned record is mirrored into
an append-only history table, giving a queryable chain of past states:

    from recordhistory import Versioned, versioned

    @versioned(limit=20)
    class Page(Versioned, Base):
        __tablename__ = "pages"
        ...

    page.versions.count()
    page.revert_to_and_save(3)
    Page.restore_deleted(session, page_id)

Submodules:
    recordhistory.db          - history schema, store, rows, registry, sessions
    recordhistory.engine      - clock, change detector, snapshots, hooks, restore
    recordhistory.decorators  - Versioned mixin and @versioned
    recordhistory.generators  - Alembic migrations for history tables
"""

__version__ = "1.0.0"

from recordhistory.db.history import HistoryRow, VersionChain  # noqa: E402
from recordhistory.db.session import init_db, session_scope  # noqa: E402
from recordhistory.decorators.versioned import Versioned, versioned  # noqa: E402
from recordhistory.engine.context import (  # noqa: E402
    without_locking,
    without_validation,
    without_versioning,
)
from recordhistory.engine.errors import (  # noqa: E402
    HistoryConfigError,
    HistoryConflictError,
    HistoryError,
    HistoryNotFoundError,
    HistoryStaleRecordError,
    HistoryUniquenessViolation,
    HistoryValidationError,
)

__all__ = [
    "HistoryRow",
    "VersionChain",
    "Versioned",
    "versioned",
    "init_db",
    "session_scope",
    "without_locking",
    "without_validation",
    "without_versioning",
    "HistoryError",
    "HistoryConfigError",
    "HistoryConflictError",
    "HistoryNotFoundError",
    "HistoryStaleRecordError",
    "HistoryUniquenessViolation",
    "HistoryValidationError",
]
