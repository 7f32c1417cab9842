"""
recordhistory History Store - Core SQL access to one history table.

All statements run on ``session.connection()``: inside a flush that is the
flush's own connection and transaction, and outside one it never triggers an
autoflush. Rows come back as ``schema.row_class`` instances bound to the
session they were read with.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recordhistory.engine.errors import HistoryConfigError, HistoryUniquenessViolation

if TYPE_CHECKING:
    from recordhistory.db.history import HistoryRow
    from recordhistory.db.schema import HistorySchema

logger = logging.getLogger("recordhistory.db.store")

_UNIQUE_MARKERS = ("unique", "duplicate")


class HistoryStore:
    """Typed queries over the history table of one versioned class."""

    def __init__(self, schema: "HistorySchema"):
        self.schema = schema
        self.table = schema.history_table

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @property
    def _owner(self):
        return self.table.c[self.schema.foreign_key]

    @property
    def _version(self):
        return self.table.c[self.schema.version_column]

    def _wrap(self, session: Session, row: Any) -> Optional["HistoryRow"]:
        if row is None:
            return None
        return self.schema.row_class(self.schema, dict(row._mapping), session)

    def _wrap_all(self, session: Session, rows: Any) -> List["HistoryRow"]:
        return [self._wrap(session, row) for row in rows]

    def column(self, name: str):
        """History column for a live attribute key or a history column name."""
        column_name = self.schema.field_map.get(name, name)
        if column_name not in self.table.c:
            raise HistoryConfigError(
                f"{self.table.name} has no column '{name}'",
                history_table=self.table.name,
            )
        return self.table.c[column_name]

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def insert(self, session: Session, values: Dict[str, Any]) -> Any:
        """Insert one history row and return its id."""
        try:
            result = session.connection().execute(self.table.insert().values(**values))
        except IntegrityError as e:
            text = str(e.orig if e.orig is not None else e).lower()
            if any(marker in text for marker in _UNIQUE_MARKERS):
                raise HistoryUniquenessViolation(
                    f"Version {values.get(self.schema.version_column)} already exists "
                    f"for {self.schema.name} {values.get(self.schema.foreign_key)}",
                    record_type=self.schema.name,
                    record_id=values.get(self.schema.foreign_key),
                    version=values.get(self.schema.version_column),
                    history_table=self.table.name,
                ) from e
            raise
        return result.inserted_primary_key[0]

    def delete_through(self, session: Session, owner_id: Any, version: int) -> int:
        """Delete rows of ``owner_id`` with version <= ``version``. Returns the count."""
        result = session.connection().execute(
            delete(self.table).where(self._owner == owner_id, self._version <= version)
        )
        return result.rowcount or 0

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get(self, session: Session, row_id: Any) -> Optional["HistoryRow"]:
        row = session.connection().execute(
            select(self.table).where(self.table.c.id == row_id)
        ).first()
        return self._wrap(session, row)

    def max_version(self, session: Session, owner_id: Any) -> Optional[int]:
        """Highest stored version of ``owner_id``, or None when it has no rows."""
        return session.connection().execute(
            select(func.max(self._version)).where(self._owner == owner_id)
        ).scalar()

    def find(self, session: Session, owner_id: Any, version: int) -> Optional["HistoryRow"]:
        row = session.connection().execute(
            select(self.table).where(self._owner == owner_id, self._version == version)
        ).first()
        return self._wrap(session, row)

    def first(self, session: Session, owner_id: Any) -> Optional["HistoryRow"]:
        row = session.connection().execute(
            select(self.table).where(self._owner == owner_id).order_by(self._version.asc()).limit(1)
        ).first()
        return self._wrap(session, row)

    def last(self, session: Session, owner_id: Any) -> Optional["HistoryRow"]:
        row = session.connection().execute(
            select(self.table).where(self._owner == owner_id).order_by(self._version.desc()).limit(1)
        ).first()
        return self._wrap(session, row)

    def before(self, session: Session, owner_id: Any, version: int) -> Optional["HistoryRow"]:
        """Nearest row strictly below ``version``."""
        row = session.connection().execute(
            select(self.table)
            .where(self._owner == owner_id, self._version < version)
            .order_by(self._version.desc())
            .limit(1)
        ).first()
        return self._wrap(session, row)

    def after(self, session: Session, owner_id: Any, version: int) -> Optional["HistoryRow"]:
        """Nearest row strictly above ``version``."""
        row = session.connection().execute(
            select(self.table)
            .where(self._owner == owner_id, self._version > version)
            .order_by(self._version.asc())
            .limit(1)
        ).first()
        return self._wrap(session, row)

    def all(
        self,
        session: Session,
        owner_id: Any,
        *criteria: Any,
        descending: bool = False,
    ) -> List["HistoryRow"]:
        """Every row of ``owner_id`` ordered by version, narrowed by ``criteria``."""
        order = self._version.desc() if descending else self._version.asc()
        rows = session.connection().execute(
            select(self.table).where(self._owner == owner_id, *criteria).order_by(order)
        ).all()
        return self._wrap_all(session, rows)

    def filter_by(self, session: Session, owner_id: Any, **values: Any) -> List["HistoryRow"]:
        criteria = [self.column(name) == value for name, value in values.items()]
        return self.all(session, owner_id, *criteria)

    def count(self, session: Session, owner_id: Any) -> int:
        return session.connection().execute(
            select(func.count()).select_from(self.table).where(self._owner == owner_id)
        ).scalar() or 0

    # -------------------------------------------------------------------
    # Live table
    # -------------------------------------------------------------------

    def live_exists(self, session: Session, owner_id: Any) -> bool:
        """True when the live table holds a row with identity ``owner_id``."""
        pk = self.schema.primary_key_column
        return session.connection().execute(
            select(pk).where(pk == owner_id)
        ).first() is not None

    def live_lock_value(self, session: Session, owner_id: Any) -> Optional[int]:
        """Stored lock counter of the live row, read with a row lock where supported."""
        lock = self.schema.lock_column
        if lock is None:
            return None
        pk = self.schema.primary_key_column
        return session.connection().execute(
            select(lock).where(pk == owner_id).with_for_update()
        ).scalar()
