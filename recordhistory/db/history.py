"""
recordhistory History Rows - Read-only snapshots and the per-record version chain.

Provides:
- HistoryRow: one immutable history row. Versioned field values are readable as
  attributes using the live attribute names (``row.title``), structural columns
  through named properties.
- VersionChain: ordered access to every row of one owner, exposed as
  ``record.versions``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Union

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from recordhistory.db.schema import HistorySchema


class HistoryRow:
    """
    A snapshot of a live record at one version.

    Rows are never updated after insert; assigning to a column attribute raises
    AttributeError. Classes configured through ``extend=`` are mixed in ahead of
    this one, so they can add helpers that read the row's fields.
    """

    def __init__(self, schema: "HistorySchema", values: Dict[str, Any], session: Optional[Session] = None):
        object.__setattr__(self, "_schema", schema)
        object.__setattr__(self, "_values", dict(values))
        object.__setattr__(self, "_session", session)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        values = self.__dict__.get("_values", {})
        schema = self.__dict__.get("_schema")
        if schema is not None and name in schema.field_map:
            return values.get(schema.field_map[name])
        if name in values:
            return values[name]
        raise AttributeError(f"{type(self).__name__} has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self._values or name in self._schema.field_map:
            raise AttributeError(f"History rows are read-only: cannot set '{name}'")
        object.__setattr__(self, name, value)

    # -------------------------------------------------------------------
    # Structural columns
    # -------------------------------------------------------------------

    @property
    def schema(self) -> "HistorySchema":
        return self._schema

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def id(self) -> Optional[Any]:
        return self._values.get("id")

    @property
    def owner_id(self) -> Any:
        return self._values.get(self._schema.foreign_key)

    @property
    def version(self) -> Optional[int]:
        return self._values.get(self._schema.version_column)

    @property
    def deleted_in_original_table(self) -> bool:
        return bool(self._values.get(self._schema.deleted_flag_column))

    @property
    def record_restored(self) -> Optional[int]:
        return self._values.get(self._schema.restored_column)

    @property
    def record_restored_from_version(self) -> Optional[int]:
        """Version this row was restored from, or None for ordinary snapshots."""
        return self.record_restored

    @property
    def persisted(self) -> bool:
        return self.id is not None

    def to_dict(self) -> Dict[str, Any]:
        """Raw history column values keyed by column name."""
        return dict(self._values)

    def fields(self) -> Dict[str, Any]:
        """Versioned field values keyed by live attribute name."""
        return {key: self._values.get(col) for key, col in self._schema.field_map.items()}

    # -------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------

    def _require_session(self) -> Session:
        if self._session is None:
            raise RuntimeError("History row is not bound to a session")
        return self._session

    def previous(self) -> Optional["HistoryRow"]:
        """Nearest older row of the same owner."""
        return self._schema.store.before(self._require_session(), self.owner_id, self.version)

    def next(self) -> Optional["HistoryRow"]:
        """Nearest newer row of the same owner."""
        return self._schema.store.after(self._require_session(), self.owner_id, self.version)

    def original_record_exists(self) -> bool:
        """True when the live table still holds a row for this owner."""
        return self._schema.store.live_exists(self._require_session(), self.owner_id)

    def restore(self, validate: bool = True) -> Any:
        """Recreate the deleted live record from this row. See ``engine.restore.restore``."""
        from recordhistory.engine.restore import restore

        return restore(self._require_session(), self, validate=validate)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HistoryRow):
            return NotImplemented
        return (
            self._schema is other._schema
            and self.id is not None
            and self.id == other.id
        )

    def __hash__(self) -> int:
        return hash((self._schema.history_table.name, self.id))

    def __repr__(self) -> str:
        flag = " deleted" if self.deleted_in_original_table else ""
        return (
            f"<{type(self).__name__}({self._schema.name} {self.owner_id} "
            f"v{self.version}{flag})>"
        )


VersionRef = Union[int, HistoryRow]


def _version_number(ref: VersionRef) -> int:
    return ref.version if isinstance(ref, HistoryRow) else int(ref)


class VersionChain:
    """
    Ordered history of one live record.

    Usage:
        page.versions.count()
        page.versions.latest
        page.versions.before(3)
        for row in page.versions: ...

    An unsaved record has an empty chain.
    """

    def __init__(self, schema: "HistorySchema", session: Optional[Session], owner_id: Any):
        self.schema = schema
        self.session = session
        self.owner_id = owner_id

    @property
    def _empty(self) -> bool:
        return self.owner_id is None or self.session is None

    @property
    def earliest(self) -> Optional[HistoryRow]:
        if self._empty:
            return None
        return self.schema.store.first(self.session, self.owner_id)

    @property
    def latest(self) -> Optional[HistoryRow]:
        if self._empty:
            return None
        return self.schema.store.last(self.session, self.owner_id)

    def before(self, ref: VersionRef) -> Optional[HistoryRow]:
        if self._empty:
            return None
        return self.schema.store.before(self.session, self.owner_id, _version_number(ref))

    def after(self, ref: VersionRef) -> Optional[HistoryRow]:
        if self._empty:
            return None
        return self.schema.store.after(self.session, self.owner_id, _version_number(ref))

    def find(self, version: int) -> Optional[HistoryRow]:
        if self._empty:
            return None
        return self.schema.store.find(self.session, self.owner_id, version)

    def all(self, *criteria: Any, descending: bool = False) -> List[HistoryRow]:
        if self._empty:
            return []
        return self.schema.store.all(self.session, self.owner_id, *criteria, descending=descending)

    def filter_by(self, **values: Any) -> List[HistoryRow]:
        if self._empty:
            return []
        return self.schema.store.filter_by(self.session, self.owner_id, **values)

    def count(self) -> int:
        if self._empty:
            return 0
        return self.schema.store.count(self.session, self.owner_id)

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[HistoryRow]:
        return iter(self.all())

    def __repr__(self) -> str:
        return f"<VersionChain({self.schema.name} {self.owner_id})>"
