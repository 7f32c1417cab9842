"""
recordhistory Versioned Decorator - Domain-facing surface for versioned records.

Provides:
    - Versioned: declarative mixin supplying the ``version`` column and the
      instance/class API (versions, revert_to, restore_deleted, ...)
    - @versioned: registers a mapped class, builds its history table on the
      same MetaData and installs the flush hooks

Usage:
    @versioned(limit=10, if_changed=["title", "body"])
    class Page(Versioned, Base):
        __tablename__ = "pages"
        id: Mapped[int] = mapped_column(primary_key=True)
        title: Mapped[str]
        body: Mapped[str]

    # or with an inner block, the way records carry their Meta:
    @versioned
    class Page(Versioned, Base):
        ...
        class Versioning:
            limit = 10
            non_versioned_columns = ["view_count"]
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import Integer
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapped, Session, declared_attr, mapped_column, object_session

from recordhistory.db.history import HistoryRow, VersionChain
from recordhistory.db.registry import versioned_registry
from recordhistory.db.schema import build_schema
from recordhistory.engine import changes
from recordhistory.engine import context
from recordhistory.engine import restore as restore_ops
from recordhistory.engine.clock import highest_version as _highest_version
from recordhistory.engine.config import VersioningOptions, get_config
from recordhistory.engine.errors import (
    HistoryConfigError,
    HistoryError,
    HistoryNotFoundError,
    HistoryValidationError,
)
from recordhistory.engine.lifecycle import install

logger = logging.getLogger("recordhistory.decorators.versioned")


class Versioned:
    """
    Mixin for versioned declarative classes. Combine with ``@versioned``.

    Class attributes:
        __version_column__: Column name of the version counter (attribute key is
                            always ``version``). Defaults to the configured name.
        __validator__:      Optional pydantic model; the default ``validate()``
                            checks the record's column values against it.

    Live primary keys must never be reused. A new record always snapshots at
    version 1, so a row that takes the id of a destroyed record collides with
    that record's history and blocks its restore.
    """

    __version_column__ = None
    __validator__ = None
    __history__ = None

    _history_pending = False
    _history_deleted_values = None

    @declared_attr
    def version(cls) -> Mapped[int]:
        name = cls.__version_column__ or get_config().history.version_column
        return mapped_column(name, Integer, nullable=False, default=1)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @classmethod
    def _schema(cls):
        return versioned_registry.require(cls)

    def _session(self, session: Optional[Session] = None) -> Session:
        session = session or object_session(self)
        if session is None:
            raise HistoryError(
                f"{type(self).__name__} is not attached to a session",
                record_type=type(self).__name__,
            )
        return session

    # -------------------------------------------------------------------
    # Version chain
    # -------------------------------------------------------------------

    @property
    def versions(self) -> VersionChain:
        schema = self._schema()
        owner_id = None if schema.is_new(self) else schema.identity_of(self)
        return VersionChain(schema, object_session(self), owner_id)

    def highest_version(self) -> int:
        """Highest stored version, or -1 for a record without history."""
        if self._schema().is_new(self):
            return -1
        return _highest_version(self._session(), self)

    def find_version(self, version: int) -> Optional[HistoryRow]:
        """
        History row for ``version``.

        Returns None for a record that has never been saved.

        Raises:
            HistoryNotFoundError: the record has no such version.
        """
        schema = self._schema()
        owner_id = schema.identity_of(self)
        if owner_id is None or schema.is_new(self):
            return None
        row = schema.store.find(self._session(), owner_id, version)
        if row is None:
            raise HistoryNotFoundError(
                f"{schema.name} {owner_id} has no version {version}",
                record_type=schema.name,
                record_id=owner_id,
                version=version,
                history_table=schema.history_table.name,
            )
        return row

    def find_newest_version(self) -> Optional[HistoryRow]:
        return self.versions.latest

    # -------------------------------------------------------------------
    # Revert / save / destroy
    # -------------------------------------------------------------------

    def revert_to(self, target: Union[int, HistoryRow]) -> bool:
        return restore_ops.revert_to(self._session(), self, target)

    def revert_to_and_save(self, target: Union[int, HistoryRow]) -> bool:
        return restore_ops.revert_to_and_save(self._session(), self, target)

    def save_without_versioning(self, validate: bool = True, session: Optional[Session] = None) -> None:
        """Flush pending changes without writing a history row."""
        session = self._session(session)
        session.add(self)
        with context.without_versioning(type(self)):
            if validate:
                session.flush()
            else:
                with context.without_validation():
                    session.flush()

    def destroy(self, session: Optional[Session] = None) -> None:
        """
        Delete the live row and flush, writing the deleted-marker history row.

        A record that was never flushed has no history: it is only taken out
        of its session and nothing is written.
        """
        if self._schema().is_new(self):
            session = session or object_session(self)
            if session is not None and self in session:
                session.expunge(self)
            return
        session = self._session(session)
        session.delete(self)
        session.flush()

    # -------------------------------------------------------------------
    # Change detection hooks (override to customize)
    # -------------------------------------------------------------------

    def version_condition_met(self) -> bool:
        return changes.condition_met(self)

    def altered(self) -> bool:
        return changes.altered(self)

    def changed_fields(self) -> List[str]:
        return sorted(changes.changed_fields(self))

    def should_snapshot(self) -> bool:
        return changes.should_snapshot(self)

    def validate(self) -> None:
        """
        Domain validation, called before every flush of this record.

        The default checks column values against ``__validator__`` when one is
        set. Override to add rules that need the database (uniqueness and the
        like); raise HistoryValidationError on failure.
        """
        validator = type(self).__validator__
        if validator is None:
            return
        data = {prop.key: getattr(self, prop.key) for prop in sa_inspect(type(self)).column_attrs}
        try:
            validator.model_validate(data)
        except ValidationError as e:
            raise HistoryValidationError(
                f"{type(self).__name__} failed validation",
                record_type=type(self).__name__,
                record_id=self._schema().identity_of(self),
                validation_errors=e.errors(include_url=False),
            ) from e

    # -------------------------------------------------------------------
    # Class API
    # -------------------------------------------------------------------

    @classmethod
    def restore_deleted(cls, session: Session, identity: Any, validate: bool = True) -> Any:
        return restore_ops.restore_deleted(session, cls, identity, validate=validate)

    @classmethod
    def restore_deleted_version(
        cls, session: Session, identity: Any, version: int, validate: bool = True,
    ) -> Any:
        return restore_ops.restore_deleted_version(session, cls, identity, version, validate=validate)

    @classmethod
    def versioned_columns(cls) -> List[Any]:
        """Live table columns copied into history."""
        schema = cls._schema()
        return [schema.live_table.c[name] for name in schema.field_map.values()]

    @classmethod
    def without_versioning(cls):
        return context.without_versioning(cls)

    @classmethod
    def without_locking(cls):
        return context.without_locking()

    @classmethod
    def create_history_table(cls, bind: Any) -> None:
        cls._schema().create_history_table(bind)

    @classmethod
    def drop_history_table(cls, bind: Any) -> None:
        cls._schema().drop_history_table(bind)


# ---------------------------------------------------------------------------
# @versioned
# ---------------------------------------------------------------------------

def _read_options(klass: type, overrides: dict) -> VersioningOptions:
    inner = klass.__dict__.get("Versioning")
    raw = {
        name: getattr(inner, name)
        for name in VersioningOptions.model_fields
        if inner is not None and hasattr(inner, name)
    }
    raw.update(overrides)
    try:
        return VersioningOptions(**raw)
    except ValidationError as e:
        raise HistoryConfigError(
            f"Invalid versioning options for {klass.__name__}",
            record_type=klass.__name__,
            validation_errors=e.errors(include_url=False),
        ) from e


def _apply_extension(klass: type, extension: type) -> None:
    """Add the public members of ``extension`` to ``klass``."""
    for name, value in vars(extension).items():
        if name.startswith("_"):
            continue
        setattr(klass, name, value)


def versioned(cls: Optional[type] = None, **kwargs: Any) -> Any:
    """
    Class decorator enabling versioning for a mapped ``Versioned`` subclass.

    Options (keywords override an inner ``class Versioning:`` block):
        table_name, foreign_key, version_column, inheritance_column,
        lock_column, deleted_flag_column, restored_column, limit, condition,
        if_changed, non_versioned_columns, extend

    Decorating the same class twice is a no-op.
    """
    def decorator(klass: type) -> type:
        if versioned_registry.get_own(klass) is not None:
            return klass
        if not issubclass(klass, Versioned):
            raise HistoryConfigError(
                f"{klass.__name__} must inherit from Versioned to be versioned",
                record_type=klass.__name__,
            )

        options = _read_options(klass, kwargs)
        if options.extend is not None:
            _apply_extension(klass, options.extend)

        schema = build_schema(klass, options)
        klass.__history__ = schema
        versioned_registry.register(schema)
        install()

        logger.info(
            f"Versioning enabled: {klass.__name__} → {schema.history_table.name} "
            f"({len(schema.field_map)} field(s), limit {schema.options.limit})"
        )
        return klass

    if cls is not None:
        return decorator(cls)
    return decorator
