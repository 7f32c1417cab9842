"""
recordhistory History Schema - Descriptor tying a live class to its history table.

Built once per versioned class at decoration time. Everything the engine needs
to know about a live class is resolved here, so the hot path never inspects
mappers or tables again:

- which live attributes are versioned, and the history column each maps to
- the identity, version, lock and discriminator attributes
- optional capabilities (live ``updated_at``, history ``updated_at`` /
  ``created_at`` stamps)

History table layout (default name ``<live table>_h``):

    id                          integer PK
    <owner fk>                  live primary key type, indexed, NOT a FK constraint
    version                     integer
    deleted_in_original_table   boolean
    record_restored             integer, nullable (restore provenance)
    <versioned columns...>      copied type and scalar default
    versioned_<type>            copy of the live discriminator (STI only)
    created_at                  capture time, when the live table has no created_at

    UNIQUE (<owner fk>, version)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    Table,
    UniqueConstraint,
)
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm.exc import UnmappedColumnError

from recordhistory.db.base import utcnow
from recordhistory.engine.config import VersioningOptions, get_config
from recordhistory.engine.errors import HistoryConfigError
from recordhistory.utilities.utils import to_snake

logger = logging.getLogger("recordhistory.db.schema")

CREATED_AT = "created_at"
UPDATED_AT = "updated_at"


@dataclass
class HistorySchema:
    """Resolved mapping between one live class and its history table."""

    live_class: type
    live_table: Table
    history_table: Table
    options: VersioningOptions
    primary_key: str              # live attribute key of the identity
    primary_key_column: Column
    foreign_key: str              # owner reference column in history
    version_key: str              # live attribute key of the version
    version_column: str           # version column name (live and history)
    deleted_flag_column: str
    restored_column: str
    field_map: Dict[str, str] = field(default_factory=dict)  # live attr key → history column
    discriminator_key: Optional[str] = None
    inheritance_column: Optional[str] = None
    lock_key: Optional[str] = None
    lock_column: Optional[Column] = None
    live_updated_at: Optional[str] = None
    history_updated_at: Optional[str] = None
    history_created_at: Optional[str] = None
    row_class: Optional[type] = None

    def __post_init__(self):
        from recordhistory.db.history import HistoryRow
        from recordhistory.db.store import HistoryStore

        if self.row_class is None:
            self.row_class = HistoryRow
        self.store = HistoryStore(self)

    # -------------------------------------------------------------------
    # Identity helpers
    # -------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.live_class.__name__

    def identity_of(self, record: Any) -> Optional[Any]:
        """Primary key value of ``record`` (None while unassigned)."""
        return getattr(record, self.primary_key, None)

    def is_new(self, record: Any) -> bool:
        """True until the record has been flushed for the first time."""
        return not sa_inspect(record).has_identity

    def versioned_fields(self) -> List[str]:
        return list(self.field_map)

    def history_columns(self) -> List[str]:
        return [c.name for c in self.history_table.columns]

    def class_for_discriminator(self, value: Any) -> type:
        """Live class to instantiate for a stored discriminator value."""
        if value is None or self.discriminator_key is None:
            return self.live_class
        mapper = sa_inspect(self.live_class)
        sub_mapper = mapper.polymorphic_map.get(value)
        return sub_mapper.class_ if sub_mapper is not None else self.live_class

    # -------------------------------------------------------------------
    # Schema provisioning
    # -------------------------------------------------------------------

    def create_history_table(self, bind: Any) -> None:
        self.history_table.create(bind, checkfirst=True)
        logger.info(f"Created history table {self.history_table.name}")

    def drop_history_table(self, bind: Any) -> None:
        self.history_table.drop(bind, checkfirst=True)
        logger.info(f"Dropped history table {self.history_table.name}")

    def __repr__(self) -> str:
        return f"<HistorySchema({self.name} → {self.history_table.name})>"


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------

def _copy_column(col: Column, name: Optional[str] = None) -> Column:
    """Copy type and scalar default of a live column; drop keys, FKs, uniqueness."""
    default = None
    if col.default is not None and getattr(col.default, "is_scalar", False):
        default = col.default.arg
    return Column(name or col.name, col.type, nullable=True, default=default)


def build_history_table(
    name: str,
    metadata: Any,
    owner_column: Column,
    foreign_key: str,
    version_column: str,
    deleted_flag_column: str,
    restored_column: str,
    versioned_columns: List[Column],
    discriminator: Optional[Column] = None,
    inheritance_column: Optional[str] = None,
) -> Table:
    """Create the history ``Table`` on ``metadata`` (not in the database)."""
    columns = [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column(foreign_key, owner_column.type, nullable=False, index=True),
        Column(version_column, Integer, nullable=False),
        Column(deleted_flag_column, Boolean, nullable=False, default=False),
        Column(restored_column, Integer, nullable=True),
    ]
    taken = {c.name for c in columns}
    for col in versioned_columns:
        if col.name in taken:
            raise HistoryConfigError(
                f"Versioned column '{col.name}' collides with a structural history column",
                history_table=name,
            )
        columns.append(_copy_column(col))
        taken.add(col.name)

    if discriminator is not None and inheritance_column:
        columns.append(_copy_column(discriminator, inheritance_column))
        taken.add(inheritance_column)

    if CREATED_AT not in taken:
        columns.append(Column(CREATED_AT, DateTime(timezone=True), nullable=False, default=utcnow))

    return Table(
        name,
        metadata,
        *columns,
        UniqueConstraint(foreign_key, version_column, name=f"uq_{name}_owner_version"),
    )


def _attr_key(mapper: Any, col: Column) -> str:
    try:
        return mapper.get_property_by_column(col).key
    except UnmappedColumnError:
        return col.key


def _find_column(table: Table, name: Optional[str]) -> Optional[Column]:
    if not name:
        return None
    return table.c.get(name)


def build_schema(live_class: type, options: VersioningOptions) -> HistorySchema:
    """
    Resolve ``options`` against the mapped ``live_class`` and build its schema.

    Reuses a history table already present on the live table's MetaData
    (declared by hand or reflected); otherwise builds one.
    """
    defaults = get_config().history
    opts = options.resolved(defaults)

    mapper = sa_inspect(live_class)
    live_table = mapper.local_table
    if not isinstance(live_table, Table):
        raise HistoryConfigError(
            f"{live_class.__name__} is not mapped to a plain table",
            record_type=live_class.__name__,
        )

    pk_columns = list(mapper.primary_key)
    if len(pk_columns) != 1:
        raise HistoryConfigError(
            f"{live_class.__name__} needs exactly one primary key column, "
            f"found {len(pk_columns)}",
            record_type=live_class.__name__,
        )
    pk_col = pk_columns[0]

    version_column = (
        options.version_column
        or getattr(live_class, "__version_column__", None)
        or defaults.version_column
    )
    version_col = _find_column(live_table, version_column)
    if version_col is None:
        raise HistoryConfigError(
            f"{live_class.__name__} has no '{version_column}' column "
            f"(set __version_column__ on the class to rename the version column)",
            record_type=live_class.__name__,
        )

    lock_col = _find_column(live_table, opts.lock_column)

    discriminator = mapper.polymorphic_on
    if not isinstance(discriminator, Column) or discriminator.table is not live_table:
        discriminator = None
    inheritance_column = None
    if discriminator is not None:
        inheritance_column = opts.inheritance_column or f"{defaults.inheritance_prefix}{discriminator.name}"

    excluded = {pk_col.name, version_col.name}
    if lock_col is not None:
        excluded.add(lock_col.name)
    if discriminator is not None:
        excluded.update({discriminator.name, inheritance_column})
    excluded.update(opts.non_versioned_columns)

    versioned: List[Tuple[str, Column]] = []
    for col in live_table.columns:
        key = _attr_key(mapper, col)
        if col.name in excluded or key in opts.non_versioned_columns:
            continue
        versioned.append((key, col))

    live_keys = {key for key, _ in versioned}
    for name in opts.if_changed:
        if name not in live_keys:
            raise HistoryConfigError(
                f"if_changed names '{name}', which is not a versioned field of {live_class.__name__}",
                record_type=live_class.__name__,
            )

    table_name = opts.table_name or f"{live_table.name}{defaults.table_suffix}"
    foreign_key = opts.foreign_key or f"{to_snake(live_class.__name__)}_id"
    metadata = live_table.metadata

    if table_name in metadata.tables:
        history_table = metadata.tables[table_name]
        logger.debug(f"Using declared history table {table_name}")
    else:
        history_table = build_history_table(
            table_name,
            metadata,
            owner_column=pk_col,
            foreign_key=foreign_key,
            version_column=version_col.name,
            deleted_flag_column=opts.deleted_flag_column,
            restored_column=opts.restored_column,
            versioned_columns=[col for _, col in versioned],
            discriminator=discriminator,
            inheritance_column=inheritance_column,
        )

    for required in (foreign_key, version_col.name, opts.deleted_flag_column, opts.restored_column):
        if required not in history_table.c:
            raise HistoryConfigError(
                f"History table {table_name} lacks required column '{required}'",
                record_type=live_class.__name__,
                history_table=table_name,
            )

    field_map = {key: col.name for key, col in versioned if col.name in history_table.c}

    if inheritance_column is not None and inheritance_column not in history_table.c:
        inheritance_column = None

    live_updated_at = None
    updated_col = _find_column(live_table, UPDATED_AT)
    if updated_col is not None:
        live_updated_at = _attr_key(mapper, updated_col)

    schema = HistorySchema(
        live_class=live_class,
        live_table=live_table,
        history_table=history_table,
        options=opts,
        primary_key=_attr_key(mapper, pk_col),
        primary_key_column=pk_col,
        foreign_key=foreign_key,
        version_key=_attr_key(mapper, version_col),
        version_column=version_col.name,
        deleted_flag_column=opts.deleted_flag_column,
        restored_column=opts.restored_column,
        field_map=field_map,
        discriminator_key=_attr_key(mapper, discriminator) if inheritance_column else None,
        inheritance_column=inheritance_column,
        lock_key=_attr_key(mapper, lock_col) if lock_col is not None else None,
        lock_column=lock_col,
        live_updated_at=live_updated_at,
        history_updated_at=UPDATED_AT if UPDATED_AT in history_table.c else None,
        history_created_at=(
            CREATED_AT
            if CREATED_AT in history_table.c and CREATED_AT not in field_map.values()
            else None
        ),
        row_class=_row_class(live_class, opts.extend),
    )
    return schema


def _row_class(live_class: type, extend: Optional[type]) -> Optional[type]:
    """History row type carrying the extension mixin, if one is configured."""
    if extend is None:
        return None
    from recordhistory.db.history import HistoryRow

    return type(f"{live_class.__name__}Version", (extend, HistoryRow), {})
