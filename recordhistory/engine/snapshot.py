"""
recordhistory Snapshot Engine - Copies live records into history rows and back.

Provides:
- snapshot_values: versioned field values of a live record, keyed by history column
- capture / write_row: insert one history row on the session's connection
- materialize: copy a history row's fields back onto a live record
- restorable_values: live-attribute dict used to rebuild a deleted record
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy.orm import Session

from recordhistory.db.base import utcnow
from recordhistory.db.registry import versioned_registry
from recordhistory.engine import logging as event_log

if TYPE_CHECKING:
    from recordhistory.db.history import HistoryRow
    from recordhistory.db.schema import HistorySchema

logger = logging.getLogger("recordhistory.engine.snapshot")


def snapshot_values(schema: "HistorySchema", record: Any) -> Dict[str, Any]:
    """Versioned values of ``record`` keyed by history column name."""
    values = {column: getattr(record, key) for key, column in schema.field_map.items()}
    if schema.discriminator_key is not None:
        values[schema.inheritance_column] = getattr(record, schema.discriminator_key)
    return values


def write_row(
    session: Session,
    schema: "HistorySchema",
    values: Dict[str, Any],
    owner_id: Any,
    version: int,
    deleted: bool = False,
    restored_from: Optional[int] = None,
) -> "HistoryRow":
    """Insert a history row from pre-collected ``values`` and return it."""
    row = dict(values)
    row[schema.foreign_key] = owner_id
    row[schema.version_column] = version
    row[schema.deleted_flag_column] = deleted
    row[schema.restored_column] = restored_from

    now = utcnow()
    if schema.history_updated_at is not None:
        row[schema.history_updated_at] = now
    if schema.history_created_at is not None:
        row[schema.history_created_at] = now

    row["id"] = schema.store.insert(session, row)
    return schema.row_class(schema, row, session)


def capture(
    session: Session,
    record: Any,
    version: int,
    deleted: bool = False,
    restored_from: Optional[int] = None,
    values: Optional[Dict[str, Any]] = None,
) -> "HistoryRow":
    """
    Write a snapshot of ``record`` at ``version``.

    Args:
        session:       Session whose connection carries the insert.
        record:        Live record (must have its identity assigned).
        version:       Version number of the new row.
        deleted:       Mark the row as written for a destroy.
        restored_from: Restore provenance, for restore and revert-and-save.
        values:        Field values collected earlier; read from ``record`` when None.
                       Used on delete, where the live row is already gone.

    Raises:
        HistoryUniquenessViolation: another row already holds (owner, version).
    """
    schema = versioned_registry.require(type(record))
    owner_id = schema.identity_of(record)
    if values is None:
        values = snapshot_values(schema, record)

    row = write_row(session, schema, values, owner_id, version, deleted, restored_from)

    logger.debug(
        f"Snapshot {schema.history_table.name}: {schema.name} {owner_id} v{version}"
        + (" (deleted)" if deleted else "")
        + (f" (restored from v{restored_from})" if restored_from is not None else "")
    )
    event_log.log(event_log.log_snapshot(
        schema.history_table.name,
        schema.name,
        owner_id,
        version,
        deleted=deleted,
        restored_from=restored_from,
    ))
    return row


def materialize(row: "HistoryRow", target: Any) -> None:
    """Copy every versioned field of ``row`` onto ``target``."""
    schema = row.schema
    for key, value in row.fields().items():
        setattr(target, key, value)
    if schema.discriminator_key is not None:
        setattr(target, schema.discriminator_key, getattr(row, schema.inheritance_column))


def restorable_values(row: "HistoryRow") -> Dict[str, Any]:
    """Live attribute values for rebuilding the record ``row`` was taken from."""
    schema = row.schema
    values = row.fields()
    if schema.discriminator_key is not None:
        values[schema.discriminator_key] = getattr(row, schema.inheritance_column)
    return values
