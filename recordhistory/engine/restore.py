"""
recordhistory Revert/Restore Controller - Bring past versions back.

- revert_to: copy a past version onto a live record in memory
- revert_to_and_save: revert, then persist as a new version with provenance
- restore: recreate a destroyed record from one of its history rows
- restore_deleted / restore_deleted_version: restore by class and identity

Per owner the chain moves between two states:

    LIVE    --save-->     LIVE      (+1 row when the change detector agrees)
    LIVE    --destroy-->  DELETED   (+1 row, deleted_in_original_table=True)
    DELETED --restore-->  LIVE      (+1 row, record_restored=<source version>)

Restoring while LIVE raises HistoryConflictError.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Any, Union

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from recordhistory.db.base import utcnow
from recordhistory.db.history import HistoryRow
from recordhistory.db.registry import versioned_registry
from recordhistory.engine import logging as event_log
from recordhistory.engine.clock import next_version
from recordhistory.engine.context import without_locking, without_validation, without_versioning
from recordhistory.engine.errors import (
    HistoryConflictError,
    HistoryNotFoundError,
    HistoryValidationError,
)
from recordhistory.engine.lifecycle import prune
from recordhistory.engine.snapshot import capture, materialize, restorable_values

logger = logging.getLogger("recordhistory.engine.restore")


# ---------------------------------------------------------------------------
# Revert
# ---------------------------------------------------------------------------

def revert_to(session: Session, record: Any, target: Union[int, HistoryRow]) -> bool:
    """
    Load version ``target`` into ``record`` without saving.

    Returns False when there is no such version of this record, or when a
    given row belongs to another record or was never persisted.
    """
    schema = versioned_registry.require(type(record))
    owner_id = schema.identity_of(record)

    if isinstance(target, HistoryRow):
        row = target
        if row.schema.history_table is not schema.history_table:
            return False
        if not row.persisted or owner_id is None or row.owner_id != owner_id:
            return False
    else:
        if owner_id is None:
            return False
        row = schema.store.find(session, owner_id, int(target))
        if row is None:
            return False

    materialize(row, record)
    record.version = row.version
    logger.debug(f"Reverted {schema.name} {owner_id} to v{row.version} (not saved)")
    return True


def revert_to_and_save(session: Session, record: Any, target: Union[int, HistoryRow]) -> bool:
    """
    Revert to ``target`` and persist the result as a new version.

    The flush itself runs with versioning suppressed and locking off; the
    history row is then written explicitly with ``record_restored`` set to the
    version the record was on before the revert.
    """
    schema = versioned_registry.require(type(record))
    previous = record.version
    if not revert_to(session, record, target):
        return False

    reverted_to = record.version
    record.version = next_version(session, record)
    session.add(record)
    with without_locking(), without_versioning(type(record)):
        session.flush()

    capture(session, record, record.version, restored_from=previous)
    prune(session, record)

    owner_id = schema.identity_of(record)
    logger.info(
        f"Reverted {schema.name} {owner_id} from v{previous} to v{reverted_to}, "
        f"saved as v{record.version}"
    )
    event_log.log(event_log.log_revert(
        schema.history_table.name, schema.name, owner_id,
        reverted_to=reverted_to, reverted_from=previous, new_version=record.version,
    ))
    return True


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

def restore(session: Session, row: HistoryRow, validate: bool = True) -> Any:
    """
    Recreate the destroyed live record from ``row``.

    Args:
        session:  Session to add the rebuilt record to (flushed, not committed).
        row:      Any history row of the destroyed record.
        validate: Run domain validation on the rebuilt record.

    Returns:
        The new live record, at one version above the highest stored one.

    Raises:
        HistoryConflictError:   a live row with the same identity exists.
        HistoryValidationError: the rebuilt record is invalid; it is removed
                                from the session again.
    """
    schema = row.schema
    owner_id = row.owner_id
    if schema.store.live_exists(session, owner_id):
        raise HistoryConflictError(
            f"{schema.name} {owner_id} still exists; only deleted records can be restored",
            record_type=schema.name,
            record_id=owner_id,
            version=row.version,
            history_table=schema.history_table.name,
        )

    values = restorable_values(row)
    discriminator = None
    if schema.discriminator_key is not None:
        discriminator = values.pop(schema.discriminator_key, None)
    cls = schema.class_for_discriminator(discriminator)
    mapped = sa_inspect(cls).attrs
    record = cls(**{key: value for key, value in values.items() if key in mapped})

    setattr(record, schema.primary_key, owner_id)
    if schema.live_updated_at is not None:
        setattr(record, schema.live_updated_at, utcnow())
    record.version = (schema.store.max_version(session, owner_id) or 0) + 1
    session.add(record)

    try:
        with ExitStack() as stack:
            stack.enter_context(without_versioning(schema.live_class))
            stack.enter_context(without_locking())
            if not validate:
                stack.enter_context(without_validation())
            session.flush()
    except HistoryValidationError:
        session.expunge(record)
        raise

    capture(session, record, record.version, restored_from=row.version)
    prune(session, record)

    logger.info(f"Restored {schema.name} {owner_id} from v{row.version} as v{record.version}")
    event_log.log(event_log.log_restore(
        schema.history_table.name, schema.name, owner_id,
        restored_from=row.version, new_version=record.version,
    ))
    return record


def restore_deleted(session: Session, cls: type, identity: Any, validate: bool = True) -> Any:
    """Restore a destroyed record from its latest history row."""
    schema = versioned_registry.require(cls)
    row = schema.store.last(session, identity)
    if row is None:
        raise HistoryNotFoundError(
            f"No history for {schema.name} {identity}",
            record_type=schema.name,
            record_id=identity,
            history_table=schema.history_table.name,
        )
    return restore(session, row, validate=validate)


def restore_deleted_version(
    session: Session,
    cls: type,
    identity: Any,
    version: int,
    validate: bool = True,
) -> Any:
    """Restore a destroyed record from one specific version."""
    schema = versioned_registry.require(cls)
    row = schema.store.find(session, identity, version)
    if row is None:
        raise HistoryNotFoundError(
            f"{schema.name} {identity} has no version {version}",
            record_type=schema.name,
            record_id=identity,
            version=version,
            history_table=schema.history_table.name,
        )
    return restore(session, row, validate=validate)
