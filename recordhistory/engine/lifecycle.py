"""
recordhistory Lifecycle Orchestrator - Session flush hooks that drive versioning.

Two listeners are installed on ``sqlalchemy.orm.Session`` (every session):

before_flush, for each new or modified versioned instance:
    1. domain validation, unless ``without_validation()`` is active
    2. optimistic lock check and increment, unless ``without_locking()`` is active
    3. when versioning is not suppressed and the change detector agrees:
       mark the instance pending and assign ``version = next_version``
   and for each deleted versioned instance with an identity, collect its field
   values while the live row can still be read.

after_flush:
    - pending instances: capture a normal history row, then prune
    - deleted instances: capture a marker row (deleted=True) one above the
      highest stored version, then prune

Both hooks run inside the flush's transaction. An exception raised in
after_flush rolls the flush back, so the live write and its history row
commit or fail together.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from recordhistory.db.registry import versioned_registry
from recordhistory.engine import logging as event_log
from recordhistory.engine.clock import highest_version, next_version
from recordhistory.engine.context import (
    is_locking_enabled,
    is_validation_skipped,
    is_versioning_suppressed,
)
from recordhistory.engine.errors import HistoryStaleRecordError
from recordhistory.engine.snapshot import capture, snapshot_values

logger = logging.getLogger("recordhistory.engine.lifecycle")


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------

def install() -> None:
    """Attach the flush listeners to every Session. Safe to call repeatedly."""
    if not event.contains(Session, "before_flush", before_flush):
        event.listen(Session, "before_flush", before_flush)
    if not event.contains(Session, "after_flush", after_flush):
        event.listen(Session, "after_flush", after_flush)
        logger.debug("Versioning flush hooks installed")


def uninstall() -> None:
    if event.contains(Session, "before_flush", before_flush):
        event.remove(Session, "before_flush", before_flush)
    if event.contains(Session, "after_flush", after_flush):
        event.remove(Session, "after_flush", after_flush)
        logger.debug("Versioning flush hooks removed")


def is_installed() -> bool:
    return event.contains(Session, "after_flush", after_flush)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def _versioned(objects: Iterable[Any]) -> List[Any]:
    return [obj for obj in objects if versioned_registry.schema_for(obj) is not None]


def run_validation(session: Session, record: Any) -> None:
    """Call ``record.validate()`` with autoflush off, so its queries see pre-flush state."""
    if is_validation_skipped():
        return
    with session.no_autoflush:
        record.validate()


def check_lock(session: Session, record: Any) -> None:
    """
    Verify and bump the optimistic lock counter of ``record``.

    The stored counter is re-read on the flush connection (row-locked where the
    database supports it) and compared with the value the record was loaded
    with.

    Raises:
        HistoryStaleRecordError: the stored counter moved since the record was loaded.
    """
    schema = versioned_registry.require(type(record))
    if schema.lock_key is None or not is_locking_enabled():
        return

    key = schema.lock_key
    if schema.is_new(record):
        if getattr(record, key) is None:
            setattr(record, key, 0)
        return

    hist = sa_inspect(record).attrs[key].history
    expected = hist.deleted[0] if hist.deleted else getattr(record, key)
    owner_id = schema.identity_of(record)
    actual = schema.store.live_lock_value(session, owner_id)
    if actual != expected:
        raise HistoryStaleRecordError(
            f"{schema.name} {owner_id} was changed by someone else "
            f"(lock {expected}, stored {actual})",
            record_type=schema.name,
            record_id=owner_id,
            expected_lock=expected,
            actual_lock=actual,
        )
    setattr(record, key, (expected or 0) + 1)


def prune(session: Session, record: Any, current_version: Optional[int] = None) -> int:
    """
    Enforce the retention limit for ``record``.

    Deletes rows with ``version <= current_version - limit``. Returns the number
    of rows removed (0 when no limit is set or nothing is over it).
    """
    schema = versioned_registry.require(type(record))
    limit = schema.options.limit or 0
    if limit <= 0:
        return 0
    if current_version is None:
        current_version = record.version
    excess = current_version - limit
    if excess <= 0:
        return 0

    owner_id = schema.identity_of(record)
    removed = schema.store.delete_through(session, owner_id, excess)
    if removed:
        logger.debug(
            f"Pruned {removed} row(s) of {schema.name} {owner_id} through v{excess} (limit {limit})"
        )
        event_log.log(event_log.log_prune(
            schema.history_table.name, schema.name, owner_id, excess, removed,
        ))
    return removed


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------

def before_flush(session: Session, flush_context: Any, instances: Any) -> None:
    new = set(_versioned(session.new))
    for record in _versioned(list(session.new) + list(session.dirty)):
        if record not in new and not session.is_modified(record):
            continue

        run_validation(session, record)
        check_lock(session, record)

        if is_versioning_suppressed(type(record)):
            continue
        if record.should_snapshot():
            record._history_pending = True
            record.version = next_version(session, record)

    for record in _versioned(session.deleted):
        if is_versioning_suppressed(type(record)):
            continue
        schema = versioned_registry.require(type(record))
        if schema.identity_of(record) is None:
            continue
        record._history_deleted_values = snapshot_values(schema, record)


def after_flush(session: Session, flush_context: Any) -> None:
    """
    Write the rows decided in before_flush.

    A deleted marker takes ``max(highest_version, 0) + 1``: one above the
    stored maximum, and 1 for a record that was only ever saved without
    versioning (where the maximum is -1).
    """
    for record in _versioned(list(session.new) + list(session.dirty)):
        if not record.__dict__.get("_history_pending"):
            continue
        record._history_pending = False
        capture(session, record, record.version)
        prune(session, record)

    for record in _versioned(session.deleted):
        values = record.__dict__.get("_history_deleted_values")
        if values is None:
            continue
        record._history_deleted_values = None
        version = max(highest_version(session, record), 0) + 1
        capture(session, record, version, deleted=True, values=values)
        prune(session, record, current_version=version)
