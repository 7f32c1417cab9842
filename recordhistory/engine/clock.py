"""
recordhistory Version Clock - Assigns version numbers from stored history.

Numbers always come from the history table, never from the live ``version``
field, so a live value edited by hand cannot bend the chain.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from recordhistory.db.registry import versioned_registry


def next_version(session: Session, record: Any) -> int:
    """
    1 for a record never flushed, otherwise highest stored version + 1.

    A new record always starts its chain at 1, so live primary keys must never
    be reused: a new row that takes a destroyed record's id collides with the
    old chain (HistoryUniquenessViolation) and blocks its restore.
    """
    schema = versioned_registry.require(type(record))
    if schema.is_new(record):
        return 1
    owner_id = schema.identity_of(record)
    return (schema.store.max_version(session, owner_id) or 0) + 1


def highest_version(session: Session, record: Any) -> int:
    """Highest stored version of ``record``, or -1 when it was never flushed or has none."""
    schema = versioned_registry.require(type(record))
    if schema.is_new(record):
        return -1
    owner_id = schema.identity_of(record)
    highest = schema.store.max_version(session, owner_id)
    return -1 if highest is None else highest
