"""
recordhistory Change Detector - Decides whether a save produces a snapshot.

A record never flushed always qualifies (its first save is version 1).
Otherwise both must hold:

1. the configured condition (constant, 0/1-arg callable or method name), or
   an overridden ``version_condition_met()``
2. the record is altered: any watched field changed when ``if_changed`` is
   configured, otherwise any mapped column changed

Changes are net attribute changes as tracked by the session: assigning the
value a column already holds is not a change. The version and lock columns
never count.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Set

from sqlalchemy import inspect as sa_inspect

from recordhistory.db.registry import versioned_registry

logger = logging.getLogger("recordhistory.engine.changes")


def changed_fields(record: Any) -> Set[str]:
    """Attribute keys of mapped columns with net pending changes."""
    schema = versioned_registry.require(type(record))
    state = sa_inspect(record)
    ignored = {schema.version_key, schema.lock_key}
    changed: Set[str] = set()
    for prop in state.mapper.column_attrs:
        if prop.key in ignored:
            continue
        if state.attrs[prop.key].history.has_changes():
            changed.add(prop.key)
    return changed


def _wants_record(func: Any) -> bool:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    for param in signature.parameters.values():
        if param.kind == param.VAR_POSITIONAL:
            return True
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            return True
    return False


def evaluate_condition(condition: Any, record: Any) -> bool:
    """Evaluate a versioning condition against ``record``."""
    if isinstance(condition, str):
        method = getattr(record, condition)
        return bool(method())
    if callable(condition):
        return bool(condition(record) if _wants_record(condition) else condition())
    return bool(condition)


def condition_met(record: Any) -> bool:
    """The configured condition for the record's class."""
    schema = versioned_registry.require(type(record))
    return evaluate_condition(schema.options.condition, record)


def altered(record: Any) -> bool:
    schema = versioned_registry.require(type(record))
    changed = changed_fields(record)
    watched = set(schema.options.if_changed)
    if watched:
        return len(watched - changed) < len(watched)
    return bool(changed)


def should_snapshot(record: Any) -> bool:
    """True when saving ``record`` must write a new history row."""
    schema = versioned_registry.require(type(record))
    if schema.is_new(record):
        return True
    if not record.version_condition_met():
        logger.debug(f"{schema.name} {schema.identity_of(record)}: condition not met, no snapshot")
        return False
    if not record.altered():
        logger.debug(f"{schema.name} {schema.identity_of(record)}: unchanged, no snapshot")
        return False
    return True
