"""
recordhistory Scoped Modes - Suppress versioning, validation and locking.

Three modes wrap internal operations such as revert-and-save and restore:

- ``without_versioning(*classes)``: pre/post-save and destroy hooks are skipped
  for the given classes (all versioned classes when none are given). Held in a
  ContextVar, so it only affects the current thread/task.
- ``without_validation()``: domain validation is skipped. Also a ContextVar.
- ``without_locking()``: the optimistic lock check is switched off
  PROCESS-WIDE. This mirrors a global setting of the persistence layer and is
  not safe for concurrent callers working on different records: while one
  caller is inside the block, every other thread also saves without the check.
  Callers must serialize uses of this mode or accept the interference.

Every mode restores the prior state on exit, including when the enclosed block
raises.

Usage:
    from recordhistory.engine.context import without_versioning, without_locking

    with without_versioning(Page):
        page.title = "fixed typo"
        session.flush()          # no history row written
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import FrozenSet, Generator, Optional

# ---------------------------------------------------------------------------
# Context variables - one per thread/task
# ---------------------------------------------------------------------------

ALL_CLASSES = object  # sentinel entry meaning "every versioned class"

_suppressed_classes: ContextVar[FrozenSet[type]] = ContextVar(
    "recordhistory_suppressed_classes", default=frozenset()
)
_validation_skipped: ContextVar[bool] = ContextVar(
    "recordhistory_validation_skipped", default=False
)


@contextmanager
def without_versioning(*classes: type) -> Generator[None, None, None]:
    """Skip versioning hooks for ``classes`` (or all classes) inside the block."""
    added = frozenset(classes) if classes else frozenset({ALL_CLASSES})
    token = _suppressed_classes.set(_suppressed_classes.get() | added)
    try:
        yield
    finally:
        _suppressed_classes.reset(token)


def is_versioning_suppressed(cls: type) -> bool:
    """True when hooks for ``cls`` (or one of its bases) are suppressed."""
    suppressed = _suppressed_classes.get()
    if not suppressed:
        return False
    if ALL_CLASSES in suppressed:
        return True
    return any(klass in suppressed for klass in cls.__mro__)


@contextmanager
def without_validation() -> Generator[None, None, None]:
    """Skip domain validation inside the block."""
    token = _validation_skipped.set(True)
    try:
        yield
    finally:
        _validation_skipped.reset(token)


def is_validation_skipped() -> bool:
    return _validation_skipped.get()


# ---------------------------------------------------------------------------
# Process-wide optimistic locking switch
# ---------------------------------------------------------------------------

class LockingSwitch:
    """
    Process-wide on/off switch for the optimistic lock check.

    Deliberately global: see the module docstring for the concurrency hazard.
    The internal lock only keeps enter/exit bookkeeping consistent; it does not
    isolate callers from each other.
    """

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set(self, enabled: bool) -> bool:
        """Set the switch and return the previous value."""
        with self._lock:
            previous = self._enabled
            self._enabled = enabled
            return previous

    @contextmanager
    def disabled(self) -> Generator[None, None, None]:
        previous = self.set(False)
        try:
            yield
        finally:
            self.set(previous)


optimistic_locking = LockingSwitch()


@contextmanager
def without_locking(switch: Optional[LockingSwitch] = None) -> Generator[None, None, None]:
    """Turn off the optimistic lock check process-wide for the block."""
    with (switch or optimistic_locking).disabled():
        yield


def is_locking_enabled() -> bool:
    return optimistic_locking.enabled
