"""
recordhistory Event Log - Structured JSON file-based log of versioning events.

Implements:
- FileLogger: one JSONL file per history table, category and day
- Log entry builders for snapshot, prune, revert and restore events
- A module-level logger singleton (init_logging / log / shutdown_logging)

Files: {log_dir}/{history_table}/{category}/{YYYY-MM-DD}.jsonl

Writes are synchronous. Versioning never runs background threads, so an entry
is on disk by the time the flush that produced it returns.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger("recordhistory.engine.logging")

CATEGORIES = ("snapshot", "retention", "restore")

# Days searched by query() when no start date is given.
DEFAULT_QUERY_DAYS = 7


class LogEntry:
    """One event, addressed to a history table and a category."""

    __slots__ = ("history_table", "category", "data")

    def __init__(self, history_table: str, category: str, data: Dict[str, Any]):
        self.history_table = history_table
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))

    def __repr__(self) -> str:
        return f"<LogEntry({self.history_table}/{self.category} {self.data.get('event')})>"


class FileLogger:
    """
    Appends events to ``{log_dir}/{history_table}/{category}/{day}.jsonl``.

    Writers to the same table and category are serialized by a shared lock.
    """

    def __init__(self, log_dir: str = ".recordhistory/logs"):
        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def _lock_for(self, history_table: str, category: str) -> threading.Lock:
        key = (history_table, category)
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def _resolve_path(self, history_table: str, category: str, day: Optional[date] = None) -> Path:
        day = day or date.today()
        return self._log_dir / history_table / category / f"{day.isoformat()}.jsonl"

    def write(self, entry: LogEntry) -> None:
        path = self._resolve_path(entry.history_table, entry.category)
        line = entry.to_json() + "\n"
        with self._lock_for(entry.history_table, entry.category):
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(line)

    def query(
        self,
        history_table: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Read events back, oldest first.

        ``filters`` keeps only events whose top-level keys equal every given
        value. Without dates the last ``DEFAULT_QUERY_DAYS`` days up to today
        are searched.
        """
        last = end_date or date.today()
        first = start_date or last - timedelta(days=DEFAULT_QUERY_DAYS)

        events = (
            data
            for day in _days(first, last)
            for data in self._read_day(history_table, category, day)
            if _matches(data, filters)
        )
        return list(itertools.islice(events, limit))

    def _read_day(self, history_table: str, category: str, day: date) -> Iterator[Dict[str, Any]]:
        path = self._resolve_path(history_table, category, day)
        if not path.is_file():
            return
        with path.open("r", encoding="utf-8") as fh:
            for lineno, raw in enumerate(fh, start=1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    yield json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed event at {path}:{lineno}")


def _days(first: date, last: date) -> Iterator[date]:
    day = first
    while day <= last:
        yield day
        day += timedelta(days=1)


def _matches(data: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(data.get(key) == value for key, value in filters.items())


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def _event(name: str, record_type: str, record_id: Any, **fields: Any) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": name,
        "record_type": record_type,
        "record_id": record_id,
        **fields,
    }


def log_snapshot(
    history_table: str,
    record_type: str,
    record_id: Any,
    version: int,
    deleted: bool = False,
    restored_from: Optional[int] = None,
) -> LogEntry:
    """Build a snapshot (new history row) log entry."""
    data = _event(
        "snapshot_deleted" if deleted else "snapshot",
        record_type,
        record_id,
        version=version,
        deleted=deleted,
    )
    if restored_from is not None:
        data["restored_from"] = restored_from
    return LogEntry(history_table, "snapshot", data)


def log_prune(
    history_table: str,
    record_type: str,
    record_id: Any,
    through_version: int,
    rows_deleted: int,
) -> LogEntry:
    """Rows at or below ``through_version`` were deleted by the retention limit."""
    data = _event("prune", record_type, record_id, through_version=through_version, rows_deleted=rows_deleted)
    return LogEntry(history_table, "retention", data)


def log_revert(
    history_table: str,
    record_type: str,
    record_id: Any,
    reverted_to: int,
    reverted_from: Optional[int],
    new_version: int,
) -> LogEntry:
    data = _event(
        "revert",
        record_type,
        record_id,
        reverted_to=reverted_to,
        reverted_from=reverted_from,
        new_version=new_version,
    )
    return LogEntry(history_table, "restore", data)


def log_restore(
    history_table: str,
    record_type: str,
    record_id: Any,
    restored_from: int,
    new_version: int,
) -> LogEntry:
    data = _event("restore", record_type, record_id, restored_from=restored_from, new_version=new_version)
    return LogEntry(history_table, "restore", data)


# ---------------------------------------------------------------------------
# Convenience: Global File Logger Singleton
# ---------------------------------------------------------------------------

_file_logger: Optional[FileLogger] = None


def init_logging(log_dir: str = ".recordhistory/logs") -> FileLogger:
    """Enable the event log, writing under ``log_dir``."""
    global _file_logger
    _file_logger = FileLogger(log_dir=log_dir)
    logger.info(f"History event log enabled: {_file_logger.log_dir}")
    return _file_logger


def get_file_logger() -> Optional[FileLogger]:
    """Get the global event logger, or None when the event log is off."""
    return _file_logger


def log(entry: LogEntry) -> bool:
    """Write an entry if the event log is enabled. Returns True when written."""
    if _file_logger is None:
        return False
    _file_logger.write(entry)
    return True


def shutdown_logging() -> None:
    """Disable the event log."""
    global _file_logger
    _file_logger = None


def configure_from_config() -> None:
    """Apply the ``logging`` section of recordhistory.yaml."""
    from recordhistory.engine.config import get_config

    cfg = get_config().logging
    logging.getLogger("recordhistory").setLevel(cfg.level)
    if cfg.event_log and _file_logger is None:
        init_logging(cfg.directory)
