"""
recordhistory Error Hierarchy - Structured exceptions for versioning failures.

Every error carries the record type, record id and version it concerns (when
known) so a failure can be logged or stored as JSON without losing context.

Hierarchy:
    HistoryError
    ├── HistoryNotFoundError         - Requested version has no history row
    ├── HistoryConflictError         - Restore attempted while a live row exists
    ├── HistoryValidationError       - Reconstructed/saved record failed validation
    ├── HistoryUniquenessViolation   - (owner, version) collision, retryable
    ├── HistoryStaleRecordError      - Optimistic lock counter mismatch
    └── HistoryConfigError           - Invalid setup or configuration file
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class HistoryError(Exception):
    """
    Base error for all recordhistory failures.
    All context is serializable to JSON.
    """

    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.record_type: Optional[str] = context.get("record_type")
        self.record_id: Optional[Any] = context.get("record_id")
        self.version: Optional[int] = context.get("version")
        self.history_table: Optional[str] = context.get("history_table")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "record_type": self.record_type,
            "record_id": self.record_id,
            "version": self.version,
            "history_table": self.history_table,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("record_type", "record_id", "version", "history_table")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.record_type:
            parts.append(f"record_type={self.record_type}")
        if self.record_id is not None:
            parts.append(f"record_id={self.record_id}")
        if self.version is not None:
            parts.append(f"version={self.version}")
        return " | ".join(parts)


class HistoryNotFoundError(HistoryError):
    """Requested version number has no corresponding history row."""
    pass


class HistoryConflictError(HistoryError):
    """Restore attempted while a live row with the same identity exists."""
    pass


class HistoryValidationError(HistoryError):
    """
    Domain validation failed for a record being saved or restored.
    Includes field-level error details when available.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: List[Any] = list(context.get("validation_errors") or [])
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class HistoryUniquenessViolation(HistoryError):
    """
    The (owner, version) pair already exists in the history table.

    Raised when two writers race on the same record. The caller should roll
    back and retry with a freshly computed version.
    """

    retryable = True


class HistoryStaleRecordError(HistoryError):
    """Optimistic lock check failed: the stored row changed since it was loaded."""

    def __init__(self, message: str, **context: Any):
        self.expected_lock: Optional[int] = context.get("expected_lock")
        self.actual_lock: Optional[int] = context.get("actual_lock")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["expected_lock"] = self.expected_lock
        d["actual_lock"] = self.actual_lock
        return d


class HistoryConfigError(HistoryError):
    """Invalid versioning setup or recordhistory.yaml."""
    pass
