"""Unit tests for recordhistory.engine.errors - Error hierarchy & serialization."""

import json
import pytest

from recordhistory.engine.errors import (
    HistoryConfigError,
    HistoryConflictError,
    HistoryError,
    HistoryNotFoundError,
    HistoryStaleRecordError,
    HistoryUniquenessViolation,
    HistoryValidationError,
)


class TestHistoryError:
    """Base error class tests."""

    def test_basic_creation(self):
        err = HistoryError("something broke")
        assert err.message == "something broke"
        assert str(err) == "something broke"
        assert err.error_type == "HistoryError"
        assert err.record_type is None
        assert err.record_id is None
        assert err.retryable is False

    def test_context_fields(self):
        err = HistoryError(
            "fail",
            record_type="Page",
            record_id=7,
            version=3,
            history_table="pages_h",
        )
        assert err.record_type == "Page"
        assert err.record_id == 7
        assert err.version == 3
        assert err.history_table == "pages_h"

    def test_to_dict(self):
        err = HistoryError("fail", record_type="Page", record_id=1, extra="x")
        d = err.to_dict()
        assert d["error_type"] == "HistoryError"
        assert d["message"] == "fail"
        assert d["record_id"] == 1
        assert d["context"] == {"extra": "x"}
        assert "timestamp" in d

    def test_to_json(self):
        parsed = json.loads(HistoryError("fail", version=2).to_json())
        assert parsed["error_type"] == "HistoryError"
        assert parsed["version"] == 2

    def test_repr(self):
        text = repr(HistoryError("fail", record_type="Page", record_id=4, version=9))
        assert text == "HistoryError: fail | record_type=Page | record_id=4 | version=9"


class TestSubclasses:
    @pytest.mark.parametrize("cls", [
        HistoryNotFoundError,
        HistoryConflictError,
        HistoryValidationError,
        HistoryUniquenessViolation,
        HistoryStaleRecordError,
        HistoryConfigError,
    ])
    def test_inherit_from_base(self, cls):
        err = cls("x")
        assert isinstance(err, HistoryError)
        assert err.error_type == cls.__name__

    def test_uniqueness_violation_is_retryable(self):
        err = HistoryUniquenessViolation("dup", record_id=1, version=4)
        assert err.retryable is True
        assert err.to_dict()["retryable"] is True
        assert HistoryNotFoundError("x").retryable is False

    def test_validation_errors_serialized(self):
        err = HistoryValidationError(
            "invalid",
            validation_errors=[{"field": "name", "error": "taken"}],
        )
        assert err.validation_errors == [{"field": "name", "error": "taken"}]
        assert err.to_dict()["validation_errors"][0]["error"] == "taken"

    def test_validation_errors_default_empty(self):
        assert HistoryValidationError("invalid").validation_errors == []

    def test_stale_record_locks(self):
        err = HistoryStaleRecordError("stale", expected_lock=1, actual_lock=2)
        d = err.to_dict()
        assert d["expected_lock"] == 1
        assert d["actual_lock"] == 2
