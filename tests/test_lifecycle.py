"""Unit tests for recordhistory.engine.lifecycle - flush hooks, destroy, locking, pruning."""

import threading

import pytest
from sqlalchemy import event, func, select, update
from sqlalchemy.orm import Session

from history_models import LockedRolle, Note, Rolle, Tag, Widget
import recordhistory.engine.lifecycle as lifecycle
from recordhistory.engine.context import is_locking_enabled, without_locking, without_versioning
from recordhistory.engine.errors import (
    HistoryStaleRecordError,
    HistoryUniquenessViolation,
    HistoryValidationError,
)


class TestInstall:
    def test_idempotent(self):
        lifecycle.install()
        lifecycle.install()
        assert lifecycle.is_installed()
        assert event.contains(Session, "before_flush", lifecycle.before_flush)

    def test_uninstall(self, session):
        lifecycle.uninstall()
        try:
            assert not lifecycle.is_installed()
            rolle = Rolle(name="untracked")
            session.add(rolle)
            session.flush()
            assert rolle.versions.count() == 0
        finally:
            lifecycle.install()


class TestSaves:
    def test_n_saves_n_versions(self, session, make_rolle):
        rolle = make_rolle()
        for i in range(2, 6):
            rolle.description = f"edit {i}"
            session.flush()
        assert rolle.version == 5
        assert rolle.versions.count() == 5
        assert [r.version for r in rolle.versions] == [1, 2, 3, 4, 5]

    def test_save_without_changes(self, session, make_rolle):
        rolle = make_rolle()
        rolle.description = rolle.description
        session.flush()
        session.commit()
        assert rolle.version == 1
        assert rolle.versions.count() == 1

    def test_pending_flag_cleared(self, session, make_rolle):
        rolle = make_rolle()
        assert rolle._history_pending is False

    def test_without_versioning_block(self, session, make_rolle):
        rolle = make_rolle()
        with Rolle.without_versioning():
            rolle.description = "silent"
            session.flush()
        assert rolle.version == 1
        assert rolle.versions.count() == 1

    def test_other_classes_still_versioned(self, session, make_rolle):
        rolle = make_rolle()
        widget = Widget(name="w")
        session.add(widget)
        with without_versioning(Widget):
            rolle.description = "tracked"
            widget.name = "silent"
            session.flush()
        assert rolle.versions.count() == 2
        assert widget.versions.count() == 0

    def test_non_versioned_column_kept_out(self, session):
        widget = Widget(name="w", foo="a")
        session.add(widget)
        session.flush()
        widget.foo = "b"
        session.flush()
        assert widget.versions.count() == 2
        assert "foo" not in widget.versions.latest.to_dict()


class TestValidation:
    def test_domain_rule_blocks_flush(self, session, make_rolle):
        make_rolle(name="taken")
        session.add(Rolle(name="taken"))
        with pytest.raises(HistoryValidationError) as exc:
            session.flush()
        assert exc.value.validation_errors[0]["error"] == "taken"

    def test_pydantic_validator(self, session):
        session.add(Tag(label="x"))
        with pytest.raises(HistoryValidationError) as exc:
            session.flush()
        assert exc.value.validation_errors[0]["loc"] == ("label",)

    def test_save_without_versioning_can_skip_validation(self, session):
        tag = Tag(label="x")
        tag.save_without_versioning(validate=False, session=session)
        assert tag.id is not None
        assert tag.versions.count() == 0


class TestDestroy:
    def test_marker_row(self, session, make_rolle):
        rolle = make_rolle(description="last words")
        rolle.description = "final"
        session.flush()
        owner_id = rolle.id

        rolle.destroy()
        rows = Rolle.__history__.store.all(session, owner_id)
        assert [r.version for r in rows] == [1, 2, 3]
        marker = rows[-1]
        assert marker.deleted_in_original_table is True
        assert marker.description == "final"
        assert marker.record_restored is None
        assert session.get(Rolle, owner_id) is None

    def test_session_delete(self, session, make_rolle):
        rolle = make_rolle()
        owner_id = rolle.id
        session.delete(rolle)
        session.flush()
        assert Rolle.__history__.store.last(session, owner_id).deleted_in_original_table

    def test_pending_record(self, session):
        rolle = Rolle(name="ghost")
        session.add(rolle)
        rolle.destroy()
        assert rolle not in session
        session.flush()
        assert rolle.id is None
        assert rolle.highest_version() == -1
        total = session.execute(select(func.count()).select_from(Rolle.__history__.history_table)).scalar()
        assert total == 0

    def test_transient_record(self, session):
        rolle = Rolle(name="ghost")
        rolle.destroy()
        assert rolle.highest_version() == -1
        assert rolle.versions.count() == 0

    def test_suppressed_destroy(self, session, make_rolle):
        rolle = make_rolle()
        owner_id = rolle.id
        with without_versioning(Rolle):
            rolle.destroy()
        assert Rolle.__history__.store.count(session, owner_id) == 1

    def test_destroy_after_silent_save(self, session):
        rolle = Rolle(name="quiet")
        rolle.save_without_versioning(session=session)
        owner_id = rolle.id
        rolle.destroy()
        marker = Rolle.__history__.store.last(session, owner_id)
        assert marker.version == 1
        assert marker.deleted_in_original_table


class TestRetention:
    def test_keeps_last_n(self, session):
        note = Note(body="1")
        session.add(note)
        session.flush()
        for i in range(2, 6):
            note.body = str(i)
            session.flush()
        assert [r.version for r in note.versions] == [4, 5]

    def test_destroy_prunes(self, session):
        note = Note(body="1")
        session.add(note)
        session.flush()
        note.body = "2"
        session.flush()
        owner_id = note.id
        note.destroy()
        assert [r.version for r in Note.__history__.store.all(session, owner_id)] == [2, 3]

    def test_prune_idempotent(self, session):
        note = Note(body="1")
        session.add(note)
        session.flush()
        for i in range(2, 4):
            note.body = str(i)
            session.flush()
        assert lifecycle.prune(session, note) == 0
        assert note.versions.count() == 2

    def test_no_limit(self, session, make_rolle):
        assert lifecycle.prune(session, make_rolle()) == 0


class TestOptimisticLocking:
    def _make(self, session):
        locked = LockedRolle(name="a")
        session.add(locked)
        session.flush()
        return locked

    def test_new_record_starts_at_zero(self, session):
        assert self._make(session).lock_version == 0

    def test_counter_incremented(self, session):
        locked = self._make(session)
        locked.name = "b"
        session.flush()
        assert locked.lock_version == 1
        assert locked.version == 2

    def test_stale_record_rejected(self, session):
        locked = self._make(session)
        table = LockedRolle.__table__
        session.connection().execute(
            update(table).where(table.c.id == locked.id).values(lock_version=5)
        )
        locked.name = "b"
        with pytest.raises(HistoryStaleRecordError) as exc:
            session.flush()
        assert exc.value.expected_lock == 0
        assert exc.value.actual_lock == 5

    def test_check_skipped_without_locking(self, session):
        locked = self._make(session)
        table = LockedRolle.__table__
        session.connection().execute(
            update(table).where(table.c.id == locked.id).values(lock_version=5)
        )
        locked.name = "b"
        with without_locking():
            session.flush()
        assert locked.versions.count() == 2

    def test_process_wide_hazard(self, session):
        """A caller in another thread switches the check off for this one too."""
        locked = self._make(session)
        table = LockedRolle.__table__
        session.connection().execute(
            update(table).where(table.c.id == locked.id).values(lock_version=5)
        )
        locked.name = "stale write"

        inside = threading.Event()
        release = threading.Event()

        def unrelated_caller():
            with without_locking():
                inside.set()
                release.wait(timeout=5)

        t = threading.Thread(target=unrelated_caller)
        t.start()
        try:
            inside.wait(timeout=5)
            session.flush()
        finally:
            release.set()
            t.join()

        assert locked.versions.latest.name == "stale write"
        assert is_locking_enabled()


class TestAtomicity:
    def test_uniqueness_race_rolls_back_live_write(self, session_factory, monkeypatch):
        setup = session_factory()
        rolle = Rolle(name="racer", description="before")
        setup.add(rolle)
        setup.commit()
        owner_id = rolle.id
        setup.close()

        session = session_factory()
        rolle = session.get(Rolle, owner_id)
        # Another writer already took version 2.
        Rolle.__history__.store.insert(
            session, {"rolle_id": owner_id, "version": 2, "name": "racer", "description": "theirs"}
        )
        monkeypatch.setattr(lifecycle, "next_version", lambda s, r: 2)

        rolle.description = "mine"
        with pytest.raises(HistoryUniquenessViolation) as exc:
            session.flush()
        assert exc.value.retryable is True
        session.rollback()
        session.close()

        check = session_factory()
        assert check.execute(select(Rolle.description).where(Rolle.id == owner_id)).scalar() == "before"
        assert check.get(Rolle, owner_id).versions.count() == 1
        check.close()
