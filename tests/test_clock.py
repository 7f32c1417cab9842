"""Unit tests for recordhistory.engine.clock - version number assignment."""

from history_models import Rolle
from recordhistory.engine.clock import highest_version, next_version


class TestNextVersion:
    def test_new_record_is_one(self, session):
        rolle = Rolle(name="new")
        assert next_version(session, rolle) == 1
        session.add(rolle)
        assert next_version(session, rolle) == 1

    def test_follows_history_not_live_field(self, session, make_rolle):
        rolle = make_rolle()
        rolle.description = "two"
        session.flush()
        assert next_version(session, rolle) == 3

        rolle.version = 40
        assert next_version(session, rolle) == 3

    def test_persisted_without_history(self, session):
        rolle = Rolle(name="quiet")
        rolle.save_without_versioning(session=session)
        assert next_version(session, rolle) == 1


class TestHighestVersion:
    def test_unsaved(self, session):
        assert highest_version(session, Rolle(name="x")) == -1

    def test_no_rows(self, session):
        rolle = Rolle(name="quiet")
        rolle.save_without_versioning(session=session)
        assert highest_version(session, rolle) == -1

    def test_max(self, session, make_rolle):
        rolle = make_rolle()
        rolle.description = "two"
        session.flush()
        assert highest_version(session, rolle) == 2
        assert rolle.highest_version() == 2

    def test_unsaved_with_explicit_key(self, session, make_rolle):
        old = make_rolle()
        old.description = "two"
        session.flush()
        owner_id = old.id
        old.destroy()

        fresh = Rolle(id=owner_id, name="fresh")
        session.add(fresh)
        assert highest_version(session, fresh) == -1
        assert next_version(session, fresh) == 1
