"""Tests for the session store, proctoring codes, and the sweeper."""

import unittest
from unittest.mock import patch

from examcore.assessments.session.actions import parse_action
from examcore.assessments.session.records import InMemoryRecordsService
from examcore.assessments.session.states import Completed
from examcore.assessments.store.store import CODE_ALPHABET, SessionStore
from examcore.assessments.store.sweeper import StoreSweeper
from examcore.tests.factories import FakeClock, make_document, make_session, make_settings


class StoreTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.records = InMemoryRecordsService()
        self.settings = make_settings(purge_retention_seconds=600, code_prune_interval_seconds=120)
        self.store = SessionStore(self.settings, self.clock)

    def session(self, interaction_id="LS1", student_id="888888888", version="171UE", allowed_seconds=None):
        session = make_session(make_document(version, allowed_seconds=allowed_seconds), self.clock, self.records,
                               student_id=student_id, interaction_id=interaction_id, settings=self.settings)
        session.render()
        return session


class TestRegistry(StoreTestCase):

    def test_put_get_remove(self):
        first = self.session()
        second = self.session(version="172UE")
        self.assertTrue(self.store.put(first))
        self.assertTrue(self.store.put(second))

        self.assertIs(self.store.get("LS1", "171UE"), first)
        self.assertEqual(len(self.store), 2)
        self.assertEqual({s.assessment_id for s in self.store.sessions_for("LS1")}, {"171UE", "172UE"})
        self.assertEqual(self.store.lookup_by_student("888888888"), "LS1")

        self.assertIs(self.store.remove("LS1", "171UE"), first)
        self.assertIsNone(self.store.get("LS1", "171UE"))
        self.assertEqual(self.store.lookup_by_student("888888888"), "LS1")

        self.store.remove("LS1", "172UE")
        self.assertEqual(len(self.store), 0)
        self.assertIsNone(self.store.lookup_by_student("888888888"))
        self.assertIsNone(self.store.remove("LS1", "172UE"))

    def test_put_replaces_same_identity(self):
        self.store.put(self.session())
        replacement = self.session()
        self.store.put(replacement)
        self.assertIs(self.store.get("LS1", "171UE"), replacement)
        self.assertEqual(len(self.store), 1)

    def test_expired_session_is_not_stored(self):
        session = self.session(allowed_seconds=60)
        self.clock.advance(60)
        self.assertFalse(self.store.put(session))
        self.assertEqual(len(self.store), 0)

    def test_student_index_follows_latest_interaction(self):
        self.store.put(self.session("LS1"))
        self.store.put(self.session("LS2"))
        self.assertEqual(self.store.lookup_by_student("888888888"), "LS2")

    def test_student_index_falls_back_to_older_interaction(self):
        self.store.put(self.session("LS1"))
        self.store.put(self.session("LS2"))
        self.store.put(self.session("LS3", student_id="777777777"))

        self.store.remove("LS2", "171UE")
        self.assertEqual(self.store.lookup_by_student("888888888"), "LS1")
        self.assertEqual(self.store.lookup_by_student("777777777"), "LS3")

        self.store.remove("LS1", "171UE")
        self.assertIsNone(self.store.lookup_by_student("888888888"))


class TestCodes(StoreTestCase):

    def test_issue_code_is_idempotent(self):
        self.store.put(self.session())
        code = self.store.issue_code("LS1")
        self.assertEqual(len(code), 6)
        self.assertTrue(all(c in CODE_ALPHABET for c in code))
        self.assertEqual(self.store.issue_code("LS1"), code)
        self.assertEqual(self.store.lookup_code(code.lower()), "LS1")

    def test_distinct_interactions_get_distinct_codes(self):
        self.store.put(self.session("LS1"))
        self.store.put(self.session("LS2", student_id="777777777"))
        self.assertNotEqual(self.store.issue_code("LS1"), self.store.issue_code("LS2"))

    def test_code_dropped_with_last_session(self):
        self.store.put(self.session())
        code = self.store.issue_code("LS1")
        self.store.remove("LS1", "171UE")
        self.assertIsNone(self.store.lookup_code(code))

    def test_stale_codes_pruned(self):
        stale = self.store.issue_code("LS-gone")
        self.clock.advance(121)
        self.store.issue_code("LS2")
        self.assertIsNone(self.store.lookup_code(stale))

    def test_liveness_callback_keeps_codes(self):
        store = SessionStore(self.settings, self.clock, is_live=lambda interaction: interaction == "LS-portal")
        code = store.issue_code("LS-portal")
        self.clock.advance(121)
        store.issue_code("LS2")
        self.assertEqual(store.lookup_code(code), "LS-portal")


class TestPurge(StoreTestCase):

    def test_purge_scores_abandoned_attempt_once(self):
        session = self.session(allowed_seconds=60)
        session.process(parse_action({"begin": "Begin"}))
        self.store.put(session)

        self.assertEqual(self.store.purge_expired(), [])
        self.clock.advance(60 + 600)
        purged = self.store.purge_expired()

        self.assertEqual(purged, [session])
        self.assertIsNone(self.store.get("LS1", "171UE"))
        self.assertIsInstance(session.state, Completed)
        self.assertTrue(session.closed)
        self.assertEqual(len(self.records.completions), 1)

        self.assertEqual(self.store.purge_expired(), [])
        self.assertEqual(len(self.records.completions), 1)

    def test_purge_does_not_rescore_completed_session(self):
        session = self.session(allowed_seconds=60)
        session.process(parse_action({"begin": "Begin"}))
        session.process(parse_action({"action": "timeout"}))
        self.store.put(session)
        self.clock.advance(700)
        self.store.purge_expired()
        self.assertEqual(len(self.records.completions), 1)
        self.assertEqual(self.records.recoveries[-1].reason, "scoring")

    def test_unexpired_sessions_survive(self):
        self.store.put(self.session("LS1", allowed_seconds=60))
        self.store.put(self.session("LS2", student_id="777777777"))
        self.clock.advance(700)
        purged = self.store.purge_expired()
        self.assertEqual([s.interaction_id for s in purged], ["LS1"])
        self.assertIsNotNone(self.store.get("LS2", "171UE"))

    def test_purge_error_does_not_stop_sweep(self):
        first = self.session("LS1", allowed_seconds=60)
        second = self.session("LS2", student_id="777777777", allowed_seconds=60)
        self.store.put(first)
        self.store.put(second)
        self.clock.advance(700)
        with patch.object(first, "purge", side_effect=RuntimeError("boom")):
            purged = self.store.purge_expired()
        self.assertEqual(len(purged), 2)
        self.assertTrue(second.closed)


class TestSweeper(StoreTestCase):

    def test_sweep_purges(self):
        self.store.put(self.session(allowed_seconds=60))
        sweeper = StoreSweeper(self.store, interval=3600)
        self.assertEqual(sweeper.sweep(), 0)
        self.clock.advance(700)
        self.assertEqual(sweeper.sweep(), 1)

    def test_start_and_stop(self):
        sweeper = StoreSweeper(self.store, interval=3600)
        sweeper.start()
        try:
            self.assertTrue(sweeper.running)
            sweeper.start()
            self.assertTrue(sweeper.running)
        finally:
            sweeper.stop()
        self.assertFalse(sweeper.running)
