"""Tests for the assessment session state machine and form decoding."""

import unittest

from examcore.assessments.session.actions import Action, ActionKind, parse_action
from examcore.assessments.session.records import EligibilityResult, InMemoryRecordsService
from examcore.assessments.session.states import (
    Completed,
    Initial,
    Instructions,
    Item,
    Solution,
    SubmitConfirm,
)
from examcore.tests.factories import FakeClock, make_document, make_session, make_settings


class DenyEligibility:
    def check_eligible(self, student_id, document, now):
        return EligibilityResult(allowed=False, reasons=["Unit 1 homework is not complete."], holds=["library"])


class TestParseAction(unittest.TestCase):

    def test_buttons(self):
        self.assertEqual(parse_action({"begin": "Begin"}).kind, ActionKind.BEGIN)
        self.assertEqual(parse_action({"score": "Submit"}).kind, ActionKind.REQUEST_SUBMIT)
        self.assertEqual(parse_action({"Y": "Yes"}).kind, ActionKind.CONFIRM_YES)
        self.assertEqual(parse_action({"N": "No"}).kind, ActionKind.CONFIRM_NO)
        self.assertEqual(parse_action({"solutions": "1"}).kind, ActionKind.VIEW_SOLUTIONS)
        self.assertEqual(parse_action({"close": "1"}).kind, ActionKind.CLOSE)

    def test_action_field(self):
        self.assertEqual(parse_action({"action": "timeout"}).kind, ActionKind.TIMEOUT)
        self.assertEqual(parse_action({"action": "instruct"}).kind, ActionKind.INSTRUCTIONS)
        self.assertEqual(parse_action({"action": "nav_4"}), Action.navigate(4))

    def test_navigation_button_and_current_item(self):
        action = parse_action({"nav_2": "Next", "currentItem": "1", "answer": "B"})
        self.assertEqual(action.kind, ActionKind.NAVIGATE)
        self.assertEqual(action.target, 2)
        self.assertEqual(action.posted_item, 1)
        self.assertEqual(action.form["answer"], "B")

    def test_unrecognized_is_refresh(self):
        self.assertEqual(parse_action({}).kind, ActionKind.REFRESH)
        self.assertEqual(parse_action({"action": "nav_x", "currentItem": "abc"}), Action(ActionKind.REFRESH))


class TestSessionFlow(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.records = InMemoryRecordsService()
        self.document = make_document(allowed_seconds=600)
        self.session = make_session(self.document, self.clock, self.records)

    def post(self, **form):
        return self.session.process(parse_action(form))

    def test_first_render_realizes_and_shows_instructions(self):
        view = self.session.render()
        self.assertIsInstance(self.session.state, Instructions)
        self.assertEqual(view.state, "INSTRUCTIONS")
        self.assertEqual(view.instructions, "Answer every question.")
        self.assertEqual(view.item_count, 2)
        self.assertIsNotNone(self.session.realized)
        self.assertEqual(self.session.instructions_viewed_at, self.clock.now)
        self.assertEqual(self.session.deadline, self.clock.now + 600)
        self.assertEqual(view.time_remaining, 600)

    def test_begin_answer_and_navigate(self):
        self.session.render()
        view = self.post(begin="Begin")
        self.assertEqual(self.session.state, Item(0))
        self.assertTrue(view.started)
        self.assertEqual(view.item.choices, ["A", "B", "C", "D"])
        self.assertIsNone(view.item.solution)

        view = self.post(nav_1="Next", currentItem="0", answer="B")
        self.assertEqual(self.session.state, Item(1))
        self.assertEqual(self.session.realized.items[0].response, ("B",))
        self.assertEqual(view.answered, [True, False])

    def test_response_for_another_item_is_ignored(self):
        self.session.render()
        self.post(begin="Begin")
        self.post(nav_1="Next", currentItem="1", answer="B")
        self.assertEqual(self.session.state, Item(1))
        self.assertIsNone(self.session.realized.items[0].response)
        self.assertIsNone(self.session.realized.items[1].response)

    def test_out_of_range_navigation_is_ignored(self):
        self.session.render()
        self.post(begin="Begin")
        self.post(nav_7="Next")
        self.assertEqual(self.session.state, Item(0))

    def test_submit_confirm_round_trip(self):
        self.session.render()
        self.post(begin="Begin")
        self.post(nav_1="Next", currentItem="0", answer="B")
        view = self.post(score="Submit", currentItem="1")
        self.assertEqual(self.session.state, SubmitConfirm(1))
        self.assertEqual(view.notice, "1 question(s) have not been answered.")

        self.post(N="No")
        self.assertEqual(self.session.state, Item(1))

        self.post(score="Submit")
        view = self.post(Y="Yes")
        self.assertIsInstance(self.session.state, Completed)
        self.assertEqual(view.state, "COMPLETED")
        self.assertEqual(view.score, 1)
        self.assertEqual(len(self.records.completions), 1)

    def test_submit_from_instructions_returns_to_last_item(self):
        self.session.render()
        self.post(begin="Begin")
        self.post(nav_1="Next")
        self.post(action="instruct")
        self.assertIsInstance(self.session.state, Instructions)
        self.post(score="Submit")
        self.assertEqual(self.session.state, SubmitConfirm(1))
        self.post(N="No")
        self.assertEqual(self.session.state, Item(1))

    def test_stale_actions_are_ignored(self):
        self.session.render()
        self.post(Y="Yes")
        self.post(solutions="1")
        self.assertIsInstance(self.session.state, Instructions)
        self.assertFalse(self.session.scored)

    def test_review_and_close(self):
        self.session.render()
        self.post(begin="Begin")
        self.post(score="Submit", currentItem="0", answer="A")
        self.post(Y="Yes")

        view = self.post(solutions="1")
        self.assertEqual(self.session.state, Solution(0))
        self.assertTrue(view.review)
        self.assertEqual(view.item.solution, ["B"])
        self.assertFalse(view.item.correct)

        self.post(nav_1="Next")
        self.assertEqual(self.session.state, Solution(1))
        view = self.post(action="instruct")
        self.assertEqual(self.session.state, Solution(None))
        self.assertEqual(view.instructions, "Answer every question.")

        view = self.post(close="Close")
        self.assertTrue(view.closed)
        self.assertTrue(self.session.closed)

    def test_close_from_completed(self):
        self.session.redirect = "/home"
        self.session.render()
        self.post(begin="Begin")
        self.post(action="timeout")
        view = self.post(close="Close")
        self.assertTrue(view.closed)
        self.assertEqual(view.redirect, "/home")


class TestMasteryExample(unittest.TestCase):
    """Two items, one answered correctly: score 1, passed only when mastery is at most 1."""

    def run_attempt(self, mastery):
        clock = FakeClock()
        records = InMemoryRecordsService()
        session = make_session(make_document(mastery=mastery), clock, records)
        session.render()
        session.process(parse_action({"begin": "Begin"}))
        session.process(parse_action({"nav_1": "Next", "currentItem": "0", "answer": "B"}))
        view = session.process(parse_action({"action": "timeout", "currentItem": "1", "answer": "C"}))
        return view, records

    def test_passes_at_mastery_one(self):
        view, records = self.run_attempt(1)
        self.assertEqual(view.score, 1)
        self.assertEqual(view.mastery, 1)
        self.assertTrue(view.passed)
        self.assertTrue(records.completions[0].passed)

    def test_fails_at_mastery_two(self):
        view, records = self.run_attempt(2)
        self.assertEqual(view.score, 1)
        self.assertFalse(view.passed)
        self.assertFalse(records.completions[0].passed)


class TestTiming(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.records = InMemoryRecordsService()

    def test_deadline_forces_completion_and_ignores_late_answers(self):
        session = make_session(make_document(allowed_seconds=60), self.clock, self.records)
        session.render()
        session.process(parse_action({"begin": "Begin"}))
        self.clock.advance(61)

        view = session.process(parse_action({"nav_1": "Next", "currentItem": "0", "answer": "B"}))
        self.assertIsInstance(session.state, Completed)
        self.assertEqual(view.state, "COMPLETED")
        self.assertIsNone(session.realized.items[0].response)
        self.assertEqual(view.score, 0)
        self.assertEqual(len(self.records.completions), 1)

    def test_render_after_deadline_completes(self):
        session = make_session(make_document(allowed_seconds=60), self.clock, self.records)
        session.render()
        self.clock.advance(60)
        self.assertEqual(session.render().state, "COMPLETED")
        self.assertTrue(session.scored)

    def test_timeout_action_stores_posted_response(self):
        session = make_session(make_document(allowed_seconds=60), self.clock, self.records)
        session.render()
        session.process(parse_action({"begin": "Begin"}))
        view = session.process(parse_action({"action": "timeout", "currentItem": "0", "answer": "B"}))
        self.assertEqual(view.state, "COMPLETED")
        self.assertEqual(view.score, 1)

    def test_time_limit_factor_extends_deadline(self):
        from examcore.assessments.session.records import AllowAllEligibility

        session = make_session(make_document(allowed_seconds=100), self.clock, self.records,
                               eligibility=AllowAllEligibility(time_limit_factor=1.5))
        session.render()
        self.assertEqual(session.deadline, self.clock.now + 150)

    def test_timer_can_start_on_first_item(self):
        settings = make_settings(start_timer_on_realization=False)
        session = make_session(make_document(allowed_seconds=100), self.clock, self.records, settings=settings)
        session.render()
        self.assertEqual(session.deadline, 0.0)
        self.clock.advance(30)
        session.process(parse_action({"begin": "Begin"}))
        self.assertEqual(session.deadline, self.clock.now + 100)

    def test_untimed_session_expires_after_idle_bound(self):
        settings = make_settings(instructions_idle_seconds=3600, purge_retention_seconds=600)
        session = make_session(make_document(), self.clock, self.records, settings=settings)
        session.render()
        viewed = self.clock.now
        self.assertIsNone(session.time_remaining())
        self.assertEqual(session.expiry_time(), viewed + 3600)
        self.assertFalse(session.is_timed_out(viewed + 3599))
        self.assertTrue(session.is_timed_out(viewed + 3600))
        self.assertFalse(session.is_purgeable(viewed + 4199))
        self.assertTrue(session.is_purgeable(viewed + 4200))

    def test_unrealized_session_never_expires(self):
        session = make_session(make_document(allowed_seconds=60), self.clock, self.records)
        self.assertIsNone(session.expiry_time())
        self.assertFalse(session.is_timed_out(self.clock.now + 10 ** 6))


class TestEligibility(unittest.TestCase):

    def test_ineligible_student_stays_initial(self):
        session = make_session(make_document(), FakeClock(), eligibility=DenyEligibility())
        view = session.render()
        self.assertIsInstance(session.state, Initial)
        self.assertFalse(view.eligible)
        self.assertEqual(view.reasons, ["Unit 1 homework is not complete."])
        self.assertEqual(view.holds, ["library"])
        self.assertIsNone(session.realized)


class TestRepeatLeniency(unittest.TestCase):

    def complete_attempt(self, clock, records, interaction_id):
        session = make_session(make_document(), clock, records, interaction_id=interaction_id)
        session.render()
        session.process(parse_action({"begin": "Begin"}))
        session.process(parse_action({"score": "Submit", "currentItem": "0", "answer": "B"}))
        session.process(parse_action({"Y": "Yes"}))
        clock.advance(10)
        return session

    def test_item_is_auto_corrected_on_third_attempt(self):
        clock = FakeClock()
        records = InMemoryRecordsService()

        second = None
        for n in range(2):
            second = self.complete_attempt(clock, records, f"LS{n}")
        self.assertFalse(second.realized.items[0].auto_correct)

        third = make_session(make_document(), clock, records, interaction_id="LS3")
        third.render()
        self.assertTrue(third.realized.items[0].auto_correct)
        self.assertFalse(third.realized.items[1].auto_correct)

        view = third.process(parse_action({"begin": "Begin"}))
        self.assertTrue(view.item.auto_correct)
        self.assertEqual(view.answered, [True, False])

    def test_unrecorded_students_get_no_leniency(self):
        clock = FakeClock()
        records = InMemoryRecordsService()
        for n in range(2):
            self.complete_attempt(clock, records, f"LS{n}")
        guest = make_session(make_document(), clock, records, student_id="GUEST")
        guest.render()
        self.assertFalse(guest.realized.items[0].auto_correct)


class TestForcedControls(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.records = InMemoryRecordsService()
        self.session = make_session(make_document(), self.clock, self.records)
        self.session.render()
        self.session.process(parse_action({"begin": "Begin"}))

    def test_force_submit_scores_once(self):
        self.session.force_submit()
        self.assertIsInstance(self.session.state, Completed)
        self.assertTrue(self.session.closed)
        self.session.force_submit()
        self.session.score_and_record()
        self.assertEqual(len(self.records.completions), 1)

    def test_force_abort_keeps_recovery_snapshot(self):
        self.session.process(parse_action({"nav_1": "Next", "currentItem": "0", "answer": "C"}))
        self.session.force_abort()
        self.assertTrue(self.session.closed)
        self.assertFalse(self.session.scored)
        self.assertEqual(self.records.completions, [])
        self.assertEqual([s.reason for s in self.records.recoveries], ["abort"])
        self.assertEqual(self.records.recoveries[0].answers[0].response, ["C"])

    def test_purge_in_progress_scores(self):
        self.session.purge()
        self.assertTrue(self.session.closed)
        self.assertIsInstance(self.session.state, Completed)
        self.assertEqual(len(self.records.completions), 1)

    def test_purge_before_start_writes_recovery(self):
        session = make_session(make_document(), self.clock, self.records, interaction_id="LS2")
        session.render()
        session.purge()
        self.assertTrue(session.closed)
        self.assertFalse(session.scored)
        self.assertEqual(self.records.recoveries[-1].reason, "purge")
