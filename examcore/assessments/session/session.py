"""
Assessment Session

One student's attempt at one assessment: a state machine over the tagged
states in ``states.py``, a server-enforced deadline, the navigation cursor,
and the hand-off to the scoring engine. A session is mutated only by its own
``render``/``process`` calls; callers guarantee at most one in-flight action
per session.
"""

import random
import time
import uuid
from typing import Callable, List, Optional

from examcore.common.logger import LoggerAdapter, with_context
from examcore.config import Settings, get_settings
from examcore.assessments.document.models import AssessmentDocument
from examcore.assessments.document.realized import RealizedDocument, realize
from examcore.assessments.session.actions import Action, ActionKind
from examcore.assessments.session.presentation import SessionView
from examcore.assessments.session.records import EligibilityChecker
from examcore.assessments.session.scoring import ScoringEngine
from examcore.assessments.session.states import (
    Completed,
    Initial,
    Instructions,
    Item,
    SessionState,
    Solution,
    SubmitConfirm,
    current_item,
    is_active,
    is_scored,
)


def new_serial_number() -> int:
    """Random 48-bit attempt serial number."""
    return uuid.uuid4().int >> 80


class AssessmentSession:
    """
    State machine for one attempt.

    Args:
        interaction_id: Identity of the caller's interaction (login session)
        document: Assessment being taken
        student_id: Student taking it
        scoring: Scoring engine (wraps the records capability)
        eligibility: Eligibility capability consulted on first render
        settings: Timing and policy settings
        clock: Time source returning epoch seconds
        redirect: Where to send the student when the session closes
    """

    def __init__(
        self,
        interaction_id: str,
        document: AssessmentDocument,
        student_id: str,
        scoring: ScoringEngine,
        eligibility: EligibilityChecker,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        redirect: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self.interaction_id = interaction_id
        self.document = document
        self.student_id = student_id
        self.scoring = scoring
        self.eligibility = eligibility
        self.settings = settings or get_settings()
        self.clock = clock
        self.redirect = redirect
        self.rng = rng

        self.state: SessionState = Initial()
        self.started = False
        self.deadline = 0.0
        self.instructions_viewed_at = 0.0
        self.last_item = 0
        self.time_limit_factor: Optional[float] = None
        self.realized: Optional[RealizedDocument] = None

        self.grading_error: Optional[str] = None
        self.score: Optional[int] = None
        self.mastery: Optional[int] = None
        self.passed: Optional[bool] = None
        self.scored = False
        self.closed = False

        self.ineligible_reasons: List[str] = []
        self.holds: List[str] = []

        self.log: LoggerAdapter = with_context(
            "exam",
            interaction=interaction_id,
            student=student_id,
            assessment=document.version,
        )

    # ------------------------------------------------------------------
    # Identity and classification
    # ------------------------------------------------------------------

    @property
    def assessment_id(self) -> str:
        return self.document.version

    @property
    def key(self):
        return self.interaction_id, self.assessment_id

    @property
    def course(self) -> Optional[str]:
        return self.document.course

    @property
    def unit(self) -> Optional[int]:
        return self.document.unit

    @property
    def assessment_type(self) -> str:
        return self.document.assessment_type.value

    @property
    def current_item(self) -> int:
        return current_item(self.state)

    @property
    def item_count(self) -> int:
        return len(self.realized) if self.realized is not None else self.document.item_count

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def expiry_time(self) -> Optional[float]:
        """
        When the session expires: the deadline if set, otherwise the
        instructions-viewed time plus the idle bound, otherwise never.
        """
        if self.deadline > 0:
            return self.deadline
        if self.instructions_viewed_at > 0:
            return self.instructions_viewed_at + self.settings.instructions_idle_seconds
        return None

    def is_timed_out(self, now: Optional[float] = None) -> bool:
        expiry = self.expiry_time()
        if expiry is None:
            return False
        return (self.clock() if now is None else now) >= expiry

    def is_purgeable(self, now: Optional[float] = None) -> bool:
        expiry = self.expiry_time()
        if expiry is None:
            return False
        now = self.clock() if now is None else now
        return now >= expiry + self.settings.purge_retention_seconds

    def time_remaining(self, now: Optional[float] = None) -> Optional[float]:
        if self.deadline <= 0:
            return None
        now = self.clock() if now is None else now
        return max(0.0, self.deadline - now)

    def _deadline_passed(self, now: float) -> bool:
        return self.deadline > 0 and now >= self.deadline

    def _ensure_deadline(self, now: float) -> None:
        if self.deadline > 0 or not self.document.allowed_seconds:
            return
        allowed = float(self.document.allowed_seconds)
        if self.time_limit_factor:
            allowed *= self.time_limit_factor
        self.deadline = now + allowed
        self.log.info(f"Timer started, duration is {allowed:.0f} seconds")

    # ------------------------------------------------------------------
    # Rendering and processing
    # ------------------------------------------------------------------

    @property
    def is_eligible(self) -> bool:
        return not isinstance(self.state, Initial)

    def render(self, now: Optional[float] = None) -> SessionView:
        """
        Return the presentation state, realizing the document on first render.

        A student who fails the eligibility check stays in INITIAL and the
        denial reasons are carried on the returned view.
        """
        now = self.clock() if now is None else now
        if isinstance(self.state, Initial):
            self._initialize(now)
        elif is_active(self.state) or isinstance(self.state, Instructions):
            if self._deadline_passed(now):
                self.log.info("Deadline passed - forcing timeout")
                self._complete(now)
        return SessionView.from_session(self, now)

    def process(self, action: Action, now: Optional[float] = None) -> SessionView:
        """
        Apply one user action and return the updated presentation state.

        Stale or malformed actions are logged and ignored; if the deadline has
        passed the action is replaced by a timeout.
        """
        now = self.clock() if now is None else now

        if isinstance(self.state, Initial):
            return self.render(now)

        if (is_active(self.state) or isinstance(self.state, Instructions)) and self._deadline_passed(now):
            self.log.info(f"Deadline passed - forcing timeout (requested {action.kind.value})")
            self._complete(now)
            return self.render(now)

        state = self.state
        if isinstance(state, Instructions):
            self._process_instructions(action, now)
        elif isinstance(state, Item):
            self._process_item(state, action, now)
        elif isinstance(state, SubmitConfirm):
            self._process_submit_confirm(state, action, now)
        elif isinstance(state, Completed):
            self._process_completed(action)
        elif isinstance(state, Solution):
            self._process_solution(action)

        return self.render(now)

    def _valid_index(self, index: Optional[int]) -> bool:
        return index is not None and 0 <= index < self.item_count

    def _go_to_item(self, index: int, now: float) -> None:
        self.state = Item(index)
        self.last_item = index
        if not self.started:
            self.started = True
            self.log.info("Starting exam")
        self._ensure_deadline(now)

    def _ignore(self, action: Action) -> None:
        self.log.warning(f"Ignoring '{action.kind.value}' in state {self.state.name}"
                         + (f" (target {action.target})" if action.target is not None else ""))

    def _process_instructions(self, action: Action, now: float) -> None:
        if action.kind == ActionKind.BEGIN:
            self._go_to_item(0, now)
        elif action.kind == ActionKind.NAVIGATE and self._valid_index(action.target):
            self._go_to_item(action.target, now)
        elif action.kind == ActionKind.REQUEST_SUBMIT:
            self.log.info("'score' action received - confirming submit")
            self.state = SubmitConfirm(self.last_item)
        elif action.kind == ActionKind.TIMEOUT:
            self.log.info("'timeout' action received - scoring exam")
            self._complete(now)
        elif action.kind != ActionKind.REFRESH:
            self._ignore(action)

    def _process_item(self, state: Item, action: Action, now: float) -> None:
        if action.posted_item is not None:
            if action.posted_item == state.index:
                self._store_response(state.index, action)
            else:
                self.log.warning(
                    f"POST received with currentItem={action.posted_item} when current item was {state.index}")

        if action.kind == ActionKind.NAVIGATE and self._valid_index(action.target):
            self._go_to_item(action.target, now)
        elif action.kind == ActionKind.INSTRUCTIONS:
            self.state = Instructions()
        elif action.kind == ActionKind.REQUEST_SUBMIT:
            self.log.info("'score' action received - confirming submit")
            self.state = SubmitConfirm(state.index)
        elif action.kind == ActionKind.TIMEOUT:
            self.log.info("'timeout' action received - scoring exam")
            self._complete(now)
        elif action.kind != ActionKind.REFRESH:
            self._ignore(action)

    def _process_submit_confirm(self, state: SubmitConfirm, action: Action, now: float) -> None:
        if action.kind == ActionKind.CONFIRM_NO:
            self.log.info("Submit canceled, returning to exam")
            self._go_to_item(state.return_index if self._valid_index(state.return_index) else 0, now)
        elif action.kind == ActionKind.CONFIRM_YES:
            self.log.info("Submit confirmed, scoring")
            self._complete(now)
        elif action.kind == ActionKind.TIMEOUT:
            self.log.info("'timeout' action received - scoring exam")
            self._complete(now)
        elif action.kind != ActionKind.REFRESH:
            self._ignore(action)

    def _process_completed(self, action: Action) -> None:
        if action.kind == ActionKind.VIEW_SOLUTIONS:
            self.log.info("Moving to solutions")
            self.state = Solution(0)
        elif action.kind == ActionKind.CLOSE:
            self.close()
        elif action.kind != ActionKind.REFRESH:
            self._ignore(action)

    def _process_solution(self, action: Action) -> None:
        if action.kind == ActionKind.CLOSE:
            self.close()
        elif action.kind == ActionKind.INSTRUCTIONS:
            self.state = Solution(None)
        elif action.kind == ActionKind.NAVIGATE and self._valid_index(action.target):
            self.state = Solution(action.target)
        elif action.kind != ActionKind.REFRESH:
            self._ignore(action)

    def _store_response(self, index: int, action: Action) -> None:
        item = self.realized.item_at(index)
        if item is None or item.auto_correct:
            return
        response = item.template.extract_response(action.form)
        item.response = response
        self.log.info(f"Item {index} answers {list(response) if response else '{}'}, "
                      f"correct={'Y' if item.template.is_correct(response) else 'N'}")

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def _initialize(self, now: float) -> bool:
        result = self.eligibility.check_eligible(self.student_id, self.document, now)
        self.holds = list(result.holds)
        if not result.allowed:
            self.ineligible_reasons = list(result.reasons) or ["Not eligible for this assessment."]
            self.log.info(f"Not eligible: {'; '.join(self.ineligible_reasons)}")
            return False

        self.ineligible_reasons = []
        self.time_limit_factor = result.time_limit_factor
        auto_correct = self.scoring.auto_correct_items(self.student_id, self.document)
        if auto_correct:
            self.log.info(f"Auto-correcting previously mastered items {sorted(auto_correct)}")

        self.realized = realize(
            self.document,
            serial_number=new_serial_number(),
            realized_at=now,
            auto_correct_ids=auto_correct,
            rng=self.rng,
        )
        if self.settings.start_timer_on_realization:
            self._ensure_deadline(now)
        if self.instructions_viewed_at <= 0:
            self.instructions_viewed_at = now
        self.state = Instructions()
        self.log.info(f"Realized assessment, serial {self.realized.serial_number}")
        return True

    def _complete(self, now: float) -> None:
        if not self.scored:
            self.score_and_record(now)
        self.state = Completed()

    def score_and_record(self, now: Optional[float] = None) -> Optional[str]:
        """
        Run the scoring pipeline, at most once per session.

        Returns:
            The grading error, if any
        """
        if self.scored or self.realized is None:
            return self.grading_error
        self.scored = True
        self.realized.completed_at = self.clock() if now is None else now

        outcome = self.scoring.score(self.realized, self.student_id, log=self.log)
        self.grading_error = outcome.error
        if outcome.record is not None:
            self.score = outcome.record.score
            self.mastery = outcome.record.mastery
            self.passed = outcome.record.passed
        if self.grading_error:
            self.log.warning(self.grading_error)
        return self.grading_error

    def close(self) -> None:
        self.log.info("Closing session")
        self.closed = True

    def force_abort(self) -> None:
        """Abandon the attempt without scoring; a recovery snapshot is kept."""
        self.log.info("Forced abort requested")
        if self.realized is not None and not self.scored:
            self.scoring.write_recovery(self.realized, self.student_id, reason="abort", log=self.log)
        self.closed = True

    def force_submit(self, now: Optional[float] = None) -> Optional[str]:
        """Score the attempt regardless of state and close the session."""
        self.log.info("Forced submit requested")
        error = self.score_and_record(now)
        if self.realized is not None:
            self.state = Completed()
        self.closed = True
        return error

    def purge(self, now: Optional[float] = None) -> None:
        """
        Dispose of an expired session: attempts in progress are scored,
        anything else unscored is kept as a recovery snapshot.
        """
        if is_active(self.state):
            self.log.info("Purging expired session - scoring")
            self.score_and_record(now)
            self.state = Completed()
        elif self.realized is not None and not is_scored(self.state) and not self.scored:
            self.log.info("Purging expired session - writing recovery snapshot")
            self.scoring.write_recovery(self.realized, self.student_id, reason="purge", log=self.log)
        self.closed = True

    def __repr__(self) -> str:
        return (f"AssessmentSession(interaction={self.interaction_id!r}, "
                f"assessment={self.assessment_id!r}, state={self.state!r})")
