"""
Session Service

The coordination layer a request handler calls. It resolves or creates the
session for an (interaction, assessment) pair through the store, feeds it
decoded actions, removes sessions once they close, and gates the
administrative controls on the caller's role.
"""

import os
import random
import time
from typing import Any, Callable, List, Mapping, Optional, Tuple

from examcore.common.exceptions import AuthorizationError, IneligibleError, SessionNotFoundError
from examcore.common.logger import app_logger
from examcore.config import Settings, get_settings
from examcore.assessments.document.models import AssessmentDocument
from examcore.assessments.session.actions import parse_action
from examcore.assessments.session.presentation import SessionView
from examcore.assessments.session.records import EligibilityChecker, RecordsService
from examcore.assessments.session.scoring import ScoringEngine
from examcore.assessments.session.session import AssessmentSession
from examcore.assessments.store.store import SessionStore

logger = app_logger.getChild("service")

PERSIST_FILE = "sessions.xml"


class SessionService:
    """
    Entry point for driving assessment sessions.

    Args:
        store: Registry of live sessions
        catalog: Source of assessment documents (anything with ``get(version)``)
        records: Records capability
        eligibility: Eligibility capability
        settings: Application settings
        clock: Time source returning epoch seconds
        rng: Random source for template selection
    """

    def __init__(
        self,
        store: SessionStore,
        catalog: Any,
        records: RecordsService,
        eligibility: EligibilityChecker,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.records = records
        self.eligibility = eligibility
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng
        self.scoring = ScoringEngine(records, self.settings, clock)

    def build_session(self, interaction_id: str, document: AssessmentDocument, student_id: str,
                      redirect: Optional[str] = None) -> AssessmentSession:
        """Create an unstarted session wired to this service's collaborators."""
        return AssessmentSession(
            interaction_id=interaction_id,
            document=document,
            student_id=student_id,
            scoring=self.scoring,
            eligibility=self.eligibility,
            settings=self.settings,
            clock=self.clock,
            redirect=redirect,
            rng=self.rng,
        )

    # ------------------------------------------------------------------
    # Student-facing operations
    # ------------------------------------------------------------------

    def open(self, interaction_id: str, assessment_id: str, student_id: str,
             redirect: Optional[str] = None) -> SessionView:
        """
        Start or resume a session.

        Raises:
            DocumentError: If the assessment does not exist
            IneligibleError: If the student may not start it; no session is stored
            AuthorizationError: If the interaction's session belongs to another student
        """
        session = self.store.get(interaction_id, assessment_id)
        if session is not None:
            if session.student_id != student_id:
                raise AuthorizationError("Session belongs to another student", action="open")
            return self._finish(session, session.render())

        document = self.catalog.get(assessment_id)
        session = self.build_session(interaction_id, document, student_id, redirect)
        view = session.render()
        if not view.eligible:
            raise IneligibleError(f"Student {student_id} is not eligible for {assessment_id}", view.reasons)

        if not self.store.put(session):
            session.log.warning("New session expired before it could be stored")
        return view

    def handle(self, interaction_id: str, assessment_id: str, form: Mapping[str, Any]) -> SessionView:
        """
        Decode a posted form and apply it to the session.

        Raises:
            SessionNotFoundError: If there is no live session
        """
        session = self._require(interaction_id, assessment_id)
        view = session.process(parse_action(form))
        return self._finish(session, view)

    def _finish(self, session: AssessmentSession, view: SessionView) -> SessionView:
        if session.closed:
            self.store.remove(session.interaction_id, session.assessment_id)
        return view

    def _require(self, interaction_id: str, assessment_id: str) -> AssessmentSession:
        session = self.store.get(interaction_id, assessment_id)
        if session is None:
            raise SessionNotFoundError(interaction_id, assessment_id)
        return session

    # ------------------------------------------------------------------
    # Proctoring handoff
    # ------------------------------------------------------------------

    def issue_code(self, interaction_id: str) -> str:
        if not self.store.sessions_for(interaction_id):
            raise SessionNotFoundError(f"interaction {interaction_id}")
        return self.store.issue_code(interaction_id)

    def resolve_code(self, code: str) -> Tuple[str, List[SessionView]]:
        """Interaction a proctoring code was issued for, with its sessions."""
        interaction_id = self.store.lookup_code(code)
        if interaction_id is None:
            raise SessionNotFoundError(f"code {code}")
        now = self.clock()
        return interaction_id, [SessionView.from_session(s, now) for s in self.store.sessions_for(interaction_id)]

    def interaction_for_student(self, student_id: str) -> str:
        interaction_id = self.store.lookup_by_student(student_id)
        if interaction_id is None:
            raise SessionNotFoundError(f"student {student_id}")
        return interaction_id

    # ------------------------------------------------------------------
    # Administrative controls
    # ------------------------------------------------------------------

    def _require_admin(self, role: Optional[str], action: str) -> None:
        if role != self.settings.admin_role:
            logger.warning(f"{action} requested, but requester is not {self.settings.admin_role}")
            raise AuthorizationError(f"{action} requires the {self.settings.admin_role} role", action=action)

    def force_abort(self, interaction_id: str, assessment_id: str, role: Optional[str]) -> SessionView:
        """Discard a session without scoring it."""
        self._require_admin(role, "Forced abort")
        session = self._require(interaction_id, assessment_id)
        session.force_abort()
        self.store.remove(interaction_id, assessment_id)
        return SessionView.from_session(session, self.clock())

    def force_submit(self, interaction_id: str, assessment_id: str, role: Optional[str]) -> SessionView:
        """Score a session immediately, whatever its state, and remove it."""
        self._require_admin(role, "Forced submit")
        session = self._require(interaction_id, assessment_id)
        session.force_submit()
        self.store.remove(interaction_id, assessment_id)
        return SessionView.from_session(session, self.clock())

    def list_sessions(self, role: Optional[str]) -> List[SessionView]:
        self._require_admin(role, "Session listing")
        now = self.clock()
        return [SessionView.from_session(s, now) for s in self.store.snapshot()]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist_path(self) -> str:
        return os.path.join(self.settings.persist_dir, PERSIST_FILE)

    def persist(self, path: Optional[str] = None) -> int:
        return self.store.persist_all(path or self.persist_path())

    def restore(self, path: Optional[str] = None) -> int:
        return self.store.restore_all(path or self.persist_path(), self.build_session)
