"""
Session Store

Process-wide registry of live assessment sessions, keyed by
(interaction, assessment), with a secondary index by student and one-time
codes that let a proctoring integration find an interaction.

All structural changes happen under one re-entrant lock. Work that can be
slow (file I/O, scoring purged sessions) happens after the lock is released
on a detached copy, so request threads are never blocked behind it.
"""

import os
import random
import string
import threading
import time
from typing import Callable, Dict, List, Optional

from examcore.common.exceptions import PersistenceError
from examcore.common.logger import app_logger, log_execution_time
from examcore.config import Settings, get_settings
from examcore.assessments.session.session import AssessmentSession
from examcore.assessments.store.persistence import (
    SessionFactory,
    decode_all,
    encode_session,
    read_sessions,
    write_sessions,
)

logger = app_logger.getChild("store")

# Unambiguous characters for proctoring codes (no 0/O, 1/I)
CODE_ALPHABET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "0O1I")


class SessionStore:
    """
    Concurrency-safe registry of live sessions.

    Args:
        settings: Timing settings (retention, code length, prune interval)
        clock: Time source returning epoch seconds
        is_live: Liveness check for an interaction, used when pruning codes;
            defaults to "the interaction still has a session in the store"
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        is_live: Optional[Callable[[str], bool]] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self._is_live = is_live
        self._lock = threading.RLock()
        self._sessions: Dict[str, Dict[str, AssessmentSession]] = {}
        self._by_student: Dict[str, str] = {}
        self._codes: Dict[str, str] = {}
        self._code_by_interaction: Dict[str, str] = {}
        self._last_prune = 0.0
        self._random = random.SystemRandom()

    # ------------------------------------------------------------------
    # Primary map
    # ------------------------------------------------------------------

    def get(self, interaction_id: str, assessment_id: str) -> Optional[AssessmentSession]:
        with self._lock:
            return self._sessions.get(interaction_id, {}).get(assessment_id)

    def put(self, session: AssessmentSession) -> bool:
        """
        Register a session, replacing any session with the same identity.

        Returns:
            False (and nothing is stored) if the session has already expired
        """
        if session.is_timed_out(self.clock()):
            session.log.info("Not storing expired session")
            return False
        with self._lock:
            self._sessions.setdefault(session.interaction_id, {})[session.assessment_id] = session
            self._by_student[session.student_id] = session.interaction_id
        return True

    def remove(self, interaction_id: str, assessment_id: str) -> Optional[AssessmentSession]:
        """Remove one session; indexes that only pointed at it are dropped too."""
        with self._lock:
            return self._detach(interaction_id, assessment_id)

    def _detach(self, interaction_id: str, assessment_id: str) -> Optional[AssessmentSession]:
        by_assessment = self._sessions.get(interaction_id)
        if not by_assessment:
            return None
        session = by_assessment.pop(assessment_id, None)
        if not by_assessment:
            del self._sessions[interaction_id]
            code = self._code_by_interaction.pop(interaction_id, None)
            if code is not None:
                self._codes.pop(code, None)
        if session is not None and self._by_student.get(session.student_id) == interaction_id \
                and interaction_id not in self._sessions:
            fallback = self._latest_interaction_of(session.student_id)
            if fallback is None:
                del self._by_student[session.student_id]
            else:
                self._by_student[session.student_id] = fallback
        return session

    def _latest_interaction_of(self, student_id: str) -> Optional[str]:
        for interaction_id in reversed(list(self._sessions)):
            if any(s.student_id == student_id for s in self._sessions[interaction_id].values()):
                return interaction_id
        return None

    def sessions_for(self, interaction_id: str) -> List[AssessmentSession]:
        with self._lock:
            return list(self._sessions.get(interaction_id, {}).values())

    def snapshot(self) -> List[AssessmentSession]:
        """Copy of every live session, for administrative listings."""
        with self._lock:
            return [s for by_assessment in self._sessions.values() for s in by_assessment.values()]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(by_assessment) for by_assessment in self._sessions.values())

    # ------------------------------------------------------------------
    # Secondary lookups
    # ------------------------------------------------------------------

    def lookup_by_student(self, student_id: str) -> Optional[str]:
        """Most recent interaction that stored a session for the student."""
        with self._lock:
            return self._by_student.get(student_id)

    def issue_code(self, interaction_id: str) -> str:
        """
        Return the one-time code for an interaction, generating it on first request.

        Codes whose interaction is no longer live are pruned first, at most
        once per prune interval.
        """
        with self._lock:
            self._prune_codes()
            code = self._code_by_interaction.get(interaction_id)
            if code is not None:
                return code

            length = self.settings.code_length
            code = "".join(self._random.choice(CODE_ALPHABET) for _ in range(length))
            while code in self._codes:
                code = "".join(self._random.choice(CODE_ALPHABET) for _ in range(length))

            self._codes[code] = interaction_id
            self._code_by_interaction[interaction_id] = code
            logger.info(f"Issued code {code} for interaction {interaction_id}")
            return code

    def lookup_code(self, code: str) -> Optional[str]:
        with self._lock:
            return self._codes.get(code.strip().upper())

    def _interaction_live(self, interaction_id: str) -> bool:
        if interaction_id in self._sessions:
            return True
        return self._is_live(interaction_id) if self._is_live is not None else False

    def _prune_codes(self) -> None:
        now = self.clock()
        if now - self._last_prune < self.settings.code_prune_interval_seconds:
            return
        self._last_prune = now
        stale = [code for code, interaction in self._codes.items() if not self._interaction_live(interaction)]
        for code in stale:
            interaction = self._codes.pop(code)
            self._code_by_interaction.pop(interaction, None)
        if stale:
            logger.debug(f"Pruned {len(stale)} proctoring codes")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @log_execution_time(logger)
    def persist_all(self, destination: str) -> int:
        """
        Write every live, unexpired session to ``destination``.

        Returns:
            Number of sessions written
        """
        now = self.clock()
        elements = []
        with self._lock:
            for session in self.snapshot():
                if session.is_timed_out(now) or session.realized is None:
                    continue
                try:
                    elements.append(encode_session(session))
                except PersistenceError as e:
                    session.log.error(f"Unable to persist session: {e.message}")

        directory = os.path.dirname(destination)
        if directory:
            os.makedirs(directory, exist_ok=True)
        temp = f"{destination}.tmp"
        write_sessions(elements, temp)
        os.replace(temp, destination)
        logger.info(f"Persisted {len(elements)} sessions to {destination}")
        return len(elements)

    @log_execution_time(logger)
    def restore_all(self, source: str, factory: SessionFactory) -> int:
        """
        Load sessions written by persist_all; the file is then renamed to ``.bak``.

        A malformed record is logged and skipped without affecting the others.
        Sessions that expired while the process was down are purged instead
        of stored: attempts in progress are scored, the rest leave a recovery
        snapshot.

        Returns:
            Number of sessions restored
        """
        if not os.path.exists(source):
            logger.info(f"No persisted sessions at {source}")
            return 0

        try:
            elements = read_sessions(source)
        except PersistenceError as e:
            logger.error(e.message)
            elements = []
        sessions = decode_all(elements, factory)

        restored = 0
        expired = []
        with self._lock:
            for session in sessions:
                if self.put(session):
                    restored += 1
                else:
                    expired.append(session)

        now = self.clock()
        for session in expired:
            try:
                session.purge(now)
            except Exception as e:
                session.log.error(f"Error while purging restored session: {e}", exc_info=True)

        os.replace(source, f"{source}.bak")
        logger.info(f"Restored {restored} of {len(elements)} persisted sessions from {source}"
                    f" ({len(expired)} expired)")
        return restored

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    @log_execution_time(logger)
    def purge_expired(self, now: Optional[float] = None) -> List[AssessmentSession]:
        """
        Remove every session past its expiry plus the retention period.

        Sessions with an attempt in progress are scored; other unscored
        sessions leave a recovery snapshot.

        Returns:
            The purged sessions
        """
        now = self.clock() if now is None else now
        with self._lock:
            purged = [s for s in self.snapshot() if s.is_purgeable(now)]
            for session in purged:
                self._detach(session.interaction_id, session.assessment_id)

        for session in purged:
            try:
                session.purge(now)
            except Exception as e:
                session.log.error(f"Error while purging session: {e}", exc_info=True)

        if purged:
            logger.info(f"Purged {len(purged)} expired sessions")
        return purged
