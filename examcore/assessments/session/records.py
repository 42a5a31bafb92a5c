"""
Records Capability

Models exchanged with the external records store, the capability protocols
the session engine consumes (eligibility and records), and in-memory
implementations used by tests and single-process deployments.
"""

import threading
import time
from typing import Dict, List, Optional, Protocol, Set, runtime_checkable

from pydantic import BaseModel, Field

from examcore.common.logger import app_logger
from examcore.assessments.document.models import AssessmentDocument

logger = app_logger.getChild("records")

DENIED_BY_PREREQUISITE = "prerequisite"
DENIED_BY_VALIDATION = "no validation path"


class AnswerRecord(BaseModel):
    """Bound answer for one item of a completed attempt."""
    item_id: int
    template_id: str
    response: Optional[List[str]] = None
    answered: bool = False
    correct: bool = False
    score: float = 0.0
    auto_correct: bool = False


class ResultRecord(BaseModel):
    """Everything recorded about one completed attempt."""
    student_id: str
    version: str
    course: Optional[str] = None
    unit: Optional[int] = None
    assessment_type: str = "U"
    serial_number: int
    started_at: float
    finished_at: float
    score: Optional[int] = None
    mastery: Optional[int] = None
    passed: bool = False
    answers: List[AnswerRecord] = Field(default_factory=list)
    subtest_scores: Dict[str, int] = Field(default_factory=dict)
    grading_rules: Dict[str, bool] = Field(default_factory=dict)
    grading_errors: List[str] = Field(default_factory=list)
    earned_placements: List[str] = Field(default_factory=list)
    earned_credits: List[str] = Field(default_factory=list)
    denied_placements: Dict[str, str] = Field(default_factory=dict)
    denied_credits: Dict[str, str] = Field(default_factory=dict)
    licensed: bool = False
    how_validated: Optional[str] = None
    proctored: bool = False

    def correct_item_ids(self) -> Set[int]:
        return {answer.item_id for answer in self.answers if answer.correct}


class OutcomeGrant(BaseModel):
    """One awarded (or denied) outcome action."""
    student_id: str
    version: str
    serial_number: int
    action: str
    course: Optional[str] = None
    granted: bool = True
    how_validated: Optional[str] = None
    denial_reason: Optional[str] = None


class RecoveryAnswer(BaseModel):
    item_id: int
    template_id: str
    response: Optional[List[str]] = None


class RecoverySnapshot(BaseModel):
    """Crash-recovery copy of an attempt's responses, written before scoring."""
    student_id: str
    version: str
    serial_number: int
    started_at: float
    created_at: float = Field(default_factory=time.time)
    reason: str = "scoring"
    answers: List[RecoveryAnswer] = Field(default_factory=list)


class EligibilityResult(BaseModel):
    allowed: bool
    reasons: List[str] = Field(default_factory=list)
    holds: List[str] = Field(default_factory=list)
    time_limit_factor: Optional[float] = Field(default=None, gt=0)


@runtime_checkable
class EligibilityChecker(Protocol):
    def check_eligible(self, student_id: str, document: AssessmentDocument, now: float) -> EligibilityResult:
        ...


@runtime_checkable
class RecordsService(Protocol):
    """
    Records capability consumed by the scoring pipeline.

    ``record_completion``, ``apply_outcome`` and ``record_recovery`` raise
    StorageError when the record cannot be written.
    """

    def record_completion(self, record: ResultRecord) -> None:
        ...

    def query_prior_completions(self, student_id: str, version: str) -> List[ResultRecord]:
        ...

    def apply_outcome(self, student_id: str, grant: OutcomeGrant) -> None:
        ...

    def record_recovery(self, snapshot: RecoverySnapshot) -> None:
        ...

    def query_mastery_score(self, student_id: str, document: AssessmentDocument) -> Optional[int]:
        ...


class AllowAllEligibility:
    """Eligibility checker that admits every student."""

    def __init__(self, time_limit_factor: Optional[float] = None):
        self.time_limit_factor = time_limit_factor

    def check_eligible(self, student_id: str, document: AssessmentDocument, now: float) -> EligibilityResult:
        return EligibilityResult(allowed=True, time_limit_factor=self.time_limit_factor)


class InMemoryRecordsService:
    """
    Records service holding everything in process memory.

    Args:
        mastery_scores: Per-version mastery overrides returned by query_mastery_score
    """

    def __init__(self, mastery_scores: Optional[Dict[str, int]] = None):
        self._lock = threading.RLock()
        self.completions: List[ResultRecord] = []
        self.outcomes: List[OutcomeGrant] = []
        self.recoveries: List[RecoverySnapshot] = []
        self.licensed: Set[str] = set()
        self.mastery_scores: Dict[str, int] = dict(mastery_scores or {})

    def record_completion(self, record: ResultRecord) -> None:
        with self._lock:
            self.completions.append(record.model_copy(deep=True))
        logger.debug(f"Recorded completion {record.serial_number} for {record.student_id}")

    def query_prior_completions(self, student_id: str, version: str) -> List[ResultRecord]:
        with self._lock:
            return [r for r in self.completions if r.student_id == student_id and r.version == version]

    def apply_outcome(self, student_id: str, grant: OutcomeGrant) -> None:
        with self._lock:
            self.outcomes.append(grant)
            if grant.action == "licensed" and grant.granted:
                self.licensed.add(student_id)

    def record_recovery(self, snapshot: RecoverySnapshot) -> None:
        with self._lock:
            self.recoveries.append(snapshot)

    def query_mastery_score(self, student_id: str, document: AssessmentDocument) -> Optional[int]:
        with self._lock:
            return self.mastery_scores.get(document.version)
