"""
Assessment Sessions

The per-attempt state machine, the scoring and outcome engine, the records
and eligibility capabilities it consumes, and the service layer that request
handlers drive.
"""

from examcore.assessments.session.actions import Action, ActionKind, parse_action
from examcore.assessments.session.states import (
    Completed,
    Initial,
    Instructions,
    Item,
    SessionState,
    Solution,
    SubmitConfirm,
)
from examcore.assessments.session.records import (
    AllowAllEligibility,
    EligibilityChecker,
    EligibilityResult,
    InMemoryRecordsService,
    OutcomeGrant,
    RecordsService,
    RecoverySnapshot,
    ResultRecord,
)
from examcore.assessments.session.scoring import ScoringEngine, ScoringOutcome
from examcore.assessments.session.presentation import SessionView
from examcore.assessments.session.session import AssessmentSession

__all__ = [
    "Action",
    "ActionKind",
    "parse_action",
    "Completed",
    "Initial",
    "Instructions",
    "Item",
    "SessionState",
    "Solution",
    "SubmitConfirm",
    "AllowAllEligibility",
    "EligibilityChecker",
    "EligibilityResult",
    "InMemoryRecordsService",
    "OutcomeGrant",
    "RecordsService",
    "RecoverySnapshot",
    "ResultRecord",
    "ScoringEngine",
    "ScoringOutcome",
    "SessionView",
    "AssessmentSession",
]
