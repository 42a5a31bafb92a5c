"""
Scoring & Outcome Engine

Turns a completed realized document into a result record:

1. Recovery snapshot of the raw responses
2. Duplicate-submission guard against prior completions
3. Answer binding (response, correctness, score per item)
4. Weighted subtest scores, exposed as numeric formula variables
5. Grading rules in declaration order, with a default ``passed`` rule
6. Outcome rules: prerequisites, validations, and awarded actions
7. Completion record

Guest, practice, and test-student identities are scored for display but
nothing is written for them. Formula failures fail closed and are reported
as grading errors; storage failures become the session's grading error.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Union

from examcore.common.exceptions import AlreadySubmittedError, FormulaError, StorageError
from examcore.common.logger import app_logger
from examcore.config import Settings, get_settings
from examcore.assessments.document.formula import Value
from examcore.assessments.document.models import ActionType, AssessmentDocument, OutcomeRule
from examcore.assessments.document.realized import RealizedDocument
from examcore.assessments.document.xml_codec import document_to_string
from examcore.assessments.session.records import (
    DENIED_BY_PREREQUISITE,
    DENIED_BY_VALIDATION,
    AnswerRecord,
    OutcomeGrant,
    RecordsService,
    RecoveryAnswer,
    RecoverySnapshot,
    ResultRecord,
)

logger = app_logger.getChild("scoring")

Log = Union[logging.Logger, logging.LoggerAdapter]


@dataclass
class ScoringOutcome:
    """
    Result of one scoring pass.

    Attributes:
        record: The assembled result, or None when the attempt was already submitted
        error: Message to show as the session's grading error
        recorded: Whether the completion was written to the records store
        grants: Outcome grants and logged denials, in evaluation order
    """
    record: Optional[ResultRecord]
    error: Optional[str] = None
    recorded: bool = False
    grants: List[OutcomeGrant] = field(default_factory=list)


class ScoringEngine:
    """
    Scores realized documents and records the results.

    Args:
        records: Records capability
        settings: Policy settings; defaults to the process settings
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        records: RecordsService,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.records = records
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Realization support
    # ------------------------------------------------------------------

    def auto_correct_items(self, student_id: str, document: AssessmentDocument) -> Set[int]:
        """
        Items the student answered correctly on enough prior completions of this version.

        Such items are realized with an auto-correct template on the next attempt.
        """
        if not self.settings.repeat_leniency_enabled or not self.settings.is_recorded_student(student_id):
            return set()
        try:
            priors = self.records.query_prior_completions(student_id, document.version)
        except StorageError as e:
            logger.warning(f"Could not query prior completions of {document.version} for {student_id}: {e.message}")
            return set()

        counts: Counter = Counter()
        for prior in priors:
            counts.update(prior.correct_item_ids())
        threshold = self.settings.repeat_leniency_threshold
        return {item_id for item_id, count in counts.items() if count >= threshold}

    # ------------------------------------------------------------------
    # Scoring pipeline
    # ------------------------------------------------------------------

    def write_recovery(self, realized: RealizedDocument, student_id: str,
                       reason: str = "scoring", log: Optional[Log] = None) -> None:
        """Write a crash-recovery snapshot of the realized responses; failures are logged only."""
        log = log or logger
        snapshot = RecoverySnapshot(
            student_id=student_id,
            version=realized.version,
            serial_number=realized.serial_number,
            started_at=realized.realized_at,
            created_at=self.clock(),
            reason=reason,
            answers=[
                RecoveryAnswer(
                    item_id=item.item_id,
                    template_id=item.template.template_id,
                    response=list(item.response) if item.response is not None else None,
                )
                for item in realized.items
            ],
        )
        try:
            self.records.record_recovery(snapshot)
        except StorageError as e:
            log.warning(f"Unable to write recovery snapshot: {e.message}")

    def score(self, realized: RealizedDocument, student_id: str,
              log: Optional[Log] = None, proctored: bool = False) -> ScoringOutcome:
        """
        Run the scoring pipeline once for a realized document.

        Args:
            realized: Realized document holding the student's responses
            student_id: Student whose attempt is scored
            log: Exam log for the session; module logger if omitted
            proctored: Value of the ``proctored`` formula variable

        Returns:
            ScoringOutcome describing what was computed and recorded
        """
        log = log or logger
        document = realized.document
        log.info("Scoring and recording completion")

        self.write_recovery(realized, student_id, log=log)

        if realized.completed_at is None:
            realized.completed_at = self.clock()

        unrecorded = self.settings.unrecorded_reason(student_id)

        if unrecorded is None:
            try:
                self._check_duplicate(realized, student_id)
            except AlreadySubmittedError as e:
                log.warning(e.message)
                return ScoringOutcome(record=None, error=e.message)
            except StorageError as e:
                log.error(f"Duplicate check failed, scoring anyway: {e.message}")

        record = ResultRecord(
            student_id=student_id,
            version=document.version,
            course=document.course,
            unit=document.unit,
            assessment_type=document.assessment_type.value,
            serial_number=realized.serial_number,
            started_at=realized.realized_at,
            finished_at=realized.completed_at,
            proctored=proctored,
        )
        env: Dict[str, Value] = {"proctored": proctored}

        self._bind_answers(realized, record)
        self._score_subtests(realized, record, env)
        record.mastery = self._mastery(student_id, document, unrecorded is None)
        self._evaluate_grading_rules(document, record, env, log)
        grants = self._evaluate_outcomes(document, record, env, student_id, realized.serial_number, log)

        if unrecorded is not None:
            log.info(unrecorded)
            return ScoringOutcome(record=record, error=unrecorded, grants=grants)

        # Storage failures are collected; the completion is always attempted exactly once
        storage_errors: List[str] = []
        for grant in grants:
            try:
                self.records.apply_outcome(student_id, grant)
            except StorageError as e:
                log.error(f"Failed to apply {grant.action} outcome for {grant.course}: {e.message}")
                storage_errors.append(e.message)

        recorded = False
        try:
            self.records.record_completion(record)
            recorded = True
        except StorageError as e:
            log.error(f"Failed to record completion: {e.message}")
            storage_errors.append(e.message)

        error = None
        if storage_errors:
            error = storage_errors[0]
        elif record.grading_errors:
            error = f"Grading error: {record.grading_errors[0]}"
        if recorded:
            log.info(f"Recorded completion: score={record.score} mastery={record.mastery} passed={record.passed}")
        return ScoringOutcome(record=record, error=error, recorded=recorded, grants=grants)

    def _check_duplicate(self, realized: RealizedDocument, student_id: str) -> None:
        for prior in self.records.query_prior_completions(student_id, realized.version):
            if prior.serial_number == realized.serial_number and prior.started_at == realized.realized_at:
                raise AlreadySubmittedError(realized.serial_number)

    def _bind_answers(self, realized: RealizedDocument, record: ResultRecord) -> None:
        for item in realized.items:
            item.bind()
            record.answers.append(AnswerRecord(
                item_id=item.item_id,
                template_id=item.template.template_id,
                response=list(item.response) if item.response is not None else None,
                answered=item.answered,
                correct=bool(item.correct),
                score=item.score or 0.0,
                auto_correct=item.auto_correct,
            ))

    def _score_subtests(self, realized: RealizedDocument, record: ResultRecord, env: Dict[str, Value]) -> None:
        by_id = realized.by_id()
        for subtest in realized.document.subtests:
            total = 0.0
            for ref in subtest.items:
                item = by_id.get(ref.item_id)
                if item is not None and item.correct:
                    total += (item.score or 0.0) * ref.weight
            score = int(total)
            record.subtest_scores[subtest.name] = score
            env[subtest.name] = float(score)
        record.score = record.subtest_scores.get("score")

    def _mastery(self, student_id: str, document: AssessmentDocument, recorded: bool) -> Optional[int]:
        if recorded:
            try:
                mastery = self.records.query_mastery_score(student_id, document)
            except StorageError as e:
                logger.warning(f"Mastery lookup failed for {document.version}: {e.message}")
                mastery = None
            if mastery is not None:
                return mastery
        return document.mastery_score

    def _evaluate_grading_rules(self, document: AssessmentDocument, record: ResultRecord,
                                env: Dict[str, Value], log: Log) -> None:
        # Default "passed" rule; an explicit rule of the same name replaces it below
        if record.score is not None and record.mastery is not None:
            env["passed"] = record.score >= record.mastery
            record.grading_rules["passed"] = env["passed"]

        for rule in document.grading_rules:
            passed = False
            for condition in rule.conditions:
                try:
                    if condition.evaluate_bool(env):
                        passed = True
                        break
                except FormulaError as e:
                    message = f"rule '{rule.name}' [{condition.source}]: {e.message}"
                    record.grading_errors.append(message)
                    log.error(f"Error evaluating grading {message}\n{document_to_string(document)}")
                    break
            env[rule.name] = passed
            record.grading_rules[rule.name] = passed

        record.passed = env.get("passed") is True

    def _evaluate_outcomes(self, document: AssessmentDocument, record: ResultRecord, env: Dict[str, Value],
                           student_id: str, serial_number: int, log: Log) -> List[OutcomeGrant]:
        grants: List[OutcomeGrant] = []
        valid_by: Optional[str] = None

        for outcome in document.outcomes:
            try:
                if not outcome.condition.evaluate_bool(env):
                    continue
            except FormulaError as e:
                log.warning(f"Error evaluating outcome [{outcome.condition.source}]: {e.message}\n"
                            f"{document_to_string(document)}")
                continue

            why_deny, how_valid = self._check_outcome(outcome, env, document, log)
            if how_valid is not None:
                valid_by = how_valid

            granted = why_deny is None
            if why_deny == DENIED_BY_VALIDATION and self.settings.grant_unvalidated_outcomes:
                granted = True
                how_valid = self.settings.unvalidated_code
                valid_by = how_valid

            for action in outcome.actions:
                grant = OutcomeGrant(
                    student_id=student_id,
                    version=document.version,
                    serial_number=serial_number,
                    action=action.action_type.value,
                    course=action.course,
                    granted=granted,
                    how_validated=how_valid if granted else None,
                    denial_reason=why_deny,
                )
                if action.action_type == ActionType.PLACEMENT:
                    if granted and action.course not in record.earned_placements:
                        record.earned_placements.append(action.course)
                    if why_deny is not None and outcome.log_denial:
                        record.denied_placements.setdefault(action.course, why_deny)
                    if granted or outcome.log_denial:
                        grants.append(grant)
                elif action.action_type == ActionType.CREDIT:
                    if granted and action.course not in record.earned_credits:
                        record.earned_credits.append(action.course)
                    if why_deny is not None and (granted or outcome.log_denial):
                        record.denied_credits.setdefault(action.course, why_deny)
                    if granted or outcome.log_denial:
                        grants.append(grant)
                elif action.action_type == ActionType.LICENSED and granted:
                    record.licensed = True
                    grants.append(grant)

        record.how_validated = valid_by
        return grants

    def _check_outcome(self, outcome: OutcomeRule, env: Dict[str, Value],
                       document: AssessmentDocument, log: Log):
        """Return (denial reason, how-validated code) for an outcome whose condition holds."""
        for prereq in outcome.prerequisites:
            try:
                if not prereq.evaluate_bool(env):
                    return DENIED_BY_PREREQUISITE, None
            except FormulaError as e:
                log.error(f"Outcome prerequisite [{prereq.source}] failed: {e.message}\n"
                          f"{document_to_string(document)}")
                return DENIED_BY_PREREQUISITE, None

        for validation in outcome.validations:
            try:
                if validation.formula.evaluate_bool(env):
                    return None, validation.how_validated
            except FormulaError as e:
                log.error(f"Validation formula [{validation.formula.source}] failed: {e.message}\n"
                          f"{document_to_string(document)}")

        return DENIED_BY_VALIDATION, None
