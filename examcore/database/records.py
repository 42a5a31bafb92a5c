"""
SQL Records Service

Implements the records capability on the records database. Every database
failure is reported as a StorageError so the scoring pipeline can surface it
as a grading error without knowing about SQLAlchemy.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from examcore.common.exceptions import StorageError
from examcore.common.logger import app_logger
from examcore.assessments.document.models import AssessmentDocument
from examcore.assessments.session.records import (
    AnswerRecord,
    OutcomeGrant,
    RecoverySnapshot,
    ResultRecord,
)
from examcore.database.models import (
    MasteryScore,
    OutcomeGrantRecord,
    RecoveryRecord,
    StudentAnswer,
    StudentExam,
    StudentLicense,
)
from examcore.database.session import session_scope

logger = app_logger.getChild("db.records")


class SqlRecordsService:
    """
    Records capability backed by SQLAlchemy.

    Args:
        session_factory: Factory producing database sessions
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record_completion(self, record: ResultRecord) -> None:
        exam = StudentExam.from_dict(record.model_dump(exclude={"answers"}))
        exam.answers = [
            StudentAnswer.from_dict({**answer.model_dump(), "position": position})
            for position, answer in enumerate(record.answers)
        ]
        try:
            with session_scope(self.session_factory) as session:
                session.add(exam)
        except SQLAlchemyError as e:
            raise StorageError(f"unable to record completion of {record.version} for {record.student_id}", e)
        logger.info(f"Recorded {record.version} completion {record.serial_number} for {record.student_id}")

    def query_prior_completions(self, student_id: str, version: str) -> List[ResultRecord]:
        statement = (
            select(StudentExam)
            .where(StudentExam.student_id == student_id, StudentExam.version == version)
            .options(selectinload(StudentExam.answers))
            .order_by(StudentExam.finished_at)
        )
        try:
            with session_scope(self.session_factory) as session:
                exams = session.scalars(statement).all()
                return [self._to_record(exam) for exam in exams]
        except SQLAlchemyError as e:
            raise StorageError(f"unable to query completions of {version} for {student_id}", e)

    @staticmethod
    def _to_record(exam: StudentExam) -> ResultRecord:
        data = exam.to_dict()
        data["answers"] = [
            AnswerRecord(**answer.to_dict(exclude=("id", "created_at", "exam_id", "position")))
            for answer in exam.answers
        ]
        return ResultRecord(**data)

    def apply_outcome(self, student_id: str, grant: OutcomeGrant) -> None:
        try:
            with session_scope(self.session_factory) as session:
                session.add(OutcomeGrantRecord.from_dict(grant.model_dump()))
                if grant.action == "licensed" and grant.granted \
                        and session.get(StudentLicense, student_id) is None:
                    session.add(StudentLicense(student_id=student_id, version=grant.version))
        except SQLAlchemyError as e:
            raise StorageError(f"unable to apply {grant.action} outcome for {student_id}", e)

    def record_recovery(self, snapshot: RecoverySnapshot) -> None:
        row = RecoveryRecord(
            student_id=snapshot.student_id,
            version=snapshot.version,
            serial_number=snapshot.serial_number,
            started_at=snapshot.started_at,
            snapshot_at=snapshot.created_at,
            reason=snapshot.reason,
            answers=[answer.model_dump() for answer in snapshot.answers],
        )
        try:
            with session_scope(self.session_factory) as session:
                session.add(row)
        except SQLAlchemyError as e:
            raise StorageError(f"unable to write recovery snapshot for {snapshot.student_id}", e)

    def query_mastery_score(self, student_id: str, document: AssessmentDocument) -> Optional[int]:
        if document.course is None or document.unit is None:
            return None
        try:
            with session_scope(self.session_factory) as session:
                row = session.get(MasteryScore, (document.course, document.unit, document.assessment_type.value))
                return row.mastery if row is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"unable to look up mastery for {document.version}", e)

    def is_licensed(self, student_id: str) -> bool:
        try:
            with session_scope(self.session_factory) as session:
                return session.get(StudentLicense, student_id) is not None
        except SQLAlchemyError as e:
            raise StorageError(f"unable to look up license for {student_id}", e)

    def set_mastery_score(self, course: str, unit: int, assessment_type: str, mastery: int) -> None:
        try:
            with session_scope(self.session_factory) as session:
                session.merge(MasteryScore(course=course, unit=unit, assessment_type=assessment_type,
                                           mastery=mastery))
        except SQLAlchemyError as e:
            raise StorageError(f"unable to set mastery for {course} unit {unit}", e)
