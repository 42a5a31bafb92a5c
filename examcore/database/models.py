"""
Records Database Models

ORM models for completed attempts, their answers, outcome grants and
denials, student licenses, recovery snapshots, and configured mastery
scores.
"""

from sqlalchemy import (
    BigInteger, Boolean, Column, Float, ForeignKey, Index, Integer, JSON, String, UniqueConstraint
)
from sqlalchemy.orm import relationship

from examcore.database.base import ModelBase


class StudentExam(ModelBase):
    """One recorded completion of an assessment."""
    __tablename__ = "student_exams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False)
    version = Column(String(32), nullable=False)
    course = Column(String(32), nullable=True)
    unit = Column(Integer, nullable=True)
    assessment_type = Column(String(1), nullable=False, default="U")
    serial_number = Column(BigInteger, nullable=False)
    started_at = Column(Float, nullable=False)
    finished_at = Column(Float, nullable=False)
    score = Column(Integer, nullable=True)
    mastery = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=False, default=False)
    how_validated = Column(String(1), nullable=True)
    proctored = Column(Boolean, nullable=False, default=False)
    licensed = Column(Boolean, nullable=False, default=False)

    subtest_scores = Column(JSON, nullable=False, default=dict)
    grading_rules = Column(JSON, nullable=False, default=dict)
    grading_errors = Column(JSON, nullable=False, default=list)
    earned_placements = Column(JSON, nullable=False, default=list)
    earned_credits = Column(JSON, nullable=False, default=list)
    denied_placements = Column(JSON, nullable=False, default=dict)
    denied_credits = Column(JSON, nullable=False, default=dict)

    answers = relationship(
        "StudentAnswer",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="StudentAnswer.position",
    )

    __table_args__ = (
        UniqueConstraint("student_id", "version", "serial_number", "started_at", name="uq_student_exams_attempt"),
        Index("idx_student_exams_student_version", "student_id", "version"),
    )

    def __repr__(self):
        return (f"<StudentExam(student_id='{self.student_id}', version='{self.version}', "
                f"serial={self.serial_number}, score={self.score})>")


class StudentAnswer(ModelBase):
    """Bound answer for one item of a recorded completion."""
    __tablename__ = "student_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exam_id = Column(Integer, ForeignKey("student_exams.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    item_id = Column(Integer, nullable=False)
    template_id = Column(String(64), nullable=False)
    response = Column(JSON, nullable=True)
    answered = Column(Boolean, nullable=False, default=False)
    correct = Column(Boolean, nullable=False, default=False)
    score = Column(Float, nullable=False, default=0.0)
    auto_correct = Column(Boolean, nullable=False, default=False)

    exam = relationship("StudentExam", back_populates="answers")


class OutcomeGrantRecord(ModelBase):
    """An awarded or denied placement, credit, or license."""
    __tablename__ = "outcome_grants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False, index=True)
    version = Column(String(32), nullable=False)
    serial_number = Column(BigInteger, nullable=False)
    action = Column(String(16), nullable=False)
    course = Column(String(32), nullable=True)
    granted = Column(Boolean, nullable=False)
    how_validated = Column(String(1), nullable=True)
    denial_reason = Column(String(64), nullable=True)


class StudentLicense(ModelBase):
    __tablename__ = "student_licenses"

    student_id = Column(String(64), primary_key=True)
    version = Column(String(32), nullable=False)


class RecoveryRecord(ModelBase):
    """Crash-recovery copy of an attempt's responses."""
    __tablename__ = "recovery_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False, index=True)
    version = Column(String(32), nullable=False)
    serial_number = Column(BigInteger, nullable=False)
    started_at = Column(Float, nullable=False)
    snapshot_at = Column(Float, nullable=False)
    reason = Column(String(32), nullable=False)
    answers = Column(JSON, nullable=False, default=list)


class MasteryScore(ModelBase):
    """Mastery threshold for a course unit and assessment type."""
    __tablename__ = "mastery_scores"

    course = Column(String(32), primary_key=True)
    unit = Column(Integer, primary_key=True)
    assessment_type = Column(String(1), primary_key=True)
    mastery = Column(Integer, nullable=False)
