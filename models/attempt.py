from sqlalchemy import (
    Column, Integer, Boolean, DateTime, JSON, String, ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin


class AttemptStatus:
    IN_PROGRESS = "in_progress"
    # Closed but not scored yet; finalize still grades rows left in this state
    SUBMITTED = "submitted"
    GRADED = "graded"
    UNGRADED = (IN_PROGRESS, SUBMITTED)


class Attempt(Base, TimestampMixin):
    __tablename__ = "attempts"
    __table_args__ = (
        UniqueConstraint("quiz_id", "enrollment_id", "attempt_number", name="uq_attempt_number"),
        # At most one open attempt per (quiz, enrollment)
        Index(
            "uq_attempt_in_progress",
            "quiz_id",
            "enrollment_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), index=True, nullable=False)
    enrollment_id = Column(Integer, ForeignKey("enrollments.id"), index=True, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    status = Column(String(20), default=AttemptStatus.IN_PROGRESS, nullable=False)

    started_at = Column(DateTime, nullable=False)
    deadline = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    graded_at = Column(DateTime, nullable=True)

    score = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=True)
    earned_points = Column(Integer, nullable=True)
    total_points = Column(Integer, nullable=True)
    correct_count = Column(Integer, nullable=True)
    question_count = Column(Integer, nullable=True)

    # Seeds the per-attempt question order when the quiz shuffles
    shuffle_seed = Column(Integer, nullable=False, default=0)

    quiz = relationship("Quiz")
    answers = relationship("Answer", back_populates="attempt")

    @property
    def is_graded(self) -> bool:
        return self.status == AttemptStatus.GRADED


class Answer(Base, TimestampMixin):
    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    id = Column(Integer, primary_key=True)
    attempt_id = Column(Integer, ForeignKey("attempts.id"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id"), index=True, nullable=False)
    selected_option_ids = Column(JSON, nullable=False)

    attempt = relationship("Attempt", back_populates="answers")
