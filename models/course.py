from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from models.base import Base, TimestampMixin


class Module(Base, TimestampMixin):
    """A course module; quizzes gate the move from one module to the next."""
    __tablename__ = "modules"

    id = Column(Integer, primary_key=True)
    course_id = Column(Integer, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    position = Column(Integer, nullable=False, default=0)


class EnrollmentStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    # Statuses that may still take quizzes
    OPEN = (ACTIVE, COMPLETED)


class Enrollment(Base, TimestampMixin):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True)
    student_id = Column(BigInteger, index=True, nullable=False)
    course_id = Column(Integer, index=True, nullable=False)
    status = Column(String(20), default=EnrollmentStatus.ACTIVE, nullable=False)


class ModuleProgress(Base, TimestampMixin):
    __tablename__ = "module_progress"
    __table_args__ = (
        UniqueConstraint("enrollment_id", "module_id", name="uq_progress_enrollment_module"),
    )

    id = Column(Integer, primary_key=True)
    enrollment_id = Column(Integer, ForeignKey("enrollments.id"), index=True, nullable=False)
    module_id = Column(Integer, ForeignKey("modules.id"), index=True, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
