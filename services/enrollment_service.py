from sqlalchemy.ext.asyncio import AsyncSession
from models.course import Enrollment, EnrollmentStatus, Module
from models.quiz import Quiz
from core.exceptions import NotEnrolled
from core.logger import logger

class EnrollmentService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def ensure_enrolled(self, enrollment_id: int, quiz: Quiz) -> Enrollment:
        """Return the enrollment if it is open and belongs to the quiz's course."""
        enrollment = await self.db.get(Enrollment, enrollment_id)
        module = await self.db.get(Module, quiz.module_id)

        if (
            not enrollment
            or not module
            or enrollment.status not in EnrollmentStatus.OPEN
            or enrollment.course_id != module.course_id
        ):
            logger.warning("Enrollment rejected", enrollment_id=enrollment_id, quiz_id=quiz.id)
            raise NotEnrolled(f"Enrollment {enrollment_id} does not cover quiz {quiz.id}")
        return enrollment
