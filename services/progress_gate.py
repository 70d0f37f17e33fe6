from dataclasses import dataclass
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from models.attempt import Attempt
from models.course import Module, ModuleProgress
from models.quiz import Quiz
from models.base import utcnow
from core.config import settings
from core.exceptions import InvalidState
from core.logger import logger
from services.events import ProgressEvents


@dataclass(frozen=True)
class ProgressDecision:
    passed: bool
    module_unlocked: bool
    next_module_id: Optional[int]
    retry_available: bool
    attempts_used: int
    attempts_remaining: Optional[int]  # None means unlimited


# Default for max_attempts: read the cap from settings. An explicit None means unlimited.
CONFIGURED_CAP = object()


def retry_allowed(attempts_used: int, max_attempts: Optional[int]) -> bool:
    return max_attempts is None or attempts_used < max_attempts


def attempts_remaining(attempts_used: int, max_attempts: Optional[int]) -> Optional[int]:
    if max_attempts is None:
        return None
    return max(0, max_attempts - attempts_used)


class ProgressGate:
    """Turns a graded attempt into a progression decision.

    A pass completes the quiz's module and unlocks the next one; it is final,
    so no retry is offered afterwards. A fail offers a retry until the
    configured attempt cap, if any, is used up.
    """

    def __init__(self, db: AsyncSession, events: Optional[ProgressEvents] = None, max_attempts=CONFIGURED_CAP):
        self.db = db
        self.events = events or ProgressEvents()
        self.max_attempts: Optional[int] = (
            settings.MAX_ATTEMPTS_PER_QUIZ if max_attempts is CONFIGURED_CAP else max_attempts
        )

    async def next_module_id(self, module_id: int) -> Optional[int]:
        module = await self.db.get(Module, module_id)
        if not module:
            return None
        result = await self.db.execute(
            select(Module.id)
            .filter(
                Module.course_id == module.course_id,
                (Module.position > module.position)
                | ((Module.position == module.position) & (Module.id > module.id)),
            )
            .order_by(Module.position, Module.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_attempts(self, quiz_id: int, enrollment_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Attempt.id)).filter(
                Attempt.quiz_id == quiz_id, Attempt.enrollment_id == enrollment_id
            )
        )
        return result.scalar()

    async def evaluate(self, attempt: Attempt, emit: bool = True) -> ProgressDecision:
        """Decide what a graded attempt means for progression.

        With ``emit`` the module completion is recorded and events are
        published; without it the decision is only computed, which is what
        repeated finalize calls and result lookups use.
        """
        if not attempt.is_graded:
            raise InvalidState(f"Attempt {attempt.id} is not graded yet")

        quiz = await self.db.get(Quiz, attempt.quiz_id)
        attempts_used = await self.count_attempts(attempt.quiz_id, attempt.enrollment_id)

        if attempt.passed:
            decision = ProgressDecision(
                passed=True,
                module_unlocked=True,
                next_module_id=await self.next_module_id(quiz.module_id),
                retry_available=False,
                attempts_used=attempts_used,
                attempts_remaining=0,
            )
        else:
            decision = ProgressDecision(
                passed=False,
                module_unlocked=False,
                next_module_id=None,
                retry_available=retry_allowed(attempts_used, self.max_attempts),
                attempts_used=attempts_used,
                attempts_remaining=attempts_remaining(attempts_used, self.max_attempts),
            )

        if emit:
            if decision.passed:
                await self._complete_module(attempt.enrollment_id, quiz.module_id)
                await self.events.module_unlocked(
                    attempt.enrollment_id, quiz.module_id, decision.next_module_id, attempt.id
                )
            await self.events.attempt_graded(
                attempt.id,
                attempt.enrollment_id,
                attempt.quiz_id,
                attempt.score,
                attempt.passed,
                decision.retry_available,
            )
            logger.info(
                "Progress evaluated",
                attempt_id=attempt.id,
                passed=decision.passed,
                next_module_id=decision.next_module_id,
                retry_available=decision.retry_available,
            )
        return decision

    async def _complete_module(self, enrollment_id: int, module_id: int) -> None:
        result = await self.db.execute(
            select(ModuleProgress).filter(
                ModuleProgress.enrollment_id == enrollment_id, ModuleProgress.module_id == module_id
            )
        )
        progress = result.scalar_one_or_none()
        if not progress:
            progress = ModuleProgress(enrollment_id=enrollment_id, module_id=module_id)
            self.db.add(progress)
        if not progress.completed:
            progress.completed = True
            progress.completed_at = utcnow()
        await self.db.commit()
