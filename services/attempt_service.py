import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from models.attempt import Attempt, Answer, AttemptStatus
from models.quiz import Question, QuestionKind
from core.exceptions import (
    AssessmentError,
    AttemptAlreadyInProgress,
    AttemptNotFound,
    InvalidOption,
    InvalidState,
    QuizAlreadyPassed,
    RetryLimitReached,
)
from core.logger import logger
from services import scoring
from services.enrollment_service import EnrollmentService
from services.events import ProgressEvents
from services.progress_gate import CONFIGURED_CAP, ProgressGate, ProgressDecision, retry_allowed
from services.question_bank import QuestionBankService
from services.time_limit import compute_deadline, ensure_open, is_expired, seconds_remaining, utcnow


@dataclass
class AttemptSession:
    """An open attempt as the student sees it."""
    attempt: Attempt
    quiz: Dict
    answers: Dict[int, List[int]] = field(default_factory=dict)
    resumed: bool = False

    @property
    def seconds_remaining(self) -> Optional[int]:
        return seconds_remaining(self.attempt.deadline, utcnow())


@dataclass
class FinalizeOutcome:
    attempt: Attempt
    transitioned: bool
    decision: ProgressDecision


@dataclass
class AttemptResult:
    attempt: Attempt
    passing_score: int
    decision: Optional[ProgressDecision]
    # question id -> answered correctly; empty until graded
    breakdown: Dict[int, bool] = field(default_factory=dict)


class AttemptService:
    """Runs attempts from in_progress to graded.

    Two writes need to be atomic against concurrent requests: creating an
    attempt (guarded by the partial unique index on open attempts) and
    grading it (one compare-and-set on ``status``).
    """

    def __init__(
        self,
        db: AsyncSession,
        events: Optional[ProgressEvents] = None,
        max_attempts=CONFIGURED_CAP,
    ):
        self.db = db
        self.question_bank = QuestionBankService(db)
        self.enrollments = EnrollmentService(db)
        self.gate = ProgressGate(db, events=events, max_attempts=max_attempts)

    # --- Lookups --------------------------------------------------------------

    async def get_attempt(self, attempt_id: int, for_update: bool = False) -> Attempt:
        stmt = (
            select(Attempt)
            .filter(Attempt.id == attempt_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        attempt = result.scalar_one_or_none()
        if not attempt:
            raise AttemptNotFound(f"Attempt {attempt_id} not found")
        return attempt

    async def get_active_attempt(self, quiz_id: int, enrollment_id: int) -> Optional[Attempt]:
        result = await self.db.execute(
            select(Attempt)
            .filter(
                Attempt.quiz_id == quiz_id,
                Attempt.enrollment_id == enrollment_id,
                Attempt.status == AttemptStatus.IN_PROGRESS,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_attempts(self, quiz_id: int, enrollment_id: int) -> List[Attempt]:
        result = await self.db.execute(
            select(Attempt)
            .filter(Attempt.quiz_id == quiz_id, Attempt.enrollment_id == enrollment_id)
            .order_by(Attempt.attempt_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_answers(self, attempt_id: int) -> Dict[int, List[int]]:
        result = await self.db.execute(
            select(Answer)
            .filter(Answer.attempt_id == attempt_id)
            .execution_options(populate_existing=True)
        )
        return {a.question_id: list(a.selected_option_ids) for a in result.scalars().all()}

    async def get_quiz_view(self, quiz_id: int, enrollment_id: int) -> Dict:
        """Quiz as shown to an enrolled student, ordered for their open attempt if any."""
        quiz = await self.question_bank.get_quiz(quiz_id)
        await self.enrollments.ensure_enrolled(enrollment_id, quiz)

        active = await self.get_active_attempt(quiz_id, enrollment_id)
        view = await self.question_bank.get_quiz_for_attempt(
            quiz_id, seed=active.shuffle_seed if active else None
        )
        view["attempt_id"] = active.id if active else None
        view["deadline"] = active.deadline if active else None
        return view

    # --- State machine --------------------------------------------------------

    async def start(self, quiz_id: int, enrollment_id: int) -> AttemptSession:
        quiz = await self.question_bank.get_quiz(quiz_id)
        await self.enrollments.ensure_enrolled(enrollment_id, quiz)

        active = await self.get_active_attempt(quiz_id, enrollment_id)
        if active:
            if not is_expired(active.deadline, utcnow()):
                raise AttemptAlreadyInProgress(active.id)
            # Abandoned past its deadline: grade it before opening a new one
            logger.info("Auto-finalizing expired attempt on start", attempt_id=active.id)
            await self.finalize(active.id)

        # A closed attempt without a score could still turn out passed
        result = await self.db.execute(
            select(Attempt.id).filter(
                Attempt.quiz_id == quiz_id,
                Attempt.enrollment_id == enrollment_id,
                Attempt.status == AttemptStatus.SUBMITTED,
            )
        )
        for stalled_id in result.scalars().all():
            logger.info("Grading submitted attempt on start", attempt_id=stalled_id)
            await self.finalize(stalled_id)

        history = await self.list_attempts(quiz_id, enrollment_id)
        if any(a.passed for a in history):
            raise QuizAlreadyPassed(f"Quiz {quiz_id} is already passed")
        if not retry_allowed(len(history), self.gate.max_attempts):
            raise RetryLimitReached(f"All {self.gate.max_attempts} attempts for quiz {quiz_id} are used")

        seed = random.randrange(2 ** 31)
        # Raises EmptyQuizError before anything is written
        view = await self.question_bank.get_quiz_for_attempt(quiz_id, seed=seed)

        started_at = utcnow()
        attempt = Attempt(
            quiz_id=quiz_id,
            enrollment_id=enrollment_id,
            attempt_number=len(history) + 1,
            status=AttemptStatus.IN_PROGRESS,
            started_at=started_at,
            deadline=compute_deadline(started_at, quiz.time_limit_minutes),
            shuffle_seed=seed,
        )
        self.db.add(attempt)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent start for the same quiz and enrollment won the race
            await self.db.rollback()
            winner = await self.get_active_attempt(quiz_id, enrollment_id)
            logger.warning("Concurrent attempt start rejected", quiz_id=quiz_id, enrollment_id=enrollment_id)
            raise AttemptAlreadyInProgress(winner.id if winner else None)

        logger.info(
            "Attempt started",
            attempt_id=attempt.id,
            quiz_id=quiz_id,
            enrollment_id=enrollment_id,
            attempt_number=attempt.attempt_number,
            deadline=attempt.deadline.isoformat() if attempt.deadline else None,
        )
        return AttemptSession(attempt=attempt, quiz=view)

    async def resume(self, attempt_id: int) -> AttemptSession:
        attempt = await self.get_attempt(attempt_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidState(f"Attempt {attempt_id} is {attempt.status}")
        view = await self.question_bank.get_quiz_for_attempt(attempt.quiz_id, seed=attempt.shuffle_seed)
        answers = await self.get_answers(attempt_id)
        return AttemptSession(attempt=attempt, quiz=view, answers=answers, resumed=True)

    async def submit_answer(self, attempt_id: int, question_id: int, option_ids: List[int], _retry: bool = True) -> Answer:
        # Row lock keeps a concurrent finalize from freezing answers mid-write
        attempt = await self.get_attempt(attempt_id, for_update=True)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidState(f"Attempt {attempt_id} is {attempt.status}")
        ensure_open(attempt.deadline, utcnow())

        result = await self.db.execute(
            select(Question)
            .options(selectinload(Question.options))
            .filter(Question.id == question_id, Question.quiz_id == attempt.quiz_id)
        )
        question = result.scalar_one_or_none()
        if not question:
            raise InvalidOption(f"Question {question_id} is not part of this quiz")

        selected = sorted(set(option_ids or []))
        if not selected:
            raise InvalidOption("Select at least one option")
        if not set(selected) <= {o.id for o in question.options}:
            raise InvalidOption(f"Option does not belong to question {question_id}")
        if question.kind == QuestionKind.SINGLE and len(selected) != 1:
            raise InvalidOption(f"Question {question_id} takes exactly one option")

        result = await self.db.execute(
            select(Answer).filter(Answer.attempt_id == attempt_id, Answer.question_id == question_id)
        )
        answer = result.scalar_one_or_none()
        if answer:
            answer.selected_option_ids = selected
        else:
            answer = Answer(attempt_id=attempt_id, question_id=question_id, selected_option_ids=selected)
            self.db.add(answer)

        try:
            await self.db.commit()
        except IntegrityError:
            # Lost an insert race for the same question; the retry takes the update path
            await self.db.rollback()
            if not _retry:
                raise
            return await self.submit_answer(attempt_id, question_id, option_ids, _retry=False)

        logger.debug("Answer saved", attempt_id=attempt_id, question_id=question_id, options=selected)
        return answer

    async def finalize(self, attempt_id: int) -> FinalizeOutcome:
        """Close and grade an attempt. Safe to call any number of times, before or after the deadline.

        Grading is a single compare-and-set from an open status straight to
        ``graded``, so no reader ever sees a closed attempt without its score.
        """
        attempt = await self.get_attempt(attempt_id)
        if attempt.status == AttemptStatus.GRADED:
            return FinalizeOutcome(attempt, False, await self.gate.evaluate(attempt, emit=False))

        # Row lock keeps answer writes out between reading answers and the status update
        attempt = await self.get_attempt(attempt_id, for_update=True)
        quiz = await self.question_bank.get_quiz(attempt.quiz_id)
        questions = await self.question_bank.load_questions(attempt.quiz_id)
        answers = await self.get_answers(attempt_id)
        outcome = scoring.score(scoring.keys_from_questions(questions), answers, quiz.passing_score)

        now = utcnow()
        result = await self.db.execute(
            update(Attempt)
            .where(Attempt.id == attempt_id, Attempt.status.in_(AttemptStatus.UNGRADED))
            .values(
                status=AttemptStatus.GRADED,
                submitted_at=func.coalesce(Attempt.submitted_at, now),
                graded_at=now,
                score=outcome.score_percent,
                passed=outcome.passed,
                earned_points=outcome.earned_points,
                total_points=outcome.total_points,
                correct_count=outcome.correct_count,
                question_count=outcome.question_count,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        transitioned = result.rowcount == 1

        attempt = await self.get_attempt(attempt_id)
        if transitioned:
            logger.info(
                "Attempt graded",
                attempt_id=attempt_id,
                score=attempt.score,
                passed=attempt.passed,
                earned=outcome.earned_points,
                total=outcome.total_points,
            )
        decision = await self.gate.evaluate(attempt, emit=transitioned)
        return FinalizeOutcome(attempt, transitioned, decision)

    async def get_result(self, attempt_id: int) -> AttemptResult:
        attempt = await self.get_attempt(attempt_id)
        quiz = await self.question_bank.get_quiz(attempt.quiz_id)
        if not attempt.is_graded:
            return AttemptResult(attempt=attempt, passing_score=quiz.passing_score, decision=None)

        # Answer keys cannot change once a quiz has attempts
        questions = await self.question_bank.load_questions(attempt.quiz_id)
        answers = await self.get_answers(attempt_id)
        breakdown = {
            key.question_id: scoring.is_correct(key, answers.get(key.question_id, ()))
            for key in scoring.keys_from_questions(questions)
        }
        return AttemptResult(
            attempt=attempt,
            passing_score=quiz.passing_score,
            decision=await self.gate.evaluate(attempt, emit=False),
            breakdown=breakdown,
        )

    async def finalize_expired(self, now: Optional[datetime] = None) -> int:
        """Grade attempts left open past their deadline or stuck in submitted.

        Returns how many attempts this call graded.
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(Attempt.id).filter(
                or_(
                    and_(
                        Attempt.status == AttemptStatus.IN_PROGRESS,
                        Attempt.deadline.isnot(None),
                        Attempt.deadline <= now,
                    ),
                    Attempt.status == AttemptStatus.SUBMITTED,
                )
            )
        )
        attempt_ids = list(result.scalars().all())

        graded = 0
        for attempt_id in attempt_ids:
            try:
                outcome = await self.finalize(attempt_id)
            except AssessmentError as e:
                await self.db.rollback()
                logger.error("Expired attempt could not be finalized", attempt_id=attempt_id, error=e.message)
                continue
            if outcome.transitioned:
                graded += 1

        if attempt_ids:
            logger.info("Expired attempts swept", found=len(attempt_ids), graded=graded)
        return graded
