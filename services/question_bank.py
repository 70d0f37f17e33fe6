import random
from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.orm import selectinload
from models.quiz import Quiz, Question, Option, QuestionKind
from models.course import Module
from models.attempt import Attempt, Answer
from core.config import settings
from core.exceptions import (
    ValidationError, QuizNotFound, QuestionNotFound, OptionNotFound, EmptyQuizError, QuizLockedError
)
from core.logger import logger
from utils.parser import parse_text_to_questions, ParserError

# Fields that change how attempts are scored or timed
SCORING_FIELDS = ("passing_score", "time_limit_minutes", "shuffle_questions")
METADATA_FIELDS = ("title", "description")


def _validate_quiz_fields(fields: Dict) -> None:
    if "title" in fields and not (fields["title"] or "").strip():
        raise ValidationError("Title is required")
    if "passing_score" in fields:
        score = fields["passing_score"]
        if score is None or not 0 <= score <= 100:
            raise ValidationError("Passing score must be between 0 and 100")
    if fields.get("time_limit_minutes") is not None and fields["time_limit_minutes"] < 1:
        raise ValidationError("Time limit must be a positive number of minutes")


def _validate_correct_count(kind: str, correct: int) -> None:
    if correct < 1:
        raise ValidationError("At least one option must be correct")
    if kind == QuestionKind.SINGLE and correct > 1:
        raise ValidationError("Single-choice questions take exactly one correct option")


class QuestionBankService:
    """Quiz authoring plus the two read views: authoring (with keys) and attempt (without)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Quizzes ---------------------------------------------------------------

    async def create_quiz(
        self,
        module_id: int,
        title: str,
        passing_score: int,
        time_limit_minutes: Optional[int] = None,
        description: Optional[str] = None,
        shuffle_questions: bool = False,
    ) -> Quiz:
        _validate_quiz_fields({
            "title": title,
            "passing_score": passing_score,
            "time_limit_minutes": time_limit_minutes,
        })
        module = await self.db.get(Module, module_id)
        if not module:
            raise ValidationError(f"Module {module_id} does not exist")

        quiz = Quiz(
            module_id=module_id,
            title=title.strip(),
            description=description,
            passing_score=passing_score,
            time_limit_minutes=time_limit_minutes,
            shuffle_questions=shuffle_questions,
        )
        self.db.add(quiz)
        await self.db.commit()
        await self.db.refresh(quiz)
        logger.info("Quiz created", quiz_id=quiz.id, module_id=module_id, title=quiz.title)
        return quiz

    async def get_quiz(self, quiz_id: int) -> Quiz:
        quiz = await self.db.get(Quiz, quiz_id)
        if not quiz:
            raise QuizNotFound(f"Quiz {quiz_id} not found")
        return quiz

    async def list_module_quizzes(self, module_id: int) -> List[Quiz]:
        result = await self.db.execute(
            select(Quiz).filter(Quiz.module_id == module_id).order_by(Quiz.title, Quiz.id)
        )
        return list(result.scalars().all())

    async def has_attempts(self, quiz_id: int) -> bool:
        result = await self.db.execute(select(func.count(Attempt.id)).filter(Attempt.quiz_id == quiz_id))
        return result.scalar() > 0

    async def _ensure_unlocked(self, quiz_id: int) -> None:
        if await self.has_attempts(quiz_id):
            logger.warning("Blocked scoring edit on quiz with attempts", quiz_id=quiz_id)
            raise QuizLockedError(f"Quiz {quiz_id} already has attempts; its scoring cannot change")

    async def update_quiz(self, quiz_id: int, **fields) -> Quiz:
        """Update quiz settings. Title and description stay editable after attempts exist."""
        unknown = set(fields) - set(SCORING_FIELDS) - set(METADATA_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown quiz fields: {', '.join(sorted(unknown))}")
        _validate_quiz_fields(fields)

        quiz = await self.get_quiz(quiz_id)
        if any(name in fields and fields[name] != getattr(quiz, name) for name in SCORING_FIELDS):
            await self._ensure_unlocked(quiz_id)

        for key, value in fields.items():
            setattr(quiz, key, value.strip() if key == "title" else value)
        await self.db.commit()
        await self.db.refresh(quiz)
        logger.info("Quiz updated", quiz_id=quiz_id, fields=sorted(fields))
        return quiz

    async def delete_quiz(self, quiz_id: int) -> None:
        """Delete a quiz with its questions, options, attempts and answers."""
        await self.get_quiz(quiz_id)

        attempt_ids = select(Attempt.id).where(Attempt.quiz_id == quiz_id)
        question_ids = select(Question.id).where(Question.quiz_id == quiz_id)

        # Children first to satisfy foreign keys
        await self.db.execute(delete(Answer).where(Answer.attempt_id.in_(attempt_ids)))
        await self.db.execute(delete(Attempt).where(Attempt.quiz_id == quiz_id))
        await self.db.execute(delete(Option).where(Option.question_id.in_(question_ids)))
        await self.db.execute(delete(Question).where(Question.quiz_id == quiz_id))
        await self.db.execute(delete(Quiz).where(Quiz.id == quiz_id))
        await self.db.commit()
        logger.info("Quiz deleted", quiz_id=quiz_id)

    # --- Questions and options ------------------------------------------------

    async def _load_question(self, question_id: int) -> Question:
        result = await self.db.execute(
            select(Question)
            .options(selectinload(Question.options))
            .filter(Question.id == question_id)
            .execution_options(populate_existing=True)
        )
        question = result.scalar_one_or_none()
        if not question:
            raise QuestionNotFound(f"Question {question_id} not found")
        return question

    async def add_question(
        self,
        quiz_id: int,
        prompt: str,
        options: List[Dict],
        points: int = 1,
        kind: str = QuestionKind.SINGLE,
    ) -> Question:
        """Create a question together with its options.

        ``options`` is a list of ``{"text": str, "is_correct": bool}`` dicts.
        """
        if not (prompt or "").strip():
            raise ValidationError("Question prompt is required")
        if points is None or points < 1:
            raise ValidationError("Points must be at least 1")
        if kind not in QuestionKind.ALL:
            raise ValidationError(f"Unknown question kind: {kind}")
        if not options:
            raise ValidationError("A question needs at least one option")
        if len(options) > settings.MAX_OPTIONS_PER_QUESTION:
            raise ValidationError(f"At most {settings.MAX_OPTIONS_PER_QUESTION} options per question")
        if any(not (o.get("text") or "").strip() for o in options):
            raise ValidationError("Option text is required")
        _validate_correct_count(kind, sum(1 for o in options if o.get("is_correct")))

        await self.get_quiz(quiz_id)
        await self._ensure_unlocked(quiz_id)

        result = await self.db.execute(
            select(func.count(Question.id), func.max(Question.position)).filter(Question.quiz_id == quiz_id)
        )
        count, last_position = result.one()
        if count >= settings.MAX_QUESTIONS_PER_QUIZ:
            raise ValidationError(f"At most {settings.MAX_QUESTIONS_PER_QUIZ} questions per quiz")

        question = Question(
            quiz_id=quiz_id,
            prompt=prompt.strip(),
            kind=kind,
            points=points,
            position=(last_position + 1) if last_position is not None else 0,
        )
        question.options = [
            Option(text=o["text"].strip(), is_correct=bool(o.get("is_correct")), position=i)
            for i, o in enumerate(options)
        ]
        self.db.add(question)
        await self.db.commit()
        logger.info("Question added", quiz_id=quiz_id, question_id=question.id, options=len(options))
        return await self._load_question(question.id)

    async def add_option(self, question_id: int, text: str, is_correct: bool = False) -> Option:
        if not (text or "").strip():
            raise ValidationError("Option text is required")
        question = await self._load_question(question_id)
        await self._ensure_unlocked(question.quiz_id)

        if len(question.options) >= settings.MAX_OPTIONS_PER_QUESTION:
            raise ValidationError(f"At most {settings.MAX_OPTIONS_PER_QUESTION} options per question")
        correct = len(question.correct_option_ids) + (1 if is_correct else 0)
        _validate_correct_count(question.kind, correct)

        position = max((o.position for o in question.options), default=-1) + 1
        option = Option(question_id=question_id, text=text.strip(), is_correct=is_correct, position=position)
        self.db.add(option)
        await self.db.commit()
        await self.db.refresh(option)
        logger.info("Option added", question_id=question_id, option_id=option.id, is_correct=is_correct)
        return option

    async def delete_question(self, question_id: int) -> None:
        question = await self._load_question(question_id)
        await self._ensure_unlocked(question.quiz_id)

        await self.db.execute(delete(Option).where(Option.question_id == question_id))
        await self.db.execute(delete(Question).where(Question.id == question_id))
        await self.db.commit()
        logger.info("Question deleted", quiz_id=question.quiz_id, question_id=question_id)

    async def delete_option(self, option_id: int) -> None:
        option = await self.db.get(Option, option_id)
        if not option:
            raise OptionNotFound(f"Option {option_id} not found")
        question = await self._load_question(option.question_id)
        await self._ensure_unlocked(question.quiz_id)

        remaining = [o for o in question.options if o.id != option_id]
        if not remaining:
            raise ValidationError("A question needs at least one option")
        _validate_correct_count(question.kind, sum(1 for o in remaining if o.is_correct))

        await self.db.execute(delete(Option).where(Option.id == option_id))
        await self.db.commit()
        logger.info("Option deleted", question_id=question.id, option_id=option_id)

    async def import_questions(self, quiz_id: int, text: str) -> Tuple[List[Question], List[str]]:
        """Bulk-create questions from the plain-text format understood by ``utils.parser``."""
        try:
            parsed, errors = parse_text_to_questions(text)
        except ParserError as e:
            raise ValidationError(str(e))

        created = []
        for item in parsed:
            try:
                created.append(await self.add_question(
                    quiz_id,
                    item["prompt"],
                    item["options"],
                    points=item["points"],
                    kind=item["kind"],
                ))
            except ValidationError as e:
                errors.append(f"'{item['prompt'][:20]}...': {e.message}")
        logger.info("Questions imported", quiz_id=quiz_id, created=len(created), errors=len(errors))
        return created, errors

    # --- Read views -----------------------------------------------------------

    async def _load_full_quiz(self, quiz_id: int) -> Quiz:
        result = await self.db.execute(
            select(Quiz)
            .options(selectinload(Quiz.questions).selectinload(Question.options))
            .filter(Quiz.id == quiz_id)
            .execution_options(populate_existing=True)
        )
        quiz = result.scalar_one_or_none()
        if not quiz:
            raise QuizNotFound(f"Quiz {quiz_id} not found")
        return quiz

    async def load_questions(self, quiz_id: int) -> List[Question]:
        """Questions with options eager-loaded, in authoring order."""
        quiz = await self._load_full_quiz(quiz_id)
        return list(quiz.questions)

    async def get_quiz_for_authoring(self, quiz_id: int) -> Dict:
        quiz = await self._load_full_quiz(quiz_id)
        return {
            **_quiz_metadata(quiz),
            "has_attempts": await self.has_attempts(quiz_id),
            "questions": [
                {
                    "id": q.id,
                    "prompt": q.prompt,
                    "kind": q.kind,
                    "points": q.points,
                    "position": q.position,
                    "options": [
                        {"id": o.id, "text": o.text, "is_correct": o.is_correct}
                        for o in q.options
                    ],
                }
                for q in quiz.questions
            ],
        }

    async def get_quiz_for_attempt(self, quiz_id: int, seed: Optional[int] = None) -> Dict:
        """Student view: no answer keys. The same ``seed`` always yields the same order."""
        quiz = await self._load_full_quiz(quiz_id)
        if not quiz.questions:
            raise EmptyQuizError(f"Quiz {quiz_id} has no questions yet")

        questions = list(quiz.questions)
        option_lists = {q.id: list(q.options) for q in questions}
        if quiz.shuffle_questions and seed is not None:
            rng = random.Random(seed)
            rng.shuffle(questions)
            for q in questions:
                rng.shuffle(option_lists[q.id])

        return {
            **_quiz_metadata(quiz),
            "questions": [
                {
                    "id": q.id,
                    "prompt": q.prompt,
                    "kind": q.kind,
                    "points": q.points,
                    "options": [{"id": o.id, "text": o.text} for o in option_lists[q.id]],
                }
                for q in questions
            ],
        }


def _quiz_metadata(quiz: Quiz) -> Dict:
    return {
        "id": quiz.id,
        "module_id": quiz.module_id,
        "title": quiz.title,
        "description": quiz.description,
        "passing_score": quiz.passing_score,
        "time_limit_minutes": quiz.time_limit_minutes,
        "shuffle_questions": quiz.shuffle_questions,
    }
