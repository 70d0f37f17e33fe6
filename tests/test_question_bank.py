import pytest
from sqlalchemy import select, func

from core.exceptions import (
    ValidationError, QuizNotFound, QuestionNotFound, EmptyQuizError, QuizLockedError
)
from models import Attempt, Answer, Question, Option
from services.attempt_service import AttemptService
from services.question_bank import QuestionBankService


@pytest.fixture
def bank(db):
    return QuestionBankService(db)


async def test_create_quiz_validates_settings(bank, course):
    module_id = course.modules[0].id

    with pytest.raises(ValidationError):
        await bank.create_quiz(module_id, "Quiz", passing_score=101)
    with pytest.raises(ValidationError):
        await bank.create_quiz(module_id, "Quiz", passing_score=50, time_limit_minutes=0)
    with pytest.raises(ValidationError):
        await bank.create_quiz(module_id, "   ", passing_score=50)
    with pytest.raises(ValidationError):
        await bank.create_quiz(9999, "Quiz", passing_score=50)

    quiz = await bank.create_quiz(module_id, " Quiz ", passing_score=50, time_limit_minutes=20)
    assert quiz.id is not None
    assert quiz.title == "Quiz"
    assert quiz.time_limit_minutes == 20


async def test_add_question_rules(bank, course):
    quiz = await bank.create_quiz(course.modules[0].id, "Quiz", passing_score=50)

    with pytest.raises(ValidationError):
        await bank.add_question(quiz.id, "Zero points", [{"text": "a", "is_correct": True}], points=0)
    with pytest.raises(ValidationError):
        await bank.add_question(quiz.id, "No key", [{"text": "a"}, {"text": "b"}])
    with pytest.raises(ValidationError):
        await bank.add_question(
            quiz.id, "Two keys", [{"text": "a", "is_correct": True}, {"text": "b", "is_correct": True}]
        )
    with pytest.raises(QuizNotFound):
        await bank.add_question(9999, "Lost", [{"text": "a", "is_correct": True}])

    question = await bank.add_question(
        quiz.id,
        "Two keys, multiple",
        [{"text": "a", "is_correct": True}, {"text": "b", "is_correct": True}, {"text": "c"}],
        points=2,
        kind="multiple",
    )
    assert question.points == 2
    assert len(question.options) == 3
    assert len(question.correct_option_ids) == 2


async def test_questions_get_increasing_positions(bank, quiz_factory):
    quiz, questions = await quiz_factory(questions=3)

    assert [q.position for q in questions] == [0, 1, 2]


async def test_add_option_keeps_single_choice_single(bank, quiz_factory):
    quiz, questions = await quiz_factory(questions=1)
    question = questions[0]

    with pytest.raises(ValidationError):
        await bank.add_option(question.id, "also right", is_correct=True)

    option = await bank.add_option(question.id, "another wrong")
    assert option.is_correct is False
    assert option.position == 2

    with pytest.raises(QuestionNotFound):
        await bank.add_option(9999, "orphan")


async def test_add_option_allows_extra_key_on_multiple_choice(bank, course):
    quiz = await bank.create_quiz(course.modules[0].id, "Quiz", passing_score=50)
    question = await bank.add_question(
        quiz.id, "Pick all", [{"text": "a", "is_correct": True}, {"text": "b"}], kind="multiple"
    )

    await bank.add_option(question.id, "c", is_correct=True)

    view = await bank.get_quiz_for_authoring(quiz.id)
    assert [o["is_correct"] for o in view["questions"][0]["options"]] == [True, False, True]


async def test_delete_option_cannot_remove_last_correct(bank, quiz_factory):
    quiz, questions = await quiz_factory(questions=1)
    right = next(o for o in questions[0].options if o.is_correct)
    wrong = next(o for o in questions[0].options if not o.is_correct)

    with pytest.raises(ValidationError):
        await bank.delete_option(right.id)

    await bank.delete_option(wrong.id)
    view = await bank.get_quiz_for_authoring(quiz.id)
    assert [o["id"] for o in view["questions"][0]["options"]] == [right.id]


async def test_attempt_view_strips_answer_key(bank, quiz_factory):
    quiz, _ = await quiz_factory(questions=2)

    authoring = await bank.get_quiz_for_authoring(quiz.id)
    student = await bank.get_quiz_for_attempt(quiz.id)

    assert all("is_correct" in o for q in authoring["questions"] for o in q["options"])
    assert all(set(o) == {"id", "text"} for q in student["questions"] for o in q["options"])
    assert [q["id"] for q in student["questions"]] == [q["id"] for q in authoring["questions"]]


async def test_attempt_view_order_is_stable_per_seed(bank, quiz_factory):
    quiz, _ = await quiz_factory(questions=8, shuffle_questions=True)

    first = await bank.get_quiz_for_attempt(quiz.id, seed=42)
    again = await bank.get_quiz_for_attempt(quiz.id, seed=42)

    def order(view):
        return [(q["id"], [o["id"] for o in q["options"]]) for q in view["questions"]]

    assert order(first) == order(again)
    assert sorted(q["id"] for q in first["questions"]) == sorted(q["id"] for q in again["questions"])


async def test_empty_quiz_cannot_be_taken(bank, course):
    quiz = await bank.create_quiz(course.modules[0].id, "Empty", passing_score=50)

    with pytest.raises(EmptyQuizError):
        await bank.get_quiz_for_attempt(quiz.id)
    with pytest.raises(QuizNotFound):
        await bank.get_quiz_for_attempt(9999)


async def test_scoring_changes_locked_once_attempts_exist(db, bank, course, quiz_factory):
    quiz, questions = await quiz_factory(questions=2)
    await AttemptService(db).start(quiz.id, course.enrollment.id)

    with pytest.raises(QuizLockedError):
        await bank.add_question(quiz.id, "Late", [{"text": "a", "is_correct": True}])
    with pytest.raises(QuizLockedError):
        await bank.add_option(questions[0].id, "late option")
    with pytest.raises(QuizLockedError):
        await bank.delete_question(questions[0].id)
    with pytest.raises(QuizLockedError):
        await bank.update_quiz(quiz.id, passing_score=10)

    updated = await bank.update_quiz(quiz.id, title="Renamed", description="Still editable")
    assert updated.title == "Renamed"
    assert updated.description == "Still editable"


async def test_update_quiz_before_attempts(bank, quiz_factory):
    quiz, _ = await quiz_factory()

    updated = await bank.update_quiz(quiz.id, passing_score=90, time_limit_minutes=5)
    assert updated.passing_score == 90
    assert updated.time_limit_minutes == 5

    with pytest.raises(ValidationError):
        await bank.update_quiz(quiz.id, module_id=3)


async def test_delete_question_removes_options(db, bank, quiz_factory):
    quiz, questions = await quiz_factory(questions=2)

    await bank.delete_question(questions[0].id)

    remaining = await bank.load_questions(quiz.id)
    assert [q.id for q in remaining] == [questions[1].id]
    count = await db.execute(select(func.count(Option.id)).filter(Option.question_id == questions[0].id))
    assert count.scalar() == 0


async def test_delete_quiz_cascades(db, bank, course, quiz_factory):
    quiz, questions = await quiz_factory(questions=2)
    service = AttemptService(db)
    session = await service.start(quiz.id, course.enrollment.id)
    right = next(o.id for o in questions[0].options if o.is_correct)
    await service.submit_answer(session.attempt.id, questions[0].id, [right])

    await bank.delete_quiz(quiz.id)

    for model in (Answer, Attempt, Option, Question):
        result = await db.execute(select(func.count()).select_from(model))
        assert result.scalar() == 0
    with pytest.raises(QuizNotFound):
        await bank.get_quiz(quiz.id)
    with pytest.raises(QuizNotFound):
        await bank.delete_quiz(quiz.id)


async def test_import_questions(bank, course, sample_question_text):
    quiz = await bank.create_quiz(course.modules[0].id, "Imported", passing_score=50)

    created, errors = await bank.import_questions(quiz.id, sample_question_text + "\n?Broken\n=x\n=y")

    assert len(created) == 2
    assert len(errors) == 1
    assert created[1].kind == "multiple"
    assert created[1].points == 2

    with pytest.raises(ValidationError):
        await bank.import_questions(quiz.id, "\n\n")


async def test_list_module_quizzes(bank, course):
    await bank.create_quiz(course.modules[0].id, "B quiz", passing_score=50)
    await bank.create_quiz(course.modules[0].id, "A quiz", passing_score=50)
    await bank.create_quiz(course.modules[1].id, "Other module", passing_score=50)

    quizzes = await bank.list_module_quizzes(course.modules[0].id)
    assert [q.title for q in quizzes] == ["A quiz", "B quiz"]
