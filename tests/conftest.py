"""
Pytest configuration and fixtures for assessment engine tests.
"""
import sys
import os
from types import SimpleNamespace
import pytest
import pytest_asyncio

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read at import time; keep them away from a real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENV", "development")

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

from db.session import build_engine, build_sessionmaker
from models import Base, Module, Enrollment
from models.course import EnrollmentStatus
from services.events import ProgressEvents
from services.question_bank import QuestionBankService


class RecordingEvents(ProgressEvents):
    """Keeps published events in memory instead of sending them to Redis."""

    def __init__(self):
        self.published = []

    async def publish(self, event, payload):
        self.published.append((event, payload))

    def names(self):
        return [event for event, _ in self.published]


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File database so separate sessions get separate connections
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'assessment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def events():
    return RecordingEvents()


@pytest_asyncio.fixture
async def course(db):
    """Course 1 with three ordered modules, one enrollment in it and one elsewhere."""
    modules = [Module(course_id=1, title=f"Module {i}", position=i) for i in range(1, 4)]
    enrollment = Enrollment(student_id=1001, course_id=1)
    outsider = Enrollment(student_id=1002, course_id=2)
    cancelled = Enrollment(student_id=1003, course_id=1, status=EnrollmentStatus.CANCELLED)
    db.add_all(modules + [enrollment, outsider, cancelled])
    await db.commit()
    return SimpleNamespace(
        modules=modules,
        enrollment=enrollment,
        outsider=outsider,
        cancelled=cancelled,
    )


@pytest.fixture
def quiz_factory(db, course):
    """Build a quiz whose questions each have one correct ("right") and one wrong option."""
    async def factory(passing_score=70, time_limit_minutes=None, questions=3, shuffle_questions=False, module=None):
        bank = QuestionBankService(db)
        quiz = await bank.create_quiz(
            (module or course.modules[0]).id,
            "Module checkpoint",
            passing_score,
            time_limit_minutes=time_limit_minutes,
            shuffle_questions=shuffle_questions,
        )
        created = []
        for i in range(questions):
            created.append(await bank.add_question(
                quiz.id,
                f"Question {i + 1}",
                [{"text": "right", "is_correct": True}, {"text": "wrong", "is_correct": False}],
            ))
        return quiz, created
    return factory


@pytest.fixture
def sample_question_text():
    """Sample import text: one single-choice, one multiple-choice worth 2 points"""
    return "\n".join([
        "?What is 2+2?",
        "=3",
        "+4",
        "=5",
        "?[2] Which numbers are prime?",
        "+2",
        "=4",
        "+5",
    ])
