from models.base import Base
from models.course import Module, Enrollment, ModuleProgress
from models.quiz import Quiz, Question, Option
from models.attempt import Attempt, Answer, AttemptStatus

__all__ = [
    "Base",
    "Module",
    "Enrollment",
    "ModuleProgress",
    "Quiz",
    "Question",
    "Option",
    "Attempt",
    "Answer",
    "AttemptStatus",
]
