from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin


class QuestionKind:
    SINGLE = "single"
    MULTIPLE = "multiple"

    ALL = (SINGLE, MULTIPLE)


class Quiz(Base, TimestampMixin):
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True)
    module_id = Column(Integer, ForeignKey("modules.id"), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    passing_score = Column(Integer, nullable=False)
    time_limit_minutes = Column(Integer, nullable=True)
    shuffle_questions = Column(Boolean, default=False, nullable=False)

    questions = relationship(
        "Question",
        back_populates="quiz",
        order_by="(Question.position, Question.id)",
    )


class Question(Base, TimestampMixin):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), index=True, nullable=False)
    prompt = Column(Text, nullable=False)
    kind = Column(String(20), default=QuestionKind.SINGLE, nullable=False)
    points = Column(Integer, default=1, nullable=False)
    position = Column(Integer, default=0, nullable=False)

    quiz = relationship("Quiz", back_populates="questions")
    options = relationship(
        "Option",
        back_populates="question",
        order_by="(Option.position, Option.id)",
    )

    @property
    def correct_option_ids(self) -> frozenset:
        return frozenset(o.id for o in self.options if o.is_correct)


class Option(Base):
    __tablename__ = "options"

    id = Column(Integer, primary_key=True)
    question_id = Column(Integer, ForeignKey("questions.id"), index=True, nullable=False)
    text = Column(String(500), nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)
    position = Column(Integer, default=0, nullable=False)

    question = relationship("Question", back_populates="options")
