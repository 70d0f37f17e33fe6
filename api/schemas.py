from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

# === Authoring ===

class OptionIn(BaseModel):
    """An answer option supplied by the instructor."""
    text: str = Field(..., description="Option text", min_length=1, max_length=500)
    is_correct: bool = Field(False, description="Whether selecting this option is (part of) the right answer")


class QuizCreate(BaseModel):
    """Request body for creating a quiz."""
    module_id: int = Field(..., description="Module this quiz gates")
    title: str = Field(..., description="Quiz title", min_length=1, max_length=255, examples=["Module 1 checkpoint"])
    description: Optional[str] = Field(None, description="Optional description")
    passing_score: int = Field(..., description="Minimum percentage to pass", ge=0, le=100, examples=[70])
    time_limit_minutes: Optional[int] = Field(None, description="Time limit in minutes; omit for untimed", ge=1)
    shuffle_questions: bool = Field(False, description="Shuffle question and option order per attempt")


class QuizUpdate(BaseModel):
    """Partial update. Scoring fields are rejected once attempts exist."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    passing_score: Optional[int] = Field(None, ge=0, le=100)
    time_limit_minutes: Optional[int] = Field(None, ge=1)
    shuffle_questions: Optional[bool] = None


class QuestionCreate(BaseModel):
    """A question together with its options."""
    prompt: str = Field(..., description="The question text", min_length=1)
    kind: Literal["single", "multiple"] = Field("single", description="Single or multiple correct options")
    points: int = Field(1, description="Points awarded for a fully correct answer", ge=1)
    options: List[OptionIn] = Field(..., description="Answer options", min_length=1)

    model_config = {
        "json_schema_extra": {
            "example": {
                "prompt": "Which of these are prime?",
                "kind": "multiple",
                "points": 2,
                "options": [
                    {"text": "2", "is_correct": True},
                    {"text": "4", "is_correct": False},
                    {"text": "5", "is_correct": True},
                ],
            }
        }
    }


class QuestionImport(BaseModel):
    """Plain-text question list: `?` question, `+` correct option, `=` wrong option."""
    text: str = Field(..., description="Questions in text format", min_length=1)


class ImportResult(BaseModel):
    created: int = Field(..., description="Number of questions created")
    question_ids: List[int] = Field(..., description="IDs of the created questions")
    errors: List[str] = Field(..., description="Problems found in skipped questions")


class QuizListItem(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    module_id: int
    title: str
    passing_score: int
    time_limit_minutes: Optional[int]


class AuthoringOption(BaseModel):
    id: int
    text: str
    is_correct: bool


class AuthoringQuestion(BaseModel):
    id: int
    prompt: str
    kind: str
    points: int
    position: int
    options: List[AuthoringOption]


class AuthoringQuiz(BaseModel):
    """Full quiz including the answer key. Instructor only."""
    id: int
    module_id: int
    title: str
    description: Optional[str]
    passing_score: int
    time_limit_minutes: Optional[int]
    shuffle_questions: bool
    has_attempts: bool
    questions: List[AuthoringQuestion]


class OptionOut(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    text: str
    is_correct: bool


# === Student ===

class StudentOption(BaseModel):
    id: int
    text: str


class StudentQuestion(BaseModel):
    id: int
    prompt: str
    kind: str
    points: int
    options: List[StudentOption]


class QuizView(BaseModel):
    """Quiz as shown to a student; never contains the answer key."""
    id: int
    module_id: int
    title: str
    description: Optional[str]
    passing_score: int
    time_limit_minutes: Optional[int]
    questions: List[StudentQuestion]
    attempt_id: Optional[int] = Field(None, description="Open attempt of this enrollment, if any")
    deadline: Optional[datetime] = Field(None, description="Deadline of the open attempt (UTC); display only")


class StartAttemptRequest(BaseModel):
    enrollment_id: int = Field(..., description="Enrollment the attempt is taken under")


class AttemptSessionResponse(BaseModel):
    attempt_id: int
    attempt_number: int
    started_at: datetime
    deadline: Optional[datetime] = Field(None, description="Server deadline (UTC); the client countdown is advisory")
    seconds_remaining: Optional[int]
    resumed: bool = Field(False, description="True when an already open attempt was returned")
    answers: Dict[int, List[int]] = Field(default_factory=dict, description="Saved selections by question id")
    quiz: QuizView


class AnswerSubmit(BaseModel):
    option_ids: List[int] = Field(..., description="Selected option IDs", min_length=1)


class AnswerAck(BaseModel):
    attempt_id: int
    question_id: int
    option_ids: List[int]
    status: str = "saved"


class ProgressOut(BaseModel):
    passed: bool
    module_unlocked: bool
    next_module_id: Optional[int]
    retry_available: bool
    attempts_used: int
    attempts_remaining: Optional[int] = Field(None, description="None means unlimited")


class AttemptResultResponse(BaseModel):
    attempt_id: int
    quiz_id: int
    enrollment_id: int
    attempt_number: int
    status: str
    started_at: datetime
    deadline: Optional[datetime]
    submitted_at: Optional[datetime]
    score: Optional[int] = Field(None, description="Percentage 0-100 once graded")
    passed: Optional[bool]
    passing_score: int
    correct_count: Optional[int]
    question_count: Optional[int]
    earned_points: Optional[int]
    total_points: Optional[int]
    progress: Optional[ProgressOut] = None
    breakdown: Dict[int, bool] = Field(default_factory=dict, description="Correctness by question id once graded")


class SuccessResponse(BaseModel):
    """Generic success response."""
    status: str = Field(default="success", description="Operation status")
