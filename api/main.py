from dataclasses import asdict
from fastapi import FastAPI, Depends, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from api.schemas import (
    AnswerAck,
    AnswerSubmit,
    AttemptResultResponse,
    AttemptSessionResponse,
    AuthoringQuiz,
    ImportResult,
    OptionIn,
    OptionOut,
    ProgressOut,
    QuestionCreate,
    QuestionImport,
    QuizCreate,
    QuizListItem,
    QuizUpdate,
    QuizView,
    StartAttemptRequest,
    SuccessResponse,
)
from core.exceptions import AssessmentError, AttemptAlreadyInProgress
from core.logger import logger
from db.session import get_db, get_redis
from services.attempt_service import AttemptService, AttemptSession, AttemptResult
from services.events import ProgressEvents, RedisProgressEvents
from services.question_bank import QuestionBankService

# API Documentation
API_DESCRIPTION = """
## Assessment API

Quiz authoring and timed, scored quiz attempts that gate module progression.

### Attempt flow

1. `GET /api/quizzes/{quiz_id}/attempt-view` shows the quiz without answer keys.
2. `POST /api/quizzes/{quiz_id}/attempts` opens an attempt (or returns the open one).
3. `PUT /api/attempts/{attempt_id}/answers/{question_id}` saves or changes an answer.
4. `POST /api/attempts/{attempt_id}/finalize` grades the attempt. Safe to retry.

The deadline returned with an attempt is enforced by the server; client
countdowns are for display only.
"""

TAGS_METADATA = [
    {"name": "authoring", "description": "Instructor operations on quizzes, questions and options."},
    {"name": "attempts", "description": "Student attempts: start, answer, finalize, results."},
    {"name": "info", "description": "Service information endpoints."},
]

app = FastAPI(
    title="Assessment API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    logger.warning(
        "Request rejected",
        method=request.method,
        path=request.url.path,
        error=exc.code,
        detail=exc.message,
    )
    content = {"detail": exc.message, "error": exc.code}
    if isinstance(exc, AttemptAlreadyInProgress):
        content["attempt_id"] = exc.attempt_id
    return JSONResponse(status_code=exc.status_code, content=content)


async def get_events(redis=Depends(get_redis)) -> ProgressEvents:
    return RedisProgressEvents(redis)


def _session_response(session: AttemptSession) -> dict:
    attempt = session.attempt
    quiz = dict(session.quiz, attempt_id=attempt.id, deadline=attempt.deadline)
    return {
        "attempt_id": attempt.id,
        "attempt_number": attempt.attempt_number,
        "started_at": attempt.started_at,
        "deadline": attempt.deadline,
        "seconds_remaining": session.seconds_remaining,
        "resumed": session.resumed,
        "answers": session.answers,
        "quiz": quiz,
    }


def _result_response(result: AttemptResult) -> dict:
    attempt = result.attempt
    return {
        "attempt_id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "enrollment_id": attempt.enrollment_id,
        "attempt_number": attempt.attempt_number,
        "status": attempt.status,
        "started_at": attempt.started_at,
        "deadline": attempt.deadline,
        "submitted_at": attempt.submitted_at,
        "score": attempt.score,
        "passed": attempt.passed,
        "passing_score": result.passing_score,
        "correct_count": attempt.correct_count,
        "question_count": attempt.question_count,
        "earned_points": attempt.earned_points,
        "total_points": attempt.total_points,
        "progress": ProgressOut(**asdict(result.decision)) if result.decision else None,
        "breakdown": result.breakdown,
    }


# === Authoring ===

@app.post("/api/quizzes", response_model=QuizListItem, status_code=201, tags=["authoring"], summary="Create quiz")
async def create_quiz(body: QuizCreate, db: AsyncSession = Depends(get_db)):
    quiz = await QuestionBankService(db).create_quiz(**body.model_dump())
    return quiz


@app.get("/api/modules/{module_id}/quizzes", response_model=List[QuizListItem], tags=["authoring"], summary="List module quizzes")
async def list_module_quizzes(module_id: int, db: AsyncSession = Depends(get_db)):
    return await QuestionBankService(db).list_module_quizzes(module_id)


@app.patch(
    "/api/quizzes/{quiz_id}",
    response_model=QuizListItem,
    tags=["authoring"],
    summary="Update quiz",
    responses={409: {"description": "Scoring fields are locked because attempts exist"}},
)
async def update_quiz(quiz_id: int, body: QuizUpdate, db: AsyncSession = Depends(get_db)):
    return await QuestionBankService(db).update_quiz(quiz_id, **body.model_dump(exclude_unset=True))


@app.delete(
    "/api/quizzes/{quiz_id}",
    response_model=SuccessResponse,
    tags=["authoring"],
    summary="Delete quiz",
    description="Deletes the quiz with all questions, options, attempts and answers. Not reversible.",
)
async def delete_quiz(quiz_id: int, db: AsyncSession = Depends(get_db)):
    await QuestionBankService(db).delete_quiz(quiz_id)
    return {"status": "success"}


@app.get("/api/quizzes/{quiz_id}/authoring", response_model=AuthoringQuiz, tags=["authoring"], summary="Quiz with answer key")
async def get_quiz_for_authoring(quiz_id: int, db: AsyncSession = Depends(get_db)):
    return await QuestionBankService(db).get_quiz_for_authoring(quiz_id)


@app.post("/api/quizzes/{quiz_id}/questions", response_model=dict, status_code=201, tags=["authoring"], summary="Add question")
async def add_question(quiz_id: int, body: QuestionCreate, db: AsyncSession = Depends(get_db)):
    question = await QuestionBankService(db).add_question(
        quiz_id,
        body.prompt,
        [o.model_dump() for o in body.options],
        points=body.points,
        kind=body.kind,
    )
    return {"id": question.id, "option_ids": [o.id for o in question.options]}


@app.post(
    "/api/quizzes/{quiz_id}/questions/import",
    response_model=ImportResult,
    tags=["authoring"],
    summary="Import questions from text",
)
async def import_questions(quiz_id: int, body: QuestionImport, db: AsyncSession = Depends(get_db)):
    created, errors = await QuestionBankService(db).import_questions(quiz_id, body.text)
    return {"created": len(created), "question_ids": [q.id for q in created], "errors": errors}


@app.post("/api/questions/{question_id}/options", response_model=OptionOut, status_code=201, tags=["authoring"], summary="Add option")
async def add_option(question_id: int, body: OptionIn, db: AsyncSession = Depends(get_db)):
    return await QuestionBankService(db).add_option(question_id, body.text, is_correct=body.is_correct)


@app.delete("/api/questions/{question_id}", response_model=SuccessResponse, tags=["authoring"], summary="Delete question")
async def delete_question(question_id: int, db: AsyncSession = Depends(get_db)):
    await QuestionBankService(db).delete_question(question_id)
    return {"status": "success"}


@app.delete("/api/options/{option_id}", response_model=SuccessResponse, tags=["authoring"], summary="Delete option")
async def delete_option(option_id: int, db: AsyncSession = Depends(get_db)):
    await QuestionBankService(db).delete_option(option_id)
    return {"status": "success"}


# === Attempts ===

@app.get(
    "/api/quizzes/{quiz_id}/attempt-view",
    response_model=QuizView,
    tags=["attempts"],
    summary="Quiz for a student",
    responses={403: {"description": "Not enrolled"}, 404: {"description": "Quiz not found"}},
)
async def get_quiz_for_attempt(
    quiz_id: int,
    enrollment_id: int = Query(..., description="Enrollment of the student"),
    db: AsyncSession = Depends(get_db),
):
    return await AttemptService(db).get_quiz_view(quiz_id, enrollment_id)


@app.post(
    "/api/quizzes/{quiz_id}/attempts",
    response_model=AttemptSessionResponse,
    tags=["attempts"],
    summary="Start attempt",
    description="Opens a new attempt. If one is already open for this enrollment it is returned with `resumed=true`.",
)
async def start_attempt(
    quiz_id: int,
    body: StartAttemptRequest,
    db: AsyncSession = Depends(get_db),
    events: ProgressEvents = Depends(get_events),
):
    service = AttemptService(db, events=events)
    try:
        session = await service.start(quiz_id, body.enrollment_id)
    except AttemptAlreadyInProgress as e:
        if e.attempt_id is None:
            raise
        logger.info("Resuming open attempt", attempt_id=e.attempt_id, quiz_id=quiz_id)
        session = await service.resume(e.attempt_id)
    return _session_response(session)


@app.get(
    "/api/quizzes/{quiz_id}/attempts",
    response_model=List[AttemptResultResponse],
    tags=["attempts"],
    summary="Attempt history",
)
async def list_attempts(
    quiz_id: int,
    enrollment_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    service = AttemptService(db)
    quiz = await service.question_bank.get_quiz(quiz_id)
    await service.enrollments.ensure_enrolled(enrollment_id, quiz)
    attempts = await service.list_attempts(quiz_id, enrollment_id)
    return [
        _result_response(AttemptResult(attempt=a, passing_score=quiz.passing_score, decision=None))
        for a in attempts
    ]


@app.put(
    "/api/attempts/{attempt_id}/answers/{question_id}",
    response_model=AnswerAck,
    tags=["attempts"],
    summary="Save answer",
    description="Saves the selection for one question, replacing any earlier selection.",
)
async def submit_answer(attempt_id: int, question_id: int, body: AnswerSubmit, db: AsyncSession = Depends(get_db)):
    answer = await AttemptService(db).submit_answer(attempt_id, question_id, body.option_ids)
    return {
        "attempt_id": attempt_id,
        "question_id": question_id,
        "option_ids": answer.selected_option_ids,
    }


@app.post(
    "/api/attempts/{attempt_id}/finalize",
    response_model=AttemptResultResponse,
    tags=["attempts"],
    summary="Finalize attempt",
    description="Grades the attempt. Repeated calls return the stored result.",
)
async def finalize_attempt(
    attempt_id: int,
    db: AsyncSession = Depends(get_db),
    events: ProgressEvents = Depends(get_events),
):
    service = AttemptService(db, events=events)
    await service.finalize(attempt_id)
    return _result_response(await service.get_result(attempt_id))


@app.get("/api/attempts/{attempt_id}", response_model=AttemptResultResponse, tags=["attempts"], summary="Attempt result")
async def get_attempt_result(attempt_id: int, db: AsyncSession = Depends(get_db)):
    return _result_response(await AttemptService(db).get_result(attempt_id))


@app.get("/api/health", tags=["info"], summary="Health check")
async def health():
    return {"status": "ok"}
