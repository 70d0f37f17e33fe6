"""Pure scoring of a finished attempt. No database access happens here."""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, FrozenSet, Iterable, List, Mapping, Sequence

from core.exceptions import ConfigurationError
from models.quiz import QuestionKind


@dataclass(frozen=True)
class QuestionKey:
    """The answer key of one question."""
    question_id: int
    points: int
    correct_option_ids: FrozenSet[int]
    kind: str = QuestionKind.SINGLE


@dataclass(frozen=True)
class ScoreResult:
    earned_points: int
    total_points: int
    correct_count: int
    question_count: int
    score_percent: int
    passed: bool
    correct_by_question: Dict[int, bool] = field(default_factory=dict)


def keys_from_questions(questions: Iterable) -> List[QuestionKey]:
    """Build answer keys from loaded ``Question`` rows (options must be eager-loaded)."""
    return [
        QuestionKey(
            question_id=q.id,
            points=q.points,
            correct_option_ids=q.correct_option_ids,
            kind=q.kind,
        )
        for q in questions
    ]


def is_correct(key: QuestionKey, selected: Iterable[int]) -> bool:
    # Exact set match; no partial credit for subsets or supersets
    chosen = frozenset(selected or ())
    if key.kind == QuestionKind.SINGLE and len(chosen) != 1:
        return False
    return bool(chosen) and chosen == key.correct_option_ids


def percent(earned: int, total: int) -> int:
    """``earned / total * 100`` rounded half up."""
    if total <= 0:
        raise ConfigurationError("Quiz has no scorable points")
    value = Decimal(earned) * 100 / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score(
    questions: Sequence[QuestionKey],
    answers: Mapping[int, Iterable[int]],
    passing_score: int,
) -> ScoreResult:
    """Grade ``answers`` (question id -> selected option ids) against ``questions``.

    Unanswered questions are simply incorrect.
    """
    earned = 0
    total = 0
    correct_by_question: Dict[int, bool] = {}

    for key in questions:
        total += key.points
        ok = is_correct(key, answers.get(key.question_id, ()))
        correct_by_question[key.question_id] = ok
        if ok:
            earned += key.points

    score_percent = percent(earned, total)
    return ScoreResult(
        earned_points=earned,
        total_points=total,
        correct_count=sum(1 for ok in correct_by_question.values() if ok),
        question_count=len(questions),
        score_percent=score_percent,
        passed=score_percent >= passing_score,
        correct_by_question=correct_by_question,
    )
