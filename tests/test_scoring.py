import pytest

from core.exceptions import ConfigurationError
from services.scoring import QuestionKey, score, percent, is_correct


def single(qid, correct, points=1):
    return QuestionKey(question_id=qid, points=points, correct_option_ids=frozenset({correct}), kind="single")


def multiple(qid, correct, points=1):
    return QuestionKey(question_id=qid, points=points, correct_option_ids=frozenset(correct), kind="multiple")


@pytest.fixture
def three_questions():
    # Correct options are 11, 21, 31
    return [single(1, 11), single(2, 21), single(3, 31)]


def test_two_of_three_rounds_to_67_and_fails_at_70(three_questions):
    result = score(three_questions, {1: [11], 2: [21], 3: [32]}, passing_score=70)

    assert result.score_percent == 67
    assert result.passed is False
    assert result.correct_count == 2
    assert result.earned_points == 2
    assert result.total_points == 3


def test_all_correct_scores_100_and_passes(three_questions):
    result = score(three_questions, {1: [11], 2: [21], 3: [31]}, passing_score=70)

    assert result.score_percent == 100
    assert result.passed is True


def test_unanswered_questions_count_as_incorrect(three_questions):
    result = score(three_questions, {}, passing_score=70)

    assert result.score_percent == 0
    assert result.passed is False
    assert result.correct_by_question == {1: False, 2: False, 3: False}


def test_multiple_choice_requires_exact_set():
    key = multiple(1, {"A", "C"})

    assert is_correct(key, ["A", "C"])
    assert is_correct(key, ["C", "A"])
    assert not is_correct(key, ["A"])
    assert not is_correct(key, ["A", "B", "C"])
    assert not is_correct(key, [])


def test_single_choice_rejects_extra_selection():
    key = single(1, 11)

    assert is_correct(key, [11])
    assert not is_correct(key, [11, 12])


def test_points_weight_the_percentage():
    questions = [single(1, 11, points=3), single(2, 21, points=1)]

    result = score(questions, {1: [11]}, passing_score=75)

    assert result.earned_points == 3
    assert result.total_points == 4
    assert result.score_percent == 75
    assert result.passed is True


def test_percent_rounds_half_up():
    assert percent(1, 8) == 13  # 12.5
    assert percent(5, 8) == 63  # 62.5
    assert percent(1, 3) == 33


def test_passing_score_zero_always_passes(three_questions):
    assert score(three_questions, {}, passing_score=0).passed is True


def test_no_points_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        score([], {}, passing_score=50)
