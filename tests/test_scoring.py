from __future__ import annotations

import pytest

from conftest import right, wrong
from quiz_relay.core.models import QuizType
from quiz_relay.core.scoring import (
    calculate_score,
    calculate_similarity,
    evaluate_text_answer,
    pad_answers,
    round_half_up,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(66.5, 67), (66.49, 66), (12.5, 13), (0.0, 0), (100.0, 100)],
)
def test_round_half_up(value: float, expected: int) -> None:
    assert round_half_up(value) == expected


def test_score_counts_only_answered_questions() -> None:
    assert calculate_score([right(), right(), wrong()]) == 67
    assert calculate_score([right(), wrong(), right(), None]) == 67
    assert calculate_score([right(), None, wrong(), None]) == 50
    assert calculate_score([right(), None]) == 100


def test_score_is_none_without_answers() -> None:
    assert calculate_score([]) is None
    assert calculate_score([None, None]) is None


def test_pad_answers_fills_and_truncates() -> None:
    answer = right()
    assert pad_answers([answer], 3) == [answer, None, None]
    assert pad_answers([answer, answer, answer], 2) == [answer, answer]


def test_similarity_ignores_case_and_outer_whitespace() -> None:
    assert calculate_similarity("Paris", "  paris ") == 100
    assert calculate_similarity("", "") == 100
    assert calculate_similarity("", "paris") == 0
    assert 0 < calculate_similarity("paris", "parish") < 100


def test_fill_blank_accepts_close_spelling() -> None:
    answer = evaluate_text_answer(QuizType.FILL_BLANK, "photosynthesys", "photosynthesis", time_spent=4.0)

    assert answer.is_correct is True
    assert answer.similarity == 93.0
    assert answer.time_spent == 4.0


def test_fill_blank_rejects_unrelated_text() -> None:
    answer = evaluate_text_answer(QuizType.FILL_BLANK, "cat", "photosynthesis")
    assert answer.is_correct is False


def test_open_ended_uses_its_own_threshold() -> None:
    answer = evaluate_text_answer(QuizType.OPEN_ENDED, "the mitochondria", "mitochondria")
    assert answer.is_correct is True

    strict = evaluate_text_answer(QuizType.OPEN_ENDED, "the mitochondria", "mitochondria", open_ended_threshold=90)
    assert strict.is_correct is False


def test_other_types_need_an_exact_match() -> None:
    assert evaluate_text_answer(QuizType.MCQ, "Paris ", "paris").is_correct is True
    assert evaluate_text_answer(QuizType.MCQ, "Pariss", "paris").is_correct is False
