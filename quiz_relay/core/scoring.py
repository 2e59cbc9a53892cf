"""Score computation and text-answer grading."""

from __future__ import annotations

from difflib import SequenceMatcher
import math
from typing import Sequence

from quiz_relay.constants.quiz_constants import (
    FILL_BLANK_SIMILARITY_THRESHOLD,
    OPEN_ENDED_SIMILARITY_THRESHOLD,
)
from quiz_relay.core.models import Answer, QuizType


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (``round`` would round to even)."""
    return math.floor(value + 0.5)


def count_answered(answers: Sequence[Answer | None]) -> int:
    return sum(1 for answer in answers if answer is not None)


def count_correct(answers: Sequence[Answer | None]) -> int:
    return sum(1 for answer in answers if answer is not None and answer.is_correct is True)


def calculate_score(answers: Sequence[Answer | None]) -> int | None:
    """Percentage of answered questions that are correct, or ``None`` if nothing was answered.

    Empty slots do not count against the user.
    """
    answered = count_answered(answers)
    if answered == 0:
        return None
    return round_half_up(100 * count_correct(answers) / answered)


def pad_answers(answers: Sequence[Answer | None], length: int) -> list[Answer | None]:
    padded = list(answers[:length])
    padded.extend([None] * (length - len(padded)))
    return padded


def calculate_similarity(first: str, second: str) -> int:
    """Similarity of two strings as a 0-100 percentage, ignoring case and outer whitespace."""
    left = (first or "").strip().lower()
    right = (second or "").strip().lower()
    if not left and not right:
        return 100
    if not left or not right:
        return 0
    if left == right:
        return 100
    return round_half_up(SequenceMatcher(None, left, right).ratio() * 100)


def evaluate_text_answer(
    quiz_type: QuizType,
    value: str,
    expected: str,
    time_spent: float = 0.0,
    fill_blank_threshold: float = FILL_BLANK_SIMILARITY_THRESHOLD,
    open_ended_threshold: float = OPEN_ENDED_SIMILARITY_THRESHOLD,
) -> Answer:
    """Grade a typed answer against the expected text.

    Fill-in-the-blank and open-ended answers are correct when their
    similarity is above the threshold for their type; every other quiz type
    needs an exact (case-insensitive) match.
    """
    similarity = calculate_similarity(value, expected)
    if quiz_type is QuizType.FILL_BLANK:
        is_correct = similarity > fill_blank_threshold
    elif quiz_type is QuizType.OPEN_ENDED:
        is_correct = similarity > open_ended_threshold
    else:
        is_correct = similarity == 100
    return Answer(value=value, time_spent=time_spent, is_correct=is_correct, similarity=float(similarity))
