"""Service holding the state machine of one quiz attempt."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Callable, Sequence

from quiz_relay.constants.ui_constants import ANSWER_INDEX_MESSAGE_TEMPLATE
from quiz_relay.core.models import (
    Answer,
    LifecycleState,
    ProgressSnapshot,
    QuizQuestion,
    QuizResult,
    QuizType,
    ReconcileState,
    SessionState,
)
from quiz_relay.core.scoring import pad_answers

logger = logging.getLogger(__name__)


class QuizUnavailableError(ValueError):
    """Raised when a quiz cannot be started at all (no identifier or no questions)."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuizSession:
    """Manages the state of an active quiz attempt.

    The session never raises for malformed input once initialized; problems
    are reported through ``state.error`` so the UI can retry or restart.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._wall_clock = wall_clock
        self._state = SessionState()
        self._last_mark: float = clock()

    @property
    def state(self) -> SessionState:
        return self._state

    def is_initialized(self) -> bool:
        return self._state.question_count > 0

    def initialize(
        self,
        quiz_id: str,
        slug: str,
        quiz_type: QuizType,
        question_count: int,
        quiz_data: Sequence[QuizQuestion] | None = None,
    ) -> None:
        if not quiz_id:
            raise QuizUnavailableError("Quiz identifier missing.")
        if question_count <= 0:
            raise QuizUnavailableError("Quiz has no questions.")
        questions = list(quiz_data or [])
        if questions and len(questions) != question_count:
            raise QuizUnavailableError(
                f"Quiz declares {question_count} questions but {len(questions)} were provided."
            )

        self._state = SessionState(
            quiz_id=quiz_id,
            slug=slug,
            quiz_type=QuizType(quiz_type),
            question_count=question_count,
            questions=questions,
            answers=[None] * question_count,
            time_spent_per_question=[0.0] * question_count,
            start_time=self._wall_clock(),
        )
        self._last_mark = self._clock()
        logger.info("Initialized %s quiz %s (%d questions)", self._state.quiz_type.value, quiz_id, question_count)

    def reset(self) -> None:
        """Start the same quiz over, keeping its identity and questions."""
        state = self._state
        self._state = SessionState(
            quiz_id=state.quiz_id,
            slug=state.slug,
            quiz_type=state.quiz_type,
            question_count=state.question_count,
            questions=state.questions,
            answers=[None] * state.question_count,
            time_spent_per_question=[0.0] * state.question_count,
            start_time=self._wall_clock(),
        )
        self._last_mark = self._clock()

    def accepts_answers(self) -> bool:
        state = self._state
        return self.is_initialized() and not state.is_completed and not state.completion_in_progress

    def record_answer(self, index: int, answer: Answer) -> bool:
        """Store ``answer`` for question ``index`` without moving on."""
        state = self._state
        if not 0 <= index < state.question_count:
            self.fail(ANSWER_INDEX_MESSAGE_TEMPLATE.format(index=index))
            return False
        if not self.accepts_answers():
            logger.debug("Ignoring answer for question %d: quiz %s is completing", index, state.quiz_id)
            return False
        state.answers[index] = answer
        state.error = None
        return True

    def get_current_question(self) -> QuizQuestion | None:
        state = self._state
        if 0 <= state.current_question_index < len(state.questions):
            return state.questions[state.current_question_index]
        return None

    def advance(self, delta: int = 1) -> int:
        """Credit elapsed time to the current question, then move by ``delta`` (clamped)."""
        state = self._state
        if not self.is_initialized():
            return 0
        now = self._clock()
        state.time_spent_per_question[state.current_question_index] += max(0.0, now - self._last_mark)
        self._last_mark = now
        target = state.current_question_index + delta
        state.current_question_index = min(max(target, 0), state.question_count - 1)
        return state.current_question_index

    def fail(self, message: str) -> None:
        logger.info("Quiz %s: %s", self._state.quiz_id or "<none>", message)
        self._state.error = message

    def set_warning(self, message: str | None) -> None:
        self._state.warning = message

    # --- Progress snapshots ---

    def progress_snapshot(self) -> ProgressSnapshot:
        state = self._state
        return ProgressSnapshot(
            quiz_id=state.quiz_id,
            slug=state.slug,
            quiz_type=state.quiz_type,
            current_question_index=state.current_question_index,
            answers=list(state.answers),
            time_spent_per_question=list(state.time_spent_per_question),
            updated_at=self._wall_clock(),
        )

    def restore_progress(self, snapshot: ProgressSnapshot) -> bool:
        state = self._state
        if (
            snapshot.quiz_id != state.quiz_id
            or len(snapshot.answers) != state.question_count
            or len(snapshot.time_spent_per_question) != state.question_count
            or not 0 <= snapshot.current_question_index < state.question_count
        ):
            logger.warning("Ignoring progress snapshot that does not fit quiz %s", state.quiz_id)
            return False
        state.answers = list(snapshot.answers)
        state.time_spent_per_question = [max(0.0, value) for value in snapshot.time_spent_per_question]
        state.current_question_index = snapshot.current_question_index
        self._last_mark = self._clock()
        return True

    # --- Completion ---

    def build_result(self, answers: Sequence[Answer | None], score: float) -> QuizResult:
        state = self._state
        elapsed_current = max(0.0, self._clock() - self._last_mark)
        return QuizResult(
            quiz_id=state.quiz_id,
            slug=state.slug,
            quiz_type=state.quiz_type,
            score=score,
            answers=pad_answers(answers, state.question_count),
            total_time=sum(state.time_spent_per_question) + elapsed_current,
            total_questions=state.question_count,
            completed_at=self._wall_clock(),
        )

    def start_completion(self, answers: Sequence[Answer | None], score: float) -> bool:
        """Take the single-flight latch; ``False`` when a completion already ran or is running."""
        state = self._state
        if state.is_completed or state.completion_in_progress:
            return False
        state.completion_in_progress = True
        state.answers = pad_answers(answers, state.question_count)
        state.score = score
        state.error = None
        state.lifecycle_state = LifecycleState.COMPLETING
        return True

    def finish_completion(
        self,
        result: QuizResult,
        lifecycle_state: LifecycleState,
        requires_auth: bool,
        has_guest_result: bool,
        error: str | None = None,
    ) -> None:
        state = self._state
        state.completion_in_progress = False
        state.is_completed = True
        state.result = result
        state.score = result.score
        state.requires_auth = requires_auth
        state.has_guest_result = has_guest_result
        state.auth_check_complete = True
        state.lifecycle_state = lifecycle_state
        state.error = error
        logger.info(
            "Quiz %s completed with score %s (%s)", state.quiz_id, result.score, lifecycle_state.value
        )

    def apply_result(
        self,
        result: QuizResult,
        lifecycle_state: LifecycleState,
        requires_auth: bool = False,
        has_guest_result: bool = False,
    ) -> None:
        """Hydrate the session from a stored result (canonical or guest)."""
        state = self._state
        state.answers = pad_answers(result.answers, state.question_count)
        state.score = result.score
        state.result = result
        state.is_completed = True
        state.completion_in_progress = False
        state.requires_auth = requires_auth
        state.has_guest_result = has_guest_result
        state.auth_check_complete = True
        state.pending_auth_required = False
        state.lifecycle_state = lifecycle_state

    def mark_redirecting(self) -> None:
        """Flag the pending sign-in; a completed attempt keeps its results lifecycle."""
        self._state.pending_auth_required = True
        if not self._state.is_completed:
            self._state.lifecycle_state = LifecycleState.REDIRECTING

    def set_reconcile_state(self, reconcile_state: ReconcileState) -> None:
        self._state.reconcile_state = reconcile_state

    def snapshot(self) -> SessionState:
        """Return a copy safe to hand to callers outside the manager lock."""
        state = self._state
        return SessionState(
            quiz_id=state.quiz_id,
            slug=state.slug,
            quiz_type=state.quiz_type,
            question_count=state.question_count,
            questions=list(state.questions),
            current_question_index=state.current_question_index,
            answers=list(state.answers),
            time_spent_per_question=list(state.time_spent_per_question),
            lifecycle_state=state.lifecycle_state,
            is_completed=state.is_completed,
            score=state.score,
            requires_auth=state.requires_auth,
            has_guest_result=state.has_guest_result,
            auth_check_complete=state.auth_check_complete,
            pending_auth_required=state.pending_auth_required,
            completion_in_progress=state.completion_in_progress,
            start_time=state.start_time,
            result=state.result,
            reconcile_state=state.reconcile_state,
            error=state.error,
            warning=state.warning,
        )
