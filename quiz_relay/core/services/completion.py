"""Completion engine: scores an attempt and decides where its result goes.

Completion runs in three steps so the caller can hold its lock around the
state changes and release it around the remote call:

``begin``
    validates the answers, computes the score and takes the single-flight
    latch on the session.
``settle``
    checks authentication *now*, then submits the result or keeps it as a
    guest result. Touches storage and the network, never the session.
``finish``
    applies the outcome to the session and releases the latch.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
import logging

from quiz_relay.constants.quiz_constants import DEFAULT_GATED_QUIZ_TYPES
from quiz_relay.constants.ui_constants import (
    INVALID_ANSWERS_MESSAGE,
    NO_ANSWERS_MESSAGE,
    NOT_INITIALIZED_MESSAGE,
    SAVE_FAILED_MESSAGE,
    TOO_MANY_ANSWERS_MESSAGE,
)
from quiz_relay.core.models import Answer, LifecycleState, QuizResult, QuizType
from quiz_relay.core.scoring import calculate_score, count_answered, pad_answers
from quiz_relay.core.services.auth_provider import AuthProvider
from quiz_relay.core.services.quiz_session import QuizSession
from quiz_relay.core.services.quiz_storage import QuizRelayStorage
from quiz_relay.core.services.result_store import RemoteResultStore, ResultStoreError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionTicket:
    """Issued by ``begin`` to the caller that won the latch."""

    result: QuizResult


@dataclass(slots=True)
class CompletionOutcome:
    result: QuizResult
    lifecycle_state: LifecycleState
    requires_auth: bool
    has_guest_result: bool
    error: str | None = None


class CompletionEngine:
    def __init__(
        self,
        storage: QuizRelayStorage,
        result_store: RemoteResultStore,
        auth: AuthProvider,
        gated_quiz_types: Collection[QuizType] = DEFAULT_GATED_QUIZ_TYPES,
    ) -> None:
        self._storage = storage
        self._result_store = result_store
        self._auth = auth
        self._gated_quiz_types = frozenset(gated_quiz_types)

    def is_gated(self, quiz_type: QuizType) -> bool:
        return quiz_type in self._gated_quiz_types

    def begin(
        self,
        session: QuizSession,
        final_answers: Sequence[Answer | None],
        explicit_score: float | None = None,
    ) -> CompletionTicket | None:
        state = session.state
        if not session.is_initialized():
            session.fail(NOT_INITIALIZED_MESSAGE)
            return None
        if state.is_completed or state.completion_in_progress:
            logger.info("Dropping duplicate completion for quiz %s", state.quiz_id)
            return None
        if not isinstance(final_answers, (list, tuple)) or any(
            answer is not None and not isinstance(answer, Answer) for answer in final_answers
        ):
            session.fail(INVALID_ANSWERS_MESSAGE)
            return None
        if len(final_answers) > state.question_count:
            session.fail(TOO_MANY_ANSWERS_MESSAGE)
            return None
        if count_answered(final_answers) == 0:
            session.fail(NO_ANSWERS_MESSAGE)
            return None

        answers = pad_answers(final_answers, state.question_count)
        score = explicit_score if explicit_score is not None else calculate_score(answers)
        result = session.build_result(answers, score)
        if not session.start_completion(answers, score):
            return None
        return CompletionTicket(result=result)

    def settle(self, ticket: CompletionTicket) -> CompletionOutcome:
        result = ticket.result
        # The result is kept on the device until the store has accepted it.
        self._storage.save_guest_result(result)
        self._storage.clear_progress(result.quiz_type, result.quiz_id)
        try:
            if self._auth.is_authenticated():
                return self._submit(result)
            gated = self.is_gated(result.quiz_type)
            logger.info(
                "Guest finished quiz %s; results %s", result.quiz_id, "withheld until sign-in" if gated else "shown"
            )
            return CompletionOutcome(
                result=result,
                lifecycle_state=LifecycleState.PREPARING_RESULTS if gated else LifecycleState.SHOWING_RESULTS,
                requires_auth=gated,
                has_guest_result=True,
            )
        finally:
            self._storage.mark_completed(result.quiz_id)

    def finish(self, session: QuizSession, outcome: CompletionOutcome) -> None:
        session.finish_completion(
            outcome.result,
            lifecycle_state=outcome.lifecycle_state,
            requires_auth=outcome.requires_auth,
            has_guest_result=outcome.has_guest_result,
            error=outcome.error,
        )

    def _submit(self, result: QuizResult) -> CompletionOutcome:
        user_id = self._auth.current_user_id() or ""
        try:
            self._result_store.submit_result(result, user_id)
        except ResultStoreError as exc:
            logger.warning("Saving result for quiz %s failed: %s", result.quiz_id, exc)
            return self.failed_outcome(result)
        except Exception:
            logger.exception("Unexpected error saving result for quiz %s", result.quiz_id)
            return self.failed_outcome(result)
        self._storage.clear_guest_result(result.quiz_id)
        return CompletionOutcome(
            result=result,
            lifecycle_state=LifecycleState.SHOWING_RESULTS,
            requires_auth=False,
            has_guest_result=False,
        )

    @staticmethod
    def failed_outcome(result: QuizResult) -> CompletionOutcome:
        return CompletionOutcome(
            result=result,
            lifecycle_state=LifecycleState.PREPARING_RESULTS,
            requires_auth=False,
            has_guest_result=True,
            error=SAVE_FAILED_MESSAGE,
        )
