"""Moves a guest result into the signed-in user's account after sign-in.

Steps run strictly in order: the guest result is submitted before the
canonical result is fetched, since fetching first could race the store's own
write. Submission is at-least-once; the result store treats a resubmission
of the same attempt as a no-op, so a guest copy left behind by an
interrupted cleanup is safe to send again.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable

from quiz_relay.constants.quiz_constants import DEFAULT_GATED_QUIZ_TYPES
from quiz_relay.constants.ui_constants import (
    MIGRATION_FAILED_WARNING,
    NO_SAVED_RESULTS_MESSAGE,
    NOT_YET_SAVED_MESSAGE,
    SIGN_IN_REQUIRED_MESSAGE,
    UNEXPECTED_ERROR_TEMPLATE,
)
from quiz_relay.core.models import PendingRedirectPacket, QuizResult, QuizType, ReconcileState
from quiz_relay.core.scoring import calculate_score, count_answered
from quiz_relay.core.services.auth_provider import AuthProvider
from quiz_relay.core.services.auth_redirect import AuthRedirectCoordinator, strip_return_marker
from quiz_relay.core.services.quiz_storage import QuizRelayStorage
from quiz_relay.core.services.result_store import RemoteResultStore, ResultStoreError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ReconcileOutcome:
    """Where reconciliation ended and what the session should show.

    ``result`` is the canonical result when ``is_canonical`` is set, or the
    guest result kept on the device otherwise.
    """

    state: ReconcileState
    result: QuizResult | None = None
    is_canonical: bool = False
    requires_auth: bool = False
    error: str | None = None
    warning: str | None = None
    clean_url: str | None = None


class GuestResultReconciler:
    def __init__(
        self,
        storage: QuizRelayStorage,
        result_store: RemoteResultStore,
        auth: AuthProvider,
        redirects: AuthRedirectCoordinator,
        gated_quiz_types: Collection[QuizType] = DEFAULT_GATED_QUIZ_TYPES,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self._result_store = result_store
        self._auth = auth
        self._redirects = redirects
        self._gated_quiz_types = frozenset(gated_quiz_types)
        self._wall_clock = wall_clock
        self._state = ReconcileState.IDLE

    @property
    def state(self) -> ReconcileState:
        return self._state

    def reset(self) -> None:
        self._state = ReconcileState.IDLE

    def reconcile(self, quiz_id: str, slug: str, current_url: str | None = None) -> ReconcileOutcome:
        """Run the whole flow for one quiz; never raises."""
        self._transition(ReconcileState.DETECTING_RETURN, quiz_id)
        try:
            outcome = self._run(quiz_id, slug)
        except Exception as exc:
            logger.exception("Reconciling results for quiz %s failed", quiz_id)
            self._transition(ReconcileState.FAILED, quiz_id)
            outcome = ReconcileOutcome(
                state=ReconcileState.FAILED,
                error=UNEXPECTED_ERROR_TEMPLATE.format(error=exc),
            )
        if current_url is not None:
            outcome.clean_url = strip_return_marker(current_url)
        return outcome

    def _run(self, quiz_id: str, slug: str) -> ReconcileOutcome:
        if not self._auth.is_authenticated():
            return self._guest_fallback(quiz_id)
        user_id = self._auth.current_user_id() or ""

        packet = self._redirects.consume_return(quiz_id)
        guest_result = self._storage.load_guest_result(quiz_id)
        pending = guest_result
        if pending is None and packet is not None:
            if count_answered(packet.answers) > 0:
                pending = self._result_from_packet(packet)
            else:
                logger.info("Sign-in packet for quiz %s holds no answers; nothing to transfer", quiz_id)

        warning = None
        if pending is not None:
            self._transition(ReconcileState.MIGRATING_GUEST_RESULT, quiz_id)
            try:
                self._result_store.submit_result(pending, user_id)
            except ResultStoreError as exc:
                logger.warning("Guest result for quiz %s was not transferred: %s", quiz_id, exc)
                warning = MIGRATION_FAILED_WARNING
                if guest_result is None:
                    # The packet is gone now; keep its result for the next attempt.
                    self._storage.save_guest_result(pending)
            else:
                self._storage.clear_guest_result(quiz_id)
                logger.info("Guest result for quiz %s transferred to user %s", quiz_id, user_id)

        self._transition(ReconcileState.FETCHING_CANONICAL, quiz_id)
        canonical = self._result_store.fetch_result(quiz_id, slug, user_id)
        if canonical is not None and canonical.answered_count > 0:
            self._storage.clear_completed_marker(quiz_id)
            self._transition(ReconcileState.DONE, quiz_id)
            return ReconcileOutcome(
                state=ReconcileState.DONE,
                result=canonical,
                is_canonical=True,
                warning=warning,
            )

        leftover = self._storage.load_guest_result(quiz_id)
        self._transition(ReconcileState.FAILED, quiz_id)
        return ReconcileOutcome(
            state=ReconcileState.FAILED,
            result=leftover,
            error=NOT_YET_SAVED_MESSAGE if leftover is not None else NO_SAVED_RESULTS_MESSAGE,
            warning=warning,
        )

    def _guest_fallback(self, quiz_id: str) -> ReconcileOutcome:
        logger.info("User is not signed in; keeping guest results for quiz %s", quiz_id)
        guest_result = self._storage.load_guest_result(quiz_id)
        self._transition(ReconcileState.FAILED, quiz_id)
        return ReconcileOutcome(
            state=ReconcileState.FAILED,
            result=guest_result,
            requires_auth=guest_result is not None and guest_result.quiz_type in self._gated_quiz_types,
            error=SIGN_IN_REQUIRED_MESSAGE,
        )

    def _result_from_packet(self, packet: PendingRedirectPacket) -> QuizResult:
        score = packet.score if packet.score is not None else calculate_score(packet.answers)
        return QuizResult(
            quiz_id=packet.quiz_id,
            slug=packet.slug,
            quiz_type=packet.quiz_type,
            score=score or 0,
            answers=list(packet.answers),
            total_time=sum(answer.time_spent for answer in packet.answers if answer is not None),
            total_questions=len(packet.answers),
            completed_at=self._wall_clock(),
        )

    def _transition(self, state: ReconcileState, quiz_id: str) -> None:
        logger.debug("Reconcile quiz %s: %s -> %s", quiz_id, self._state.value, state.value)
        self._state = state
