"""Business logic for one device's quiz attempt, shared between the HTTP layer and the core."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import timedelta
import logging
from threading import Lock

from quiz_relay.constants.quiz_constants import (
    DEFAULT_GATED_QUIZ_TYPES,
    FILL_BLANK_SIMILARITY_THRESHOLD,
    OPEN_ENDED_SIMILARITY_THRESHOLD,
    PROGRESS_SNAPSHOT_MAX_AGE_DAYS,
)
from quiz_relay.constants.ui_constants import (
    COMPLETION_IN_PROGRESS_MESSAGE,
    NOT_INITIALIZED_MESSAGE,
    SIGN_IN_REQUIRED_MESSAGE,
)
from quiz_relay.core.models import (
    Answer,
    LifecycleState,
    QuizQuestion,
    QuizType,
    ReconcileState,
    SessionState,
)
from quiz_relay.core.scoring import evaluate_text_answer
from quiz_relay.core.services.auth_provider import AuthProvider
from quiz_relay.core.services.auth_redirect import (
    AuthRedirectCoordinator,
    has_return_marker,
    strip_return_marker,
)
from quiz_relay.core.services.completion import CompletionEngine
from quiz_relay.core.services.guest_reconciler import GuestResultReconciler, ReconcileOutcome
from quiz_relay.core.services.quiz_session import QuizSession
from quiz_relay.core.services.quiz_storage import QuizRelayStorage
from quiz_relay.core.services.relay_store import RelayStore
from quiz_relay.core.services.result_store import RemoteResultStore

logger = logging.getLogger(__name__)


class QuizManager:
    """Facade for quiz services: Session, Completion, Reconciler and Redirects.

    Every session mutation happens under ``_lock``. Remote calls run with the
    lock released; the session's ``completion_in_progress`` latch keeps a
    second ``complete`` from slipping in meanwhile.
    """

    def __init__(
        self,
        relay_store: RelayStore,
        result_store: RemoteResultStore,
        auth: AuthProvider,
        gated_quiz_types: Collection[QuizType] = DEFAULT_GATED_QUIZ_TYPES,
        progress_max_age_days: int = PROGRESS_SNAPSHOT_MAX_AGE_DAYS,
        fill_blank_threshold: float = FILL_BLANK_SIMILARITY_THRESHOLD,
        open_ended_threshold: float = OPEN_ENDED_SIMILARITY_THRESHOLD,
        session: QuizSession | None = None,
    ) -> None:
        self._lock = Lock()
        self._auth = auth
        self._progress_max_age = timedelta(days=progress_max_age_days)
        self._fill_blank_threshold = fill_blank_threshold
        self._open_ended_threshold = open_ended_threshold

        # Services
        self._storage = QuizRelayStorage(relay_store)
        self._session = session or QuizSession()
        self._redirects = AuthRedirectCoordinator(self._storage, auth)
        self._completion = CompletionEngine(self._storage, result_store, auth, gated_quiz_types)
        self._reconciler = GuestResultReconciler(
            self._storage, result_store, auth, self._redirects, gated_quiz_types
        )

    @property
    def storage(self) -> QuizRelayStorage:
        return self._storage

    # --- Session Delegation ---

    def initialize(
        self,
        quiz_id: str,
        slug: str,
        quiz_type: QuizType,
        question_count: int,
        quiz_data: Sequence[QuizQuestion] | None = None,
        resume: bool = False,
    ) -> SessionState:
        """Start an attempt; raises ``QuizUnavailableError`` for a quiz that cannot run.

        A durable completion marker for the quiz means the attempt already
        finished on this device, so its results are loaded instead.
        """
        with self._lock:
            if self._session.state.completion_in_progress:
                self._session.fail(COMPLETION_IN_PROGRESS_MESSAGE)
                return self._session.snapshot()
            self._storage.purge_stale_progress(self._progress_max_age)
            self._session.initialize(quiz_id, slug, quiz_type, question_count, quiz_data)
            self._reconciler.reset()
            already_completed = self._storage.is_marked_completed(quiz_id)
            if resume and not already_completed:
                snapshot = self._storage.load_progress(self._session.state.quiz_type, quiz_id)
                if snapshot is not None and self._session.restore_progress(snapshot):
                    logger.info("Resumed quiz %s at question %d", quiz_id, snapshot.current_question_index)
            if not already_completed:
                return self._session.snapshot()

        if self._auth.is_authenticated():
            outcome = self._run_reconcile(None)
            if outcome.result is None:
                # Nothing to show anywhere; let the next visit start a fresh attempt.
                self._storage.clear_completed_marker(quiz_id)
            return self.get_state()
        return self._restore_guest_result()

    def get_state(self) -> SessionState:
        with self._lock:
            return self._session.snapshot()

    def is_completing(self) -> bool:
        with self._lock:
            return self._session.state.completion_in_progress

    def get_current_question(self) -> QuizQuestion | None:
        with self._lock:
            return self._session.get_current_question()

    def record_answer(self, index: int, answer: Answer) -> SessionState:
        with self._lock:
            if self._session.record_answer(index, answer):
                self._save_progress()
            return self._session.snapshot()

    def record_text_answer(self, index: int, value: str, time_spent: float = 0.0) -> SessionState:
        """Grade typed text against the question's expected answer, then record it."""
        with self._lock:
            state = self._session.state
            expected = None
            if 0 <= index < len(state.questions):
                expected = state.questions[index].answer
            if expected is None:
                answer = Answer(value=value, time_spent=time_spent, is_correct=False)
            else:
                answer = evaluate_text_answer(
                    state.quiz_type,
                    value,
                    expected,
                    time_spent=time_spent,
                    fill_blank_threshold=self._fill_blank_threshold,
                    open_ended_threshold=self._open_ended_threshold,
                )
            if self._session.record_answer(index, answer):
                self._save_progress()
            return self._session.snapshot()

    def advance(self, delta: int = 1) -> SessionState:
        with self._lock:
            self._session.advance(delta)
            if self._session.accepts_answers():
                self._save_progress()
            return self._session.snapshot()

    def reset(self) -> SessionState:
        """Start the quiz over; refused while a completion is still saving."""
        with self._lock:
            state = self._session.state
            if state.completion_in_progress:
                self._session.fail(COMPLETION_IN_PROGRESS_MESSAGE)
                return self._session.snapshot()
            if self._session.is_initialized():
                self._storage.clear_quiz_keys(state.quiz_id, state.quiz_type)
            self._session.reset()
            self._reconciler.reset()
            return self._session.snapshot()

    # --- Completion Delegation ---

    def complete(
        self,
        final_answers: Sequence[Answer | None] | None = None,
        explicit_score: float | None = None,
    ) -> SessionState:
        """Finish the attempt once; duplicate calls while one is running are dropped.

        Without ``final_answers`` the answers recorded so far are used.
        """
        with self._lock:
            if final_answers is None:
                final_answers = list(self._session.state.answers)
            ticket = self._completion.begin(self._session, final_answers, explicit_score)
            if ticket is None:
                return self._session.snapshot()

        try:
            outcome = self._completion.settle(ticket)
        except Exception:
            logger.exception("Completing quiz %s failed", ticket.result.quiz_id)
            outcome = CompletionEngine.failed_outcome(ticket.result)

        with self._lock:
            self._completion.finish(self._session, outcome)
            return self._session.snapshot()

    # --- Sign-in Delegation ---

    def require_authentication(self, redirect_path: str) -> str | None:
        """Save what is needed to resume and hand over to the sign-in provider."""
        with self._lock:
            if not self._session.is_initialized():
                self._session.fail(NOT_INITIALIZED_MESSAGE)
                return None
            return_url = self._redirects.require_authentication(self._session.state, redirect_path)
            if return_url is not None:
                self._session.mark_redirecting()
            return return_url

    def handle_return(self, current_url: str) -> str:
        """Reconcile when ``current_url`` marks a return from sign-in; return the URL to show next."""
        with self._lock:
            initialized = self._session.is_initialized()
        if not initialized or not self._redirects.is_returning(current_url):
            if self._auth.is_authenticated() and has_return_marker(current_url):
                logger.debug("Return marker on %s has no pending sign-in; dropping it", current_url)
                return strip_return_marker(current_url)
            return current_url
        outcome = self._run_reconcile(current_url)
        return outcome.clean_url or strip_return_marker(current_url)

    def retry_loading_results(self) -> SessionState:
        with self._lock:
            if not self._session.is_initialized():
                self._session.fail(NOT_INITIALIZED_MESSAGE)
                return self._session.snapshot()
            if not self._auth.is_authenticated():
                self._session.fail(SIGN_IN_REQUIRED_MESSAGE)
                return self._session.snapshot()
        self._run_reconcile(None)
        return self.get_state()

    def handle_sign_out(self) -> None:
        with self._lock:
            self._storage.clear_all_quiz_data()

    # --- Internals ---

    def _run_reconcile(self, current_url: str | None) -> ReconcileOutcome:
        with self._lock:
            state = self._session.state
            quiz_id, slug = state.quiz_id, state.slug
            self._session.set_reconcile_state(ReconcileState.DETECTING_RETURN)
        outcome = self._reconciler.reconcile(quiz_id, slug, current_url)
        with self._lock:
            self._apply_reconcile(outcome)
        return outcome

    def _apply_reconcile(self, outcome: ReconcileOutcome) -> None:
        session = self._session
        session.set_reconcile_state(outcome.state)
        if outcome.result is not None:
            if outcome.is_canonical:
                session.apply_result(outcome.result, LifecycleState.SHOWING_RESULTS)
            elif outcome.requires_auth:
                session.apply_result(
                    outcome.result, LifecycleState.PREPARING_RESULTS, requires_auth=True, has_guest_result=True
                )
            else:
                session.apply_result(outcome.result, LifecycleState.SHOWING_RESULTS, has_guest_result=True)
        session.state.error = outcome.error
        session.set_warning(outcome.warning)

    def _restore_guest_result(self) -> SessionState:
        with self._lock:
            state = self._session.state
            guest_result = self._storage.load_guest_result(state.quiz_id)
            if guest_result is None:
                logger.info("Completion marker for quiz %s has no stored result; starting fresh", state.quiz_id)
                self._storage.clear_completed_marker(state.quiz_id)
                return self._session.snapshot()
            if self._completion.is_gated(guest_result.quiz_type):
                self._session.apply_result(
                    guest_result, LifecycleState.PREPARING_RESULTS, requires_auth=True, has_guest_result=True
                )
            else:
                self._session.apply_result(guest_result, LifecycleState.SHOWING_RESULTS, has_guest_result=True)
            return self._session.snapshot()

    def _save_progress(self) -> None:
        self._storage.save_progress(self._session.progress_snapshot())
