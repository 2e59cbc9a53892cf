from __future__ import annotations

import pytest

from conftest import FIXED_NOW, make_result, right, wrong
from quiz_relay.constants.ui_constants import (
    MIGRATION_FAILED_WARNING,
    NO_SAVED_RESULTS_MESSAGE,
    NOT_YET_SAVED_MESSAGE,
    SIGN_IN_REQUIRED_MESSAGE,
)
from quiz_relay.core.models import PendingRedirectPacket, QuizType, ReconcileState
from quiz_relay.core.services.auth_redirect import AuthRedirectCoordinator
from quiz_relay.core.services.guest_reconciler import GuestResultReconciler


@pytest.fixture
def reconciler(storage, result_store, auth) -> GuestResultReconciler:
    return GuestResultReconciler(
        storage,
        result_store,
        auth,
        AuthRedirectCoordinator(storage, auth),
        wall_clock=lambda: FIXED_NOW,
    )


def test_guest_result_is_migrated_then_fetched(reconciler, storage, result_store, auth) -> None:
    guest = make_result()
    storage.save_guest_result(guest)
    storage.mark_completed("quiz-1")
    auth.sign_in("user-1")

    outcome = reconciler.reconcile("quiz-1", "intro", "/quiz/mcq/intro?completed=true")

    assert outcome.state is ReconcileState.DONE
    assert outcome.is_canonical is True
    assert outcome.result == guest
    assert outcome.clean_url == "/quiz/mcq/intro"
    assert outcome.error is None
    assert result_store.submissions == [(guest, "user-1")]
    assert result_store.fetches == [("quiz-1", "intro", "user-1")]
    assert storage.load_guest_result("quiz-1") is None
    assert storage.is_marked_completed("quiz-1") is False
    assert reconciler.state is ReconcileState.DONE


def test_second_reconcile_does_not_resubmit(reconciler, storage, result_store, auth) -> None:
    storage.save_guest_result(make_result())
    auth.sign_in("user-1")

    reconciler.reconcile("quiz-1", "intro")
    outcome = reconciler.reconcile("quiz-1", "intro")

    assert outcome.state is ReconcileState.DONE
    assert len(result_store.submissions) == 1


def test_packet_is_migrated_when_guest_copy_is_missing(reconciler, storage, result_store, auth) -> None:
    storage.save_pending_packet(
        PendingRedirectPacket(
            quiz_id="quiz-1",
            slug="intro",
            quiz_type=QuizType.MCQ,
            answers=[right(), wrong(), None],
            score=None,
            redirect_url="/quiz/mcq/intro?completed=true",
        )
    )
    auth.sign_in("user-1")

    outcome = reconciler.reconcile("quiz-1", "intro")

    submitted, _ = result_store.submissions[0]
    assert submitted.score == 50
    assert submitted.total_questions == 3
    assert submitted.completed_at == FIXED_NOW
    assert outcome.state is ReconcileState.DONE
    assert storage.load_pending_packet() is None


def test_migration_failure_keeps_guest_copy(reconciler, storage, result_store, auth) -> None:
    guest = make_result()
    storage.save_guest_result(guest)
    auth.sign_in("user-1")
    result_store.fail_submit = True

    outcome = reconciler.reconcile("quiz-1", "intro")

    assert outcome.state is ReconcileState.FAILED
    assert outcome.result == guest
    assert outcome.is_canonical is False
    assert outcome.error == NOT_YET_SAVED_MESSAGE
    assert outcome.warning == MIGRATION_FAILED_WARNING
    assert storage.load_guest_result("quiz-1") == guest

    result_store.fail_submit = False
    retried = reconciler.reconcile("quiz-1", "intro")

    assert retried.state is ReconcileState.DONE
    assert storage.load_guest_result("quiz-1") is None


def test_failed_packet_migration_saves_guest_copy(reconciler, storage, result_store, auth) -> None:
    storage.save_pending_packet(
        PendingRedirectPacket(
            quiz_id="quiz-1",
            slug="intro",
            quiz_type=QuizType.MCQ,
            answers=[right()],
            score=100,
            redirect_url="/quiz/mcq/intro?completed=true",
        )
    )
    auth.sign_in("user-1")
    result_store.fail_submit = True

    outcome = reconciler.reconcile("quiz-1", "intro")

    assert outcome.state is ReconcileState.FAILED
    assert storage.load_pending_packet() is None
    assert storage.load_guest_result("quiz-1").score == 100


def test_nothing_to_show_reports_no_saved_results(reconciler, auth) -> None:
    auth.sign_in("user-1")

    outcome = reconciler.reconcile("quiz-1", "intro")

    assert outcome.state is ReconcileState.FAILED
    assert outcome.result is None
    assert outcome.error == NO_SAVED_RESULTS_MESSAGE


def test_fetch_error_is_reported_not_raised(reconciler, storage, result_store, auth) -> None:
    storage.save_guest_result(make_result())
    auth.sign_in("user-1")
    result_store.fail_fetch = True

    outcome = reconciler.reconcile("quiz-1", "intro", "/quiz/mcq/intro?completed=true")

    assert outcome.state is ReconcileState.FAILED
    assert outcome.error.startswith("Failed to load results:")
    assert outcome.clean_url == "/quiz/mcq/intro"


def test_guest_falls_back_when_sign_in_has_not_landed(reconciler, storage, result_store) -> None:
    storage.save_guest_result(make_result())

    outcome = reconciler.reconcile("quiz-1", "intro")

    assert outcome.state is ReconcileState.FAILED
    assert outcome.requires_auth is True
    assert outcome.result is not None
    assert outcome.error == SIGN_IN_REQUIRED_MESSAGE
    assert result_store.submissions == []
    assert result_store.fetches == []


def test_canonical_result_without_answers_is_not_shown(reconciler, result_store, auth) -> None:
    result_store.submit_result(make_result(answers=[None, None], score=0), "user-1")
    auth.sign_in("user-1")

    outcome = reconciler.reconcile("quiz-1", "intro")

    assert outcome.state is ReconcileState.FAILED
    assert outcome.error == NO_SAVED_RESULTS_MESSAGE


def test_empty_packet_does_not_replace_saved_result(reconciler, storage, result_store, auth) -> None:
    saved = make_result(answers=[right(), right()], score=100)
    result_store.submit_result(saved, "user-1")
    result_store.submissions.clear()
    storage.save_pending_packet(
        PendingRedirectPacket(
            quiz_id="quiz-1",
            slug="intro",
            quiz_type=QuizType.MCQ,
            answers=[None, None],
            score=None,
            redirect_url="/quiz/mcq/intro?completed=true",
        )
    )
    auth.sign_in("user-1")

    outcome = reconciler.reconcile("quiz-1", "intro", "/quiz/mcq/intro?completed=true")

    assert result_store.submissions == []
    assert outcome.state is ReconcileState.DONE
    assert outcome.result.score == 100
    assert result_store.fetch_result("quiz-1", "intro", "user-1") is saved
    assert storage.load_pending_packet() is None
    assert storage.load_guest_result("quiz-1") is None
