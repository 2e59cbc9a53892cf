from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, make_result, right
from quiz_relay.core.models import PendingRedirectPacket, ProgressSnapshot, QuizType, StorageScope
from quiz_relay.core.services.quiz_storage import QuizRelayStorage, RelayDecodeError, decode_result, encode_result
from quiz_relay.core.services.relay_store import InMemoryRelayStore


def _snapshot(quiz_id: str = "quiz-1", updated_at=FIXED_NOW) -> ProgressSnapshot:
    return ProgressSnapshot(
        quiz_id=quiz_id,
        slug="intro",
        quiz_type=QuizType.MCQ,
        current_question_index=1,
        answers=[right(), None],
        time_spent_per_question=[3.0, 0.0],
        updated_at=updated_at,
    )


def test_guest_result_is_stored_under_its_quiz_key(storage, relay_store) -> None:
    result = make_result()
    storage.save_guest_result(result)

    assert relay_store.get("guest_quiz_quiz-1", StorageScope.DURABLE) is not None
    assert storage.load_guest_result("quiz-1") == result

    storage.clear_guest_result("quiz-1")
    assert storage.load_guest_result("quiz-1") is None


def test_malformed_guest_result_is_discarded(storage, relay_store) -> None:
    relay_store.set("guest_quiz_quiz-1", "{broken", StorageScope.DURABLE)

    assert storage.load_guest_result("quiz-1") is None
    assert relay_store.get("guest_quiz_quiz-1", StorageScope.DURABLE) is None


def test_guest_result_with_wrong_shape_is_discarded(storage, relay_store) -> None:
    relay_store.set("guest_quiz_quiz-1", '{"quiz_id": "quiz-1", "score": "lots"}', StorageScope.DURABLE)

    assert storage.load_guest_result("quiz-1") is None


def test_decode_result_raises_relay_decode_error() -> None:
    with pytest.raises(RelayDecodeError):
        decode_result("{}")
    assert decode_result(encode_result(make_result())).score == 50


def test_completed_marker(storage) -> None:
    assert storage.is_marked_completed("quiz-1") is False
    storage.mark_completed("quiz-1")
    assert storage.is_marked_completed("quiz-1") is True
    assert storage.is_marked_completed("quiz-2") is False
    storage.clear_completed_marker("quiz-1")
    assert storage.is_marked_completed("quiz-1") is False


def test_auth_flow_entries_are_cleared_together(storage) -> None:
    packet = PendingRedirectPacket(
        quiz_id="quiz-1",
        slug="intro",
        quiz_type=QuizType.MCQ,
        answers=[right(), None],
        score=100,
        redirect_url="/quiz/mcq/intro?completed=true",
    )
    storage.save_pending_packet(packet)
    storage.set_auth_redirect(packet.redirect_url)
    storage.mark_in_auth_flow()

    assert storage.load_pending_packet() == packet
    assert storage.get_auth_redirect() == packet.redirect_url
    assert storage.is_in_auth_flow() is True

    storage.clear_auth_flow()

    assert storage.load_pending_packet() is None
    assert storage.get_auth_redirect() is None
    assert storage.is_in_auth_flow() is False


def test_progress_falls_back_to_session_copy(storage, relay_store) -> None:
    snapshot = _snapshot()
    storage.save_progress(snapshot)
    relay_store.delete("quiz_state_mcq_quiz-1", StorageScope.DURABLE)

    assert storage.load_progress(QuizType.MCQ, "quiz-1") == snapshot

    storage.clear_progress(QuizType.MCQ, "quiz-1")
    assert storage.load_progress(QuizType.MCQ, "quiz-1") is None


def test_purge_stale_progress_removes_old_and_malformed_snapshots(relay_store) -> None:
    storage = QuizRelayStorage(relay_store, clock=lambda: FIXED_NOW)
    storage.save_progress(_snapshot("fresh", updated_at=FIXED_NOW - timedelta(days=1)))
    storage.save_progress(_snapshot("stale", updated_at=FIXED_NOW - timedelta(days=45)))
    relay_store.set("quiz_state_mcq_broken", "nope", StorageScope.DURABLE)

    removed = storage.purge_stale_progress(timedelta(days=30))

    # The stale snapshot lives in both scopes.
    assert removed == 3
    assert storage.load_progress(QuizType.MCQ, "fresh") is not None
    assert storage.load_progress(QuizType.MCQ, "stale") is None
    assert relay_store.get("quiz_state_mcq_broken", StorageScope.DURABLE) is None


def test_clear_quiz_keys_leaves_other_quizzes(storage) -> None:
    storage.save_guest_result(make_result("quiz-1"))
    storage.save_guest_result(make_result("quiz-2"))
    storage.mark_completed("quiz-1")
    storage.mark_completed("quiz-2")
    storage.save_progress(_snapshot("quiz-1"))
    storage.save_pending_packet(
        PendingRedirectPacket(
            quiz_id="quiz-2",
            slug="intro",
            quiz_type=QuizType.MCQ,
            answers=[],
            score=None,
            redirect_url="/quiz/mcq/intro?completed=true",
        )
    )

    storage.clear_quiz_keys("quiz-1", QuizType.MCQ)

    assert storage.load_guest_result("quiz-1") is None
    assert storage.is_marked_completed("quiz-1") is False
    assert storage.load_progress(QuizType.MCQ, "quiz-1") is None
    assert storage.load_guest_result("quiz-2") is not None
    assert storage.is_marked_completed("quiz-2") is True
    assert storage.load_pending_packet() is not None


def test_clear_all_quiz_data_keeps_unrelated_entries() -> None:
    relay_store = InMemoryRelayStore()
    storage = QuizRelayStorage(relay_store)
    storage.save_guest_result(make_result())
    storage.mark_completed("quiz-1")
    storage.save_progress(_snapshot())
    storage.mark_in_auth_flow()
    relay_store.set("theme", "dark", StorageScope.DURABLE)

    storage.clear_all_quiz_data()

    assert relay_store.keys(StorageScope.DURABLE) == ["theme"]
    assert relay_store.keys(StorageScope.SESSION) == []
