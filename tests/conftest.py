"""Shared fixtures for the quiz relay tests."""

from __future__ import annotations

from datetime import datetime, timezone
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from quiz_relay.core.models import Answer, QuizQuestion, QuizResult, QuizType
from quiz_relay.core.quiz_manager import QuizManager
from quiz_relay.core.services.auth_provider import StaticAuthProvider
from quiz_relay.core.services.quiz_session import QuizSession
from quiz_relay.core.services.quiz_storage import QuizRelayStorage
from quiz_relay.core.services.relay_store import InMemoryRelayStore
from quiz_relay.core.services.result_store import InMemoryResultStore, ResultStoreError

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def tick(self, seconds: float) -> None:
        self.now += seconds


class RecordingResultStore(InMemoryResultStore):
    """In-memory result store that records calls and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.submissions: list[tuple[QuizResult, str]] = []
        self.fetches: list[tuple[str, str, str]] = []
        self.fail_submit = False
        self.fail_fetch = False

    def submit_result(self, result: QuizResult, user_id: str) -> None:
        if self.fail_submit:
            raise ResultStoreError("result store unavailable")
        self.submissions.append((result, user_id))
        super().submit_result(result, user_id)

    def fetch_result(self, quiz_id: str, slug: str, user_id: str) -> QuizResult | None:
        self.fetches.append((quiz_id, slug, user_id))
        if self.fail_fetch:
            raise ResultStoreError("result store unavailable")
        return super().fetch_result(quiz_id, slug, user_id)


def right(value: str = "a", time_spent: float = 1.0) -> Answer:
    return Answer(value=value, time_spent=time_spent, is_correct=True)


def wrong(value: str = "b", time_spent: float = 1.0) -> Answer:
    return Answer(value=value, time_spent=time_spent, is_correct=False)


def make_questions(count: int) -> list[QuizQuestion]:
    return [QuizQuestion(id=i + 1, question_text=f"Question {i + 1}", answer=f"answer {i + 1}") for i in range(count)]


def make_result(
    quiz_id: str = "quiz-1",
    slug: str = "intro",
    quiz_type: QuizType = QuizType.MCQ,
    answers: list[Answer | None] | None = None,
    score: float = 50,
    completed_at: datetime = FIXED_NOW,
) -> QuizResult:
    answers = answers if answers is not None else [right(), wrong()]
    return QuizResult(
        quiz_id=quiz_id,
        slug=slug,
        quiz_type=quiz_type,
        score=score,
        answers=answers,
        total_time=sum(answer.time_spent for answer in answers if answer is not None),
        total_questions=len(answers),
        completed_at=completed_at,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def relay_store() -> InMemoryRelayStore:
    return InMemoryRelayStore()


@pytest.fixture
def storage(relay_store: InMemoryRelayStore) -> QuizRelayStorage:
    return QuizRelayStorage(relay_store)


@pytest.fixture
def result_store() -> RecordingResultStore:
    return RecordingResultStore()


@pytest.fixture
def auth() -> StaticAuthProvider:
    return StaticAuthProvider()


@pytest.fixture
def manager(
    relay_store: InMemoryRelayStore,
    result_store: RecordingResultStore,
    auth: StaticAuthProvider,
    clock: FakeClock,
) -> QuizManager:
    return QuizManager(
        relay_store=relay_store,
        result_store=result_store,
        auth=auth,
        session=QuizSession(clock=clock),
    )


@pytest.fixture
def make_manager(relay_store: InMemoryRelayStore, result_store: RecordingResultStore, auth: StaticAuthProvider):
    """Build another manager over the same device storage, as a page reload would."""

    def factory(**kwargs) -> QuizManager:
        return QuizManager(relay_store=relay_store, result_store=result_store, auth=auth, **kwargs)

    return factory
