"""Domain models for the quiz application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class QuizType(str, Enum):
    """Kinds of quiz a session can run."""

    MCQ = "mcq"
    CODE = "code"
    OPEN_ENDED = "open-ended"
    FILL_BLANK = "fill-blank"
    FLASHCARD = "flashcard"


class LifecycleState(str, Enum):
    """Lifecycle of one quiz attempt, in forward order."""

    IDLE = "idle"
    COMPLETING = "completing"
    PREPARING_RESULTS = "preparing-results"
    SHOWING_RESULTS = "showing-results"
    REDIRECTING = "redirecting"


class ReconcileState(str, Enum):
    """Steps of the guest result reconciliation after a sign-in redirect."""

    IDLE = "idle"
    DETECTING_RETURN = "detecting-return"
    MIGRATING_GUEST_RESULT = "migrating-guest-result"
    FETCHING_CANONICAL = "fetching-canonical"
    DONE = "done"
    FAILED = "failed"


class StorageScope(str, Enum):
    """Lifetime of a relay store entry."""

    SESSION = "session"
    DURABLE = "durable"


@dataclass(slots=True, frozen=True)
class Answer:
    """Answer recorded for a single question."""

    value: str
    time_spent: float = 0.0
    is_correct: bool = False
    similarity: float | None = None


@dataclass(slots=True)
class QuizQuestion:
    """Question shown to the user; ``answer`` is the expected text, if known."""

    id: int | str
    question_text: str
    answer: str | None = None
    options: list[str] = field(default_factory=list)


@dataclass(slots=True)
class QuizResult:
    """Serializable snapshot of a finished attempt.

    The same shape is used for a guest result computed on the device and for
    the canonical result returned by the remote result store.
    """

    quiz_id: str
    slug: str
    quiz_type: QuizType
    score: float
    answers: list[Answer | None]
    total_time: float
    total_questions: int
    completed_at: datetime

    @property
    def answered_count(self) -> int:
        return sum(1 for answer in self.answers if answer is not None)

    def dedupe_key(self) -> tuple[str, str, datetime]:
        return (self.quiz_id, self.slug, self.completed_at)


@dataclass(slots=True)
class PendingRedirectPacket:
    """State written right before handing the user to the sign-in provider."""

    quiz_id: str
    slug: str
    quiz_type: QuizType
    answers: list[Answer | None]
    score: float | None
    redirect_url: str


@dataclass(slots=True)
class ProgressSnapshot:
    """In-progress state kept so a guest can resume an unfinished attempt."""

    quiz_id: str
    slug: str
    quiz_type: QuizType
    current_question_index: int
    answers: list[Answer | None]
    time_spent_per_question: list[float]
    updated_at: datetime


@dataclass(slots=True)
class SessionState:
    """Root aggregate for one quiz attempt, owned by ``QuizSession``."""

    quiz_id: str = ""
    slug: str = ""
    quiz_type: QuizType = QuizType.MCQ
    question_count: int = 0
    questions: list[QuizQuestion] = field(default_factory=list)
    current_question_index: int = 0
    answers: list[Answer | None] = field(default_factory=list)
    time_spent_per_question: list[float] = field(default_factory=list)
    lifecycle_state: LifecycleState = LifecycleState.IDLE
    is_completed: bool = False
    score: float | None = None
    requires_auth: bool = False
    has_guest_result: bool = False
    auth_check_complete: bool = False
    pending_auth_required: bool = False
    completion_in_progress: bool = False
    start_time: datetime | None = None
    result: QuizResult | None = None
    reconcile_state: ReconcileState = ReconcileState.IDLE
    error: str | None = None
    warning: str | None = None
