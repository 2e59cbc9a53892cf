"""Quiz-related constants shared across the core and server layers."""

from quiz_relay.core.models import QuizType

DEFAULT_GATED_QUIZ_TYPES: frozenset[QuizType] = frozenset({QuizType.MCQ, QuizType.FILL_BLANK})

# Query flag appended to the sign-in return URL.
RETURN_MARKER_PARAM: str = "completed"
RETURN_MARKER_VALUE: str = "true"

# Relay store keys.
COMPLETED_MARKER_KEY: str = "quiz_{quiz_id}_completed"
GUEST_RESULT_KEY: str = "guest_quiz_{quiz_id}"
PROGRESS_SNAPSHOT_KEY: str = "quiz_state_{quiz_type}_{quiz_id}"
PROGRESS_SNAPSHOT_PREFIX: str = "quiz_state_"
PENDING_PACKET_KEY: str = "pendingQuizData"
AUTH_REDIRECT_KEY: str = "quizAuthRedirect"
IN_AUTH_FLOW_KEY: str = "inAuthFlow"
FLAG_TRUE: str = "true"

PROGRESS_SNAPSHOT_MAX_AGE_DAYS: int = 30

FILL_BLANK_SIMILARITY_THRESHOLD: float = 80.0
OPEN_ENDED_SIMILARITY_THRESHOLD: float = 70.0
