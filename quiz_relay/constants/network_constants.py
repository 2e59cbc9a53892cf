"""Network configuration constants for the quiz application."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
DEVICE_COOKIE: str = "quizrelay_device"
USER_COOKIE: str = "quizrelay_user"
USER_HEADER: str = "X-User-Id"
COOKIE_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 30
RESULT_STORE_TIMEOUT_SECONDS: float = 10.0
DEVICE_IDLE_TIMEOUT_SECONDS: float = 60.0 * 60 * 6
MAX_DEVICES: int = 1024
