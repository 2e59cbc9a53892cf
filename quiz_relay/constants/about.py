"""Static metadata describing QuizRelay."""

APP_NAME = "QuizRelay"
APP_VERSION = "0.1.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "QuizRelay runs quiz attempts for guests and signed-in users. "
    "Guest results survive the sign-in redirect and are saved to the account exactly once."
)
