"""User-facing messages surfaced through the session ``error`` and ``warning`` fields."""

INVALID_ANSWERS_MESSAGE: str = "Invalid answers submitted."
TOO_MANY_ANSWERS_MESSAGE: str = "More answers were submitted than the quiz has questions."
NO_ANSWERS_MESSAGE: str = "No answers submitted."
ANSWER_INDEX_MESSAGE_TEMPLATE: str = "Question index {index} is out of range."
SAVE_FAILED_MESSAGE: str = "Failed to save your results. Please try again."
MIGRATION_FAILED_WARNING: str = "We could not transfer your guest results yet. They are kept on this device."
NO_SAVED_RESULTS_MESSAGE: str = "No saved results found."
NOT_YET_SAVED_MESSAGE: str = "Your results have not been saved yet."
SIGN_IN_REQUIRED_MESSAGE: str = "Please sign in to load your results."
NOT_INITIALIZED_MESSAGE: str = "No quiz has been started."
UNEXPECTED_ERROR_TEMPLATE: str = "Failed to load results: {error}"
COMPLETION_IN_PROGRESS_MESSAGE: str = "Your results are still being saved. Try again in a moment."
