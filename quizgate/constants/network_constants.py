"""Network configuration constants for the quiz service."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
ADMIN_TOKEN_ENV_VAR: str = "QUIZGATE_ADMIN_TOKEN"
