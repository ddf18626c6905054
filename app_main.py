"""Application entry point for the QuizGate service."""

from __future__ import annotations

import os

from quizgate.constants.network_constants import ADMIN_TOKEN_ENV_VAR, DEFAULT_HOST, DEFAULT_PORT
from quizgate.core.quiz_manager import QuizManager
from quizgate.server.api_server import run_api_server
from quizgate.utils.logging_config import configure_logging


def main() -> None:
    """Initialize logging, build the quiz manager and serve the API."""
    logger = configure_logging()
    admin_token = os.environ.get(ADMIN_TOKEN_ENV_VAR) or None
    if admin_token is None:
        logger.warning("%s is not set; admin routes are unprotected.", ADMIN_TOKEN_ENV_VAR)

    quiz_manager = QuizManager()
    logger.info("Starting QuizGate on %s:%d", DEFAULT_HOST, DEFAULT_PORT)
    run_api_server(quiz_manager, host=DEFAULT_HOST, port=DEFAULT_PORT, admin_token=admin_token)


if __name__ == "__main__":
    main()
