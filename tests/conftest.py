"""Shared test fixtures and configuration for pytest."""

from __future__ import annotations

from datetime import datetime

from fastapi.testclient import TestClient
import pytest

from quizgate.core.errors import StoreUnavailableError
from quizgate.core.models import AnswerSubmission, CorrectAnswer, LeaderboardReport, Question, Quiz
from quizgate.core.name_assigner import NameAssigner
from quizgate.core.quiz_manager import QuizManager
from quizgate.core.services.progress_gate import ProgressGate
from quizgate.core.services.quiz_store import InMemoryQuizStore
from quizgate.server.api_server import create_api_app

QUIZ_ID = "quiz-1"
START_TS = 1_700_000_000_000
ADMIN_TOKEN = "s3cret-token"


class FlakyQuizStore(InMemoryQuizStore):
    """In-memory store whose selected operations fail like an unreachable backend."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on: set[str] = set()

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StoreUnavailableError(f"{operation} failed: connection refused")

    def upsert_answer(self, answer: AnswerSubmission) -> bool:
        self._maybe_fail("upsert_answer")
        return super().upsert_answer(answer)

    def save_report(self, report: LeaderboardReport, close_quiz: bool = False) -> None:
        self._maybe_fail("save_report")
        super().save_report(report, close_quiz)

    def restart_quiz(self, quiz_id: str, restarted_at: datetime) -> dict[str, int]:
        self._maybe_fail("restart_quiz")
        return super().restart_quiz(quiz_id, restarted_at)


def build_question(question_id: str, points: int = 100, correct_index: int = 1) -> Question:
    return Question(
        id=question_id,
        prompt=f"Prompt for {question_id}?",
        options=["Alpha", "Bravo", "Charlie", "Delta"],
        correct_answers=[CorrectAnswer(option_index=correct_index, points=points)],
    )


@pytest.fixture
def sample_quiz() -> Quiz:
    """Six questions worth 100 points each, three per round."""
    return Quiz(
        id=QUIZ_ID,
        title="General Knowledge",
        questions=[build_question(f"q{number}") for number in range(1, 7)],
        questions_per_round=3,
    )


@pytest.fixture
def quiz_store() -> InMemoryQuizStore:
    return InMemoryQuizStore()


@pytest.fixture
def flaky_store() -> FlakyQuizStore:
    return FlakyQuizStore()


@pytest.fixture
def gate() -> ProgressGate:
    return ProgressGate()


def _build_manager(store: InMemoryQuizStore, quiz: Quiz) -> QuizManager:
    manager = QuizManager(store=store, name_assigner=NameAssigner.with_default_names(seed=7))
    manager.create_quiz(quiz)
    manager.register_participant("alice", "Alice")
    manager.register_participant("bob", "Bob")
    return manager


@pytest.fixture
def manager(quiz_store: InMemoryQuizStore, sample_quiz: Quiz) -> QuizManager:
    """Manager with the sample quiz created (not started) and two participants."""
    return _build_manager(quiz_store, sample_quiz)


@pytest.fixture
def active_manager(manager: QuizManager) -> QuizManager:
    manager.start_quiz(QUIZ_ID)
    return manager


@pytest.fixture
def flaky_manager(flaky_store: FlakyQuizStore, sample_quiz: Quiz) -> QuizManager:
    manager = _build_manager(flaky_store, sample_quiz)
    manager.start_quiz(QUIZ_ID)
    return manager


@pytest.fixture
def client(active_manager: QuizManager) -> TestClient:
    return TestClient(create_api_app(active_manager))


@pytest.fixture
def admin_client(manager: QuizManager) -> TestClient:
    return TestClient(create_api_app(manager, admin_token=ADMIN_TOKEN))


def submit(
    manager: QuizManager,
    participant_id: str,
    question_id: str,
    option: int | None = 1,
    response_time_ms: int = 3000,
):
    """Submit an answer with a fixed start timestamp."""
    return manager.submit_answer(
        QUIZ_ID,
        participant_id,
        question_id,
        option,
        START_TS,
        response_time_ms=response_time_ms,
    )
