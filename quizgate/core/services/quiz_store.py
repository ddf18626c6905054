"""Storage contract for quizzes, participants, answers and reports.

The durable store is an external collaborator; the core only relies on the
``QuizStore`` interface. Each method is atomic so callers never observe a
half-applied wipe or a half-written leaderboard. Backends report I/O
failures as ``StoreUnavailableError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import copy
from dataclasses import replace
from datetime import datetime
from threading import Lock

from quizgate.constants.scoring_constants import MAX_OPTIONS, MIN_OPTIONS
from quizgate.core.errors import InvalidInputError, NotFoundError
from quizgate.core.models import (
    AnswerSubmission,
    LeaderboardReport,
    Participant,
    Question,
    Quiz,
    ValidationReport,
)


class QuizStore(ABC):
    """Operations the core needs from the persistent store."""

    @abstractmethod
    def get_quiz(self, quiz_id: str) -> Quiz:
        """Return the quiz or raise ``NotFoundError``."""

    @abstractmethod
    def list_quizzes(self) -> list[Quiz]:
        ...

    @abstractmethod
    def save_quiz(self, quiz: Quiz) -> Quiz:
        """Validate and insert or replace a quiz definition."""

    @abstractmethod
    def update_quiz(self, quiz_id: str, **changes: object) -> Quiz:
        """Apply lifecycle field changes and return the updated quiz."""

    @abstractmethod
    def get_participant(self, participant_id: str) -> Participant | None:
        ...

    @abstractmethod
    def list_participants(self) -> list[Participant]:
        ...

    @abstractmethod
    def save_participant(self, participant: Participant) -> Participant:
        ...

    @abstractmethod
    def upsert_answer(self, answer: AnswerSubmission) -> bool:
        """Store the answer keyed by (participant, quiz, question).

        Returns True when no answer existed for the key yet.
        """

    @abstractmethod
    def list_answers(self, quiz_id: str, round_number: int | None = None) -> list[AnswerSubmission]:
        ...

    @abstractmethod
    def save_report(self, report: LeaderboardReport, close_quiz: bool = False) -> None:
        """Replace the report for (quiz, round); optionally close the quiz in the same step."""

    @abstractmethod
    def get_report(self, quiz_id: str, round_number: int | None = None) -> LeaderboardReport | None:
        ...

    @abstractmethod
    def restart_quiz(self, quiz_id: str, restarted_at: datetime) -> dict[str, int]:
        """Wipe answers and reports of the quiz and reset its run state.

        Returns the number of answers and reports removed.
        """

    @abstractmethod
    def append_validation_report(self, report: ValidationReport) -> None:
        ...

    @abstractmethod
    def list_validation_reports(self, quiz_id: str) -> list[ValidationReport]:
        ...


class InMemoryQuizStore(QuizStore):
    """Process-local store used for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._quizzes: dict[str, Quiz] = {}
        self._participants: dict[str, Participant] = {}
        self._answers: dict[tuple[str, str, str], AnswerSubmission] = {}
        self._reports: dict[tuple[str, int | None], LeaderboardReport] = {}
        self._validation_reports: list[ValidationReport] = []

    # --- Quizzes ---

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            return copy.deepcopy(self._require_quiz(quiz_id))

    def list_quizzes(self) -> list[Quiz]:
        with self._lock:
            return [copy.deepcopy(quiz) for quiz in self._quizzes.values()]

    def save_quiz(self, quiz: Quiz) -> Quiz:
        prepared = self._prepare_quiz(quiz)
        with self._lock:
            self._quizzes[prepared.id] = prepared
            return copy.deepcopy(prepared)

    def update_quiz(self, quiz_id: str, **changes: object) -> Quiz:
        with self._lock:
            updated = replace(self._require_quiz(quiz_id), **changes)
            self._quizzes[quiz_id] = updated
            return copy.deepcopy(updated)

    # --- Participants ---

    def get_participant(self, participant_id: str) -> Participant | None:
        with self._lock:
            return self._participants.get(participant_id)

    def list_participants(self) -> list[Participant]:
        with self._lock:
            return list(self._participants.values())

    def save_participant(self, participant: Participant) -> Participant:
        if not participant.participant_id.strip():
            raise InvalidInputError("Participant id must not be empty.")
        with self._lock:
            self._participants[participant.participant_id] = participant
            return participant

    # --- Answers ---

    def upsert_answer(self, answer: AnswerSubmission) -> bool:
        with self._lock:
            is_new = answer.key not in self._answers
            self._answers[answer.key] = replace(answer)
            return is_new

    def list_answers(self, quiz_id: str, round_number: int | None = None) -> list[AnswerSubmission]:
        with self._lock:
            return [
                replace(answer)
                for answer in self._answers.values()
                if answer.quiz_id == quiz_id and (round_number is None or answer.round == round_number)
            ]

    # --- Reports ---

    def save_report(self, report: LeaderboardReport, close_quiz: bool = False) -> None:
        with self._lock:
            quiz = self._require_quiz(report.quiz_id)
            self._reports[(report.quiz_id, report.round)] = report
            if close_quiz:
                self._quizzes[quiz.id] = replace(
                    quiz,
                    active=False,
                    stopped_at=report.evaluated_at,
                    evaluated_at=report.evaluated_at,
                )

    def get_report(self, quiz_id: str, round_number: int | None = None) -> LeaderboardReport | None:
        with self._lock:
            return self._reports.get((quiz_id, round_number))

    def restart_quiz(self, quiz_id: str, restarted_at: datetime) -> dict[str, int]:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            answer_keys = [key for key, answer in self._answers.items() if answer.quiz_id == quiz_id]
            report_keys = [key for key in self._reports if key[0] == quiz_id]
            for key in answer_keys:
                del self._answers[key]
            for key in report_keys:
                del self._reports[key]

            changes: dict[str, object] = {
                "active": False,
                "deactivated": False,
                "started_at": None,
                "stopped_at": None,
                "evaluated_at": None,
                "restarted_at": restarted_at,
            }
            if quiz.deactivated:
                changes["created_at"] = restarted_at
                changes["reactivated_at"] = restarted_at
            self._quizzes[quiz_id] = replace(quiz, **changes)
            return {"answers": len(answer_keys), "reports": len(report_keys)}

    def append_validation_report(self, report: ValidationReport) -> None:
        with self._lock:
            self._validation_reports.append(report)

    def list_validation_reports(self, quiz_id: str) -> list[ValidationReport]:
        with self._lock:
            return [report for report in self._validation_reports if report.quiz_id == quiz_id]

    # --- Helpers ---

    def _require_quiz(self, quiz_id: str) -> Quiz:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise NotFoundError(f"Quiz {quiz_id!r} not found.")
        return quiz

    def _prepare_quiz(self, quiz: Quiz) -> Quiz:
        """Validate and normalize a quiz before storage."""
        if not quiz.id or not quiz.id.strip():
            raise InvalidInputError("Quiz id must not be empty.")
        if quiz.questions_per_round < 1:
            raise InvalidInputError("Questions per round must be at least 1.")

        seen_ids: set[str] = set()
        questions: list[Question] = []
        for question in quiz.questions:
            if question.id in seen_ids:
                raise InvalidInputError(f"Duplicate question id {question.id!r}.")
            seen_ids.add(question.id)
            questions.append(self._prepare_question(question))
        return replace(copy.deepcopy(quiz), questions=questions)

    @staticmethod
    def _prepare_question(question: Question) -> Question:
        if not question.id or not question.id.strip():
            raise InvalidInputError("Question id must not be empty.")
        prompt = question.prompt.strip()
        if not prompt:
            raise InvalidInputError("Question text must not be empty.")

        if not MIN_OPTIONS <= len(question.options) <= MAX_OPTIONS:
            raise InvalidInputError(
                f"Question {question.id!r} must have between {MIN_OPTIONS} and {MAX_OPTIONS} options."
            )
        options = [option.strip() for option in question.options]
        if any(not option for option in options):
            raise InvalidInputError("Option text cannot be empty.")

        for correct in question.correct_answers:
            if not 0 <= correct.option_index < len(options):
                raise InvalidInputError(
                    f"Correct option {correct.option_index} is out of range for question {question.id!r}."
                )
            if correct.points < 0:
                raise InvalidInputError("Correct answer points must not be negative.")

        if question.time_limit_ms is not None and question.time_limit_ms <= 0:
            raise InvalidInputError("Time limit must be a positive number of milliseconds.")

        return Question(
            id=question.id,
            prompt=prompt,
            options=options,
            correct_answers=list(question.correct_answers),
            time_limit_ms=question.time_limit_ms,
        )
