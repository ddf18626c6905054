"""Business logic shared by the participant and admin API surfaces."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Iterable

from quizgate.core.errors import InvalidInputError, NotFoundError
from quizgate.core.models import (
    AnswerSubmission,
    GateDecision,
    LeaderboardReport,
    Participant,
    ProgressSnapshot,
    QuestionResponsesReport,
    Quiz,
    SubmissionResult,
    ValidationReport,
    epoch_ms,
)
from quizgate.core.name_assigner import NameAssigner, short_participant_id
from quizgate.core.services.evaluation import EvaluationOrchestrator, RestartSummary
from quizgate.core.services.progress_gate import ProgressGate
from quizgate.core.services.progress_store import ProgressStore
from quizgate.core.services.quiz_store import InMemoryQuizStore, QuizStore
from quizgate.core.services.scoring import is_valid_response_time

logger = logging.getLogger("quizgate.manager")

_DISPLAY_NAME_MIN = 2
_DISPLAY_NAME_MAX = 20


@dataclass(slots=True)
class PendingAnswer:
    """One entry of a batch submission."""

    question_id: str
    selected_option_index: int | None
    question_start_timestamp: int
    response_time_ms: Any = None
    round: int | None = None


class QuizManager:
    """Facade over the store, the progress gate and the evaluation service.

    There is no manager-wide lock: the gate serializes submissions per quiz
    and every store call is atomic on its own.
    """

    def __init__(
        self,
        store: QuizStore | None = None,
        progress_store: ProgressStore | None = None,
        name_assigner: NameAssigner | None = None,
    ) -> None:
        self._store = store or InMemoryQuizStore()
        self._gate = ProgressGate(progress_store)
        self._evaluation = EvaluationOrchestrator(self._store, self._gate)
        self._names = name_assigner or NameAssigner.with_default_names()

    @property
    def gate(self) -> ProgressGate:
        return self._gate

    @property
    def store(self) -> QuizStore:
        return self._store

    # --- Quizzes ---

    def create_quiz(self, quiz: Quiz) -> Quiz:
        saved = self._store.save_quiz(quiz)
        logger.info("Created quiz %s with %d questions", saved.id, len(saved.questions))
        return saved

    def get_quiz(self, quiz_id: str) -> Quiz:
        return self._store.get_quiz(quiz_id)

    def list_quizzes(self) -> list[Quiz]:
        return self._store.list_quizzes()

    # --- Participants ---

    def register_participant(
        self,
        participant_id: str,
        display_name: str | None = None,
        unique_short_id: str | None = None,
    ) -> Participant:
        """Create or update a participant identity.

        A missing display name is replaced by an anonymous one and a missing
        short id is derived from the participant id.
        """
        if not isinstance(participant_id, str) or not participant_id.strip():
            raise InvalidInputError("Participant id must be a non-empty string.")

        name = (display_name or "").strip()
        if not name:
            existing = self._store.get_participant(participant_id)
            name = existing.display_name if existing else self._names.next_name()
        if not _DISPLAY_NAME_MIN <= len(name) <= _DISPLAY_NAME_MAX:
            raise InvalidInputError(
                f"Display name must be between {_DISPLAY_NAME_MIN} and {_DISPLAY_NAME_MAX} characters."
            )

        short_id = unique_short_id or short_participant_id(participant_id)
        if len(short_id) != 4 or not short_id.isdigit():
            raise InvalidInputError("Unique short id must be exactly four digits.")
        clash = next(
            (
                other
                for other in self._store.list_participants()
                if other.unique_short_id == short_id and other.participant_id != participant_id
            ),
            None,
        )
        if clash is not None:
            raise RuntimeError(f"A participant with short id {short_id} already exists.")

        participant = Participant(participant_id=participant_id, display_name=name, unique_short_id=short_id)
        return self._store.save_participant(participant)

    # --- Submissions ---

    def submit_answer(
        self,
        quiz_id: str,
        participant_id: str,
        question_id: str,
        selected_option_index: int | None,
        question_start_timestamp: int,
        response_time_ms: Any = None,
        round_number: int | None = None,
        server_timestamp: int | None = None,
    ) -> SubmissionResult:
        """Validate, gate and store one answer.

        A gate rejection is not an error: the returned result carries the
        decision and ``accepted`` is False.
        """
        quiz = self._store.get_quiz(quiz_id)
        _require_open(quiz)

        question_number = quiz.question_number(question_id)
        if question_number is None:
            raise NotFoundError(f"Question {question_id!r} not found in quiz {quiz_id!r}.")
        question = quiz.questions[question_number - 1]

        if selected_option_index is not None:
            if isinstance(selected_option_index, bool) or not isinstance(selected_option_index, int):
                raise InvalidInputError("Selected option must be an integer or null.")
            if not 0 <= selected_option_index < len(question.options):
                raise InvalidInputError(
                    f"Selected option {selected_option_index} is out of range for question {question_id!r}."
                )

        if (
            isinstance(question_start_timestamp, bool)
            or not isinstance(question_start_timestamp, int)
            or question_start_timestamp <= 0
        ):
            raise InvalidInputError("Question start timestamp must be a positive integer.")

        server_timestamp = server_timestamp if server_timestamp is not None else epoch_ms()
        if response_time_ms is None:
            response_time_ms = server_timestamp - question_start_timestamp
        if not is_valid_response_time(response_time_ms):
            raise InvalidInputError(f"Response time must be a non-negative number, got {response_time_ms!r}.")

        expected_round = quiz.round_for_question_number(question_number)
        if round_number is not None and round_number != expected_round:
            raise InvalidInputError(
                f"Question {question_id!r} belongs to round {expected_round}, not round {round_number}."
            )

        answer = AnswerSubmission(
            participant_id=participant_id,
            quiz_id=quiz_id,
            question_id=question_id,
            selected_option_index=selected_option_index,
            question_start_timestamp=question_start_timestamp,
            response_time_ms=response_time_ms,
            server_timestamp=server_timestamp,
            round=expected_round,
        )
        decision, is_new, progress = self._gate.check_and_record(
            quiz_id,
            participant_id,
            question_number,
            persist=lambda: self._store_if_open(answer),
        )
        if not decision.allowed:
            return SubmissionResult(decision=decision, accepted=False, progress=progress)

        logger.debug(
            "Stored answer of %s to question %d of quiz %s (new=%s)",
            participant_id,
            question_number,
            quiz_id,
            is_new,
        )
        return SubmissionResult(
            decision=decision,
            accepted=True,
            is_new=bool(is_new),
            progress=progress,
            answer=answer,
        )

    def _store_if_open(self, answer: AnswerSubmission) -> bool:
        # Runs under the quiz lock; the quiz may have been closed since it was first read.
        _require_open(self._store.get_quiz(answer.quiz_id))
        return self._store.upsert_answer(answer)

    def submit_answers(
        self,
        quiz_id: str,
        participant_id: str,
        answers: Iterable[PendingAnswer],
    ) -> list[SubmissionResult]:
        """Submit several answers of one participant in question order."""
        quiz = self._store.get_quiz(quiz_id)
        pending = list(answers)
        if not pending:
            raise InvalidInputError("At least one answer is required.")
        positions = {question.id: index for index, question in enumerate(quiz.questions)}
        pending.sort(key=lambda item: positions.get(item.question_id, len(positions)))

        results = [
            self.submit_answer(
                quiz_id,
                participant_id,
                item.question_id,
                item.selected_option_index,
                item.question_start_timestamp,
                response_time_ms=item.response_time_ms,
                round_number=item.round,
            )
            for item in pending
        ]
        logger.info(
            "Batch from %s on quiz %s: %d of %d answers accepted",
            participant_id,
            quiz_id,
            sum(1 for result in results if result.accepted),
            len(results),
        )
        return results

    def can_answer(self, quiz_id: str, participant_id: str, question_number: int) -> GateDecision:
        quiz = self._store.get_quiz(quiz_id)
        if (
            isinstance(question_number, int)
            and not isinstance(question_number, bool)
            and question_number > len(quiz.questions)
        ):
            raise NotFoundError(f"Quiz {quiz_id!r} has no question {question_number}.")
        return self._gate.can_answer(quiz_id, participant_id, question_number)

    def participant_answers(self, quiz_id: str, participant_id: str) -> list[AnswerSubmission]:
        """Return the stored answers of one participant in question order."""
        if not isinstance(participant_id, str) or not participant_id.strip():
            raise InvalidInputError("Participant id must be a non-empty string.")
        quiz = self._store.get_quiz(quiz_id)
        positions = {question.id: index for index, question in enumerate(quiz.questions)}
        answers = [
            answer for answer in self._store.list_answers(quiz_id) if answer.participant_id == participant_id
        ]
        answers.sort(key=lambda answer: positions.get(answer.question_id, len(positions)))
        return answers

    # --- Admin delegation ---

    def start_quiz(self, quiz_id: str) -> Quiz:
        return self._evaluation.start(quiz_id)

    def stop_quiz(self, quiz_id: str) -> Quiz:
        return self._evaluation.stop(quiz_id)

    def set_pause_points(self, quiz_id: str, pause_points: Iterable[int]) -> tuple[int, ...]:
        return self._evaluation.pause(quiz_id, pause_points)

    def get_pause_points(self, quiz_id: str) -> tuple[int, ...]:
        self._store.get_quiz(quiz_id)
        return self._gate.get_pause_points(quiz_id)

    def clear_pause_points(self, quiz_id: str) -> None:
        self._store.get_quiz(quiz_id)
        self._gate.clear_pause_points(quiz_id)

    def resume_quiz(self, quiz_id: str) -> tuple[int, ...]:
        return self._evaluation.resume(quiz_id)

    def restart_quiz(self, quiz_id: str) -> RestartSummary:
        return self._evaluation.restart(quiz_id)

    def deactivate_quiz(self, quiz_id: str) -> Quiz:
        return self._evaluation.deactivate(quiz_id)

    def reactivate_quiz(self, quiz_id: str) -> Quiz:
        return self._evaluation.reactivate(quiz_id)

    def evaluate_quiz(self, quiz_id: str) -> LeaderboardReport:
        return self._evaluation.evaluate(quiz_id)

    def evaluate_round(self, quiz_id: str, round_number: int, top: int | None = None) -> LeaderboardReport:
        if top is None:
            return self._evaluation.evaluate_round(quiz_id, round_number)
        return self._evaluation.evaluate_round(quiz_id, round_number, top=top)

    def validate_quiz(self, quiz_id: str) -> ValidationReport:
        return self._evaluation.validate(quiz_id)

    def get_leaderboard(self, quiz_id: str, round_number: int | None = None) -> LeaderboardReport | None:
        return self._evaluation.get_leaderboard(quiz_id, round_number)

    def get_progress_overview(self, quiz_id: str) -> list[ProgressSnapshot]:
        return self._evaluation.progress_overview(quiz_id)

    def rebuild_progress(self, quiz_id: str) -> dict[str, int]:
        return self._evaluation.rebuild_progress(quiz_id)

    def get_question_responses(self, quiz_id: str) -> QuestionResponsesReport:
        return self._evaluation.question_responses(quiz_id)


def _require_open(quiz: Quiz) -> None:
    if quiz.deactivated:
        raise RuntimeError(f"Quiz {quiz.id!r} is deactivated.")
    if not quiz.active:
        raise RuntimeError(f"Quiz {quiz.id!r} is not active.")
