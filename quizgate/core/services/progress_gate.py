"""Service deciding whether a participant may answer a question right now."""

from __future__ import annotations

from contextlib import AbstractContextManager
import logging
from typing import Callable, Iterable, TypeVar

from quizgate.core.errors import InvalidInputError
from quizgate.core.models import GateDecision
from quizgate.core.services.progress_store import InMemoryProgressStore, ProgressStore

T = TypeVar("T")

logger = logging.getLogger("quizgate.gate")

REASON_NO_PAUSE_POINTS = "no_pause_points"
REASON_WITHIN_RANGE = "within_allowed_range"
REASON_PAUSE_POINT = "pause_point"
REASON_BEYOND_NEXT_PAUSE = "beyond_next_pause_point"


def _require_identifier(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{name} must be a non-empty string.")
    return value


def _require_question_number(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"Question number must be a positive integer, got {value!r}.")
    return value


class ProgressGate:
    """Tracks furthest-answered questions and enforces pause points."""

    def __init__(self, store: ProgressStore | None = None) -> None:
        self._store = store or InMemoryProgressStore()

    def quiz_lock(self, quiz_id: str) -> AbstractContextManager:
        """Reentrant lock serializing every gate operation on one quiz."""
        _require_identifier(quiz_id, "Quiz id")
        return self._store.quiz_lock(quiz_id)

    # --- Progress ---

    def record_progress(self, quiz_id: str, participant_id: str, question_number: int) -> int:
        """Advance progress to ``question_number`` unless it is already further."""
        _require_identifier(quiz_id, "Quiz id")
        _require_identifier(participant_id, "Participant id")
        _require_question_number(question_number)
        return self._store.advance_progress(quiz_id, participant_id, question_number)

    def get_progress(self, quiz_id: str, participant_id: str) -> int:
        _require_identifier(quiz_id, "Quiz id")
        _require_identifier(participant_id, "Participant id")
        return self._store.get_progress(quiz_id, participant_id)

    def get_all_progress(self, quiz_id: str) -> dict[str, int]:
        _require_identifier(quiz_id, "Quiz id")
        return self._store.all_progress(quiz_id)

    # --- Pause points ---

    def set_pause_points(self, quiz_id: str, points: Iterable[int]) -> tuple[int, ...]:
        """Replace the pause points of a quiz. Progress is left untouched."""
        _require_identifier(quiz_id, "Quiz id")
        requested = list(points)
        for point in requested:
            if isinstance(point, bool) or not isinstance(point, int) or point <= 0:
                raise InvalidInputError(f"Pause points must be positive integers, got {point!r}.")
        if len(set(requested)) != len(requested):
            raise InvalidInputError("Duplicate pause points are not allowed.")

        normalized = tuple(sorted(requested))
        self._store.set_pause_points(quiz_id, normalized)
        logger.info("Pause points for quiz %s set to %s", quiz_id, list(normalized))
        return normalized

    def clear_pause_points(self, quiz_id: str) -> None:
        _require_identifier(quiz_id, "Quiz id")
        self._store.clear_pause_points(quiz_id)
        logger.info("Pause points for quiz %s cleared", quiz_id)

    def get_pause_points(self, quiz_id: str) -> tuple[int, ...]:
        _require_identifier(quiz_id, "Quiz id")
        return self._store.get_pause_points(quiz_id)

    def is_paused(self, quiz_id: str) -> bool:
        return bool(self.get_pause_points(quiz_id))

    def reset_quiz(self, quiz_id: str) -> int:
        """Drop pause points and every progress record of the quiz."""
        _require_identifier(quiz_id, "Quiz id")
        with self._store.quiz_lock(quiz_id):
            self._store.clear_pause_points(quiz_id)
            return self._store.clear_progress(quiz_id)

    # --- Decisions ---

    def can_answer(self, quiz_id: str, participant_id: str, question_number: int) -> GateDecision:
        _require_identifier(quiz_id, "Quiz id")
        _require_identifier(participant_id, "Participant id")
        _require_question_number(question_number)
        with self._store.quiz_lock(quiz_id):
            pause_points = self._store.get_pause_points(quiz_id)
            progress = self._store.get_progress(quiz_id, participant_id)
        return decide(pause_points, progress, question_number)

    def check_and_record(
        self,
        quiz_id: str,
        participant_id: str,
        question_number: int,
        persist: Callable[[], T],
    ) -> tuple[GateDecision, T | None, int]:
        """Gate, persist and record progress against one snapshot.

        ``persist`` runs only when the decision allows the answer. Progress is
        advanced only after ``persist`` returned, so a failing write leaves
        the progress record untouched.
        """
        _require_identifier(quiz_id, "Quiz id")
        _require_identifier(participant_id, "Participant id")
        _require_question_number(question_number)
        with self._store.quiz_lock(quiz_id):
            pause_points = self._store.get_pause_points(quiz_id)
            progress = self._store.get_progress(quiz_id, participant_id)
            decision = decide(pause_points, progress, question_number)
            if not decision.allowed:
                logger.debug(
                    "Blocked %s on quiz %s question %s: %s",
                    participant_id,
                    quiz_id,
                    question_number,
                    decision.reason,
                )
                return decision, None, progress
            outcome = persist()
            progress = self._store.advance_progress(quiz_id, participant_id, question_number)
        return decision, outcome, progress


def decide(pause_points: tuple[int, ...], progress: int, question_number: int) -> GateDecision:
    """Apply the pause-point rules to one snapshot of state."""
    if not pause_points:
        return GateDecision(
            allowed=True,
            reason="No pause points set",
            reason_code=REASON_NO_PAUSE_POINTS,
            current_progress=progress,
        )

    if question_number in pause_points:
        return GateDecision(
            allowed=False,
            reason=f"Question {question_number} is a pause point",
            reason_code=REASON_PAUSE_POINT,
            current_progress=progress,
            blocking_pause_point=question_number,
        )

    next_pause = next((point for point in pause_points if point > progress), None)
    if next_pause is not None and question_number >= next_pause:
        return GateDecision(
            allowed=False,
            reason=f"Cannot answer question {question_number}, next pause point is {next_pause}",
            reason_code=REASON_BEYOND_NEXT_PAUSE,
            current_progress=progress,
            next_pause_point=next_pause,
            allowed_up_to=progress,
        )

    return GateDecision(
        allowed=True,
        reason="Question within allowed range",
        reason_code=REASON_WITHIN_RANGE,
        current_progress=progress,
        next_pause_point=next_pause,
    )
