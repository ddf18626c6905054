"""Per-quiz storage for pause points and participant progress.

The gate only talks to the ``ProgressStore`` interface so deployments with
several processes can swap the in-memory store for a shared, transactional
one. Everything is scoped by quiz id; one quiz never blocks another.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from threading import Lock, RLock


class ProgressStore(ABC):
    """Storage contract used by ``ProgressGate``."""

    @abstractmethod
    def quiz_lock(self, quiz_id: str) -> AbstractContextManager:
        """Return a re-entrant lock guarding all state of ``quiz_id``."""

    @abstractmethod
    def get_progress(self, quiz_id: str, participant_id: str) -> int:
        ...

    @abstractmethod
    def advance_progress(self, quiz_id: str, participant_id: str, question_number: int) -> int:
        """Store ``max(current, question_number)`` and return the stored value."""

    @abstractmethod
    def all_progress(self, quiz_id: str) -> dict[str, int]:
        ...

    @abstractmethod
    def clear_progress(self, quiz_id: str) -> int:
        """Forget all progress of the quiz and return how many records went away."""

    @abstractmethod
    def get_pause_points(self, quiz_id: str) -> tuple[int, ...]:
        ...

    @abstractmethod
    def set_pause_points(self, quiz_id: str, points: tuple[int, ...]) -> None:
        ...

    @abstractmethod
    def clear_pause_points(self, quiz_id: str) -> None:
        ...


class InMemoryProgressStore(ProgressStore):
    """Dictionary-backed store with one lock per quiz key."""

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._locks: dict[str, RLock] = {}
        self._progress: dict[str, dict[str, int]] = {}
        self._pause_points: dict[str, tuple[int, ...]] = {}

    def quiz_lock(self, quiz_id: str) -> RLock:
        with self._registry_lock:
            lock = self._locks.get(quiz_id)
            if lock is None:
                lock = RLock()
                self._locks[quiz_id] = lock
            return lock

    def get_progress(self, quiz_id: str, participant_id: str) -> int:
        with self.quiz_lock(quiz_id):
            return self._progress.get(quiz_id, {}).get(participant_id, 0)

    def advance_progress(self, quiz_id: str, participant_id: str, question_number: int) -> int:
        with self.quiz_lock(quiz_id):
            records = self._progress.setdefault(quiz_id, {})
            current = records.get(participant_id, 0)
            if question_number > current:
                records[participant_id] = question_number
                return question_number
            return current

    def all_progress(self, quiz_id: str) -> dict[str, int]:
        with self.quiz_lock(quiz_id):
            return dict(self._progress.get(quiz_id, {}))

    def clear_progress(self, quiz_id: str) -> int:
        with self.quiz_lock(quiz_id):
            return len(self._progress.pop(quiz_id, {}))

    def get_pause_points(self, quiz_id: str) -> tuple[int, ...]:
        with self.quiz_lock(quiz_id):
            return self._pause_points.get(quiz_id, ())

    def set_pause_points(self, quiz_id: str, points: tuple[int, ...]) -> None:
        with self.quiz_lock(quiz_id):
            if points:
                self._pause_points[quiz_id] = tuple(points)
            else:
                self._pause_points.pop(quiz_id, None)

    def clear_pause_points(self, quiz_id: str) -> None:
        with self.quiz_lock(quiz_id):
            self._pause_points.pop(quiz_id, None)
