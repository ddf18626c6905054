"""Domain models for the quiz service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from quizgate.constants.scoring_constants import DEFAULT_QUESTIONS_PER_ROUND


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def epoch_ms(moment: datetime | None = None) -> int:
    """Return ``moment`` (default: now) as integer milliseconds since the epoch."""
    moment = moment or utc_now()
    return int(moment.timestamp() * 1000)


@dataclass(slots=True, frozen=True)
class CorrectAnswer:
    """Points awarded for choosing a specific option."""

    option_index: int
    points: int


@dataclass(slots=True)
class Question:
    """Multiple-choice question with two to eight options."""

    id: str
    prompt: str
    options: list[str]
    correct_answers: list[CorrectAnswer] = field(default_factory=list)
    time_limit_ms: int | None = None  # overrides the default scoring window


@dataclass(slots=True)
class Quiz:
    """A quiz owns its ordered questions and its lifecycle flags."""

    id: str
    title: str
    questions: list[Question] = field(default_factory=list)
    active: bool = False
    deactivated: bool = False
    questions_per_round: int = DEFAULT_QUESTIONS_PER_ROUND
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    evaluated_at: datetime | None = None
    restarted_at: datetime | None = None
    reactivated_at: datetime | None = None

    def question_number(self, question_id: str) -> int | None:
        """Return the 1-indexed position of ``question_id`` or None."""
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index + 1
        return None

    def round_for_question_number(self, question_number: int) -> int:
        return (question_number - 1) // self.questions_per_round + 1

    def questions_for_round(self, round_number: int) -> list[Question]:
        start = (round_number - 1) * self.questions_per_round
        return self.questions[start : start + self.questions_per_round]

    @property
    def total_rounds(self) -> int:
        if not self.questions:
            return 0
        return self.round_for_question_number(len(self.questions))


@dataclass(slots=True, frozen=True)
class Participant:
    """Identity of someone taking part in a quiz."""

    participant_id: str
    display_name: str
    unique_short_id: str


@dataclass(slots=True)
class AnswerSubmission:
    """One participant's answer to one question of a quiz."""

    participant_id: str
    quiz_id: str
    question_id: str
    selected_option_index: int | None  # None means the question timed out
    question_start_timestamp: int
    response_time_ms: Any  # stored as received; validation reports bad values
    server_timestamp: int = field(default_factory=epoch_ms)
    round: int | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.participant_id, self.quiz_id, self.question_id)


@dataclass(slots=True, frozen=True)
class GateDecision:
    """Outcome of asking whether a participant may answer a question now."""

    allowed: bool
    reason: str
    reason_code: str
    current_progress: int
    blocking_pause_point: int | None = None
    next_pause_point: int | None = None
    allowed_up_to: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "reason_code": self.reason_code,
            "current_progress": self.current_progress,
            "blocking_pause_point": self.blocking_pause_point,
            "next_pause_point": self.next_pause_point,
            "allowed_up_to": self.allowed_up_to,
        }


@dataclass(slots=True)
class SubmissionResult:
    """What happened to a submitted answer."""

    decision: GateDecision
    accepted: bool
    is_new: bool = False
    progress: int = 0
    answer: AnswerSubmission | None = None


@dataclass(slots=True, frozen=True)
class ParticipantScore:
    """Per-participant totals produced by the scoring engine."""

    participant_id: str
    display_name: str
    unique_short_id: str
    total_score: int
    accuracy_percent: float
    average_response_time_ms: float
    correct_count: int
    total_answered: int


@dataclass(slots=True, frozen=True)
class LeaderboardEntry:
    """A ranked row of a leaderboard."""

    rank: int
    participant_id: str
    display_name: str
    unique_short_id: str
    score: int
    correct_answer_count: int
    total_questions: int
    average_response_time_ms: float
    accuracy_percent: float

    def to_dict(self) -> dict[str, object]:
        return {
            "rank": self.rank,
            "participant_id": self.participant_id,
            "display_name": self.display_name,
            "unique_short_id": self.unique_short_id,
            "score": self.score,
            "correct_answer_count": self.correct_answer_count,
            "total_questions": self.total_questions,
            "average_response_time_ms": self.average_response_time_ms,
            "accuracy_percent": self.accuracy_percent,
        }


@dataclass(slots=True, frozen=True)
class EvaluationStats:
    """Aggregate numbers over a leaderboard."""

    count: int = 0
    average_score: int = 0
    highest_score: int = 0
    lowest_score: int = 0
    average_accuracy: int = 0
    average_response_time: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "count": self.count,
            "average_score": self.average_score,
            "highest_score": self.highest_score,
            "lowest_score": self.lowest_score,
            "average_accuracy": self.average_accuracy,
            "average_response_time": self.average_response_time,
        }


@dataclass(slots=True, frozen=True)
class LeaderboardReport:
    """Immutable result of one evaluation run."""

    quiz_id: str
    entries: tuple[LeaderboardEntry, ...]
    stats: EvaluationStats
    evaluated_at: datetime
    total_participants: int
    questions_evaluated: int
    total_answers_processed: int
    round: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "quiz_id": self.quiz_id,
            "round": self.round,
            "entries": [entry.to_dict() for entry in self.entries],
            "stats": self.stats.to_dict(),
            "evaluated_at": self.evaluated_at.isoformat(),
            "total_participants": self.total_participants,
            "questions_evaluated": self.questions_evaluated,
            "total_answers_processed": self.total_answers_processed,
        }


@dataclass(slots=True, frozen=True)
class ValidationIssue:
    """One category of data problem found by validation."""

    type: str
    count: int
    details: tuple[dict[str, Any], ...]


@dataclass(slots=True, frozen=True)
class ValidationReport:
    """Diagnostic scan of a quiz's stored answers."""

    quiz_id: str
    total_answers: int
    total_participants: int
    total_questions: int
    issues: tuple[ValidationIssue, ...]
    participant_scores: tuple[LeaderboardEntry, ...]
    generated_at: datetime

    @property
    def is_clean(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, object]:
        return {
            "quiz_id": self.quiz_id,
            "total_answers": self.total_answers,
            "total_participants": self.total_participants,
            "total_questions": self.total_questions,
            "issues": [
                {"type": issue.type, "count": issue.count, "details": list(issue.details)}
                for issue in self.issues
            ],
            "participant_scores": [entry.to_dict() for entry in self.participant_scores],
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    """Admin view of a single participant's position in a quiz."""

    participant_id: str
    tracked_progress: int
    answered_progress: int
    total_answers: int
    is_at_pause_point: bool
    next_pause_point: int | None


@dataclass(slots=True, frozen=True)
class QuestionResponseSummary:
    """How participants answered one question."""

    question_id: str
    question_number: int
    prompt: str
    total_responses: int
    option_counts: dict[int, int]
    timed_out_count: int
    response_rate: int
    average_response_time_ms: int

    def to_dict(self) -> dict[str, object]:
        return {
            "question_id": self.question_id,
            "question_number": self.question_number,
            "prompt": self.prompt,
            "total_responses": self.total_responses,
            "option_counts": {str(option): count for option, count in sorted(self.option_counts.items())},
            "timed_out_count": self.timed_out_count,
            "response_rate": self.response_rate,
            "average_response_time_ms": self.average_response_time_ms,
        }


@dataclass(slots=True, frozen=True)
class QuestionResponsesReport:
    """Per-question answer breakdown with completion totals."""

    quiz_id: str
    questions: tuple[QuestionResponseSummary, ...]
    total_answers: int
    active_participants: int
    average_responses_per_question: int
    completion_rate: int
    generated_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "quiz_id": self.quiz_id,
            "questions": [summary.to_dict() for summary in self.questions],
            "total_answers": self.total_answers,
            "active_participants": self.active_participants,
            "average_responses_per_question": self.average_responses_per_question,
            "completion_rate": self.completion_rate,
            "generated_at": self.generated_at.isoformat(),
        }
