"""Scoring and ranking of answer submissions.

Everything here is a pure function: inputs are read, never mutated, and the
same inputs always produce the same leaderboard.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Iterable, Sequence

from quizgate.constants.scoring_constants import (
    DEFAULT_MAX_RESPONSE_TIME_MS,
    MINIMUM_MATCHED_POINTS,
    SPEED_BONUS_RATIO,
)
from quizgate.core.models import (
    AnswerSubmission,
    CorrectAnswer,
    EvaluationStats,
    LeaderboardEntry,
    Participant,
    ParticipantScore,
    Question,
)


@dataclass(slots=True, frozen=True)
class ParticipantTally:
    """Totals for one participant before identity is attached."""

    total_score: int
    accuracy_percent: float
    average_response_time_ms: float
    correct_count: int
    total_answered: int


def round_half_up(value: float) -> int:
    """Round .5 towards positive infinity, like JavaScript's ``Math.round``."""
    return math.floor(value + 0.5)


def is_valid_response_time(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and value >= 0


def score_answer(
    selected_option_index: int | None,
    correct_answers: Sequence[CorrectAnswer],
    response_time_ms: float,
    max_time_ms: float = DEFAULT_MAX_RESPONSE_TIME_MS,
) -> int:
    """Return the points earned by one answer.

    Unmatched options earn nothing. A matched option earns its base points
    plus a speed bonus of up to 30% that decays linearly to zero at
    ``max_time_ms``, and never less than one point.
    """
    if selected_option_index is None:
        return 0
    match = next((ca for ca in correct_answers if ca.option_index == selected_option_index), None)
    if match is None:
        return 0

    base_points = match.points
    time_ratio = max(0.0, 1 - response_time_ms / max_time_ms)
    time_bonus = math.floor(base_points * SPEED_BONUS_RATIO * time_ratio)
    return max(MINIMUM_MATCHED_POINTS, base_points + time_bonus)


def score_participant(
    answers: Iterable[AnswerSubmission],
    questions: Sequence[Question],
    max_time_ms: float = DEFAULT_MAX_RESPONSE_TIME_MS,
) -> ParticipantTally:
    """Sum the score of every answer that refers to a known question."""
    questions_by_id = {question.id: question for question in questions}
    total_score = 0
    correct_count = 0
    counted = 0
    total_response_time = 0.0

    for answer in answers:
        question = questions_by_id.get(answer.question_id)
        if question is None:
            continue
        response_time = answer.response_time_ms if is_valid_response_time(answer.response_time_ms) else 0
        window = question.time_limit_ms or max_time_ms
        points = score_answer(answer.selected_option_index, question.correct_answers, response_time, window)
        if _is_match(answer.selected_option_index, question.correct_answers):
            correct_count += 1
        total_score += points
        total_response_time += response_time
        counted += 1

    return ParticipantTally(
        total_score=total_score,
        accuracy_percent=(correct_count / counted) * 100 if counted else 0.0,
        average_response_time_ms=total_response_time / counted if counted else 0.0,
        correct_count=correct_count,
        total_answered=counted,
    )


def rank_participants(scores: Iterable[ParticipantScore]) -> list[LeaderboardEntry]:
    """Order by score (desc) then average response time (asc); no shared ranks."""
    ranked = sorted(
        (score for score in scores if score.total_answered > 0),
        key=lambda s: (-s.total_score, s.average_response_time_ms),
    )
    return [
        LeaderboardEntry(
            rank=position,
            participant_id=score.participant_id,
            display_name=score.display_name,
            unique_short_id=score.unique_short_id,
            score=score.total_score,
            correct_answer_count=score.correct_count,
            total_questions=score.total_answered,
            average_response_time_ms=score.average_response_time_ms,
            accuracy_percent=score.accuracy_percent,
        )
        for position, score in enumerate(ranked, start=1)
    ]


def summarize(entries: Sequence[LeaderboardEntry]) -> EvaluationStats:
    if not entries:
        return EvaluationStats()
    count = len(entries)
    scores = [entry.score for entry in entries]
    return EvaluationStats(
        count=count,
        average_score=round_half_up(sum(scores) / count),
        highest_score=max(scores),
        lowest_score=min(scores),
        average_accuracy=round_half_up(sum(e.accuracy_percent for e in entries) / count),
        average_response_time=round_half_up(sum(e.average_response_time_ms for e in entries) / count),
    )


def evaluate_participants(
    participants: Iterable[Participant],
    answers: Iterable[AnswerSubmission],
    questions: Sequence[Question],
    *,
    include_unknown: bool = False,
    max_time_ms: float = DEFAULT_MAX_RESPONSE_TIME_MS,
) -> list[LeaderboardEntry]:
    """Group answers by participant, score each group and rank the result.

    Participants are visited in the order given; answers from participant
    ids not in ``participants`` are dropped unless ``include_unknown`` is
    set, in which case they get a placeholder identity.
    """
    grouped: dict[str, list[AnswerSubmission]] = {}
    for answer in answers:
        grouped.setdefault(answer.participant_id, []).append(answer)

    known = {participant.participant_id: participant for participant in participants}
    ordered_ids = list(known)
    if include_unknown:
        ordered_ids.extend(pid for pid in grouped if pid not in known)

    scores: list[ParticipantScore] = []
    for participant_id in ordered_ids:
        participant_answers = grouped.get(participant_id)
        if not participant_answers:
            continue
        identity = known.get(participant_id) or Participant(
            participant_id=participant_id,
            display_name=f"User {participant_id}",
            unique_short_id=participant_id,
        )
        tally = score_participant(participant_answers, questions, max_time_ms)
        scores.append(
            ParticipantScore(
                participant_id=identity.participant_id,
                display_name=identity.display_name,
                unique_short_id=identity.unique_short_id,
                total_score=tally.total_score,
                accuracy_percent=tally.accuracy_percent,
                average_response_time_ms=tally.average_response_time_ms,
                correct_count=tally.correct_count,
                total_answered=tally.total_answered,
            )
        )
    return rank_participants(scores)


def _is_match(selected_option_index: int | None, correct_answers: Sequence[CorrectAnswer]) -> bool:
    if selected_option_index is None:
        return False
    return any(ca.option_index == selected_option_index for ca in correct_answers)
