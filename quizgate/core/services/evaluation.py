"""Service turning stored answers into leaderboards and running admin actions."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable

from quizgate.constants.scoring_constants import RESPONSE_STATS_TIME_CAP_MS, ROUND_LEADERBOARD_SIZE
from quizgate.core.errors import InvalidInputError
from quizgate.core.models import (
    AnswerSubmission,
    LeaderboardReport,
    ProgressSnapshot,
    QuestionResponseSummary,
    QuestionResponsesReport,
    Quiz,
    ValidationIssue,
    ValidationReport,
    utc_now,
)
from quizgate.core.services.progress_gate import ProgressGate
from quizgate.core.services.quiz_store import QuizStore
from quizgate.core.services.scoring import (
    evaluate_participants,
    is_valid_response_time,
    round_half_up,
    summarize,
)

logger = logging.getLogger("quizgate.evaluation")


@dataclass(slots=True, frozen=True)
class RestartSummary:
    """Counts of what a restart removed."""

    quiz_id: str
    cleared_answers: int
    cleared_reports: int
    cleared_progress: int
    cleared_pause_points: tuple[int, ...]


class EvaluationOrchestrator:
    """Evaluates quizzes and applies lifecycle actions through the store."""

    def __init__(self, store: QuizStore, gate: ProgressGate) -> None:
        self._store = store
        self._gate = gate

    # --- Evaluation ---

    def evaluate(self, quiz_id: str) -> LeaderboardReport:
        """Rank every participant of the quiz and close it for submissions."""
        with self._gate.quiz_lock(quiz_id):
            quiz = self._store.get_quiz(quiz_id)
            participants = self._store.list_participants()
            answers = self._store.list_answers(quiz_id)

            entries = evaluate_participants(participants, answers, quiz.questions)
            report = LeaderboardReport(
                quiz_id=quiz_id,
                entries=tuple(entries),
                stats=summarize(entries),
                evaluated_at=utc_now(),
                total_participants=len(entries),
                questions_evaluated=len(quiz.questions),
                total_answers_processed=len(answers),
            )
            self._store.save_report(report, close_quiz=True)
        logger.info(
            "Evaluated quiz %s: %d participants, %d answers; quiz closed",
            quiz_id,
            report.total_participants,
            report.total_answers_processed,
        )
        return report

    def evaluate_round(
        self,
        quiz_id: str,
        round_number: int,
        top: int = ROUND_LEADERBOARD_SIZE,
    ) -> LeaderboardReport:
        """Rank the answers of a single round and keep the best ``top`` entries."""
        quiz = self._store.get_quiz(quiz_id)
        if isinstance(round_number, bool) or not isinstance(round_number, int):
            raise InvalidInputError("Round number must be an integer.")
        if not 1 <= round_number <= quiz.total_rounds:
            raise InvalidInputError(f"Invalid round number {round_number} for quiz {quiz_id!r}.")
        if top < 1:
            raise InvalidInputError("Leaderboard size must be at least 1.")

        questions = quiz.questions_for_round(round_number)
        answers = self._store.list_answers(quiz_id, round_number)
        entries = evaluate_participants(self._store.list_participants(), answers, questions)
        report = LeaderboardReport(
            quiz_id=quiz_id,
            round=round_number,
            entries=tuple(entries[:top]),
            stats=summarize(entries),
            evaluated_at=utc_now(),
            total_participants=len(entries),
            questions_evaluated=len(questions),
            total_answers_processed=len(answers),
        )
        self._store.save_report(report)
        logger.info(
            "Evaluated round %d of quiz %s: %d participants",
            round_number,
            quiz_id,
            report.total_participants,
        )
        return report

    def get_leaderboard(self, quiz_id: str, round_number: int | None = None) -> LeaderboardReport | None:
        self._store.get_quiz(quiz_id)
        return self._store.get_report(quiz_id, round_number)

    # --- Restart ---

    def restart(self, quiz_id: str) -> RestartSummary:
        """Wipe answers, reports, pause points and progress of the quiz.

        The quiz lock is held across the store wipe and the gate reset so no
        submission can land in between.
        """
        with self._gate.quiz_lock(quiz_id):
            pause_points = self._gate.get_pause_points(quiz_id)
            cleared = self._store.restart_quiz(quiz_id, utc_now())
            cleared_progress = self._gate.reset_quiz(quiz_id)
        summary = RestartSummary(
            quiz_id=quiz_id,
            cleared_answers=cleared["answers"],
            cleared_reports=cleared["reports"],
            cleared_progress=cleared_progress,
            cleared_pause_points=pause_points,
        )
        logger.info(
            "Restarted quiz %s: cleared %d answers, %d reports, %d progress records",
            quiz_id,
            summary.cleared_answers,
            summary.cleared_reports,
            summary.cleared_progress,
        )
        return summary

    # --- Validation ---

    def validate(self, quiz_id: str) -> ValidationReport:
        """Scan stored answers for problems that would distort scoring."""
        quiz = self._store.get_quiz(quiz_id)
        participants = self._store.list_participants()
        answers = self._store.list_answers(quiz_id)

        issues = [
            issue
            for issue in (
                _missing_required_fields(answers),
                _invalid_response_times(answers),
                _invalid_question_ids(answers, quiz),
                _invalid_participant_ids(answers, {p.participant_id for p in participants}),
                _duplicate_answers(answers),
                _missing_rounds(answers),
                _round_mismatches(answers, quiz),
            )
            if issue is not None
        ]
        preview = evaluate_participants(participants, answers, quiz.questions, include_unknown=True)
        report = ValidationReport(
            quiz_id=quiz_id,
            total_answers=len(answers),
            total_participants=len(participants),
            total_questions=len(quiz.questions),
            issues=tuple(issues),
            participant_scores=tuple(preview),
            generated_at=utc_now(),
        )
        self._store.append_validation_report(report)
        if issues:
            logger.warning(
                "Validation of quiz %s found issues: %s",
                quiz_id,
                ", ".join(f"{issue.type}={issue.count}" for issue in issues),
            )
        else:
            logger.info("Validation of quiz %s found no issues", quiz_id)
        return report

    # --- Lifecycle ---

    def start(self, quiz_id: str) -> Quiz:
        quiz = self._store.get_quiz(quiz_id)
        if not quiz.questions:
            raise InvalidInputError("Quiz cannot be started without a valid question set.")
        now = utc_now()
        changes: dict[str, object] = {
            "active": True,
            "deactivated": False,
            "started_at": now,
            "stopped_at": None,
        }
        if quiz.deactivated:
            changes["created_at"] = now
            changes["reactivated_at"] = now
        logger.info("Starting quiz %s", quiz_id)
        return self._store.update_quiz(quiz_id, **changes)

    def stop(self, quiz_id: str) -> Quiz:
        logger.info("Stopping quiz %s", quiz_id)
        with self._gate.quiz_lock(quiz_id):
            return self._store.update_quiz(quiz_id, active=False, stopped_at=utc_now())

    def pause(self, quiz_id: str, pause_points: Iterable[int]) -> tuple[int, ...]:
        self._store.get_quiz(quiz_id)
        return self._gate.set_pause_points(quiz_id, pause_points)

    def resume(self, quiz_id: str) -> tuple[int, ...]:
        """Clear the pause points and make sure the quiz accepts answers again.

        Returns the pause points that were cleared; empty when not paused.
        A deactivated quiz has to be reactivated first.
        """
        with self._gate.quiz_lock(quiz_id):
            quiz = self._store.get_quiz(quiz_id)
            if quiz.deactivated:
                raise RuntimeError(f"Quiz {quiz_id!r} is deactivated; reactivate it before resuming.")
            pause_points = self._gate.get_pause_points(quiz_id)
            if not pause_points:
                return ()
            self._store.update_quiz(quiz_id, active=True)
            self._gate.clear_pause_points(quiz_id)
        logger.info("Resumed quiz %s, cleared pause points %s", quiz_id, list(pause_points))
        return pause_points

    def deactivate(self, quiz_id: str) -> Quiz:
        now = utc_now()
        logger.info("Deactivating quiz %s", quiz_id)
        with self._gate.quiz_lock(quiz_id):
            return self._store.update_quiz(quiz_id, active=False, deactivated=True, stopped_at=now)

    def reactivate(self, quiz_id: str) -> Quiz:
        now = utc_now()
        logger.info("Reactivating quiz %s", quiz_id)
        return self._store.update_quiz(quiz_id, deactivated=False, created_at=now, reactivated_at=now)

    # --- Progress overview ---

    def progress_overview(self, quiz_id: str) -> list[ProgressSnapshot]:
        """Per-participant progress, furthest first."""
        quiz = self._store.get_quiz(quiz_id)
        answers = self._store.list_answers(quiz_id)
        pause_points = self._gate.get_pause_points(quiz_id)
        tracked = self._gate.get_all_progress(quiz_id)

        answered: dict[str, list[int]] = {}
        for answer in answers:
            number = quiz.question_number(answer.question_id)
            answered.setdefault(answer.participant_id, []).append(number or 0)

        participant_ids = list(answered)
        participant_ids.extend(pid for pid in tracked if pid not in answered)

        snapshots = []
        for participant_id in participant_ids:
            numbers = answered.get(participant_id, [])
            answered_progress = max(numbers, default=0)
            snapshots.append(
                ProgressSnapshot(
                    participant_id=participant_id,
                    tracked_progress=tracked.get(participant_id, 0),
                    answered_progress=answered_progress,
                    total_answers=len(numbers),
                    is_at_pause_point=answered_progress in pause_points,
                    next_pause_point=next((p for p in pause_points if p > answered_progress), None),
                )
            )
        snapshots.sort(key=lambda s: -s.answered_progress)
        return snapshots

    def rebuild_progress(self, quiz_id: str) -> dict[str, int]:
        """Re-derive progress records from the stored answers.

        Recovers progress lost between persisting an answer and recording
        it, or after the progress store was replaced. Records only move
        forward, so running this on intact state changes nothing.
        """
        with self._gate.quiz_lock(quiz_id):
            quiz = self._store.get_quiz(quiz_id)
            furthest: dict[str, int] = {}
            for answer in self._store.list_answers(quiz_id):
                number = quiz.question_number(answer.question_id)
                if number is None or not answer.participant_id:
                    continue
                furthest[answer.participant_id] = max(number, furthest.get(answer.participant_id, 0))
            rebuilt = {
                participant_id: self._gate.record_progress(quiz_id, participant_id, number)
                for participant_id, number in furthest.items()
            }
        logger.info("Rebuilt progress of quiz %s for %d participants", quiz_id, len(rebuilt))
        return rebuilt

    # --- Response statistics ---

    def question_responses(self, quiz_id: str) -> QuestionResponsesReport:
        """Break stored answers down per question."""
        quiz = self._store.get_quiz(quiz_id)
        answers = self._store.list_answers(quiz_id)
        active_participants = len({answer.participant_id for answer in answers})

        by_question: dict[str, list[AnswerSubmission]] = {}
        for answer in answers:
            by_question.setdefault(answer.question_id, []).append(answer)

        summaries = []
        for number, question in enumerate(quiz.questions, start=1):
            question_answers = by_question.get(question.id, [])
            option_counts: dict[int, int] = {}
            timed_out = 0
            for answer in question_answers:
                if answer.selected_option_index is None:
                    timed_out += 1
                else:
                    option = answer.selected_option_index
                    option_counts[option] = option_counts.get(option, 0) + 1
            times = [
                min(answer.response_time_ms, RESPONSE_STATS_TIME_CAP_MS)
                if is_valid_response_time(answer.response_time_ms)
                else 0
                for answer in question_answers
            ]
            total = len(question_answers)
            summaries.append(
                QuestionResponseSummary(
                    question_id=question.id,
                    question_number=number,
                    prompt=question.prompt,
                    total_responses=total,
                    option_counts=option_counts,
                    timed_out_count=timed_out,
                    response_rate=round_half_up(total / active_participants * 100) if active_participants else 0,
                    average_response_time_ms=round_half_up(sum(times) / total) if total else 0,
                )
            )

        question_count = len(quiz.questions)
        possible = active_participants * question_count
        return QuestionResponsesReport(
            quiz_id=quiz_id,
            questions=tuple(summaries),
            total_answers=len(answers),
            active_participants=active_participants,
            average_responses_per_question=round_half_up(len(answers) / question_count) if question_count else 0,
            completion_rate=round_half_up(len(answers) / possible * 100) if possible else 0,
            generated_at=utc_now(),
        )


def _missing_required_fields(answers: list[AnswerSubmission]) -> ValidationIssue | None:
    details = []
    for answer in answers:
        missing = [
            name
            for name, value in (
                ("participant_id", answer.participant_id),
                ("question_id", answer.question_id),
                ("question_start_timestamp", answer.question_start_timestamp),
            )
            if value is None or value == ""
        ]
        if missing:
            details.append(
                {
                    "participant_id": answer.participant_id,
                    "question_id": answer.question_id,
                    "missing_fields": missing,
                }
            )
    return _issue("missing_required_fields", details)


def _invalid_response_times(answers: list[AnswerSubmission]) -> ValidationIssue | None:
    details = [
        {
            "participant_id": answer.participant_id,
            "question_id": answer.question_id,
            "response_time_ms": answer.response_time_ms,
        }
        for answer in answers
        if not is_valid_response_time(answer.response_time_ms)
    ]
    return _issue("invalid_response_time", details)


def _invalid_question_ids(answers: list[AnswerSubmission], quiz: Quiz) -> ValidationIssue | None:
    known = {question.id for question in quiz.questions}
    details = [
        {"participant_id": answer.participant_id, "question_id": answer.question_id}
        for answer in answers
        if answer.question_id not in known
    ]
    return _issue("invalid_question_id", details)


def _invalid_participant_ids(answers: list[AnswerSubmission], known: set[str]) -> ValidationIssue | None:
    details = [
        {"participant_id": answer.participant_id, "question_id": answer.question_id}
        for answer in answers
        if answer.participant_id not in known
    ]
    return _issue("invalid_participant_id", details)


def _duplicate_answers(answers: list[AnswerSubmission]) -> ValidationIssue | None:
    seen: set[tuple[str, str]] = set()
    details = []
    for answer in answers:
        key = (answer.participant_id, answer.question_id)
        if key in seen:
            details.append({"participant_id": answer.participant_id, "question_id": answer.question_id})
        else:
            seen.add(key)
    return _issue("duplicate_answers", details)


def _missing_rounds(answers: list[AnswerSubmission]) -> ValidationIssue | None:
    details = [
        {"participant_id": answer.participant_id, "question_id": answer.question_id}
        for answer in answers
        if answer.round is None
    ]
    return _issue("missing_round", details)


def _round_mismatches(answers: list[AnswerSubmission], quiz: Quiz) -> ValidationIssue | None:
    details = []
    for answer in answers:
        number = quiz.question_number(answer.question_id)
        if number is None or answer.round is None:
            continue
        expected = quiz.round_for_question_number(number)
        if answer.round != expected:
            details.append(
                {
                    "participant_id": answer.participant_id,
                    "question_id": answer.question_id,
                    "round": answer.round,
                    "expected_round": expected,
                }
            )
    return _issue("round_mismatch", details)


def _issue(kind: str, details: list[dict]) -> ValidationIssue | None:
    if not details:
        return None
    return ValidationIssue(type=kind, count=len(details), details=tuple(details))
