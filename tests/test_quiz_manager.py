"""Tests for the submission flow and participant registration."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import random

import pytest

from conftest import QUIZ_ID, START_TS, submit
from quizgate.core.errors import InvalidInputError, NotFoundError, StoreUnavailableError
from quizgate.core.name_assigner import NameAssigner, short_participant_id
from quizgate.core.quiz_manager import PendingAnswer, QuizManager
from quizgate.core.services.progress_gate import REASON_BEYOND_NEXT_PAUSE, REASON_PAUSE_POINT


class TestSubmitAnswer:
    """Test validating, gating and storing single answers."""

    def test_accepted_answer_is_stored_with_round(self, active_manager: QuizManager):
        """Test the happy path."""
        result = submit(active_manager, "alice", "q4")
        assert result.accepted
        assert result.is_new
        assert result.progress == 4
        stored = active_manager.store.list_answers(QUIZ_ID)
        assert len(stored) == 1
        assert stored[0].round == 2
        assert stored[0].selected_option_index == 1

    def test_resubmission_overwrites(self, active_manager: QuizManager):
        """Test that the latest answer for a question wins."""
        submit(active_manager, "alice", "q1", option=0)
        result = submit(active_manager, "alice", "q1", option=1)
        assert result.accepted
        assert not result.is_new
        stored = active_manager.store.list_answers(QUIZ_ID)
        assert [answer.selected_option_index for answer in stored] == [1]

    def test_timed_out_answer_advances_progress(self, active_manager: QuizManager):
        """Test that an answer without an option still counts as progress."""
        result = submit(active_manager, "alice", "q2", option=None)
        assert result.accepted
        assert active_manager.gate.get_progress(QUIZ_ID, "alice") == 2
        report = active_manager.evaluate_quiz(QUIZ_ID)
        assert report.entries[0].score == 0
        assert report.entries[0].correct_answer_count == 0

    def test_response_time_defaults_to_server_clock(self, active_manager: QuizManager):
        """Test that a missing response time is derived from the timestamps."""
        result = active_manager.submit_answer(
            QUIZ_ID, "alice", "q1", 1, START_TS, server_timestamp=START_TS + 2500
        )
        assert result.answer.response_time_ms == 2500
        assert result.answer.server_timestamp == START_TS + 2500

    def test_start_timestamp_after_server_clock_is_rejected(self, active_manager: QuizManager):
        """Test that a negative derived response time is invalid."""
        with pytest.raises(InvalidInputError):
            active_manager.submit_answer(QUIZ_ID, "alice", "q1", 1, START_TS, server_timestamp=START_TS - 1)

    @pytest.mark.parametrize("option", [-1, 4, True])
    def test_option_out_of_range(self, active_manager: QuizManager, option):
        """Test that the selected option must exist."""
        with pytest.raises(InvalidInputError):
            submit(active_manager, "alice", "q1", option=option)

    @pytest.mark.parametrize("timestamp", [0, -5, "now"])
    def test_invalid_start_timestamp(self, active_manager: QuizManager, timestamp):
        """Test that the start timestamp must be a positive integer."""
        with pytest.raises(InvalidInputError):
            active_manager.submit_answer(QUIZ_ID, "alice", "q1", 1, timestamp, response_time_ms=10)

    def test_round_mismatch_is_rejected(self, active_manager: QuizManager):
        """Test that a wrong round tag is refused."""
        with pytest.raises(InvalidInputError):
            active_manager.submit_answer(QUIZ_ID, "alice", "q4", 1, START_TS, response_time_ms=10, round_number=1)
        result = active_manager.submit_answer(
            QUIZ_ID, "alice", "q4", 1, START_TS, response_time_ms=10, round_number=2
        )
        assert result.accepted

    def test_unknown_question(self, active_manager: QuizManager):
        """Test that answering a missing question raises NotFoundError."""
        with pytest.raises(NotFoundError):
            submit(active_manager, "alice", "q99")

    def test_inactive_quiz_refuses_answers(self, manager: QuizManager):
        """Test that a quiz which has not started rejects submissions."""
        with pytest.raises(RuntimeError):
            submit(manager, "alice", "q1")

    def test_deactivated_quiz_refuses_answers_even_if_active(self, active_manager: QuizManager):
        """Test that the deactivated flag alone closes a quiz."""
        active_manager.store.update_quiz(QUIZ_ID, active=True, deactivated=True)
        with pytest.raises(RuntimeError, match="deactivated"):
            submit(active_manager, "alice", "q1")
        assert active_manager.store.list_answers(QUIZ_ID) == []

    def test_blocked_answer_is_not_stored(self, active_manager: QuizManager):
        """Test that a gate rejection is a result, not an exception."""
        active_manager.set_pause_points(QUIZ_ID, [2])
        result = submit(active_manager, "alice", "q3")
        assert not result.accepted
        assert result.decision.reason_code == REASON_BEYOND_NEXT_PAUSE
        assert result.answer is None
        assert active_manager.store.list_answers(QUIZ_ID) == []
        assert active_manager.gate.get_progress(QUIZ_ID, "alice") == 0

    def test_store_failure_does_not_advance_progress(self, flaky_manager: QuizManager, flaky_store):
        """Test that progress stays put when the answer cannot be written."""
        flaky_store.fail_on.add("upsert_answer")
        with pytest.raises(StoreUnavailableError):
            submit(flaky_manager, "alice", "q2")
        assert flaky_manager.gate.get_progress(QUIZ_ID, "alice") == 0


class TestPauseScenario:
    """Test a full session with a pause point at question 3."""

    def test_participants_wait_at_pause_point_until_resume(self, active_manager: QuizManager):
        """Test that A waits at the pause point, B stalls at 2, and both continue after resume."""
        active_manager.set_pause_points(QUIZ_ID, [3])

        assert submit(active_manager, "alice", "q1").accepted
        assert submit(active_manager, "alice", "q2").accepted
        blocked = submit(active_manager, "alice", "q3")
        assert not blocked.accepted
        assert blocked.decision.reason_code == REASON_PAUSE_POINT
        assert blocked.decision.blocking_pause_point == 3

        assert submit(active_manager, "bob", "q1").accepted
        assert submit(active_manager, "bob", "q2").accepted
        assert not submit(active_manager, "bob", "q4").accepted
        assert active_manager.gate.get_progress(QUIZ_ID, "bob") == 2

        decision = active_manager.can_answer(QUIZ_ID, "bob", 3)
        assert not decision.allowed

        assert active_manager.resume_quiz(QUIZ_ID) == (3,)

        assert submit(active_manager, "alice", "q3").accepted
        assert submit(active_manager, "alice", "q4").accepted
        assert submit(active_manager, "bob", "q3").accepted
        assert active_manager.gate.get_progress(QUIZ_ID, "alice") == 4
        assert active_manager.gate.get_progress(QUIZ_ID, "bob") == 3

        report = active_manager.evaluate_quiz(QUIZ_ID)
        assert [entry.participant_id for entry in report.entries] == ["alice", "bob"]
        assert report.entries[0].score == 4 * 124
        assert report.entries[1].score == 3 * 124

    def test_concurrent_submissions_never_pass_a_pause_point(self, active_manager: QuizManager):
        """Test that racing submissions respect the pause point."""
        active_manager.set_pause_points(QUIZ_ID, [4])
        participants = [f"p{index}" for index in range(12)]
        jobs = [(pid, f"q{number}") for pid in participants for number in range(1, 7)]
        random.Random(3).shuffle(jobs)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda job: submit(active_manager, *job), jobs))

        stored = active_manager.store.list_answers(QUIZ_ID)
        assert {answer.question_id for answer in stored} == {"q1", "q2", "q3"}
        assert len(stored) == sum(1 for result in results if result.accepted) == 36
        for pid in participants:
            assert active_manager.gate.get_progress(QUIZ_ID, pid) == 3


class TestBatchAndQueries:
    """Test batch submission and read-only queries."""

    def test_batch_submits_in_question_order(self, active_manager: QuizManager):
        """Test that a batch is processed by question position."""
        answers = [
            PendingAnswer("q3", 1, START_TS, response_time_ms=100),
            PendingAnswer("q1", 1, START_TS, response_time_ms=100),
            PendingAnswer("q2", 0, START_TS, response_time_ms=100),
        ]
        results = active_manager.submit_answers(QUIZ_ID, "alice", answers)
        assert [result.answer.question_id for result in results] == ["q1", "q2", "q3"]
        assert all(result.accepted for result in results)
        assert active_manager.gate.get_progress(QUIZ_ID, "alice") == 3

    def test_batch_stops_at_pause_point(self, active_manager: QuizManager):
        """Test that batch entries beyond a pause point are refused."""
        active_manager.set_pause_points(QUIZ_ID, [2])
        answers = [PendingAnswer(f"q{n}", 1, START_TS, response_time_ms=100) for n in (1, 2, 3)]
        results = active_manager.submit_answers(QUIZ_ID, "alice", answers)
        assert [result.accepted for result in results] == [True, False, False]

    def test_empty_batch_is_rejected(self, active_manager: QuizManager):
        """Test that a batch needs at least one answer."""
        with pytest.raises(InvalidInputError):
            active_manager.submit_answers(QUIZ_ID, "alice", [])

    def test_can_answer_beyond_quiz_length(self, active_manager: QuizManager):
        """Test that question numbers past the last question are unknown."""
        with pytest.raises(NotFoundError):
            active_manager.can_answer(QUIZ_ID, "alice", 7)
        assert active_manager.can_answer(QUIZ_ID, "alice", 6).allowed

    def test_can_answer_unknown_quiz(self, active_manager: QuizManager):
        """Test that asking about a missing quiz raises NotFoundError."""
        with pytest.raises(NotFoundError):
            active_manager.can_answer("missing", "alice", 1)

    def test_participant_answers_in_question_order(self, active_manager: QuizManager):
        """Test reading back one participant's stored answers."""
        submit(active_manager, "alice", "q2", option=0)
        submit(active_manager, "alice", "q1")
        submit(active_manager, "bob", "q1")
        answers = active_manager.participant_answers(QUIZ_ID, "alice")
        assert [answer.question_id for answer in answers] == ["q1", "q2"]
        assert answers[1].selected_option_index == 0
        assert active_manager.participant_answers(QUIZ_ID, "carol") == []

    def test_participant_answers_validation(self, active_manager: QuizManager):
        """Test that a participant id and a known quiz are required."""
        with pytest.raises(InvalidInputError):
            active_manager.participant_answers(QUIZ_ID, " ")
        with pytest.raises(NotFoundError):
            active_manager.participant_answers("missing", "alice")


class TestParticipants:
    """Test participant registration and identities."""

    def test_short_id_is_derived_from_participant_id(self, manager: QuizManager):
        """Test that a missing short id comes from the participant id hash."""
        participant = manager.register_participant("abc", "Abby")
        assert participant.unique_short_id == "6354"

    def test_short_id_hash_wraps_like_32_bit_integers(self):
        """Test the hash with values that overflow 32 bits."""
        assert short_participant_id("hello") == "2322"
        assert short_participant_id("polygenelubricants") == "3648"
        assert short_participant_id("") == "0000"

    def test_missing_display_name_gets_an_alias(self, manager: QuizManager):
        """Test that anonymous participants get a name from the pool."""
        participant = manager.register_participant("anon-1")
        assert participant.display_name
        assert 2 <= len(participant.display_name) <= 20

    def test_reregistering_keeps_existing_name(self, manager: QuizManager):
        """Test that updating without a name keeps the stored one."""
        assert manager.register_participant("alice").display_name == "Alice"

    def test_short_id_clash_is_a_conflict(self, manager: QuizManager):
        """Test that two participants cannot share a short id."""
        manager.register_participant("carol", "Carol", unique_short_id="1111")
        with pytest.raises(RuntimeError):
            manager.register_participant("dave", "Dave", unique_short_id="1111")

    @pytest.mark.parametrize(
        "display_name, short_id",
        [("A", None), ("A" * 21, None), ("Valid", "12"), ("Valid", "12a4")],
    )
    def test_invalid_identity(self, manager: QuizManager, display_name, short_id):
        """Test display name length and short id format checks."""
        with pytest.raises(InvalidInputError):
            manager.register_participant("erin", display_name, unique_short_id=short_id)

    def test_name_assigner_does_not_repeat_within_a_cycle(self):
        """Test that every name is handed out once before repeating."""
        assigner = NameAssigner(["One", "Two", "Three"], seed=1)
        assert sorted(assigner.next_name() for _ in range(3)) == ["One", "Three", "Two"]

    def test_name_assigner_requires_names(self):
        """Test that an empty pool is refused."""
        with pytest.raises(ValueError):
            NameAssigner(["  ", ""])
