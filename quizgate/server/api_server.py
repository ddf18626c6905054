"""FastAPI server exposing the participant and admin endpoints."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict
import logging
import secrets
from typing import Iterator

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
import uvicorn

from quizgate.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quizgate.constants.scoring_constants import DEFAULT_QUESTIONS_PER_ROUND
from quizgate.core.errors import InvalidInputError, NotFoundError, StoreUnavailableError
from quizgate.core.models import AnswerSubmission, CorrectAnswer, Participant, Question, Quiz, SubmissionResult
from quizgate.core.quiz_manager import PendingAnswer, QuizManager

logger = logging.getLogger("quizgate.api")

_PAUSED_DETAIL = "Quiz is paused, try again later."


class CorrectAnswerPayload(BaseModel):
    option_index: int
    points: int = Field(ge=0)


class QuestionPayload(BaseModel):
    id: str
    prompt: str
    options: list[str]
    correct_answers: list[CorrectAnswerPayload] = Field(default_factory=list)
    time_limit_ms: int | None = None


class QuizPayload(BaseModel):
    """Payload schema for creating or replacing a quiz."""

    id: str
    title: str
    questions: list[QuestionPayload]
    questions_per_round: int = DEFAULT_QUESTIONS_PER_ROUND


class ParticipantPayload(BaseModel):
    participant_id: str
    display_name: str | None = None
    unique_short_id: str | None = None


class AnswerPayload(BaseModel):
    """Payload schema for a submitted answer. A null option means time ran out."""

    participant_id: str
    question_id: str
    selected_option_index: int | None
    question_start_timestamp: int
    response_time_ms: int | None = None
    round: int | None = None


class BatchAnswerItem(BaseModel):
    question_id: str
    selected_option_index: int | None
    question_start_timestamp: int
    response_time_ms: int | None = None
    round: int | None = None


class BatchAnswerPayload(BaseModel):
    participant_id: str
    answers: list[BatchAnswerItem]


class PausePointsPayload(BaseModel):
    pause_points: list[int]


class RoundPayload(BaseModel):
    round: int
    top: int | None = None


@contextmanager
def _service_errors() -> Iterator[None]:
    """Translate core exceptions into HTTP errors."""
    try:
        yield
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        logger.error("Store unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Storage is temporarily unavailable.") from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _quiz_to_dict(quiz: Quiz, include_answers: bool = True) -> dict[str, object]:
    questions = []
    for question in quiz.questions:
        item: dict[str, object] = {
            "id": question.id,
            "prompt": question.prompt,
            "options": list(question.options),
            "time_limit_ms": question.time_limit_ms,
        }
        if include_answers:
            item["correct_answers"] = [asdict(ca) for ca in question.correct_answers]
        questions.append(item)
    timestamps = {
        name: value.isoformat() if value is not None else None
        for name, value in (
            ("created_at", quiz.created_at),
            ("started_at", quiz.started_at),
            ("stopped_at", quiz.stopped_at),
            ("evaluated_at", quiz.evaluated_at),
            ("restarted_at", quiz.restarted_at),
            ("reactivated_at", quiz.reactivated_at),
        )
    }
    return {
        "id": quiz.id,
        "title": quiz.title,
        "active": quiz.active,
        "deactivated": quiz.deactivated,
        "questions_per_round": quiz.questions_per_round,
        "total_rounds": quiz.total_rounds,
        "questions": questions,
        **timestamps,
    }


def _participant_to_dict(participant: Participant) -> dict[str, object]:
    return {
        "participant_id": participant.participant_id,
        "display_name": participant.display_name,
        "unique_short_id": participant.unique_short_id,
    }


def _submission_to_dict(result: SubmissionResult) -> dict[str, object]:
    payload: dict[str, object] = {
        "accepted": result.accepted,
        "is_new": result.is_new,
        "progress": result.progress,
        "decision": result.decision.to_dict(),
    }
    if result.answer is not None:
        payload["question_id"] = result.answer.question_id
        payload["round"] = result.answer.round
        payload["response_time_ms"] = result.answer.response_time_ms
        payload["server_timestamp"] = result.answer.server_timestamp
    return payload


def _answer_to_dict(answer: AnswerSubmission) -> dict[str, object]:
    return {
        "question_id": answer.question_id,
        "selected_option_index": answer.selected_option_index,
        "question_start_timestamp": answer.question_start_timestamp,
        "response_time_ms": answer.response_time_ms,
        "round": answer.round,
    }


def _get_quiz_manager_dependency(quiz_manager: QuizManager):
    def dependency() -> QuizManager:
        return quiz_manager

    return dependency


def _get_admin_dependency(admin_token: str | None):
    bearer = HTTPBearer(auto_error=False)

    def dependency(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)) -> None:
        if admin_token is None:
            return
        if credentials is None or not secrets.compare_digest(credentials.credentials, admin_token):
            raise HTTPException(
                status_code=401,
                detail="Admin token required.",
                headers={"WWW-Authenticate": "Bearer"},
            )

    return dependency


def create_api_app(quiz_manager: QuizManager, admin_token: str | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz manager.

    When ``admin_token`` is set every ``/admin`` route requires it as a
    bearer token.
    """
    app = FastAPI(title="QuizGate API", version="0.1.0")
    manager_dep = _get_quiz_manager_dependency(quiz_manager)
    require_admin = _get_admin_dependency(admin_token)

    # --- Participant routes ---

    @app.post("/participants", status_code=201)
    def register_participant(
        payload: ParticipantPayload,
        manager: QuizManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _service_errors():
            participant = manager.register_participant(
                payload.participant_id,
                display_name=payload.display_name,
                unique_short_id=payload.unique_short_id,
            )
        return _participant_to_dict(participant)

    @app.get("/quizzes/{quiz_id}")
    def get_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            quiz = manager.get_quiz(quiz_id)
        return _quiz_to_dict(quiz, include_answers=False)

    @app.post("/quizzes/{quiz_id}/answers", status_code=201)
    def submit_answer(
        quiz_id: str,
        payload: AnswerPayload,
        manager: QuizManager = Depends(manager_dep),
    ):
        with _service_errors():
            result = manager.submit_answer(
                quiz_id,
                payload.participant_id,
                payload.question_id,
                payload.selected_option_index,
                payload.question_start_timestamp,
                response_time_ms=payload.response_time_ms,
                round_number=payload.round,
            )
        if not result.accepted:
            return JSONResponse(
                status_code=423,
                content={"detail": _PAUSED_DETAIL, **_submission_to_dict(result)},
            )
        return _submission_to_dict(result)

    @app.post("/quizzes/{quiz_id}/answers/batch")
    def submit_answers(
        quiz_id: str,
        payload: BatchAnswerPayload,
        manager: QuizManager = Depends(manager_dep),
    ) -> dict[str, object]:
        pending = [
            PendingAnswer(
                question_id=item.question_id,
                selected_option_index=item.selected_option_index,
                question_start_timestamp=item.question_start_timestamp,
                response_time_ms=item.response_time_ms,
                round=item.round,
            )
            for item in payload.answers
        ]
        with _service_errors():
            results = manager.submit_answers(quiz_id, payload.participant_id, pending)
        return {
            "submitted_count": sum(1 for result in results if result.accepted),
            "total_attempted": len(results),
            "results": [_submission_to_dict(result) for result in results],
        }

    @app.get("/quizzes/{quiz_id}/answers")
    def get_participant_answers(
        quiz_id: str,
        participant_id: str = Query(...),
        manager: QuizManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _service_errors():
            answers = manager.participant_answers(quiz_id, participant_id)
        return {
            "quiz_id": quiz_id,
            "participant_id": participant_id,
            "answers": [_answer_to_dict(answer) for answer in answers],
            "total_answers": len(answers),
        }

    @app.get("/quizzes/{quiz_id}/can-answer")
    def can_answer(
        quiz_id: str,
        participant_id: str = Query(...),
        question_number: int = Query(...),
        manager: QuizManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _service_errors():
            decision = manager.can_answer(quiz_id, participant_id, question_number)
        return decision.to_dict()

    @app.get("/quizzes/{quiz_id}/leaderboard")
    def get_leaderboard(
        quiz_id: str,
        round_number: int | None = Query(default=None, alias="round"),
        manager: QuizManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _service_errors():
            report = manager.get_leaderboard(quiz_id, round_number)
        if report is None:
            raise HTTPException(status_code=404, detail="Quiz has not been evaluated yet.")
        return report.to_dict()

    # --- Admin routes ---

    @app.post("/admin/quizzes", status_code=201, dependencies=[Depends(require_admin)])
    def create_quiz(payload: QuizPayload, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        quiz = Quiz(
            id=payload.id,
            title=payload.title,
            questions_per_round=payload.questions_per_round,
            questions=[
                Question(
                    id=question.id,
                    prompt=question.prompt,
                    options=list(question.options),
                    correct_answers=[
                        CorrectAnswer(option_index=ca.option_index, points=ca.points)
                        for ca in question.correct_answers
                    ],
                    time_limit_ms=question.time_limit_ms,
                )
                for question in payload.questions
            ],
        )
        with _service_errors():
            saved = manager.create_quiz(quiz)
        return _quiz_to_dict(saved)

    @app.post("/admin/quizzes/{quiz_id}/start", dependencies=[Depends(require_admin)])
    def start_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            quiz = manager.start_quiz(quiz_id)
        return _quiz_to_dict(quiz)

    @app.post("/admin/quizzes/{quiz_id}/stop", dependencies=[Depends(require_admin)])
    def stop_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            quiz = manager.stop_quiz(quiz_id)
        return _quiz_to_dict(quiz)

    @app.post("/admin/quizzes/{quiz_id}/resume", dependencies=[Depends(require_admin)])
    def resume_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            cleared = manager.resume_quiz(quiz_id)
        return {"quiz_id": quiz_id, "resumed": bool(cleared), "cleared_pause_points": list(cleared)}

    @app.post("/admin/quizzes/{quiz_id}/restart", dependencies=[Depends(require_admin)])
    def restart_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            summary = manager.restart_quiz(quiz_id)
        return asdict(summary)

    @app.post("/admin/quizzes/{quiz_id}/deactivate", dependencies=[Depends(require_admin)])
    def deactivate_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            quiz = manager.deactivate_quiz(quiz_id)
        return _quiz_to_dict(quiz)

    @app.post("/admin/quizzes/{quiz_id}/reactivate", dependencies=[Depends(require_admin)])
    def reactivate_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            quiz = manager.reactivate_quiz(quiz_id)
        return _quiz_to_dict(quiz)

    @app.post("/admin/quizzes/{quiz_id}/evaluate", dependencies=[Depends(require_admin)])
    def evaluate_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            report = manager.evaluate_quiz(quiz_id)
        return report.to_dict()

    @app.post("/admin/quizzes/{quiz_id}/evaluate-round", dependencies=[Depends(require_admin)])
    def evaluate_round(
        quiz_id: str,
        payload: RoundPayload,
        manager: QuizManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _service_errors():
            report = manager.evaluate_round(quiz_id, payload.round, top=payload.top)
        return report.to_dict()

    @app.post("/admin/quizzes/{quiz_id}/validate", dependencies=[Depends(require_admin)])
    def validate_quiz(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            report = manager.validate_quiz(quiz_id)
        return report.to_dict()

    @app.get("/admin/quizzes/{quiz_id}/pause-points", dependencies=[Depends(require_admin)])
    def get_pause_points(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            points = manager.get_pause_points(quiz_id)
        return {"quiz_id": quiz_id, "pause_points": list(points)}

    @app.put("/admin/quizzes/{quiz_id}/pause-points", dependencies=[Depends(require_admin)])
    def set_pause_points(
        quiz_id: str,
        payload: PausePointsPayload,
        manager: QuizManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _service_errors():
            points = manager.set_pause_points(quiz_id, payload.pause_points)
        return {"quiz_id": quiz_id, "pause_points": list(points)}

    @app.delete("/admin/quizzes/{quiz_id}/pause-points", dependencies=[Depends(require_admin)])
    def clear_pause_points(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            manager.clear_pause_points(quiz_id)
        return {"quiz_id": quiz_id, "pause_points": []}

    @app.get("/admin/quizzes/{quiz_id}/progress", dependencies=[Depends(require_admin)])
    def get_progress(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            snapshots = manager.get_progress_overview(quiz_id)
            pause_points = manager.get_pause_points(quiz_id)
        return {
            "quiz_id": quiz_id,
            "pause_points": list(pause_points),
            "participants": [asdict(snapshot) for snapshot in snapshots],
        }

    @app.post("/admin/quizzes/{quiz_id}/rebuild-progress", dependencies=[Depends(require_admin)])
    def rebuild_progress(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            progress = manager.rebuild_progress(quiz_id)
        return {"quiz_id": quiz_id, "progress": progress}

    @app.get("/admin/quizzes/{quiz_id}/question-responses", dependencies=[Depends(require_admin)])
    def get_question_responses(quiz_id: str, manager: QuizManager = Depends(manager_dep)) -> dict[str, object]:
        with _service_errors():
            report = manager.get_question_responses(quiz_id)
        return report.to_dict()

    return app


def run_api_server(
    quiz_manager: QuizManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    admin_token: str | None = None,
) -> None:
    """Serve the API in the foreground until interrupted."""
    app = create_api_app(quiz_manager, admin_token=admin_token)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    server.run()
