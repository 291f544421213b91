"""FastAPI server that exposes quiz, attempt and match room endpoints."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import json
import logging
from threading import Event, Thread
from typing import Literal
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
import uvicorn

from quiz_duel.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION, HELP_TEXT
from quiz_duel.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, SESSION_TICKER_THREAD_NAME
from quiz_duel.constants.quiz_constants import DEFAULT_PASSING_SCORE, TIMER_TICK_INTERVAL_SECONDS
from quiz_duel.core.match_messages import MatchEvent
from quiz_duel.core.models import (
    GradingResult,
    NavigationDirection,
    PowerUpKind,
    Question,
    QuestionKind,
    Quiz,
    QuizResult,
)
from quiz_duel.core.quiz_importer import QuizImportError
from quiz_duel.core.quiz_manager import AttemptManager, AttemptOverview
from quiz_duel.core.services.match_channel import route_player_message
from quiz_duel.core.services.match_rooms import MatchRoomRegistry, RoomDelivery
from quiz_duel.core.services.power_ups import PowerUpEffect

logger = logging.getLogger(__name__)


class QuestionPayload(BaseModel):
    """Payload schema for one question of a quiz definition."""

    kind: QuestionKind = QuestionKind.MULTIPLE_CHOICE
    prompt: str
    options: list[str] = Field(default_factory=list)
    correct_option_index: int | None = None
    points: int = 1
    shuffle_options: bool | None = None
    reference_code: str | None = None
    language: str | None = None
    allowed_languages: list[str] = Field(default_factory=list)
    initial_code: str | None = None
    reference_xml: str | None = None
    initial_xml: str | None = None


class QuizPayload(BaseModel):
    """Payload schema for a structured quiz definition."""

    id: str
    title: str = ""
    questions: list[QuestionPayload]
    time_limit_minutes: int = 0
    passing_score: int = DEFAULT_PASSING_SCORE
    review_mode: bool = False


class QuizImportPayload(BaseModel):
    """Payload schema for a quiz written in the text import format."""

    id: str
    text: str


class InventoryPayload(BaseModel):
    quantities: dict[str, int]


class UserPayload(BaseModel):
    user_id: str


class AnswerPayload(UserPayload):
    value: int | str
    generated_artifact: str | None = None


class NavigatePayload(UserPayload):
    direction: Literal[-1, 1]


class PowerUpPayload(UserPayload):
    kind: PowerUpKind


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (QuizImportError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _get_attempt_manager_dependency(attempt_manager: AttemptManager):
    def dependency() -> AttemptManager:
        return attempt_manager

    return dependency


class RoomConnections:
    """Open room WebSockets keyed by connection id."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}

    def add(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def remove(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    async def deliver(self, deliveries: list[RoomDelivery]) -> None:
        """Send each delivery at most once; a dead peer is dropped, not raised."""
        for delivery in deliveries:
            message = {"event": delivery.event.value, "payload": delivery.payload}
            for connection_id in delivery.connection_ids:
                websocket = self._sockets.get(connection_id)
                if websocket is None:
                    continue
                try:
                    await websocket.send_json(message)
                except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                    logger.info("Dropping %s for closed connection %s: %s", delivery.event.value, connection_id, exc)
                    self.remove(connection_id)


def create_api_app(attempt_manager: AttemptManager, room_registry: MatchRoomRegistry | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided attempt manager."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION, description=f"{APP_ABOUT_TEXT}\n\n{HELP_TEXT}")
    manager_dep = _get_attempt_manager_dependency(attempt_manager)
    registry = room_registry or MatchRoomRegistry()
    connections = RoomConnections()

    # --- Quizzes ---

    @app.post("/quizzes", status_code=201)
    def create_quiz(payload: QuizPayload, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            quiz = manager.load_quiz(_quiz_from_payload(payload))
        return _serialize_quiz_summary(quiz)

    @app.post("/quizzes/import", status_code=201)
    def import_quiz(payload: QuizImportPayload, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            quiz = manager.import_quiz_text(payload.text, payload.id)
        return _serialize_quiz_summary(quiz)

    @app.get("/quizzes/{quiz_id}")
    def get_quiz(quiz_id: str, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            quiz = manager.get_quiz(quiz_id)
        return _serialize_quiz_summary(quiz)

    @app.get("/quizzes/{quiz_id}/export", response_class=PlainTextResponse)
    def export_quiz(quiz_id: str, manager: AttemptManager = Depends(manager_dep)) -> str:
        with _domain_errors():
            return manager.export_quiz_text(quiz_id)

    # --- Power-up inventory ---

    @app.put("/users/{user_id}/power-ups")
    def set_power_ups(
        user_id: str,
        payload: InventoryPayload,
        manager: AttemptManager = Depends(manager_dep),
    ) -> dict[str, int]:
        with _domain_errors():
            inventory = manager.set_inventory(user_id, payload.quantities)
        return {kind.value: quantity for kind, quantity in inventory.items()}

    @app.get("/users/{user_id}/power-ups")
    def get_power_ups(user_id: str, manager: AttemptManager = Depends(manager_dep)) -> dict[str, int]:
        return {kind.value: quantity for kind, quantity in manager.get_inventory(user_id).items()}

    # --- Attempts ---

    @app.post("/attempts/{quiz_id}/start", status_code=201)
    def start_attempt(
        quiz_id: str,
        payload: UserPayload,
        manager: AttemptManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            manager.start_attempt(payload.user_id, quiz_id)
            return _serialize_overview(manager.get_attempt(payload.user_id, quiz_id))

    @app.post("/attempts/{quiz_id}/resume")
    def resume_attempt(
        quiz_id: str,
        payload: UserPayload,
        manager: AttemptManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            manager.resume_attempt(payload.user_id, quiz_id)
            return _serialize_overview(manager.get_attempt(payload.user_id, quiz_id))

    @app.post("/attempts/{quiz_id}/start-new")
    def start_new_attempt(
        quiz_id: str,
        payload: UserPayload,
        manager: AttemptManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            manager.start_new_attempt(payload.user_id, quiz_id)
            return _serialize_overview(manager.get_attempt(payload.user_id, quiz_id))

    @app.get("/attempts/{quiz_id}")
    def get_attempt(quiz_id: str, user_id: str, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            return _serialize_overview(manager.get_attempt(user_id, quiz_id))

    @app.post("/attempts/{quiz_id}/answer")
    def answer(quiz_id: str, payload: AnswerPayload, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            accepted = manager.answer(payload.user_id, quiz_id, payload.value, payload.generated_artifact)
            overview = manager.get_attempt(payload.user_id, quiz_id)
        return {"accepted": accepted, "attempt": _serialize_overview(overview)}

    @app.post("/attempts/{quiz_id}/navigate")
    def navigate(quiz_id: str, payload: NavigatePayload, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            moved = manager.navigate(payload.user_id, quiz_id, NavigationDirection(payload.direction))
            overview = manager.get_attempt(payload.user_id, quiz_id)
        return {"moved": moved, "attempt": _serialize_overview(overview)}

    @app.post("/attempts/{quiz_id}/power-ups")
    def use_power_up(
        quiz_id: str,
        payload: PowerUpPayload,
        manager: AttemptManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            effect = manager.use_power_up(payload.user_id, quiz_id, payload.kind)
            overview = manager.get_attempt(payload.user_id, quiz_id)
        return {"effect": _serialize_effect(effect, overview), "attempt": _serialize_overview(overview)}

    @app.post("/attempts/{quiz_id}/check")
    def check_answer(quiz_id: str, payload: UserPayload, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            graded = manager.check_answer(payload.user_id, quiz_id)
        if graded is None:
            raise HTTPException(status_code=409, detail="This question cannot be checked right now.")
        return _serialize_grading(graded)

    @app.post("/attempts/{quiz_id}/submit")
    def submit(quiz_id: str, payload: UserPayload, manager: AttemptManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            result = manager.submit(payload.user_id, quiz_id)
        return _serialize_result(result)

    # --- Match rooms ---

    @app.websocket("/rooms/{room_id}/ws")
    async def room_socket(websocket: WebSocket, room_id: str) -> None:
        await websocket.accept()
        connection_id = uuid4().hex
        connections.add(connection_id, websocket)
        try:
            while True:
                raw_message = await websocket.receive_text()
                parsed = _parse_room_message(raw_message, room_id)
                if parsed is None:
                    continue
                event, message_payload = parsed
                await connections.deliver(route_player_message(registry, connection_id, event, message_payload))
        except WebSocketDisconnect:
            logger.info("Connection %s left room %s", connection_id, room_id)
        finally:
            connections.remove(connection_id)
            registry.leave(connection_id)

    return app


def _parse_room_message(raw_message: str, room_id: str) -> tuple[MatchEvent, dict[str, object]] | None:
    """Decode ``{"event": ..., "payload": {...}}``; the path decides the room."""
    try:
        message = json.loads(raw_message)
        event = MatchEvent(message["event"])
        payload = dict(message.get("payload") or {})
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("Dropping unreadable room message: %s", exc)
        return None
    payload.pop("room_id", None)
    payload["roomId"] = room_id
    return event, payload


def _quiz_from_payload(payload: QuizPayload) -> Quiz:
    return Quiz(
        id=payload.id,
        title=payload.title,
        questions=[
            Question(
                id=index,
                kind=question.kind,
                prompt=question.prompt,
                options=list(question.options),
                correct_option_index=question.correct_option_index,
                points=question.points,
                shuffle_options=question.shuffle_options,
                reference_code=question.reference_code,
                language=question.language,
                allowed_languages=list(question.allowed_languages),
                initial_code=question.initial_code,
                reference_xml=question.reference_xml,
                initial_xml=question.initial_xml,
            )
            for index, question in enumerate(payload.questions)
        ],
        time_limit_minutes=payload.time_limit_minutes,
        passing_score=payload.passing_score,
        review_mode=payload.review_mode,
    )


def _serialize_quiz_summary(quiz: Quiz) -> dict[str, object]:
    # Answers and reference solutions never leave the server.
    return {
        "id": quiz.id,
        "title": quiz.title,
        "question_count": len(quiz.questions),
        "question_kinds": [question.kind.value for question in quiz.questions],
        "total_points": quiz.total_points,
        "time_limit_minutes": quiz.time_limit_minutes,
        "passing_score": quiz.passing_score,
        "review_mode": quiz.review_mode,
    }


def _serialize_overview(overview: AttemptOverview) -> dict[str, object]:
    view = overview.view
    question: dict[str, object] | None = None
    if view is not None:
        question = {
            "position": view.position,
            "total_questions": view.total_questions,
            "id": view.question.id,
            "kind": view.question.kind.value,
            "prompt": view.question.prompt,
            "points": view.question.points,
            "options": view.display_options,
            "eliminated_options": view.eliminated_display_indices,
            "selected": view.selected,
            "language": view.question.language,
            "allowed_languages": view.question.allowed_languages,
            "initial_code": view.question.initial_code,
            "initial_xml": view.question.initial_xml,
            "messages": {kind.value: text for kind, text in view.messages.items()},
            "used_power_ups": [kind.value for kind in view.used_power_ups],
            "locked": view.locked,
            "checked_result": _serialize_grading(view.checked_result) if view.checked_result else None,
        }
    return {
        "quiz_id": overview.quiz_id,
        "user_id": overview.user_id,
        "status": overview.status.value,
        "time_remaining_seconds": view.time_remaining_seconds if view is not None else None,
        "elapsed_seconds": overview.elapsed_seconds,
        "question": question,
        "result": _serialize_result(overview.result) if overview.result else None,
        "inventory": {kind.value: quantity for kind, quantity in overview.inventory.items()},
    }


def _serialize_effect(effect: PowerUpEffect | None, overview: AttemptOverview) -> dict[str, object] | None:
    if effect is None:
        return None
    # Reported in display positions, like every option index the client sees.
    eliminated = overview.view.eliminated_display_indices if overview.view is not None else []
    return {
        "kind": effect.kind.value,
        "eliminated_options": eliminated,
        "time_bonus_seconds": effect.time_bonus_seconds,
        "message": effect.message,
    }


def _serialize_grading(graded: GradingResult) -> dict[str, object]:
    return {"selected": graded.selected, "is_correct": graded.is_correct, "kind": graded.kind.value}


def _serialize_result(result: QuizResult) -> dict[str, object]:
    return {
        "correct_answer_count": result.correct_answer_count,
        "score": result.score,
        "total_questions": result.total_questions,
        "percentage": result.percentage,
        "time_taken_seconds": result.time_taken_seconds,
        "passed": result.passed,
        "review_status": result.review_status.value,
        "power_ups_used": [kind.value for kind in result.power_ups_used],
        "answers": {str(index): _serialize_grading(graded) for index, graded in result.answers.items()},
    }


def start_session_ticker(
    attempt_manager: AttemptManager,
    interval_seconds: float = TIMER_TICK_INTERVAL_SECONDS,
    stop_event: Event | None = None,
) -> Thread:
    """Start the daemon thread that advances every attempt timer once per interval."""
    stop = stop_event or Event()

    def run_ticker() -> None:
        while not stop.wait(interval_seconds):
            try:
                for result in attempt_manager.tick_all():
                    logger.info("Timed out attempt scored %s%%", result.percentage)
            except Exception:
                logger.exception("Session ticker failed; continuing")

    thread = Thread(target=run_ticker, name=SESSION_TICKER_THREAD_NAME, daemon=True)
    thread.start()
    return thread


def start_api_server(
    attempt_manager: AttemptManager,
    room_registry: MatchRoomRegistry | None = None,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(attempt_manager, room_registry)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="QuizApiServer", daemon=True)
    thread.start()
    return thread
