import asyncio
from collections.abc import Iterator
import random

from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
import pytest

from quiz_duel.core.quiz_manager import AttemptManager
from quiz_duel.core.match_messages import MatchEvent
from quiz_duel.core.services.match_rooms import MatchRoomRegistry, RoomDelivery
from quiz_duel.server.api_server import RoomConnections, create_api_app

QUIZ_PAYLOAD = {
    "id": "capitals",
    "title": "Capitals",
    "time_limit_minutes": 2,
    "passing_score": 50,
    "questions": [
        {"prompt": "Capital of France?", "options": ["Paris", "Rome", "Oslo", "Bern"], "correct_option_index": 0, "points": 10},
        {"prompt": "Capital of Italy?", "options": ["Paris", "Rome", "Oslo", "Bern"], "correct_option_index": 1, "points": 10},
    ],
}


@pytest.fixture
def manager() -> AttemptManager:
    return AttemptManager(rng_factory=lambda: random.Random(5))


@pytest.fixture
def client(manager: AttemptManager) -> Iterator[TestClient]:
    # One shared event loop, so room sockets can deliver to each other.
    with TestClient(create_api_app(manager, MatchRoomRegistry())) as test_client:
        yield test_client


def _start(client: TestClient, user_id: str = "ada") -> dict:
    assert client.post("/quizzes", json=QUIZ_PAYLOAD).status_code == 201
    response = client.post("/attempts/capitals/start", json={"user_id": user_id})
    assert response.status_code == 201
    return response.json()


def _correct_position(attempt: dict) -> int:
    question = attempt["question"]
    answer = {"Capital of France?": "Paris", "Capital of Italy?": "Rome"}[question["prompt"]]
    return question["options"].index(answer)


# ---------------------------------------------------------------------------
# quizzes
# ---------------------------------------------------------------------------

def test_create_and_fetch_quiz_hides_answers(client: TestClient) -> None:
    created = client.post("/quizzes", json=QUIZ_PAYLOAD)
    assert created.status_code == 201

    body = client.get("/quizzes/capitals").json()

    assert body["question_count"] == 2
    assert body["total_points"] == 20
    assert "questions" not in body


def test_invalid_quiz_is_rejected(client: TestClient) -> None:
    payload = dict(QUIZ_PAYLOAD, questions=[{"prompt": "Broken", "options": ["a"], "correct_option_index": 0}])
    assert client.post("/quizzes", json=payload).status_code == 422


def test_missing_quiz_is_not_found(client: TestClient) -> None:
    assert client.get("/quizzes/nope").status_code == 404


def test_text_import_and_export(client: TestClient) -> None:
    text = "TITLE: Tiny\n\nQ: Pick\nA: x\nB: y\nCORRECT: B\n"

    created = client.post("/quizzes/import", json={"id": "tiny", "text": text})
    exported = client.get("/quizzes/tiny/export")

    assert created.status_code == 201
    assert created.json()["title"] == "Tiny"
    assert "CORRECT: B" in exported.text


def test_unparseable_import_is_rejected(client: TestClient) -> None:
    response = client.post("/quizzes/import", json={"id": "bad", "text": "Q: Pick\nA: x\n"})
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# attempts
# ---------------------------------------------------------------------------

def test_attempt_flow(client: TestClient) -> None:
    attempt = _start(client)
    assert attempt["status"] == "in-progress"
    assert attempt["time_remaining_seconds"] == 120
    assert "correct_option_index" not in attempt["question"]

    answered = client.post("/attempts/capitals/answer", json={"user_id": "ada", "value": _correct_position(attempt)})
    assert answered.json()["accepted"] is True

    moved = client.post("/attempts/capitals/navigate", json={"user_id": "ada", "direction": 1}).json()
    assert moved["moved"] is True
    client.post("/attempts/capitals/answer", json={"user_id": "ada", "value": _correct_position(moved["attempt"])})

    result = client.post("/attempts/capitals/submit", json={"user_id": "ada"}).json()
    assert result["correct_answer_count"] == 2
    assert result["score"] == 20
    assert result["percentage"] == 100
    assert result["passed"] is True

    again = client.post("/attempts/capitals/submit", json={"user_id": "ada"})
    assert again.status_code == 200
    assert again.json()["score"] == 20


def test_out_of_range_answer_is_unprocessable(client: TestClient) -> None:
    _start(client)
    response = client.post("/attempts/capitals/answer", json={"user_id": "ada", "value": 7})
    assert response.status_code == 422


def test_invalid_direction_is_rejected(client: TestClient) -> None:
    _start(client)
    response = client.post("/attempts/capitals/navigate", json={"user_id": "ada", "direction": 2})
    assert response.status_code == 422


def test_starting_twice_conflicts(client: TestClient) -> None:
    _start(client)
    response = client.post("/attempts/capitals/start", json={"user_id": "ada"})
    assert response.status_code == 409


def test_unknown_attempt_is_not_found(client: TestClient) -> None:
    assert client.get("/attempts/capitals", params={"user_id": "ghost"}).status_code == 404


def test_resume_without_saved_attempt_conflicts(client: TestClient) -> None:
    _start(client)
    assert client.post("/attempts/capitals/resume", json={"user_id": "ada"}).status_code == 409


def test_start_new_resets_answers(client: TestClient) -> None:
    attempt = _start(client)
    client.post("/attempts/capitals/answer", json={"user_id": "ada", "value": _correct_position(attempt)})

    restarted = client.post("/attempts/capitals/start-new", json={"user_id": "ada"}).json()

    assert restarted["question"]["selected"] is None
    assert restarted["question"]["position"] == 0


def test_power_ups_use_the_inventory(client: TestClient) -> None:
    _start(client)
    inventory = client.put("/users/ada/power-ups", json={"quantities": {"eliminate-two": 1}})
    assert inventory.json() == {"eliminate-two": 1}

    used = client.post("/attempts/capitals/power-ups", json={"user_id": "ada", "kind": "eliminate-two"}).json()

    assert used["effect"]["kind"] == "eliminate-two"
    assert len(used["effect"]["eliminated_options"]) == 2
    assert used["attempt"]["question"]["eliminated_options"] == used["effect"]["eliminated_options"]
    assert used["attempt"]["inventory"] == {"eliminate-two": 0}

    second = client.post("/attempts/capitals/power-ups", json={"user_id": "ada", "kind": "eliminate-two"}).json()
    assert second["effect"] is None


def test_negative_inventory_is_rejected(client: TestClient) -> None:
    response = client.put("/users/ada/power-ups", json={"quantities": {"time-extend": -2}})
    assert response.status_code == 422


def test_unknown_power_up_kind_is_rejected(client: TestClient) -> None:
    response = client.put("/users/ada/power-ups", json={"quantities": {"teleport": 1}})
    assert response.status_code == 422


def test_check_outside_review_mode_conflicts(client: TestClient) -> None:
    attempt = _start(client)
    client.post("/attempts/capitals/answer", json={"user_id": "ada", "value": _correct_position(attempt)})

    assert client.post("/attempts/capitals/check", json={"user_id": "ada"}).status_code == 409


def test_check_in_review_mode(client: TestClient) -> None:
    client.post("/quizzes", json=dict(QUIZ_PAYLOAD, review_mode=True))
    attempt = client.post("/attempts/capitals/start", json={"user_id": "ada"}).json()
    client.post("/attempts/capitals/answer", json={"user_id": "ada", "value": _correct_position(attempt)})

    checked = client.post("/attempts/capitals/check", json={"user_id": "ada"})

    assert checked.status_code == 200
    assert checked.json()["is_correct"] is True
    assert client.get("/attempts/capitals", params={"user_id": "ada"}).json()["question"]["locked"] is True


# ---------------------------------------------------------------------------
# match rooms
# ---------------------------------------------------------------------------

def test_room_socket_relays_a_match(client: TestClient) -> None:
    with client.websocket_connect("/rooms/r1/ws") as ada, client.websocket_connect("/rooms/r1/ws") as bob:
        ada.send_json({"event": "join-room", "payload": {"userId": "ada"}})
        bob.send_json({"event": "join-room", "payload": {"userId": "bob"}})
        assert ada.receive_json() == {"event": "match-ready", "payload": {}}
        assert bob.receive_json() == {"event": "match-ready", "payload": {}}

        ada.send_json(
            {"event": "update-progress", "payload": {"userId": "ada", "score": 10, "currentQuestionIndex": 1, "sequence": 1}}
        )
        relayed = bob.receive_json()
        assert relayed["event"] == "opponent-progress"
        assert relayed["payload"]["score"] == 10
        assert relayed["payload"]["roomId"] == "r1"

        ada.send_json({"event": "quiz-completed", "payload": {"userId": "ada", "score": 10, "correctAnswerCount": 1, "timeTaken": 30}})
        bob.send_json({"event": "quiz-completed", "payload": {"userId": "bob", "score": 0, "correctAnswerCount": 0, "timeTaken": 20}})

        for socket in (ada, bob):
            verdict = socket.receive_json()
            assert verdict["event"] == "game-over"
            assert verdict["payload"]["winnerId"] == "ada"
            assert verdict["payload"]["isDraw"] is False


def test_room_socket_ignores_garbage(client: TestClient) -> None:
    with client.websocket_connect("/rooms/r2/ws") as ada, client.websocket_connect("/rooms/r2/ws") as bob:
        ada.send_text("not json")
        ada.send_json({"event": "teleport", "payload": {}})
        ada.send_json({"event": "join-room", "payload": {"userId": "ada"}})
        bob.send_json({"event": "join-room", "payload": {"userId": "bob"}})

        assert ada.receive_json()["event"] == "match-ready"
        assert bob.receive_json()["event"] == "match-ready"


class _RecordingSocket:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_json(self, message: dict) -> None:
        self.sent.append(message)


class _ClosedSocket:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.attempts = 0

    async def send_json(self, message: dict) -> None:
        self.attempts += 1
        raise self.error


@pytest.mark.parametrize("error", [WebSocketDisconnect(code=1006), RuntimeError("socket closed"), ConnectionResetError()])
def test_closed_peer_does_not_break_delivery(error: Exception) -> None:
    connections = RoomConnections()
    gone, live = _ClosedSocket(error), _RecordingSocket()
    connections.add("gone", gone)
    connections.add("live", live)
    delivery = RoomDelivery(("gone", "live"), MatchEvent.OPPONENT_PROGRESS, {"userId": "ada", "score": 10})

    asyncio.run(connections.deliver([delivery]))
    asyncio.run(connections.deliver([delivery]))

    assert len(live.sent) == 2
    assert live.sent[0] == {"event": "opponent-progress", "payload": {"userId": "ada", "score": 10}}
    assert gone.attempts == 1
    assert "gone" not in connections
    assert "live" in connections
