"""Service that relays progress between match participants and decides the winner."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from threading import Lock

from quiz_duel.core.match_messages import (
    GameOverPayload,
    MatchEvent,
    PlayerOutcome,
    ProgressUpdate,
    QuizCompletedPayload,
)

logger = logging.getLogger(__name__)

PLAYERS_PER_MATCH = 2


@dataclass(slots=True)
class RoomPlayer:
    """Latest reported state of one player inside a room."""

    user_id: str
    finished: bool = False
    score: int = 0
    correct_answer_count: int = 0
    time_taken: int = 0

    def ranking_key(self) -> tuple[int, int, int]:
        return (-self.correct_answer_count, -self.score, self.time_taken)


@dataclass(slots=True)
class GameRoom:
    room_id: str
    connections: dict[str, str] = field(default_factory=dict)  # connection id -> user id
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    ready_announced: bool = False
    verdict: GameOverPayload | None = None


@dataclass(slots=True, frozen=True)
class RoomDelivery:
    """A message the transport must hand to each listed connection."""

    connection_ids: tuple[str, ...]
    event: MatchEvent
    payload: dict[str, object]


class MatchRoomRegistry:
    """Tracks game rooms and turns player messages into room broadcasts."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._rooms: dict[str, GameRoom] = {}
        self._connection_rooms: dict[str, str] = {}

    def join(self, room_id: str, connection_id: str, user_id: str) -> list[RoomDelivery]:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = GameRoom(room_id=room_id)
                self._rooms[room_id] = room
            room.connections[connection_id] = user_id
            room.players.setdefault(user_id, RoomPlayer(user_id=user_id))
            self._connection_rooms[connection_id] = room_id
            logger.info("User %s joined room %s", user_id, room_id)

            if room.ready_announced:
                # Late or reconnecting joiners still need to leave the waiting phase.
                return [RoomDelivery((connection_id,), MatchEvent.MATCH_READY, {})]
            if len(set(room.connections.values())) >= PLAYERS_PER_MATCH:
                room.ready_announced = True
                return [RoomDelivery(tuple(room.connections), MatchEvent.MATCH_READY, {})]
            return []

    def update_progress(self, room_id: str, connection_id: str, update: ProgressUpdate) -> list[RoomDelivery]:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return []
            player = room.players.setdefault(update.user_id, RoomPlayer(user_id=update.user_id))
            if not player.finished:
                player.score = update.score
                player.correct_answer_count = update.correct_answer_count
            recipients = tuple(conn for conn in room.connections if conn != connection_id)
            if not recipients:
                return []
            return [RoomDelivery(recipients, MatchEvent.OPPONENT_PROGRESS, update.to_wire())]

    def complete(self, room_id: str, connection_id: str, payload: QuizCompletedPayload) -> list[RoomDelivery]:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                logger.warning("Completion for unknown room %s ignored", room_id)
                return []
            if room.verdict is not None:
                return [RoomDelivery((connection_id,), MatchEvent.GAME_OVER, room.verdict.to_wire())]

            player = room.players.setdefault(payload.user_id, RoomPlayer(user_id=payload.user_id))
            player.finished = True
            player.score = payload.score
            player.correct_answer_count = payload.correct_answer_count
            player.time_taken = payload.time_taken

            players = list(room.players.values())
            if len(players) < PLAYERS_PER_MATCH or not all(p.finished for p in players):
                return []

            room.verdict = _decide(players)
            logger.info(
                "Room %s finished: winner=%s draw=%s",
                room_id,
                room.verdict.winner_id,
                room.verdict.is_draw,
            )
            return [RoomDelivery(tuple(room.connections), MatchEvent.GAME_OVER, room.verdict.to_wire())]

    def leave(self, connection_id: str) -> None:
        with self._lock:
            room_id = self._connection_rooms.pop(connection_id, None)
            if room_id is None:
                return
            room = self._rooms.get(room_id)
            if room is None:
                return
            room.connections.pop(connection_id, None)
            if not room.connections:
                del self._rooms[room_id]

    def get_room(self, room_id: str) -> GameRoom | None:
        with self._lock:
            return self._rooms.get(room_id)


def _decide(players: list[RoomPlayer]) -> GameOverPayload:
    ranked = sorted(players, key=RoomPlayer.ranking_key)
    winner, runner_up = ranked[0], ranked[1]
    is_draw = winner.ranking_key() == runner_up.ranking_key()
    return GameOverPayload(
        winner_id=None if is_draw else winner.user_id,
        is_draw=is_draw,
        results={
            player.user_id: PlayerOutcome(
                finished=player.finished,
                score=player.score,
                correct_answer_count=player.correct_answer_count,
                time_taken=player.time_taken,
            )
            for player in players
        },
    )
