"""Wire schemas for the match room channel.

Payloads travel as JSON objects with camelCase keys. Every model accepts
both the camelCase alias and the snake_case field name on input.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MatchEvent(str, Enum):
    # Produced by players.
    JOIN_ROOM = "join-room"
    UPDATE_PROGRESS = "update-progress"
    QUIZ_COMPLETED = "quiz-completed"
    # Produced by the room.
    MATCH_READY = "match-ready"
    OPPONENT_PROGRESS = "opponent-progress"
    GAME_OVER = "game-over"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class JoinRoomPayload(_WireModel):
    room_id: str
    user_id: str


class ProgressUpdate(_WireModel):
    """Snapshot of one player's progress.

    ``score`` is points earned, ``current_question_index`` the number of
    answered questions. ``percentage`` is the point-weighted score so far
    (points earned over the quiz's total points), not completion progress;
    completion is ``current_question_index`` over the question count.
    ``accuracy`` is correct answers over graded answers. ``sequence``
    increases monotonically per sender.
    """

    user_id: str
    score: int = Field(default=0, ge=0)
    current_question_index: int = Field(default=0, ge=0)
    percentage: int = Field(default=0, ge=0)
    correct_answer_count: int = Field(default=0, ge=0)
    elapsed_seconds: int = Field(default=0, ge=0)
    accuracy: int = Field(default=0, ge=0)
    sequence: int | None = Field(default=None, ge=0)
    room_id: str | None = None


class QuizCompletedPayload(_WireModel):
    user_id: str
    score: int = Field(ge=0)
    correct_answer_count: int = Field(ge=0)
    time_taken: int = Field(ge=0)
    room_id: str | None = None


class PlayerOutcome(_WireModel):
    finished: bool
    score: int
    correct_answer_count: int
    time_taken: int


class GameOverPayload(_WireModel):
    winner_id: str | None = None
    is_draw: bool = False
    results: dict[str, PlayerOutcome] = Field(default_factory=dict)
