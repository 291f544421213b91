"""Room-scoped publish/subscribe channel used by match participants."""

from __future__ import annotations

from collections.abc import Callable
import logging
from typing import Protocol
from uuid import uuid4

from pydantic import ValidationError

from quiz_duel.core.match_messages import JoinRoomPayload, MatchEvent, ProgressUpdate, QuizCompletedPayload
from quiz_duel.core.models import ConnectionState
from quiz_duel.core.services.match_rooms import MatchRoomRegistry, RoomDelivery

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, object]], None]


class ChannelUnavailable(Exception):
    """Raised when a message cannot be sent because no channel is connected."""


class MatchChannel(Protocol):
    """Best-effort, unacknowledged messaging within one match room."""

    @property
    def connection_state(self) -> ConnectionState: ...

    def emit(self, event: MatchEvent, payload: dict[str, object]) -> None: ...

    def subscribe(self, event: MatchEvent, handler: MessageHandler) -> None: ...

    def unsubscribe(self, event: MatchEvent, handler: MessageHandler) -> None: ...


def route_player_message(
    registry: MatchRoomRegistry,
    connection_id: str,
    event: MatchEvent,
    payload: dict[str, object],
) -> list[RoomDelivery]:
    """Apply one player message to the registry and return what must be delivered.

    Shared by every transport. Malformed payloads are logged and dropped.
    """
    try:
        match event:
            case MatchEvent.JOIN_ROOM:
                join = JoinRoomPayload.model_validate(payload)
                return registry.join(join.room_id, connection_id, join.user_id)
            case MatchEvent.UPDATE_PROGRESS:
                update = ProgressUpdate.model_validate(payload)
                if update.room_id is None:
                    raise ValueError("update-progress requires a room id")
                return registry.update_progress(update.room_id, connection_id, update)
            case MatchEvent.QUIZ_COMPLETED:
                completed = QuizCompletedPayload.model_validate(payload)
                if completed.room_id is None:
                    raise ValueError("quiz-completed requires a room id")
                return registry.complete(completed.room_id, connection_id, completed)
            case _:
                logger.warning("Players cannot send '%s' messages", event.value)
                return []
    except (ValidationError, ValueError) as exc:
        logger.warning("Dropping malformed %s message: %s", event.value, exc)
        return []


class InMemoryMatchHub:
    """In-process transport connecting HubMatchChannel instances through a registry."""

    def __init__(self, registry: MatchRoomRegistry | None = None) -> None:
        self._registry = registry or MatchRoomRegistry()
        self._channels: dict[str, HubMatchChannel] = {}

    @property
    def registry(self) -> MatchRoomRegistry:
        return self._registry

    def connect(self) -> "HubMatchChannel":
        channel = HubMatchChannel(self, uuid4().hex)
        self._channels[channel.connection_id] = channel
        return channel

    def disconnect(self, connection_id: str) -> None:
        self._channels.pop(connection_id, None)
        self._registry.leave(connection_id)

    def dispatch(self, connection_id: str, event: MatchEvent, payload: dict[str, object]) -> None:
        for delivery in route_player_message(self._registry, connection_id, event, payload):
            for target in delivery.connection_ids:
                channel = self._channels.get(target)
                if channel is not None:
                    channel.deliver(delivery.event, dict(delivery.payload))


class HubMatchChannel:
    """Client end of an InMemoryMatchHub connection."""

    def __init__(self, hub: InMemoryMatchHub, connection_id: str) -> None:
        self._hub = hub
        self.connection_id = connection_id
        self._state = ConnectionState.CONNECTED
        self._handlers: dict[MatchEvent, list[MessageHandler]] = {}

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    def emit(self, event: MatchEvent, payload: dict[str, object]) -> None:
        if self._state is not ConnectionState.CONNECTED:
            raise ChannelUnavailable(f"Channel {self.connection_id} is {self._state.value}.")
        self._hub.dispatch(self.connection_id, event, payload)

    def subscribe(self, event: MatchEvent, handler: MessageHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def unsubscribe(self, event: MatchEvent, handler: MessageHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def deliver(self, event: MatchEvent, payload: dict[str, object]) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(payload)

    def close(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._hub.disconnect(self.connection_id)
