"""Client-side state machine for a two-player match."""

from __future__ import annotations

from collections import deque
import logging
from threading import Event, RLock, Thread

from pydantic import ValidationError

from quiz_duel.constants.network_constants import COUNTDOWN_TICKER_THREAD_NAME
from quiz_duel.constants.quiz_constants import MATCH_COUNTDOWN_TICKS, MATCH_EVENT_LOG_SIZE, TIMER_TICK_INTERVAL_SECONDS
from quiz_duel.core.match_messages import GameOverPayload, JoinRoomPayload, MatchEvent, ProgressUpdate, QuizCompletedPayload
from quiz_duel.core.models import (
    ConnectionState,
    MatchPhase,
    MatchState,
    PlayerProgress,
    QuizResult,
    SessionProgress,
    Standing,
)
from quiz_duel.core.services.match_channel import ChannelUnavailable, MatchChannel
from quiz_duel.core.services.session_controller import SessionController

logger = logging.getLogger(__name__)

_PHASE_ORDER = {
    MatchPhase.WAITING: 0,
    MatchPhase.COUNTDOWN: 1,
    MatchPhase.PLAYING: 2,
    MatchPhase.FINISHED: 3,
}


class MatchCoordinator:
    """Owns the match phases and merges local and remote progress.

    Phases only move forward: waiting, countdown, playing, finished. The
    ``game-over`` verdict from the room is authoritative; until it arrives
    the local standing is only an estimate.
    """

    def __init__(
        self,
        room_id: str,
        user_id: str,
        opponent_id: str,
        total_questions: int,
        channel: MatchChannel | None = None,
        countdown_ticks: int = MATCH_COUNTDOWN_TICKS,
        countdown_interval_seconds: float | None = None,
    ) -> None:
        self._room_id = room_id
        self._user_id = user_id
        self._opponent_id = opponent_id
        self._total_questions = total_questions
        self._channel = channel
        self._sequence = 0
        self._countdown_interval_seconds = countdown_interval_seconds
        self._countdown_thread: Thread | None = None
        self._countdown_stop = Event()
        self._phase_lock = RLock()
        self._connection_state = channel.connection_state if channel else ConnectionState.DISCONNECTED
        self._events: deque[str] = deque(maxlen=MATCH_EVENT_LOG_SIZE)
        self._subscribed = False
        self._local_completed = False
        self._state = MatchState(
            phase=MatchPhase.WAITING,
            local=PlayerProgress(user_id=user_id),
            remote=PlayerProgress(user_id=opponent_id),
            countdown_remaining=countdown_ticks,
        )

    @property
    def state(self) -> MatchState:
        return self._state

    @property
    def phase(self) -> MatchPhase:
        return self._state.phase

    @property
    def events(self) -> list[str]:
        return list(self._events)

    @property
    def countdown_thread(self) -> Thread | None:
        return self._countdown_thread

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    # --- Room membership ---

    def enter(self) -> None:
        """Subscribe to room signals and announce ourselves."""
        if self._channel is not None and not self._subscribed:
            self._channel.subscribe(MatchEvent.MATCH_READY, self.handle_match_ready)
            self._channel.subscribe(MatchEvent.OPPONENT_PROGRESS, self.handle_opponent_progress)
            self._channel.subscribe(MatchEvent.GAME_OVER, self.handle_game_over)
            self._subscribed = True
        self._emit(MatchEvent.JOIN_ROOM, JoinRoomPayload(room_id=self._room_id, user_id=self._user_id))

    def dispose(self) -> None:
        self._countdown_stop.set()
        if self._channel is not None and self._subscribed:
            self._channel.unsubscribe(MatchEvent.MATCH_READY, self.handle_match_ready)
            self._channel.unsubscribe(MatchEvent.OPPONENT_PROGRESS, self.handle_opponent_progress)
            self._channel.unsubscribe(MatchEvent.GAME_OVER, self.handle_game_over)
            self._subscribed = False

    def bind(self, session: SessionController) -> None:
        """Route the session's progress and completion through this match."""
        session.progress_listener = self.report_progress
        session.completion_listener = self.complete

    def set_connection_state(self, state: ConnectionState) -> None:
        if state is not self._connection_state:
            logger.info("Match %s connection %s -> %s", self._room_id, self._connection_state.value, state.value)
        self._connection_state = state

    # --- Phase transitions ---

    def handle_match_ready(self, _payload: dict[str, object] | None = None) -> None:
        """Start the countdown; with an interval set, a ticker thread drives it."""
        with self._phase_lock:
            if self._state.phase is not MatchPhase.WAITING:
                return
            self._advance(MatchPhase.COUNTDOWN)
        if self._countdown_interval_seconds is not None:
            self._countdown_thread = start_countdown_ticker(
                self, self._countdown_interval_seconds, self._countdown_stop
            )

    def countdown_tick(self) -> None:
        """One countdown second; the match starts after the last one."""
        with self._phase_lock:
            if self._state.phase is not MatchPhase.COUNTDOWN:
                return
            self._state.countdown_remaining = max(0, self._state.countdown_remaining - 1)
            if self._state.countdown_remaining == 0:
                self._advance(MatchPhase.PLAYING)
                self._events.append("GO!")

    def report_progress(self, progress: SessionProgress) -> None:
        """Broadcast a local progress change while the match is being played."""
        if self._state.phase is not MatchPhase.PLAYING:
            return
        self._apply_local(progress)
        self._broadcast_local()

    def complete(self, result: QuizResult) -> None:
        """Finish locally right away; the verdict may still be pending."""
        if self._local_completed:
            return
        self._local_completed = True
        local = self._state.local
        local.score = result.score
        local.correct_answer_count = result.correct_answer_count
        local.percentage = result.percentage
        local.current_question_index = self._total_questions
        local.elapsed_seconds = result.time_taken_seconds
        self._advance(MatchPhase.FINISHED)
        self._broadcast_local()
        self._emit(
            MatchEvent.QUIZ_COMPLETED,
            QuizCompletedPayload(
                room_id=self._room_id,
                user_id=self._user_id,
                score=result.score,
                correct_answer_count=result.correct_answer_count,
                time_taken=result.time_taken_seconds,
            ),
        )

    # --- Inbound signals ---

    def handle_opponent_progress(self, payload: dict[str, object]) -> None:
        try:
            update = ProgressUpdate.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed opponent progress: %s", exc)
            return
        if update.user_id != self._opponent_id:
            return
        remote = self._state.remote
        if update.sequence is not None:
            if update.sequence <= remote.sequence:
                logger.debug("Dropping stale progress %s <= %s", update.sequence, remote.sequence)
                return
            remote.sequence = update.sequence

        previous_index = remote.current_question_index
        remote.score = update.score
        remote.current_question_index = update.current_question_index
        remote.percentage = update.percentage
        remote.correct_answer_count = update.correct_answer_count
        remote.elapsed_seconds = update.elapsed_seconds
        remote.accuracy = update.accuracy
        if update.current_question_index > previous_index:
            self._events.append(f"{self._opponent_id} answered Question {update.current_question_index}!")

    def handle_game_over(self, payload: dict[str, object]) -> None:
        try:
            verdict = GameOverPayload.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed game-over message: %s", exc)
            return
        self._state.winner_id = verdict.winner_id
        self._state.is_draw = verdict.is_draw
        self._state.verdict_received = True
        self._advance(MatchPhase.FINISHED)

    # --- Standing ---

    def standing(self) -> Standing:
        """Compare local and remote progress; lower ranking keys lead."""
        local_key = self._state.local.ranking_key()
        remote_key = self._state.remote.ranking_key()
        if local_key < remote_key:
            return Standing.AHEAD
        if local_key > remote_key:
            return Standing.BEHIND
        return Standing.TIED

    @property
    def is_ahead(self) -> bool:
        return self.standing() is Standing.AHEAD

    @property
    def did_win(self) -> bool | None:
        """None until the verdict arrives."""
        if not self._state.verdict_received:
            return None
        return self._state.winner_id == self._user_id

    # --- Internals ---

    def _advance(self, phase: MatchPhase) -> None:
        with self._phase_lock:
            if _PHASE_ORDER[phase] <= _PHASE_ORDER[self._state.phase]:
                return
            logger.info("Match %s: %s -> %s", self._room_id, self._state.phase.value, phase.value)
            self._state.phase = phase

    def _apply_local(self, progress: SessionProgress) -> None:
        local = self._state.local
        local.score = progress.score
        local.current_question_index = progress.answered_count
        local.percentage = progress.percentage
        local.correct_answer_count = progress.correct_answer_count
        local.elapsed_seconds = progress.elapsed_seconds
        local.accuracy = progress.accuracy

    def _broadcast_local(self) -> None:
        self._sequence += 1
        local = self._state.local
        local.sequence = self._sequence
        self._emit(
            MatchEvent.UPDATE_PROGRESS,
            ProgressUpdate(
                room_id=self._room_id,
                user_id=self._user_id,
                score=local.score,
                current_question_index=local.current_question_index,
                percentage=local.percentage,
                correct_answer_count=local.correct_answer_count,
                elapsed_seconds=local.elapsed_seconds,
                accuracy=local.accuracy,
                sequence=self._sequence,
            ),
        )

    def _emit(self, event: MatchEvent, message: JoinRoomPayload | ProgressUpdate | QuizCompletedPayload) -> None:
        try:
            if self._channel is None:
                raise ChannelUnavailable("No match channel is connected.")
            self._channel.emit(event, message.to_wire())
        except ChannelUnavailable as exc:
            logger.info("Skipping %s: %s", event.value, exc)
            self.set_connection_state(ConnectionState.DISCONNECTED)
        else:
            self.set_connection_state(self._channel.connection_state)


def start_countdown_ticker(
    coordinator: MatchCoordinator,
    interval_seconds: float = TIMER_TICK_INTERVAL_SECONDS,
    stop_event: Event | None = None,
) -> Thread:
    """Start the daemon thread that ticks a match countdown once per interval.

    The thread exits as soon as the coordinator leaves the countdown phase.
    """
    stop = stop_event or Event()

    def run_countdown() -> None:
        while coordinator.phase is MatchPhase.COUNTDOWN and not stop.wait(interval_seconds):
            coordinator.countdown_tick()

    thread = Thread(target=run_countdown, name=COUNTDOWN_TICKER_THREAD_NAME, daemon=True)
    thread.start()
    return thread
