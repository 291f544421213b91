"""Service that owns a single quiz attempt: order, answers, timer and submission."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import random
import time
from typing import assert_never

from quiz_duel.constants.quiz_constants import UNLIMITED_TIME_SENTINEL
from quiz_duel.core.models import (
    AttemptState,
    GradingResult,
    NavigationDirection,
    PowerUpKind,
    Question,
    QuestionKind,
    Quiz,
    QuizResult,
    SessionProgress,
    SessionStatus,
)
from quiz_duel.core.services.attempt_store import AttemptSnapshot, AttemptStore, PersistenceFailure
from quiz_duel.core.services.grading_engine import GradingEngine
from quiz_duel.core.services.power_ups import PowerUpContext, PowerUpEffect, PowerUpManager

logger = logging.getLogger(__name__)

ProgressListener = Callable[[SessionProgress], None]
CompletionListener = Callable[[QuizResult], None]


@dataclass(slots=True)
class QuestionView:
    """Presentation-ready snapshot of the question at the current position."""

    position: int
    total_questions: int
    question_index: int
    question: Question
    display_options: list[str]
    eliminated_display_indices: list[int]
    selected: int | str | None
    messages: dict[PowerUpKind, str]
    time_remaining_seconds: int
    locked: bool
    checked_result: GradingResult | None = None
    used_power_ups: list[PowerUpKind] = field(default_factory=list)


class SessionController:
    """Manages the state machine of one attempt by one user."""

    def __init__(
        self,
        quiz: Quiz,
        user_id: str,
        grading_engine: GradingEngine,
        power_ups: PowerUpManager,
        attempt_store: AttemptStore | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not quiz.questions:
            raise ValueError("Quiz must contain at least one question.")
        self._quiz = quiz
        self._user_id = user_id
        self._grading = grading_engine
        self._power_ups = power_ups
        self._store = attempt_store
        self._rng = rng or random.Random()
        self._clock = clock

        self._status = SessionStatus.NOT_STARTED
        self._state: AttemptState | None = None
        self._pending_snapshot: AttemptSnapshot | None = None
        self._submitting: bool = False
        self._paused: bool = False
        self._started_at: float = 0.0
        self._result: QuizResult | None = None
        self._checked: dict[int, GradingResult] = {}

        self.progress_listener: ProgressListener | None = None
        self.completion_listener: CompletionListener | None = None

    # --- Lifecycle ---

    @property
    def quiz(self) -> Quiz:
        return self._quiz

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> AttemptState | None:
        return self._state

    @property
    def result(self) -> QuizResult | None:
        return self._result

    @property
    def is_paused(self) -> bool:
        return self._paused or self._status is SessionStatus.RESUME_PROMPT

    @property
    def pending_snapshot(self) -> AttemptSnapshot | None:
        return self._pending_snapshot

    @property
    def power_ups(self) -> PowerUpManager:
        return self._power_ups

    def start(self, snapshot: AttemptSnapshot | None = None) -> SessionStatus:
        """Begin the attempt, offering to resume when a compatible snapshot exists."""
        if self._status is not SessionStatus.NOT_STARTED:
            raise RuntimeError("Attempt has already been started.")

        if snapshot is None:
            snapshot = self._load_snapshot()
        if snapshot is not None and self._is_resumable(snapshot):
            self._pending_snapshot = snapshot
            self._status = SessionStatus.RESUME_PROMPT
            return self._status

        self._begin_fresh()
        return self._status

    def resume(self) -> None:
        """Restore the pending snapshot verbatim."""
        if self._status is not SessionStatus.RESUME_PROMPT or self._pending_snapshot is None:
            raise RuntimeError("There is no saved attempt to resume.")
        snapshot = self._pending_snapshot
        total = len(self._quiz.questions)

        question_order = snapshot.question_order
        if question_order is None or sorted(question_order) != list(range(total)):
            question_order = list(range(total))
        options_order = self._identity_options_order()
        for index, order in (snapshot.options_order or {}).items():
            if index in options_order and sorted(order) == options_order[index]:
                options_order[index] = list(order)

        self._state = AttemptState(
            quiz_id=self._quiz.id,
            user_id=self._user_id,
            question_order=list(question_order),
            options_order=options_order,
            current_position=snapshot.current_question,
            answers=dict(snapshot.answers),
            generated_artifacts=dict(snapshot.answer_codes),
            time_remaining_seconds=self._initial_time() if self._quiz.is_unlimited_time else snapshot.time_left,
            used_power_ups=list(snapshot.used_power_ups),
        )
        for index in snapshot.locked_questions:
            if 0 <= index < total:
                self._checked[index] = self._grade_index(index)
        self._pending_snapshot = None
        self._enter_in_progress()

    def start_new(self) -> None:
        """Discard any saved attempt and start over with a fresh order."""
        if self._status not in (SessionStatus.RESUME_PROMPT, SessionStatus.IN_PROGRESS):
            raise RuntimeError("A new attempt can only be started before submission.")
        if self._store is not None:
            self._store.delete(self._user_id, self._quiz.id)
        self._pending_snapshot = None
        self._checked.clear()
        self._power_ups.reset_all()
        self._begin_fresh()

    # --- Answering and navigation ---

    def answer(self, value: int | str, generated_artifact: str | None = None) -> bool:
        """Record an answer for the current question.

        Multiple-choice values are display positions and are stored as the
        original option index. Returns False when the answer was ignored.
        """
        if not self._accepts_input():
            return False
        state = self._require_state()
        index = state.current_question_index
        if index in self._checked:
            return False
        question = self._quiz.questions[index]

        match question.kind:
            case QuestionKind.MULTIPLE_CHOICE:
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ValueError("Multiple-choice answers must be an option position.")
                order = state.options_order[index]
                if not 0 <= value < len(order):
                    raise ValueError(f"Option position {value} out of range.")
                stored: int | str = order[value]
                if stored in self._power_ups.usage_for(index).eliminated_options:
                    return False
            case QuestionKind.TEXT | QuestionKind.COMPILER | QuestionKind.BLOCK:
                if not isinstance(value, str):
                    raise ValueError(f"{question.kind.value} answers must be text.")
                stored = value
            case _:
                assert_never(question.kind)

        state.answers[index] = stored
        if question.kind is QuestionKind.BLOCK and generated_artifact is not None:
            state.generated_artifacts[index] = generated_artifact
        self._persist()
        self._report_progress()
        return True

    def navigate(self, direction: NavigationDirection | int) -> bool:
        if not self._accepts_input():
            return False
        step = NavigationDirection(direction)
        state = self._require_state()
        target = state.current_position + step.value
        if not 0 <= target < len(state.question_order):
            return False

        leaving = state.current_question_index
        self._release_question(leaving)
        state.current_position = target
        self._release_question(state.current_question_index)
        self._persist()
        return True

    def check_answer(self) -> GradingResult | None:
        """Grade and lock the current question (review-submission mode only)."""
        if not self._quiz.review_mode or not self._accepts_input():
            return None
        state = self._require_state()
        index = state.current_question_index
        if index in self._checked or index not in state.answers:
            return None
        graded = self._grade_index(index)
        self._checked[index] = graded
        self._persist()
        return graded

    def use_power_up(self, kind: PowerUpKind) -> PowerUpEffect | None:
        if self._status is not SessionStatus.IN_PROGRESS:
            return None
        state = self._require_state()
        index = state.current_question_index
        context = PowerUpContext(
            question_index=index,
            question=self._quiz.questions[index],
            option_order=state.options_order[index],
            unlimited_time=self._quiz.is_unlimited_time,
            finalizing=self._submitting or index in self._checked,
        )
        effect = self._power_ups.use(kind, context)
        if effect is None:
            return None
        state.time_remaining_seconds += effect.time_bonus_seconds
        state.used_power_ups.append(kind)
        self._persist()
        return effect

    # --- Timer ---

    def tick(self) -> QuizResult | None:
        """Advance the countdown by one second, submitting when it runs out."""
        if (
            self._status is not SessionStatus.IN_PROGRESS
            or self._paused
            or self._submitting
            or self._quiz.is_unlimited_time
        ):
            return None
        state = self._require_state()
        state.time_remaining_seconds = max(0, state.time_remaining_seconds - 1)
        if state.time_remaining_seconds == 0:
            logger.info("Time is up for %s on quiz %s", self._user_id, self._quiz.id)
            return self.submit()
        self._persist()
        return None

    def pause(self) -> None:
        """Stop the timer and drop any displayed hints when the view is left."""
        self._paused = True
        if self._state is not None:
            self._power_ups.clear_messages(self._state.current_question_index)

    def unpause(self) -> None:
        self._paused = False

    # --- Submission ---

    def submit(self) -> QuizResult | None:
        """Grade the attempt once; repeated calls are ignored and return None."""
        if self._submitting or self._status is not SessionStatus.IN_PROGRESS:
            return None
        self._submitting = True
        self._status = SessionStatus.SUBMITTING
        state = self._require_state()

        result = self._grading.grade_attempt(
            self._quiz,
            state.answers,
            state.generated_artifacts,
            time_taken_seconds=self.elapsed_seconds(),
            power_ups_used=state.used_power_ups,
        )
        if self._store is not None:
            self._store.delete(self._user_id, self._quiz.id)
        state.submitted = True
        self._result = result
        self._status = SessionStatus.COMPLETED
        self._submitting = False
        logger.info(
            "Attempt submitted: user=%s quiz=%s correct=%s/%s percentage=%s",
            self._user_id,
            self._quiz.id,
            result.correct_answer_count,
            result.total_questions,
            result.percentage,
        )

        if self.completion_listener is not None:
            self.completion_listener(result)
        return result

    # --- Views ---

    def elapsed_seconds(self) -> int:
        if self._status in (SessionStatus.NOT_STARTED, SessionStatus.RESUME_PROMPT):
            return 0
        return int(self._clock() - self._started_at)

    def current_view(self) -> QuestionView:
        state = self._require_state()
        index = state.current_question_index
        question = self._quiz.questions[index]
        order = state.options_order[index]
        usage = self._power_ups.usage_for(index)

        selected = state.answers.get(index)
        if question.kind is QuestionKind.MULTIPLE_CHOICE and isinstance(selected, int):
            selected = order.index(selected)

        return QuestionView(
            position=state.current_position,
            total_questions=len(state.question_order),
            question_index=index,
            question=question,
            display_options=[question.options[original] for original in order],
            eliminated_display_indices=sorted(order.index(original) for original in usage.eliminated_options),
            selected=selected,
            messages=dict(usage.messages),
            time_remaining_seconds=state.time_remaining_seconds,
            locked=index in self._checked,
            checked_result=self._checked.get(index),
            used_power_ups=sorted(usage.used, key=lambda kind: kind.value),
        )

    # --- Internals ---

    def _accepts_input(self) -> bool:
        return self._status is SessionStatus.IN_PROGRESS and not self._submitting

    def _require_state(self) -> AttemptState:
        if self._state is None:
            raise RuntimeError("Attempt has not been started.")
        return self._state

    def _initial_time(self) -> int:
        if self._quiz.is_unlimited_time:
            return UNLIMITED_TIME_SENTINEL
        return self._quiz.time_limit_seconds

    def _begin_fresh(self) -> None:
        question_order = list(range(len(self._quiz.questions)))
        self._rng.shuffle(question_order)
        options_order = self._identity_options_order()
        for index, question in enumerate(self._quiz.questions):
            if question.is_shuffled:
                self._rng.shuffle(options_order[index])

        self._state = AttemptState(
            quiz_id=self._quiz.id,
            user_id=self._user_id,
            question_order=question_order,
            options_order=options_order,
            time_remaining_seconds=self._initial_time(),
        )
        self._enter_in_progress()

    def _identity_options_order(self) -> dict[int, list[int]]:
        return {index: list(range(len(question.options))) for index, question in enumerate(self._quiz.questions)}

    def _enter_in_progress(self) -> None:
        self._status = SessionStatus.IN_PROGRESS
        self._paused = False
        self._started_at = self._clock()
        state = self._require_state()
        self._release_question(state.current_question_index)
        self._persist()

    def _release_question(self, index: int) -> None:
        if index in self._checked:
            self._power_ups.clear_messages(index)
            return
        self._power_ups.reset(index)

    def _grade_index(self, index: int) -> GradingResult:
        state = self._require_state()
        return self._grading.grade(
            self._quiz.questions[index],
            state.answers.get(index),
            state.generated_artifacts.get(index),
        )

    def _report_progress(self) -> None:
        if self.progress_listener is None:
            return
        state = self._require_state()
        progress = self._grading.provisional_progress(
            self._quiz,
            state.answers,
            state.generated_artifacts,
            elapsed_seconds=self.elapsed_seconds(),
        )
        self.progress_listener(progress)

    def _load_snapshot(self) -> AttemptSnapshot | None:
        if self._store is None:
            return None
        try:
            return self._store.load(self._user_id, self._quiz.id)
        except PersistenceFailure as exc:
            logger.warning("Discarding saved attempt: %s", exc)
            self._store.delete(self._user_id, self._quiz.id)
            return None

    def _is_resumable(self, snapshot: AttemptSnapshot) -> bool:
        if snapshot.quiz_id != self._quiz.id:
            return False
        if snapshot.time_left <= 0 and not self._quiz.is_unlimited_time:
            return False
        problem = self._snapshot_mismatch(snapshot)
        if problem is not None:
            logger.warning("Discarding saved attempt for quiz %s: %s", self._quiz.id, problem)
            if self._store is not None:
                self._store.delete(self._user_id, self._quiz.id)
            return False
        return True

    def _snapshot_mismatch(self, snapshot: AttemptSnapshot) -> str | None:
        total = len(self._quiz.questions)
        if snapshot.current_question >= total:
            return f"position {snapshot.current_question} is outside the quiz"
        for name, indices in (
            ("answers", snapshot.answers),
            ("answer_codes", snapshot.answer_codes),
            ("locked_questions", snapshot.locked_questions),
        ):
            if any(not 0 <= index < total for index in indices):
                return f"{name} refers to a question outside the quiz"
        for index, value in snapshot.answers.items():
            if not _answer_fits(self._quiz.questions[index], value):
                return f"answer {value!r} does not fit question {index}"
        return None

    def _persist(self) -> None:
        if self._store is None or self._status is not SessionStatus.IN_PROGRESS:
            return
        state = self._require_state()
        self._store.save(
            self._user_id,
            AttemptSnapshot(
                quiz_id=state.quiz_id,
                current_question=state.current_position,
                answers=dict(state.answers),
                answer_codes=dict(state.generated_artifacts),
                time_left=state.time_remaining_seconds,
                question_order=list(state.question_order),
                options_order={index: list(order) for index, order in state.options_order.items()},
                used_power_ups=list(state.used_power_ups),
                locked_questions=sorted(self._checked),
            ),
        )


def _answer_fits(question: Question, value: int | str) -> bool:
    match question.kind:
        case QuestionKind.MULTIPLE_CHOICE:
            return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < len(question.options)
        case QuestionKind.TEXT | QuestionKind.BLOCK | QuestionKind.COMPILER:
            return isinstance(value, str)
        case _:
            assert_never(question.kind)
