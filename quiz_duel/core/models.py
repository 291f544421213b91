"""Domain models for the quiz application."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from quiz_duel.constants.quiz_constants import DEFAULT_PASSING_SCORE, UNLIMITED_TIME_SENTINEL


class QuestionKind(str, Enum):
    """Tagged variant over every supported question kind."""

    MULTIPLE_CHOICE = "multiple-choice"
    TEXT = "text"
    BLOCK = "block"
    COMPILER = "compiler"


class PowerUpKind(str, Enum):
    ELIMINATE_TWO = "eliminate-two"
    TIME_EXTEND = "time-extend"
    REVEAL_HINT = "reveal-hint"
    SHOW_STRUCTURE = "show-structure"
    SHOW_DEBUG_TIPS = "show-debug-tips"
    SHOW_BLOCK_CATEGORIES = "show-block-categories"


class ReviewStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"


class SessionStatus(str, Enum):
    """Lifecycle of a single attempt; transitions only move forward."""

    NOT_STARTED = "not-started"
    RESUME_PROMPT = "resume-prompt"
    IN_PROGRESS = "in-progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


class NavigationDirection(int, Enum):
    PREVIOUS = -1
    NEXT = 1


@dataclass(slots=True)
class Question:
    """A single quiz question.

    ``correct_option_index`` always refers to the original option order,
    before any presentation shuffle. The remaining optional fields are the
    kind-specific configuration (reference code for compiler questions,
    reference graph for block questions).
    """

    id: int
    kind: QuestionKind
    prompt: str
    options: list[str] = field(default_factory=list)
    correct_option_index: int | None = None
    points: int = 1
    shuffle_options: bool | None = None
    reference_code: str | None = None
    language: str | None = None
    allowed_languages: list[str] = field(default_factory=list)
    initial_code: str | None = None
    reference_xml: str | None = None
    initial_xml: str | None = None

    @property
    def is_shuffled(self) -> bool:
        return self.shuffle_options is not False


@dataclass(slots=True)
class Quiz:
    """Quiz definition; a time limit of zero minutes means unlimited time."""

    id: str
    title: str
    questions: list[Question]
    time_limit_minutes: int = UNLIMITED_TIME_SENTINEL
    passing_score: int = DEFAULT_PASSING_SCORE
    review_mode: bool = False

    @property
    def time_limit_seconds(self) -> int:
        return self.time_limit_minutes * 60

    @property
    def is_unlimited_time(self) -> bool:
        return self.time_limit_minutes == UNLIMITED_TIME_SENTINEL

    @property
    def total_points(self) -> int:
        return sum(question.points for question in self.questions)


@dataclass(slots=True)
class AttemptState:
    """Mutable state of one attempt, owned by a single SessionController."""

    quiz_id: str
    user_id: str
    question_order: list[int]
    options_order: dict[int, list[int]]
    current_position: int = 0
    answers: dict[int, int | str] = field(default_factory=dict)
    generated_artifacts: dict[int, str] = field(default_factory=dict)
    time_remaining_seconds: int = UNLIMITED_TIME_SENTINEL
    submitted: bool = False
    used_power_ups: list[PowerUpKind] = field(default_factory=list)

    @property
    def current_question_index(self) -> int:
        """Original index of the question shown at the current position."""
        return self.question_order[self.current_position]


@dataclass(slots=True)
class PowerUpInventory:
    """Remaining quantity per power-up kind."""

    quantities: dict[PowerUpKind, int] = field(default_factory=dict)

    def count(self, kind: PowerUpKind) -> int:
        return self.quantities.get(kind, 0)

    def consume(self, kind: PowerUpKind) -> None:
        remaining = self.count(kind)
        if remaining <= 0:
            raise RuntimeError(f"No '{kind.value}' power-ups left.")
        self.quantities[kind] = remaining - 1

    @classmethod
    def from_mapping(cls, mapping: dict[str, int]) -> "PowerUpInventory":
        quantities: dict[PowerUpKind, int] = {}
        for raw_kind, quantity in mapping.items():
            if quantity < 0:
                raise ValueError("Power-up quantities cannot be negative.")
            quantities[PowerUpKind(raw_kind)] = quantity
        return cls(quantities=quantities)


@dataclass(slots=True)
class PerQuestionPowerUpUsage:
    """Aids already spent on one question instance and what they revealed."""

    used: set[PowerUpKind] = field(default_factory=set)
    eliminated_options: set[int] = field(default_factory=set)
    messages: dict[PowerUpKind, str] = field(default_factory=dict)


@dataclass(slots=True)
class GradingResult:
    selected: int | str | None
    is_correct: bool
    kind: QuestionKind


@dataclass(slots=True)
class QuizResult:
    """Final graded result.

    ``score`` is the point total and ``correct_answer_count`` the number of
    correct answers; ``percentage`` is point-weighted.
    """

    correct_answer_count: int
    score: int
    total_questions: int
    percentage: int
    time_taken_seconds: int
    answers: dict[int, GradingResult]
    passed: bool
    review_status: ReviewStatus
    power_ups_used: list[PowerUpKind] = field(default_factory=list)


@dataclass(slots=True)
class SessionProgress:
    """Provisional standing of an attempt, reported on every answer change."""

    score: int
    answered_count: int
    correct_answer_count: int
    percentage: int
    elapsed_seconds: int
    accuracy: int


class MatchPhase(str, Enum):
    WAITING = "waiting"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    FINISHED = "finished"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class Standing(str, Enum):
    AHEAD = "ahead"
    BEHIND = "behind"
    TIED = "tied"


@dataclass(slots=True)
class PlayerProgress:
    """Latest known progress of one match participant."""

    user_id: str
    score: int = 0
    current_question_index: int = 0
    percentage: int = 0
    correct_answer_count: int = 0
    elapsed_seconds: int = 0
    accuracy: int = 0
    sequence: int = 0

    def ranking_key(self) -> tuple[int, int, int, int]:
        """Sort key where smaller is better."""
        return (
            -self.correct_answer_count,
            -self.score,
            -self.current_question_index,
            self.elapsed_seconds,
        )


@dataclass(slots=True)
class MatchState:
    phase: MatchPhase
    local: PlayerProgress
    remote: PlayerProgress
    countdown_remaining: int = 0
    winner_id: str | None = None
    is_draw: bool = False
    verdict_received: bool = False
