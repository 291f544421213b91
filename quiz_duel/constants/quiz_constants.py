"""Quiz-related constants shared across the session, grading and match layers."""

UNLIMITED_TIME_SENTINEL: int = 0
TIMER_TICK_INTERVAL_SECONDS: float = 1.0
TIME_EXTENSION_BONUS_SECONDS: int = 20
MATCH_COUNTDOWN_TICKS: int = 5
MATCH_EVENT_LOG_SIZE: int = 5
SNAPSHOT_KEY_PREFIX: str = "quiz_progress"
DEFAULT_PASSING_SCORE: int = 60
DEFAULT_COMPILER_LANGUAGE: str = "javascript"
