"""Network configuration constants for the quiz application."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
SESSION_TICKER_THREAD_NAME: str = "QuizDuelSessionTicker"
COUNTDOWN_TICKER_THREAD_NAME: str = "QuizDuelCountdownTicker"
