"""Service entry point for QuizDuel."""

from __future__ import annotations

import argparse
from pathlib import Path
import socket
from threading import Event

from quiz_duel.constants.about import APP_NAME, APP_VERSION
from quiz_duel.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quiz_duel.core.quiz_importer import load_quiz_from_file
from quiz_duel.core.quiz_manager import AttemptManager
from quiz_duel.server.api_server import start_api_server, start_session_ticker
from quiz_duel.utils.logging_config import configure_logging


def _determine_player_url(port: int) -> str:
    """Best-effort determination of the local IP for the player-facing URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("quiz_files", nargs="*", type=Path, help="Quiz files in the text import format")
    return parser.parse_args()


def main() -> None:
    """Initialize logging, load quizzes, start the ticker and serve the API."""
    args = _parse_args()
    logger = configure_logging()
    logger.info("Starting %s %s", APP_NAME, APP_VERSION)

    attempt_manager = AttemptManager()
    for quiz_file in args.quiz_files:
        imported = load_quiz_from_file(quiz_file)
        attempt_manager.load_quiz(imported.quiz)

    stop = Event()
    start_session_ticker(attempt_manager, stop_event=stop)
    server_thread = start_api_server(attempt_manager=attempt_manager, host=args.host, port=args.port)
    logger.info("API available at %s", _determine_player_url(args.port))
    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        stop.set()


if __name__ == "__main__":
    main()
