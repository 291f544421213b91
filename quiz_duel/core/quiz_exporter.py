"""Utilities for exporting quizzes to the plain-text format used for imports."""

from __future__ import annotations

from pathlib import Path
from string import ascii_uppercase

from quiz_duel.constants.quiz_constants import DEFAULT_PASSING_SCORE
from quiz_duel.core.models import Question, QuestionKind, Quiz


def save_quiz_to_file(file_path: Path, quiz: Quiz) -> None:
    """Persist the provided quiz to disk in the text import format."""

    if not quiz.questions:
        raise ValueError("Cannot export an empty quiz.")

    file_path = file_path.resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(serialize_quiz(quiz), encoding="utf-8")


def serialize_quiz(quiz: Quiz) -> str:
    blocks = [_serialize_header(quiz)]
    blocks.extend(_serialize_question(question) for question in quiz.questions)
    return "\n\n---\n\n".join(blocks) + "\n"


def _serialize_header(quiz: Quiz) -> str:
    lines = [f"TITLE: {quiz.title}"]
    if not quiz.is_unlimited_time:
        lines.append(f"TIMELIMIT: {quiz.time_limit_minutes}")
    if quiz.passing_score != DEFAULT_PASSING_SCORE:
        lines.append(f"PASSING: {quiz.passing_score}")
    if quiz.review_mode:
        lines.append("REVIEW: yes")
    return "\n".join(lines)


def _serialize_question(question: Question) -> str:
    lines: list[str] = []

    question_lines = question.prompt.splitlines() or [question.prompt]
    lines.append(f"Q: {question_lines[0]}")
    lines.extend(question_lines[1:])

    if question.kind is not QuestionKind.MULTIPLE_CHOICE:
        lines.append(f"TYPE: {question.kind.value}")

    for letter, option_text in zip(ascii_uppercase, question.options):
        option_lines = option_text.splitlines() or [option_text]
        lines.append(f"{letter}: {option_lines[0]}")
        lines.extend(option_lines[1:])

    if question.correct_option_index is not None:
        lines.append(f"CORRECT: {ascii_uppercase[question.correct_option_index]}")

    if question.points != 1:
        lines.append(f"POINTS: {question.points}")

    if question.shuffle_options is not None:
        lines.append(f"SHUFFLE: {'yes' if question.shuffle_options else 'no'}")

    if question.kind is QuestionKind.COMPILER and question.language:
        lines.append(f"LANGUAGE: {question.language}")

    reference = question.reference_code if question.kind is QuestionKind.COMPILER else question.reference_xml
    if reference:
        lines.append("REFERENCE:")
        lines.extend(reference.splitlines())
        lines.append("END")

    return "\n".join(lines)
