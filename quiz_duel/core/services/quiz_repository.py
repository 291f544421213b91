"""Service for validating and storing quiz definitions."""

from __future__ import annotations

import re
from typing import assert_never

from quiz_duel.core.models import Question, QuestionKind, Quiz

# Options whose meaning depends on their position must not be shuffled.
_POSITIONAL_OPTION_PATTERNS = [
    re.compile(r"both.*(and|&)", re.IGNORECASE),
    re.compile(r"all of the above", re.IGNORECASE),
    re.compile(r"none of the above", re.IGNORECASE),
    re.compile(r"neither.*nor", re.IGNORECASE),
    re.compile(r"options?.*(and|&)", re.IGNORECASE),
    re.compile(r"choices?.*(and|&)", re.IGNORECASE),
    re.compile(r"^[a-z]\s*(and|&)\s*[a-z]$", re.IGNORECASE),
]


def has_positional_option(options: list[str]) -> bool:
    return any(pattern.search(option) for option in options for pattern in _POSITIONAL_OPTION_PATTERNS)


class QuizRepository:
    """Manages the lifecycle and storage of quiz definitions."""

    def __init__(self) -> None:
        self._quizzes: dict[str, Quiz] = {}

    def load_quiz(self, quiz: Quiz) -> Quiz:
        """Validate ``quiz`` and store it, replacing any quiz with the same id."""
        prepared = self._prepare_quiz(quiz)
        self._quizzes[prepared.id] = prepared
        return prepared

    def get_quiz(self, quiz_id: str) -> Quiz:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise LookupError(f"Quiz '{quiz_id}' not found.")
        return quiz

    def get_quizzes(self) -> list[Quiz]:
        return list(self._quizzes.values())

    def has_quiz(self, quiz_id: str) -> bool:
        return quiz_id in self._quizzes

    def delete_quiz(self, quiz_id: str) -> None:
        if self._quizzes.pop(quiz_id, None) is None:
            raise LookupError(f"Quiz '{quiz_id}' not found.")

    def clear(self) -> None:
        self._quizzes = {}

    def _prepare_quiz(self, quiz: Quiz) -> Quiz:
        quiz_id = quiz.id.strip()
        if not quiz_id:
            raise ValueError("Quiz id must not be empty.")
        if not quiz.questions:
            raise ValueError("Quiz must contain at least one question.")
        if quiz.time_limit_minutes < 0:
            raise ValueError("Time limit cannot be negative.")
        if not 0 <= quiz.passing_score <= 100:
            raise ValueError("Passing score must be between 0 and 100.")

        return Quiz(
            id=quiz_id,
            title=quiz.title.strip() or quiz_id,
            questions=[self._prepare_question(question) for question in quiz.questions],
            time_limit_minutes=quiz.time_limit_minutes,
            passing_score=quiz.passing_score,
            review_mode=quiz.review_mode,
        )

    def _prepare_question(self, question: Question) -> Question:
        """Validate and normalize a question before storage."""
        cleaned_prompt = question.prompt.strip()
        if not cleaned_prompt:
            raise ValueError("Question prompt must not be empty.")
        if question.points < 0:
            raise ValueError("Question points cannot be negative.")

        options: list[str] = []
        shuffle_options = question.shuffle_options
        match question.kind:
            case QuestionKind.MULTIPLE_CHOICE:
                options = self._validate_options(question.options)
                if question.correct_option_index is None or not 0 <= question.correct_option_index < len(options):
                    raise ValueError(f"Correct option index must be between 0 and {len(options) - 1}.")
                if shuffle_options is not False and has_positional_option(options):
                    shuffle_options = False
            case QuestionKind.TEXT:
                pass
            case QuestionKind.COMPILER:
                if not (question.reference_code or "").strip():
                    raise ValueError("Compiler questions need reference code.")
            case QuestionKind.BLOCK:
                if not (question.reference_xml or "").strip():
                    raise ValueError("Block questions need a reference block graph.")
            case _:
                assert_never(question.kind)

        return Question(
            id=question.id,
            kind=question.kind,
            prompt=cleaned_prompt,
            options=options,
            correct_option_index=question.correct_option_index if options else None,
            points=question.points,
            shuffle_options=shuffle_options,
            reference_code=question.reference_code,
            language=question.language,
            allowed_languages=list(question.allowed_languages),
            initial_code=question.initial_code,
            reference_xml=question.reference_xml,
            initial_xml=question.initial_xml,
        )

    @staticmethod
    def _validate_options(options: list[str]) -> list[str]:
        if len(options) < 2:
            raise ValueError("Multiple-choice questions need at least two options.")
        cleaned = [option.strip() for option in options]
        if any(not option for option in cleaned):
            raise ValueError("Option text cannot be empty.")
        return cleaned
