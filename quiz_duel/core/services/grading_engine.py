"""Service that evaluates answers and aggregates them into quiz results."""

from __future__ import annotations

import logging
import math
import re
from typing import assert_never

from quiz_duel.core.block_language import BlockCompiler
from quiz_duel.core.models import (
    GradingResult,
    PowerUpKind,
    Question,
    QuestionKind,
    Quiz,
    QuizResult,
    ReviewStatus,
    SessionProgress,
)

logger = logging.getLogger(__name__)

_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_SLASH_LINE_COMMENT = re.compile(r"//.*")
_HASH_LINE_COMMENT = re.compile(r"#.*")
_WHITESPACE = re.compile(r"\s+")


class GradingFailure(Exception):
    """Raised internally when an answer cannot be evaluated."""


def normalize(source: str) -> str:
    """Canonicalize source text for textual equality grading.

    Strips block and line comments, all whitespace and statement terminators,
    and rewrites single quotes as double quotes. Passes repeat until the text
    is stable, since removing whitespace or ``;`` can join a new comment
    marker such as ``/;/`` into ``//``.
    """
    text = source
    while True:
        normalized = _normalize_pass(text)
        if normalized == text:
            return normalized
        text = normalized


def _normalize_pass(text: str) -> str:
    text = _BLOCK_COMMENT.sub("", text)
    text = _SLASH_LINE_COMMENT.sub("", text)
    text = _HASH_LINE_COMMENT.sub("", text)
    text = _WHITESPACE.sub("", text)
    text = text.replace(";", "")
    text = text.replace("'", '"')
    return text.strip()


class GradingEngine:
    """Pure correctness evaluator for every question kind."""

    def __init__(self, block_compiler: BlockCompiler | None = None) -> None:
        self._block_compiler = block_compiler

    def grade(
        self,
        question: Question,
        answer: int | str | None,
        generated_artifact: str | None = None,
    ) -> GradingResult:
        """Grade a single answer; failures degrade to an incorrect result."""
        try:
            is_correct = self._evaluate(question, answer, generated_artifact)
        except GradingFailure as exc:
            logger.warning("Grading question %s failed: %s", question.id, exc)
            is_correct = False
        return GradingResult(selected=answer, is_correct=is_correct, kind=question.kind)

    def grade_attempt(
        self,
        quiz: Quiz,
        answers: dict[int, int | str],
        generated_artifacts: dict[int, str],
        time_taken_seconds: int,
        power_ups_used: list[PowerUpKind],
    ) -> QuizResult:
        graded: dict[int, GradingResult] = {}
        score = 0
        correct_answer_count = 0
        for index, question in enumerate(quiz.questions):
            result = self.grade(question, answers.get(index), generated_artifacts.get(index))
            graded[index] = result
            if result.is_correct:
                score += question.points
                correct_answer_count += 1

        percentage = _percentage(score, quiz.total_points)
        has_text = any(question.kind is QuestionKind.TEXT for question in quiz.questions)
        return QuizResult(
            correct_answer_count=correct_answer_count,
            score=score,
            total_questions=len(quiz.questions),
            percentage=percentage,
            time_taken_seconds=time_taken_seconds,
            answers=graded,
            passed=percentage >= quiz.passing_score,
            review_status=ReviewStatus.PENDING if has_text else ReviewStatus.COMPLETED,
            power_ups_used=list(power_ups_used),
        )

    def provisional_progress(
        self,
        quiz: Quiz,
        answers: dict[int, int | str],
        generated_artifacts: dict[int, str],
        elapsed_seconds: int,
    ) -> SessionProgress:
        """Score every answered, automatically gradable question."""
        score = 0
        correct_answer_count = 0
        graded_count = 0
        for index, answer in answers.items():
            question = quiz.questions[index]
            if question.kind is QuestionKind.TEXT:
                continue
            graded_count += 1
            if self.grade(question, answer, generated_artifacts.get(index)).is_correct:
                score += question.points
                correct_answer_count += 1

        return SessionProgress(
            score=score,
            answered_count=len(answers),
            correct_answer_count=correct_answer_count,
            percentage=_percentage(score, quiz.total_points),
            elapsed_seconds=elapsed_seconds,
            accuracy=_percentage(correct_answer_count, graded_count),
        )

    def _evaluate(
        self,
        question: Question,
        answer: int | str | None,
        generated_artifact: str | None,
    ) -> bool:
        if answer is None:
            return False
        match question.kind:
            case QuestionKind.MULTIPLE_CHOICE:
                return question.correct_option_index is not None and answer == question.correct_option_index
            case QuestionKind.TEXT:
                return False
            case QuestionKind.COMPILER:
                if not question.reference_code or not isinstance(answer, str):
                    return False
                return self._sources_match(answer, question.reference_code, question)
            case QuestionKind.BLOCK:
                return self._grade_block(question, answer, generated_artifact)
            case _:
                assert_never(question.kind)

    def _grade_block(self, question: Question, answer: int | str, generated_artifact: str | None) -> bool:
        if not question.reference_xml or not isinstance(answer, str) or not answer.strip():
            return False
        if self._block_compiler is None:
            raise GradingFailure("No block compiler was registered.")
        try:
            reference_code = self._block_compiler.compile(question.reference_xml)
            user_code = generated_artifact if generated_artifact else self._block_compiler.compile(answer)
        except Exception as exc:
            raise GradingFailure(f"Block code generation failed: {exc}") from exc
        if not user_code or not reference_code:
            return False
        return self._sources_match(user_code, reference_code, question)

    @staticmethod
    def _sources_match(submitted: str, reference: str, question: Question) -> bool:
        try:
            normalized_submitted = normalize(submitted)
            normalized_reference = normalize(reference)
        except (TypeError, re.error) as exc:
            raise GradingFailure(f"Normalization failed: {exc}") from exc
        if normalized_submitted != normalized_reference:
            logger.debug(
                "Question %s mismatch: submitted=%r reference=%r",
                question.id,
                normalized_submitted,
                normalized_reference,
            )
            return False
        return True


def _percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    # Half-up rounding, so 12.5 reports as 13.
    return math.floor(100 * part / whole + 0.5)
