"""Utilities for importing quizzes from a human-friendly text file.

File format. An optional header comes first, followed by question blocks
separated by blank lines or '---':

    TITLE: Quiz title
    TIMELIMIT: minutes      (optional, 0 or omitted means unlimited)
    PASSING: percentage     (optional, defaults to 60)
    REVIEW: yes|no          (optional, per-question answer checking)

    Q: Question text. Additional lines until the next marker are treated
       as part of the question.
    TYPE: multiple-choice|text|compiler|block   (optional, defaults to multiple-choice)
    A: First option text
    B: Second option text
    CORRECT: A|B|...        (multiple-choice only)
    POINTS: 1               (optional)
    SHUFFLE: yes|no         (optional, shuffle options for this question)
    LANGUAGE: javascript    (compiler questions)
    REFERENCE:
    ...reference code or block XML, kept verbatim...
    END

Example:

    TITLE: Warm-up
    TIMELIMIT: 5

    Q: What is 2 + 2?
    A: 3
    B: 4
    CORRECT: B
    POINTS: 2
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from string import ascii_uppercase

from quiz_duel.core.models import Question, QuestionKind, Quiz
from quiz_duel.constants.quiz_constants import DEFAULT_COMPILER_LANGUAGE, DEFAULT_PASSING_SCORE


class QuizImportError(Exception):
    """Raised when a quiz definition cannot be parsed."""


@dataclass(slots=True)
class ImportedQuiz:
    """Container for an imported quiz and where it came from."""

    source_path: Path
    quiz: Quiz


_OPTION_LETTERS = ascii_uppercase[:8]
_HEADER_KEYS = ("TITLE:", "TIMELIMIT:", "PASSING:", "REVIEW:")
_REFERENCE_START = "REFERENCE:"
_REFERENCE_END = "END"
_TRUE_VALUES = {"yes", "true", "on", "1"}
_FALSE_VALUES = {"no", "false", "off", "0"}


def load_quiz_from_file(file_path: Path, quiz_id: str | None = None) -> ImportedQuiz:
    text = file_path.read_text(encoding="utf-8")
    quiz = parse_quiz_text(text, quiz_id or file_path.stem)
    return ImportedQuiz(source_path=file_path, quiz=quiz)


def parse_quiz_text(text: str, quiz_id: str) -> Quiz:
    blocks = _split_blocks(text)
    header: dict[str, str] = {}
    if blocks and _is_header_block(blocks[0]):
        header = _parse_header(blocks.pop(0))

    questions = [_parse_block(block, index) for index, block in enumerate(blocks)]
    if not questions:
        raise QuizImportError("Quiz file did not contain any questions.")

    return Quiz(
        id=quiz_id,
        title=header.get("TITLE", quiz_id),
        questions=questions,
        time_limit_minutes=_parse_int(header.get("TIMELIMIT", "0"), "TIMELIMIT", minimum=0),
        passing_score=_parse_int(header.get("PASSING", str(DEFAULT_PASSING_SCORE)), "PASSING", minimum=0),
        review_mode=_parse_bool(header["REVIEW"], "REVIEW") if "REVIEW" in header else False,
    )


def _split_blocks(text: str) -> list[list[str]]:
    """Split on blank lines and '---', keeping REFERENCE sections intact."""
    blocks: list[list[str]] = []
    current_block: list[str] = []
    in_reference = False
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if in_reference:
            current_block.append(raw_line)
            if stripped == _REFERENCE_END:
                in_reference = False
            continue
        if stripped.upper() == _REFERENCE_START:
            in_reference = True
            current_block.append(raw_line)
            continue
        if stripped == "---" or not stripped:
            if current_block:
                blocks.append(current_block)
                current_block = []
            continue
        current_block.append(raw_line)
    if in_reference:
        raise QuizImportError("REFERENCE section is missing its END line.")
    if current_block:
        blocks.append(current_block)
    return blocks


def _is_header_block(block: list[str]) -> bool:
    return all(line.strip().upper().startswith(_HEADER_KEYS) for line in block)


def _parse_header(block: list[str]) -> dict[str, str]:
    header: dict[str, str] = {}
    for line in block:
        key, value = line.strip().split(":", 1)
        header[key.upper()] = value.strip()
    return header


def _parse_block(block: list[str], index: int) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    correct_letter: str | None = None
    kind = QuestionKind.MULTIPLE_CHOICE
    points = 1
    shuffle: bool | None = None
    language: str | None = None
    reference_lines: list[str] | None = None
    in_reference = False
    current_section: str | None = None

    for raw_line in block:
        if in_reference:
            if raw_line.strip() == _REFERENCE_END:
                in_reference = False
            else:
                reference_lines.append(raw_line)
            continue

        line = raw_line.strip()
        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper == _REFERENCE_START:
            reference_lines = []
            in_reference = True
            current_section = None
            continue

        if upper.startswith("TYPE:"):
            raw_kind = line.split(":", 1)[1].strip().lower()
            try:
                kind = QuestionKind(raw_kind)
            except ValueError as exc:
                allowed = ", ".join(item.value for item in QuestionKind)
                raise QuizImportError(f"TYPE must be one of {allowed}.") from exc
            current_section = None
            continue

        if upper.startswith("CORRECT:"):
            correct_letter = line.split(":", 1)[1].strip().upper()
            current_section = None
            continue

        if upper.startswith("POINTS:"):
            points = _parse_int(line.split(":", 1)[1].strip(), "POINTS", minimum=0)
            current_section = None
            continue

        if upper.startswith("SHUFFLE:"):
            shuffle = _parse_bool(line.split(":", 1)[1].strip(), "SHUFFLE")
            current_section = None
            continue

        if upper.startswith("LANGUAGE:"):
            language = line.split(":", 1)[1].strip().lower() or None
            current_section = None
            continue

        if len(line) > 2 and line[0].upper() in _OPTION_LETTERS and line[1] == ":":
            letter = line[0].upper()
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in options:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuizImportError(f"Encountered text outside of a known section: '{line}'.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuizImportError("Question text missing (Q: ...)")

    option_list = _ordered_options(options)
    correct_index = None
    reference = "\n".join(reference_lines) if reference_lines is not None else None

    if kind is QuestionKind.MULTIPLE_CHOICE:
        if len(option_list) < 2:
            raise QuizImportError("Multiple-choice questions need at least two options (A, B, ...).")
        if correct_letter is None:
            raise QuizImportError("Multiple-choice questions need a CORRECT letter.")
        if correct_letter not in options:
            raise QuizImportError(f"CORRECT must be one of {', '.join(sorted(options))}.")
        correct_index = _OPTION_LETTERS.index(correct_letter)
    elif option_list:
        raise QuizImportError(f"{kind.value} questions cannot define options.")

    if kind in (QuestionKind.COMPILER, QuestionKind.BLOCK) and not (reference or "").strip():
        raise QuizImportError(f"{kind.value} questions need a REFERENCE section.")

    if kind is QuestionKind.COMPILER:
        language = language or DEFAULT_COMPILER_LANGUAGE

    return Question(
        id=index,
        kind=kind,
        prompt=question_text,
        options=option_list,
        correct_option_index=correct_index,
        points=points,
        shuffle_options=shuffle,
        reference_code=reference if kind is QuestionKind.COMPILER else None,
        language=language if kind is QuestionKind.COMPILER else None,
        allowed_languages=[language] if kind is QuestionKind.COMPILER and language else [],
        reference_xml=reference if kind is QuestionKind.BLOCK else None,
    )


def _ordered_options(options: dict[str, str]) -> list[str]:
    letters = sorted(options)
    expected = list(_OPTION_LETTERS[: len(letters)])
    if letters != expected:
        raise QuizImportError("Options must use consecutive letters starting at A.")
    option_list = [options[letter].strip() for letter in letters]
    if any(not option for option in option_list):
        raise QuizImportError("Option text cannot be empty.")
    return option_list


def _parse_int(raw_value: str, key: str, minimum: int) -> int:
    if not raw_value:
        raise QuizImportError(f"{key} must include an integer value.")
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise QuizImportError(f"{key} must be an integer.") from exc
    if parsed_value < minimum:
        raise QuizImportError(f"{key} must be at least {minimum}.")
    return parsed_value


def _parse_bool(raw_value: str, key: str) -> bool:
    lowered = raw_value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise QuizImportError(f"{key} must be yes or no.")
