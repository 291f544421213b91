from pathlib import Path

import pytest

from conftest import FLAG_AND_MOVE_XML, make_quiz, mc_question
from quiz_duel.core.models import Question, QuestionKind
from quiz_duel.core.quiz_exporter import save_quiz_to_file, serialize_quiz
from quiz_duel.core.quiz_importer import QuizImportError, load_quiz_from_file, parse_quiz_text
from quiz_duel.core.services.quiz_repository import QuizRepository, has_positional_option

SAMPLE_QUIZ = """\
TITLE: Warm-up
TIMELIMIT: 5
PASSING: 50
REVIEW: yes

Q: What is 2 + 2?
A: 3
B: 4
C: 5
CORRECT: B
POINTS: 10

---

Q: Explain what a loop does.
TYPE: text

Q: Write a function returning one.
TYPE: compiler
LANGUAGE: python
REFERENCE:
def f():

    return 1
END
POINTS: 20
"""


# ---------------------------------------------------------------------------
# importer
# ---------------------------------------------------------------------------

def test_parse_header_and_questions() -> None:
    quiz = parse_quiz_text(SAMPLE_QUIZ, "warm-up")

    assert quiz.id == "warm-up"
    assert quiz.title == "Warm-up"
    assert quiz.time_limit_minutes == 5
    assert quiz.passing_score == 50
    assert quiz.review_mode is True
    assert [question.kind for question in quiz.questions] == [
        QuestionKind.MULTIPLE_CHOICE,
        QuestionKind.TEXT,
        QuestionKind.COMPILER,
    ]
    assert [question.id for question in quiz.questions] == [0, 1, 2]


def test_multiple_choice_fields() -> None:
    first = parse_quiz_text(SAMPLE_QUIZ, "warm-up").questions[0]

    assert first.options == ["3", "4", "5"]
    assert first.correct_option_index == 1
    assert first.points == 10


def test_reference_section_keeps_blank_lines() -> None:
    compiler = parse_quiz_text(SAMPLE_QUIZ, "warm-up").questions[2]

    assert compiler.reference_code == "def f():\n\n    return 1"
    assert compiler.language == "python"
    assert compiler.allowed_languages == ["python"]
    assert compiler.points == 20


def test_block_question_reference_is_xml() -> None:
    text = f"Q: Move ten steps\nTYPE: block\nREFERENCE:\n{FLAG_AND_MOVE_XML}\nEND\n"

    question = parse_quiz_text(text, "blocks").questions[0]

    assert question.kind is QuestionKind.BLOCK
    assert question.reference_xml == FLAG_AND_MOVE_XML
    assert question.reference_code is None


def test_defaults_without_header() -> None:
    quiz = parse_quiz_text("Q: Pick one\nA: x\nB: y\nCORRECT: A\nSHUFFLE: no\n", "plain")

    assert quiz.title == "plain"
    assert quiz.time_limit_minutes == 0
    assert quiz.passing_score == 60
    assert quiz.review_mode is False
    assert quiz.questions[0].shuffle_options is False


def test_multi_line_question_text() -> None:
    quiz = parse_quiz_text("Q: First line\nsecond line\nA: x\nB: y\nCORRECT: B\n", "multi")
    assert quiz.questions[0].prompt == "First line\nsecond line"


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "did not contain any questions"),
        ("Q: Pick\nA: x\nB: y\n", "CORRECT"),
        ("Q: Pick\nA: x\nCORRECT: A\n", "at least two options"),
        ("Q: Pick\nA: x\nC: y\nCORRECT: A\n", "consecutive letters"),
        ("Q: Pick\nA: x\nB: y\nCORRECT: D\n", "CORRECT must be one of"),
        ("Q: Pick\nTYPE: essay\n", "TYPE must be one of"),
        ("Q: Code\nTYPE: compiler\n", "REFERENCE"),
        ("Q: Code\nTYPE: compiler\nREFERENCE:\nx = 1\n", "END"),
        ("Q: Pick\nA: x\nB: y\nCORRECT: A\nPOINTS: many\n", "POINTS must be an integer"),
        ("TITLE: Bad\nTIMELIMIT: -1\n\nQ: Why?\nTYPE: text\n", "TIMELIMIT must be at least 0"),
        ("stray text\n", "outside of a known section"),
    ],
)
def test_invalid_files_raise(text: str, message: str) -> None:
    with pytest.raises(QuizImportError, match=message):
        parse_quiz_text(text, "broken")


def test_load_quiz_from_file_uses_file_stem(tmp_path: Path) -> None:
    path = tmp_path / "chapter-1.txt"
    path.write_text(SAMPLE_QUIZ, encoding="utf-8")

    imported = load_quiz_from_file(path)

    assert imported.source_path == path
    assert imported.quiz.id == "chapter-1"


# ---------------------------------------------------------------------------
# exporter
# ---------------------------------------------------------------------------

def test_export_then_import_preserves_the_quiz(tmp_path: Path) -> None:
    original = parse_quiz_text(SAMPLE_QUIZ, "warm-up")
    path = tmp_path / "out" / "warm-up.txt"

    save_quiz_to_file(path, original)
    reloaded = load_quiz_from_file(path)

    assert reloaded.quiz == original


def test_export_omits_default_values() -> None:
    document = serialize_quiz(make_quiz([mc_question(0, correct=3)]))

    assert "TIMELIMIT" not in document
    assert "POINTS" not in document
    assert "TYPE" not in document
    assert "CORRECT: D" in document


def test_export_rejects_empty_quiz(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        save_quiz_to_file(tmp_path / "empty.txt", make_quiz([]))


# ---------------------------------------------------------------------------
# repository
# ---------------------------------------------------------------------------

def test_repository_stores_by_id() -> None:
    repository = QuizRepository()
    repository.load_quiz(make_quiz([mc_question(0)], quiz_id="a"))
    repository.load_quiz(make_quiz([mc_question(0)], quiz_id="b"))

    assert repository.get_quiz("a").id == "a"
    assert {quiz.id for quiz in repository.get_quizzes()} == {"a", "b"}
    repository.delete_quiz("a")
    assert not repository.has_quiz("a")
    with pytest.raises(LookupError):
        repository.get_quiz("a")


def test_repository_strips_text() -> None:
    question = mc_question(0, options=[" x ", "y "])
    question.prompt = "  Pick one  "

    stored = QuizRepository().load_quiz(make_quiz([question])).questions[0]

    assert stored.prompt == "Pick one"
    assert stored.options == ["x", "y"]


@pytest.mark.parametrize(
    "question",
    [
        mc_question(0, correct=4),
        mc_question(0, options=["only"], correct=0),
        mc_question(0, points=-1),
        Question(id=0, kind=QuestionKind.COMPILER, prompt="Code"),
        Question(id=0, kind=QuestionKind.BLOCK, prompt="Blocks"),
        Question(id=0, kind=QuestionKind.TEXT, prompt="   "),
    ],
)
def test_repository_rejects_invalid_questions(question: Question) -> None:
    with pytest.raises(ValueError):
        QuizRepository().load_quiz(make_quiz([question]))


@pytest.mark.parametrize(
    "overrides",
    [{"passing_score": 101}, {"passing_score": -1}, {"time_limit_minutes": -5}, {"quiz_id": " "}],
)
def test_repository_rejects_invalid_quizzes(overrides: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        QuizRepository().load_quiz(make_quiz([mc_question(0)], **overrides))


@pytest.mark.parametrize(
    "option",
    ["All of the above", "none of the above", "Both A and B", "Neither red nor blue"],
)
def test_positional_options_disable_shuffling(option: str) -> None:
    question = mc_question(0, options=["red", "blue", option])
    assert has_positional_option(question.options)

    stored = QuizRepository().load_quiz(make_quiz([question])).questions[0]

    assert stored.shuffle_options is False
    assert not stored.is_shuffled


def test_explicit_shuffle_choice_is_respected_for_plain_options() -> None:
    question = mc_question(0)
    question.shuffle_options = True

    stored = QuizRepository().load_quiz(make_quiz([question])).questions[0]

    assert stored.shuffle_options is True
