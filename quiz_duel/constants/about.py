"""Static metadata describing QuizDuel."""

APP_NAME = "QuizDuel"
APP_VERSION = "0.1.0"
APP_ABOUT_TEXT = (
    "QuizDuel runs timed quizzes with multiple-choice, free-text, block and code questions, "
    "and lets two players race through the same quiz over a shared room channel."
)

HELP_TEXT = (
    "Quizzes can be authored as plain .txt files using the import format:\n\n"
    "TITLE: Radians\nTIMELIMIT: 5\nPASSING: 50\n\n"
    "Q: What is $30^o$ in radians?\n"
    "A: \\frac{\\pi}{2}\nB: \\frac{\\pi}{6}\nC: \\frac{\\pi}{4}\nD: \\frac{\\pi}{3}\n"
    "CORRECT: B\nPOINTS: 10\n\n"
    "Q: Write a function that returns 1.\n"
    "TYPE: compiler\nLANGUAGE: javascript\n"
    "REFERENCE:\nfunction f() { return 1; }\nEND\nPOINTS: 20"
)
