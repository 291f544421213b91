"""Static texts revealed by the hint-style power-ups."""

REVEAL_HINT_OPTION_TEMPLATE: str = "The answer is likely Option {letter}"
REVEAL_HINT_FLOW_TEXT: str = "Think about the logical flow and what each step should accomplish"

BLOCK_STRUCTURE_TEXT: str = (
    "1. Start with an event trigger\n"
    "2. Add your action blocks\n"
    "3. Connect them in sequence"
)

# Keyed by compiler language; unknown languages reveal nothing.
CODE_STRUCTURE_TEMPLATES: dict[str, str] = {
    "javascript": "function solution() {\n  // Your code here\n  return result;\n}",
    "python": "def solution():\n    # Your code here\n    return result",
}

BLOCK_DEBUG_TIPS: tuple[str, ...] = (
    "Make sure blocks are connected properly",
    "Check that values in number fields are correct",
    "Verify the order of your blocks",
)

CODE_DEBUG_TIPS: tuple[str, ...] = (
    "Check for syntax errors",
    "Verify variable names",
    "Make sure you return the correct value",
)

# Block type prefix -> toolbox category shown by the block-category hint.
BLOCK_CATEGORY_PREFIXES: tuple[tuple[str, str], ...] = (
    ("event_", "Events"),
    ("motion_", "Motion"),
    ("looks_", "Looks"),
)
BLOCK_CATEGORY_FALLBACK_TEXT: str = "Start with an event block to trigger your code"
