"""Block-to-code compilation for block questions.

Architecture note:
    Block questions are answered by assembling a graph of blocks, serialized
    as Blockly-style XML. Grading never compares graphs directly: the same
    compiler turns both the user's graph and the reference graph into source
    text, and the grading engine compares the normalized text. The block
    vocabulary is registered once at application bootstrap through
    ``register_block_language()`` and handed to the grading engine, so there is
    no module-level "already registered" flag to consult.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol
from xml.etree import ElementTree


class BlockCompiler(Protocol):
    """Anything that turns a serialized block graph into source text."""

    def compile(self, graph: str) -> str: ...


class BlockCompileError(Exception):
    """Raised when a block graph cannot be turned into source text."""


BlockGenerator = Callable[["_BlockView"], str]


@dataclass(slots=True)
class _BlockView:
    """Read-only accessors over one ``<block>`` element used by generators."""

    element: ElementTree.Element
    language: "BlockLanguage"

    @property
    def type(self) -> str:
        return self.element.get("type", "")

    def field(self, name: str, default: str = "") -> str:
        for child in self.element:
            if _local_name(child.tag) == "field" and child.get("name") == name:
                return (child.text or "").strip()
        return default

    def value(self, name: str, default: str) -> str:
        """Code for the block plugged into the value input ``name``."""
        for child in self.element:
            if _local_name(child.tag) == "value" and child.get("name") == name:
                inner = _first_child_block(child)
                if inner is not None:
                    return self.language.expression_to_code(inner)
        return default


@dataclass(slots=True)
class BlockLanguage:
    """Registry of block types and the code each one generates."""

    statements: dict[str, BlockGenerator] = field(default_factory=dict)
    expressions: dict[str, BlockGenerator] = field(default_factory=dict)

    def register_statement(self, block_type: str, generator: BlockGenerator) -> None:
        self.statements[block_type] = generator

    def register_expression(self, block_type: str, generator: BlockGenerator) -> None:
        self.expressions[block_type] = generator

    def compile(self, graph: str) -> str:
        """Generate source for every top-level statement chain in ``graph``."""
        if not graph or not graph.strip():
            raise BlockCompileError("Block graph is empty.")
        try:
            root = ElementTree.fromstring(graph)
        except ElementTree.ParseError as exc:
            raise BlockCompileError(f"Block graph is not valid XML: {exc}") from exc

        if _local_name(root.tag) == "block":
            top_level = [root]
        else:
            top_level = [child for child in root if _local_name(child.tag) == "block"]

        return "".join(self._chain_to_code(block) for block in top_level)

    def expression_to_code(self, element: ElementTree.Element) -> str:
        view = _BlockView(element, self)
        generator = self.expressions.get(view.type)
        if generator is None:
            raise BlockCompileError(f"Unknown expression block '{view.type}'.")
        return generator(view)

    def _chain_to_code(self, element: ElementTree.Element | None) -> str:
        lines: list[str] = []
        while element is not None:
            view = _BlockView(element, self)
            generator = self.statements.get(view.type)
            if generator is None:
                raise BlockCompileError(f"Unknown statement block '{view.type}'.")
            lines.append(generator(view))
            element = _next_block(element)
        return "".join(lines)


def register_block_language(
    extra_statements: Mapping[str, BlockGenerator] | None = None,
) -> BlockLanguage:
    """Build the default block vocabulary; call once at application bootstrap."""
    language = BlockLanguage()

    language.register_expression("math_number", lambda block: block.field("NUM", "0"))
    language.register_expression("text", lambda block: f"'{block.field('TEXT')}'")

    language.register_statement("event_whenflagclicked", lambda _block: "// Green Flag Clicked\n")
    language.register_statement(
        "motion_movesteps",
        lambda block: f"await moveSteps({block.field('STEPS') or block.value('STEPS', '10')});\n",
    )
    language.register_statement(
        "motion_turnright",
        lambda block: f"await turnRight({block.field('DEGREES') or block.value('DEGREES', '15')});\n",
    )
    language.register_statement("looks_say", _say_to_code)
    language.register_statement(
        "looks_switchbackdrop",
        lambda block: f"setBackdrop('{block.field('BACKDROP')}');\n",
    )

    for block_type, generator in (extra_statements or {}).items():
        language.register_statement(block_type, generator)
    return language


def _say_to_code(block: _BlockView) -> str:
    message = block.value("MESSAGE", '"Hello"')
    seconds = block.value("SECS", "2")
    return f"await say({message}, {seconds});\n"


def _local_name(tag: str) -> str:
    # Strip the "{namespace}" prefix ElementTree adds for xmlns documents.
    return tag.rsplit("}", 1)[-1]


def _first_child_block(element: ElementTree.Element) -> ElementTree.Element | None:
    shadow = None
    for child in element:
        name = _local_name(child.tag)
        if name == "block":
            return child
        if name == "shadow" and shadow is None:
            shadow = child
    return shadow


def _next_block(element: ElementTree.Element) -> ElementTree.Element | None:
    for child in element:
        if _local_name(child.tag) == "next":
            return _first_child_block(child)
    return None
