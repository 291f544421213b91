"""Service that applies consumable power-ups to the current question."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import random
from typing import assert_never

from quiz_duel.constants.power_up_constants import (
    BLOCK_CATEGORY_FALLBACK_TEXT,
    BLOCK_CATEGORY_PREFIXES,
    BLOCK_DEBUG_TIPS,
    BLOCK_STRUCTURE_TEXT,
    CODE_DEBUG_TIPS,
    CODE_STRUCTURE_TEMPLATES,
    REVEAL_HINT_FLOW_TEXT,
    REVEAL_HINT_OPTION_TEMPLATE,
)
from quiz_duel.constants.quiz_constants import DEFAULT_COMPILER_LANGUAGE, TIME_EXTENSION_BONUS_SECONDS
from quiz_duel.core.models import (
    PerQuestionPowerUpUsage,
    PowerUpInventory,
    PowerUpKind,
    Question,
    QuestionKind,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PowerUpContext:
    """What the manager needs to know about the question on screen."""

    question_index: int
    question: Question
    option_order: list[int]
    unlimited_time: bool
    finalizing: bool


@dataclass(slots=True)
class PowerUpEffect:
    """Outcome of a successful power-up use."""

    kind: PowerUpKind
    eliminated_options: frozenset[int] = frozenset()
    time_bonus_seconds: int = 0
    message: str | None = None


class PowerUpManager:
    """Enforces per-question power-up rules against a finite inventory."""

    def __init__(
        self,
        inventory: PowerUpInventory,
        rng: random.Random | None = None,
        on_used: Callable[[PowerUpKind], None] | None = None,
    ) -> None:
        self._inventory = inventory
        self._rng = rng or random.Random()
        self._on_used = on_used
        self._usage: dict[int, PerQuestionPowerUpUsage] = {}

    @property
    def inventory(self) -> PowerUpInventory:
        return self._inventory

    def usage_for(self, question_index: int) -> PerQuestionPowerUpUsage:
        usage = self._usage.get(question_index)
        if usage is None:
            usage = PerQuestionPowerUpUsage()
            self._usage[question_index] = usage
        return usage

    def reset(self, question_index: int) -> None:
        """Forget what was used on a question so it can be aided again."""
        self._usage.pop(question_index, None)

    def reset_all(self) -> None:
        self._usage.clear()

    def clear_messages(self, question_index: int) -> None:
        usage = self._usage.get(question_index)
        if usage is not None:
            usage.messages.clear()

    def use(self, kind: PowerUpKind, context: PowerUpContext) -> PowerUpEffect | None:
        """Apply ``kind`` to the current question, or return None when it cannot be used."""
        if context.finalizing:
            return None
        usage = self.usage_for(context.question_index)
        if kind in usage.used or self._inventory.count(kind) <= 0:
            return None

        effect = self._build_effect(kind, context)
        if effect is None:
            logger.debug("Power-up %s not applicable to question %s", kind.value, context.question.id)
            return None

        self._inventory.consume(kind)
        usage.used.add(kind)
        usage.eliminated_options.update(effect.eliminated_options)
        if effect.message is not None:
            usage.messages[kind] = effect.message
        if self._on_used is not None:
            self._on_used(kind)
        return effect

    def _build_effect(self, kind: PowerUpKind, context: PowerUpContext) -> PowerUpEffect | None:
        question = context.question
        is_code_question = question.kind in (QuestionKind.BLOCK, QuestionKind.COMPILER)
        match kind:
            case PowerUpKind.ELIMINATE_TWO:
                return self._eliminate_two(question)
            case PowerUpKind.TIME_EXTEND:
                if context.unlimited_time:
                    return None
                return PowerUpEffect(kind=kind, time_bonus_seconds=TIME_EXTENSION_BONUS_SECONDS)
            case PowerUpKind.REVEAL_HINT:
                message = _reveal_hint(question, context.option_order)
                return None if message is None else PowerUpEffect(kind=kind, message=message)
            case PowerUpKind.SHOW_STRUCTURE:
                if not is_code_question:
                    return None
                message = _structure_template(question)
                return None if message is None else PowerUpEffect(kind=kind, message=message)
            case PowerUpKind.SHOW_DEBUG_TIPS:
                if not is_code_question:
                    return None
                tips = BLOCK_DEBUG_TIPS if question.kind is QuestionKind.BLOCK else CODE_DEBUG_TIPS
                return PowerUpEffect(kind=kind, message="\n".join(f"- {tip}" for tip in tips))
            case PowerUpKind.SHOW_BLOCK_CATEGORIES:
                if question.kind is not QuestionKind.BLOCK:
                    return None
                return PowerUpEffect(kind=kind, message=_block_categories(question.reference_xml or ""))
            case _:
                assert_never(kind)

    def _eliminate_two(self, question: Question) -> PowerUpEffect | None:
        if question.kind is QuestionKind.TEXT or question.correct_option_index is None:
            return None
        incorrect = [
            index for index in range(len(question.options)) if index != question.correct_option_index
        ]
        if len(incorrect) < 2:
            return None
        eliminated = self._rng.sample(incorrect, 2)
        return PowerUpEffect(kind=PowerUpKind.ELIMINATE_TWO, eliminated_options=frozenset(eliminated))


def _reveal_hint(question: Question, option_order: list[int]) -> str | None:
    match question.kind:
        case QuestionKind.MULTIPLE_CHOICE:
            if question.correct_option_index is None:
                return None
            order = option_order or list(range(len(question.options)))
            display_index = order.index(question.correct_option_index)
            return REVEAL_HINT_OPTION_TEMPLATE.format(letter=chr(ord("A") + display_index))
        case QuestionKind.BLOCK | QuestionKind.COMPILER:
            return REVEAL_HINT_FLOW_TEXT
        case QuestionKind.TEXT:
            return None
        case _:
            assert_never(question.kind)


def _structure_template(question: Question) -> str | None:
    if question.kind is QuestionKind.BLOCK:
        return BLOCK_STRUCTURE_TEXT
    language = question.language or DEFAULT_COMPILER_LANGUAGE
    return CODE_STRUCTURE_TEMPLATES.get(language.lower())


def _block_categories(reference_xml: str) -> str:
    categories = [label for prefix, label in BLOCK_CATEGORY_PREFIXES if prefix in reference_xml]
    if not categories:
        return BLOCK_CATEGORY_FALLBACK_TEXT
    return f"You'll need blocks from: {', '.join(categories)}"
