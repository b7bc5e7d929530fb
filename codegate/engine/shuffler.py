"""Option Shuffler - Randomize option order so "A" is not always correct."""

from __future__ import annotations

import random
from dataclasses import dataclass

from ..models.schemas import Quiz, QuizOption, normalize_label


@dataclass(frozen=True)
class ShuffledOptions:
    options: tuple[QuizOption, ...]
    correct_label: str


def shuffle_options(
    options: tuple[QuizOption, ...] | list[QuizOption],
    correct_label: str,
    rng: random.Random | None = None,
) -> ShuffledOptions:
    """Permute options uniformly and relabel them A, B, C, ...

    The correct option is tracked by its original position, so explanations
    stay attached to the option they describe, even when texts repeat. Zero or one option is returned unchanged.

    Args:
        options: Options in their original order
        correct_label: Label of the correct option before shuffling
        rng: Random source (a seeded ``random.Random`` in tests)
    """
    options = tuple(options)
    if len(options) <= 1:
        return ShuffledOptions(options=options, correct_label=correct_label)

    correct_label = normalize_label(correct_label)
    correct_index = next(
        (i for i, option in enumerate(options) if normalize_label(option.label) == correct_label),
        None,
    )

    # Permute positions so duplicate texts cannot be confused
    order = list(range(len(options)))
    (rng or random).shuffle(order)

    relabeled = tuple(
        options[original].model_copy(update={"label": chr(ord("A") + index)})
        for index, original in enumerate(order)
    )
    if correct_index is None:
        new_correct = correct_label
    else:
        new_correct = relabeled[order.index(correct_index)].label
    return ShuffledOptions(options=relabeled, correct_label=new_correct)


def shuffle_quiz(quiz: Quiz, rng: random.Random | None = None) -> Quiz:
    """Return ``quiz`` with shuffled, relabeled options."""
    result = shuffle_options(quiz.options, quiz.correct_label, rng)
    return quiz.model_copy(
        update={"options": result.options, "correct_label": result.correct_label}
    )
