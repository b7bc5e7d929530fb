"""Extraction chain - Ordered strategies that turn model text into quizzes.

Each strategy returns one of three results:

- ``Parsed``: quizzes were recovered, stop here
- ``NeedMoreData``: a quiz is still streaming in, stop and wait
- ``NotFound``: nothing usable, try the next strategy

While streaming only the marker strategy runs; once the response is
complete the heuristic and fallback strategies join the chain.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Union

from pydantic import ValidationError

from ..models.schemas import Artifact, Quiz
from .fallback import synthesize_quiz
from .heuristics import extract_multiple_quizzes
from .markers import (
    MarkerStatus,
    find_quiz_marker,
    iter_quiz_markers,
    parse_artifacts,
    remove_quiz_markers,
    strip_incomplete_markers,
)
from .shuffler import shuffle_quiz

logger = logging.getLogger(__name__)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class Parsed:
    """Quizzes recovered by ``source`` ("marker", "heuristic" or "fallback")."""

    quizzes: tuple[Quiz, ...]
    source: str
    content: str = ""

    @property
    def quiz(self) -> Quiz:
        return self.quizzes[0]

    def quiz_for_level(self, level: int) -> Quiz:
        """Quiz for a 0-based level, or the first one when none matches."""
        for quiz in self.quizzes:
            if quiz.level == level:
                return quiz
        return self.quizzes[0]


@dataclass(frozen=True)
class NeedMoreData:
    source: str


@dataclass(frozen=True)
class NotFound:
    pass


ExtractionResult = Union[Parsed, NeedMoreData, NotFound]


@dataclass(frozen=True)
class ExtractionContext:
    """What the chain knows about the quiz being looked for.

    Attributes:
        level: 0-based level of the next quiz
        artifact: Active artifact (required by the fallback strategy)
        total_questions: Current question count of the artifact
    """

    level: int = 0
    artifact: Artifact | None = None
    total_questions: int | None = None


# =============================================================================
# STRATEGIES
# =============================================================================


class ExtractionStrategy(ABC):
    name: str = "strategy"

    @abstractmethod
    def extract(self, text: str, context: ExtractionContext) -> ExtractionResult:
        """Try to recover quizzes from ``text``."""


class MarkerStrategy(ExtractionStrategy):
    """Structured ``<!--QUIZ:...-->`` markers."""

    name = "marker"

    def extract(self, text: str, context: ExtractionContext) -> ExtractionResult:
        quizzes = []
        for wire in iter_quiz_markers(text):
            try:
                quizzes.append(wire.to_quiz())
            except ValidationError:
                continue

        if quizzes:
            return Parsed(tuple(quizzes), self.name, remove_quiz_markers(text))

        if self._has_incomplete_marker(text):
            return NeedMoreData(self.name)
        return NotFound()

    @staticmethod
    def _has_incomplete_marker(text: str) -> bool:
        position = 0
        while True:
            scan = find_quiz_marker(text, position)
            if scan.status is MarkerStatus.ABSENT:
                return False
            if scan.status is MarkerStatus.INCOMPLETE:
                return True
            position = scan.end


class HeuristicStrategy(ExtractionStrategy):
    """Options written as plain text ("A) ...", "(B) ...")."""

    name = "heuristic"

    def extract(self, text: str, context: ExtractionContext) -> ExtractionResult:
        narrative = strip_incomplete_markers(text)
        narrative = remove_quiz_markers(narrative)
        narrative = parse_artifacts(narrative).content_without_artifacts

        extraction = extract_multiple_quizzes(narrative)
        if extraction is None:
            return NotFound()

        quizzes = []
        for offset, extracted in enumerate(extraction.quizzes):
            try:
                quizzes.append(extracted.to_quiz(level=context.level + offset))
            except ValidationError:
                continue

        if not quizzes:
            return NotFound()
        return Parsed(tuple(quizzes), self.name, extraction.content_without_quizzes)


class FallbackStrategy(ExtractionStrategy):
    """Quiz synthesized from the active artifact's code."""

    name = "fallback"

    def extract(self, text: str, context: ExtractionContext) -> ExtractionResult:
        if context.artifact is None:
            return NotFound()
        quiz = synthesize_quiz(context.artifact, context.level, context.total_questions)
        return Parsed((quiz,), self.name, remove_quiz_markers(strip_incomplete_markers(text)))


def run_chain(
    strategies: list[ExtractionStrategy],
    text: str,
    context: ExtractionContext,
    final: bool = False,
) -> ExtractionResult:
    """Run strategies in order until one returns a definite result.

    With ``final=True`` the response is complete, so ``NeedMoreData`` means
    a marker was never closed and the chain falls through.
    """
    for strategy in strategies:
        result = strategy.extract(text, context)
        if isinstance(result, Parsed):
            logger.debug(f"Quiz extracted by '{strategy.name}' ({len(result.quizzes)} quizzes)")
            return result
        if isinstance(result, NeedMoreData):
            if not final:
                return result
            logger.debug(f"Unterminated quiz marker at end of response ('{strategy.name}')")
    return NotFound()


# =============================================================================
# PIPELINE
# =============================================================================


@dataclass
class QuizPipeline:
    """Extraction chain plus option shuffling.

    Attributes:
        streaming_strategies: Strategies run on every streamed chunk
        final_strategies: Strategies run once the response is complete
        rng: Random source for the shuffler (seed it in tests)
    """

    streaming_strategies: list[ExtractionStrategy] = field(
        default_factory=lambda: [MarkerStrategy()]
    )
    final_strategies: list[ExtractionStrategy] = field(
        default_factory=lambda: [MarkerStrategy(), HeuristicStrategy(), FallbackStrategy()]
    )
    rng: random.Random | None = None

    def _shuffled(self, result: ExtractionResult) -> ExtractionResult:
        if not isinstance(result, Parsed):
            return result
        quizzes = tuple(shuffle_quiz(quiz, self.rng) for quiz in result.quizzes)
        return Parsed(quizzes, result.source, result.content)

    def on_stream_chunk(
        self, accumulated: str, context: ExtractionContext | None = None
    ) -> ExtractionResult:
        """Look for a complete marker in the text streamed so far."""
        return self._shuffled(
            run_chain(self.streaming_strategies, accumulated, context or ExtractionContext())
        )

    def on_stream_complete(
        self, text: str, context: ExtractionContext | None = None
    ) -> ExtractionResult:
        """Run the full chain on the complete response."""
        return self._shuffled(
            run_chain(self.final_strategies, text, context or ExtractionContext(), final=True)
        )
