"""Generation Engines - Quiz extraction and unlock progress."""

from .complexity import ComplexityReport, estimate_question_count, score_complexity
from .extraction import (
    ExtractionContext,
    NeedMoreData,
    NotFound,
    Parsed,
    QuizPipeline,
)
from .fallback import synthesize_quiz
from .heuristics import FALLBACK_QUESTION, extract_multiple_quizzes, extract_quiz_options
from .markers import parse_artifacts, parse_quiz_marker, render_visible_text
from .shuffler import ShuffledOptions, shuffle_options, shuffle_quiz
from .state_machine import AnswerOutcome, GenerationStateMachine

__all__ = [
    "ComplexityReport",
    "estimate_question_count",
    "score_complexity",
    "ExtractionContext",
    "NeedMoreData",
    "NotFound",
    "Parsed",
    "QuizPipeline",
    "synthesize_quiz",
    "FALLBACK_QUESTION",
    "extract_multiple_quizzes",
    "extract_quiz_options",
    "parse_artifacts",
    "parse_quiz_marker",
    "render_visible_text",
    "ShuffledOptions",
    "shuffle_options",
    "shuffle_quiz",
    "AnswerOutcome",
    "GenerationStateMachine",
]
