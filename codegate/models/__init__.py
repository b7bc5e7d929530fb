"""Generation Models - Enums, Schemas and State."""

from .enums import ArtifactKind, GenerationPhase, HintMode, QuizStatus
from .schemas import (
    AnswerQuizResponse,
    Artifact,
    ArtifactProgress,
    GenerateQuizzesResponse,
    Quiz,
    QuizHistoryItem,
    QuizListResponse,
    QuizOption,
    QuizRecord,
    WireQuiz,
    level_from_wire,
    level_to_wire,
    normalize_label,
)
from .state import GenerationState

__all__ = [
    # Enums
    "ArtifactKind",
    "GenerationPhase",
    "HintMode",
    "QuizStatus",
    # Schemas
    "Artifact",
    "ArtifactProgress",
    "Quiz",
    "QuizHistoryItem",
    "QuizOption",
    "WireQuiz",
    "QuizRecord",
    "QuizListResponse",
    "GenerateQuizzesResponse",
    "AnswerQuizResponse",
    # Level seam
    "level_from_wire",
    "level_to_wire",
    "normalize_label",
    # State
    "GenerationState",
]
