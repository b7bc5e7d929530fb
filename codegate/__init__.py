"""codegate - Unlock generated code by understanding it.

Architecture:
- models/: Enums, Pydantic schemas, GenerationState
- engine/: Marker parser, heuristics, complexity, fallback, shuffler, state machine
- storage/: Snapshot stores, SessionReconciler, QuizApiClient
- prompts/: Prompt templates
- session.py: Streaming session orchestration
- config.py: Environment settings and gate policy
"""

from .config import GateConfig, GatePolicy, get_config, get_gate_policy
from .engine import (
    AnswerOutcome,
    GenerationStateMachine,
    QuizPipeline,
    estimate_question_count,
    parse_quiz_marker,
    shuffle_options,
    synthesize_quiz,
)
from .models import (
    Artifact,
    ArtifactProgress,
    GenerationPhase,
    GenerationState,
    Quiz,
    QuizOption,
    WireQuiz,
)
from .session import GenerationSession
from .storage import (
    HttpSnapshotStore,
    KVSnapshotStore,
    QuizApiClient,
    QuizApiError,
    SessionReconciler,
)

__version__ = "0.1.0"

__all__ = [
    # Config
    "GateConfig",
    "GatePolicy",
    "get_config",
    "get_gate_policy",
    # Models
    "Artifact",
    "ArtifactProgress",
    "GenerationPhase",
    "GenerationState",
    "Quiz",
    "QuizOption",
    "WireQuiz",
    # Engines
    "AnswerOutcome",
    "GenerationStateMachine",
    "QuizPipeline",
    "estimate_question_count",
    "parse_quiz_marker",
    "shuffle_options",
    "synthesize_quiz",
    # Storage
    "HttpSnapshotStore",
    "KVSnapshotStore",
    "QuizApiClient",
    "QuizApiError",
    "SessionReconciler",
    # Session
    "GenerationSession",
]
