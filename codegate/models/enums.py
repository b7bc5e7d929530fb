"""Generation Enums - Phases, artifact kinds and hint modes."""

from enum import Enum


class GenerationPhase(str, Enum):
    """Phases of a generation session."""

    INITIAL = "initial"  # Waiting for the first request
    PLANNING = "planning"  # Plan proposed, no code yet
    CODING = "coding"  # Artifact generated, quiz not started
    UNLOCKING = "unlocking"  # Quiz in progress
    UNLOCKED = "unlocked"  # Artifact fully unlocked, copy allowed


class ArtifactKind(str, Enum):
    """Kinds of generated artifacts."""

    CODE = "code"
    COMPONENT = "component"
    CONFIG = "config"


class HintMode(str, Enum):
    """When the hint of a pending quiz becomes visible."""

    IMMEDIATE = "immediate"  # Shown together with the quiz
    AFTER_MISS = "after_miss"  # Shown after a wrong answer
    NONE = "none"  # Never shown


class QuizStatus(str, Enum):
    """Status of a quiz stored by the quiz API."""

    PENDING = "pending"
    ANSWERED = "answered"
    SKIPPED = "skipped"
