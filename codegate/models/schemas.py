"""Generation Schemas - Pydantic models for artifacts, quizzes and progress."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .enums import ArtifactKind, QuizStatus

_FULL_WIDTH_OFFSET = 0xFEE0


# =============================================================================
# LEVEL NUMBERING
# =============================================================================
# Wire levels (quiz markers, quiz API) are 1-based, internal levels are 0-based.
# These two functions are the only place where the offset is applied.


def level_from_wire(level: int) -> int:
    """Convert a 1-based wire level to a 0-based internal level."""
    return level - 1


def level_to_wire(level: int) -> int:
    """Convert a 0-based internal level to a 1-based wire level."""
    return level + 1


def normalize_label(label: str) -> str:
    """Normalize an option label (full-width letters, case, whitespace).

    Example:
        >>> normalize_label("Ｂ")
        'B'
        >>> normalize_label(" c ")
        'C'
    """
    label = label.strip()
    return "".join(
        chr(ord(ch) - _FULL_WIDTH_OFFSET) if "Ａ" <= ch <= "Ｚ" or "ａ" <= ch <= "ｚ" else ch
        for ch in label
    ).upper()


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Base model: immutable, camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict:
        """Serialize with camelCase keys (JSON-compatible)."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# QUIZ
# =============================================================================


class QuizOption(CamelModel):
    """Multiple-choice option."""

    label: str = Field(..., description="Option label (A, B, C, ...)")
    text: str = Field(..., description="Option text")
    explanation: str | None = Field(default=None, description="Why this option is right or wrong")


class Quiz(CamelModel):
    """Internal quiz, tied to an artifact and a 0-based level.

    Invariants (validated on construction):
        - at least two options
        - ``correct_label`` references one of the option labels
    """

    id: str | None = Field(default=None, description="Quiz ID when known to the quiz API")
    level: int = Field(default=0, ge=0, description="0-based level")
    question: str = Field(..., min_length=1, description="Question text")
    options: tuple[QuizOption, ...] = Field(..., description="Ordered options")
    correct_label: str = Field(..., description="Label of the correct option")
    hint: str | None = None
    code_snippet: str | None = None
    code_language: str | None = None
    total_questions: int | None = Field(
        default=None, ge=0, description="Question count stated by the model, if any"
    )

    @model_validator(mode="after")
    def _check_options(self) -> Quiz:
        if len(self.options) < 2:
            raise ValueError("a quiz needs at least two options")
        if self.correct_label not in {option.label for option in self.options}:
            raise ValueError(f"correct label {self.correct_label!r} is not an option label")
        return self

    def option_for(self, label: str) -> QuizOption | None:
        """Return the option with the given label, if any."""
        label = normalize_label(label)
        for option in self.options:
            if option.label == label:
                return option
        return None

    @property
    def correct_option(self) -> QuizOption:
        return next(option for option in self.options if option.label == self.correct_label)


class WireQuiz(CamelModel):
    """Quiz as carried by the in-band marker (1-based level)."""

    level: int = Field(default=1, ge=1, description="1-based level")
    total_questions: int | None = Field(default=None, ge=0)
    question: str = ""
    options: tuple[QuizOption, ...] = ()
    correct_label: str = "A"
    hint: str | None = None
    code_snippet: str | None = None
    code_language: str | None = None

    def to_quiz(self) -> Quiz:
        """Convert to the internal form (raises ``ValidationError`` if invalid)."""
        return Quiz(
            level=level_from_wire(self.level),
            question=self.question.strip(),
            options=tuple(
                option.model_copy(update={"label": normalize_label(option.label)})
                for option in self.options
            ),
            correct_label=normalize_label(self.correct_label),
            hint=self.hint,
            code_snippet=self.code_snippet,
            code_language=self.code_language,
            total_questions=self.total_questions,
        )

    @classmethod
    def from_quiz(cls, quiz: Quiz) -> WireQuiz:
        """Convert an internal quiz back to the wire form."""
        return cls(
            level=level_to_wire(quiz.level),
            total_questions=quiz.total_questions,
            question=quiz.question,
            options=quiz.options,
            correct_label=quiz.correct_label,
            hint=quiz.hint,
            code_snippet=quiz.code_snippet,
            code_language=quiz.code_language,
        )


class QuizHistoryItem(CamelModel):
    """Immutable record of one answer event."""

    level: int = Field(..., ge=0, description="0-based level of the answered quiz")
    question: str
    user_answer: str
    is_correct: bool
    message_index: int | None = Field(default=None, description="Message position for display")
    completed_quiz: Quiz | None = Field(
        default=None, description="Full copy of the quiz, only for correct answers"
    )

    @model_validator(mode="after")
    def _completed_only_when_correct(self) -> QuizHistoryItem:
        if self.completed_quiz is not None and not self.is_correct:
            raise ValueError("completed_quiz is only kept for correct answers")
        return self


# =============================================================================
# ARTIFACT & PROGRESS
# =============================================================================


class Artifact(CamelModel):
    """Generated content unit. Editing increments ``version``."""

    id: str
    kind: ArtifactKind = Field(default=ArtifactKind.CODE, alias="type")
    title: str
    content: str = ""
    language: str = "text"
    version: int = Field(default=1, ge=1)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    def revise(self, content: str, title: str | None = None) -> Artifact:
        """Return the next version of this artifact."""
        return self.model_copy(
            update={
                "content": content,
                "title": title or self.title,
                "version": self.version + 1,
                "updated_at": utc_now(),
            }
        )


class ArtifactProgress(CamelModel):
    """Unlock ledger of one artifact.

    Invariants:
        - ``unlock_level <= total_questions``
        - no pending quiz once ``unlock_level >= total_questions``
    """

    unlock_level: int = Field(default=0, ge=0)
    total_questions: int = Field(default=0, ge=0)
    current_quiz: Quiz | None = None
    quiz_history: tuple[QuizHistoryItem, ...] = ()

    @model_validator(mode="after")
    def _check_levels(self) -> ArtifactProgress:
        if self.unlock_level > self.total_questions:
            raise ValueError(
                f"unlock_level {self.unlock_level} exceeds total_questions {self.total_questions}"
            )
        if self.current_quiz is not None and self.unlock_level >= self.total_questions:
            raise ValueError("an unlocked artifact cannot hold a pending quiz")
        return self

    @property
    def is_unlocked(self) -> bool:
        return self.unlock_level >= self.total_questions


# =============================================================================
# QUIZ API (external collaborator)
# =============================================================================


class QuizRecord(CamelModel):
    """Quiz as returned by the per-artifact quiz API (1-based level)."""

    id: str
    artifact_id: str
    level: int = Field(..., ge=1)
    question: str
    options: tuple[QuizOption, ...]
    correct_label: str
    hint: str | None = None
    code_snippet: str | None = None
    code_language: str | None = None
    status: QuizStatus = QuizStatus.PENDING
    user_answer: str | None = None
    is_correct: bool | None = None
    answered_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_quiz(self, total_questions: int | None = None) -> Quiz:
        return Quiz(
            id=self.id,
            level=level_from_wire(self.level),
            question=self.question,
            options=tuple(
                option.model_copy(update={"label": normalize_label(option.label)})
                for option in self.options
            ),
            correct_label=normalize_label(self.correct_label),
            hint=self.hint,
            code_snippet=self.code_snippet,
            code_language=self.code_language,
            total_questions=total_questions,
        )


class QuizListResponse(CamelModel):
    """Response of ``GET /artifacts/{id}/quizzes``."""

    items: tuple[QuizRecord, ...] = ()
    total: int = 0
    current_level: int = Field(default=1, ge=1, description="1-based level of the next quiz")
    is_unlocked: bool = False
    next_quiz_id: str | None = None


class GenerateQuizzesResponse(QuizListResponse):
    """Response of ``POST /artifacts/{id}/quizzes`` (idempotent)."""

    generated: bool = False
    message: str | None = None


class AnswerQuizResponse(CamelModel):
    """Response of ``PATCH /artifacts/{id}/quizzes/{quiz_id}``."""

    quiz: QuizRecord
    is_correct: bool
    current_level: int = Field(..., ge=1)
    total_questions: int = Field(..., ge=0)
    is_unlocked: bool
    next_quiz: QuizRecord | None = None
