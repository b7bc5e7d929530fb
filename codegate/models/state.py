"""Generation State - Snapshot of a generation session."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from pydantic import ValidationError

from .enums import GenerationPhase
from .schemas import Artifact, ArtifactProgress, QuizHistoryItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationState:
    """Complete, immutable state of a generation session.

    Every transition returns a new instance; the artifact and progress maps
    are replaced as a whole, never mutated in place.

    Attributes:
        phase: Current phase of the active artifact
        active_artifact_id: Artifact currently shown (None before the first one)
        artifacts: Artifact ID -> Artifact
        artifact_progress: Artifact ID -> ArtifactProgress
        unlock_level: Mirror of the active artifact's unlock level
        total_questions: Mirror of the active artifact's question count
        quiz_history: Every answer event of the session, in order
        plan: Plan steps proposed before coding
        hint_visible: Whether the hint of the pending quiz is shown
    """

    phase: GenerationPhase = GenerationPhase.INITIAL
    active_artifact_id: str | None = None
    artifacts: Mapping[str, Artifact] = field(default_factory=dict)
    artifact_progress: Mapping[str, ArtifactProgress] = field(default_factory=dict)
    unlock_level: int = 0
    total_questions: int = 0
    quiz_history: tuple[QuizHistoryItem, ...] = ()
    plan: tuple[str, ...] = ()
    hint_visible: bool = False

    @property
    def active_artifact(self) -> Artifact | None:
        if self.active_artifact_id is None:
            return None
        return self.artifacts.get(self.active_artifact_id)

    @property
    def active_progress(self) -> ArtifactProgress | None:
        if self.active_artifact_id is None:
            return None
        return self.artifact_progress.get(self.active_artifact_id)

    def with_progress(self, artifact_id: str, progress: ArtifactProgress) -> GenerationState:
        """Copy-on-write replacement of a single progress entry."""
        return replace(
            self,
            artifact_progress={**self.artifact_progress, artifact_id: progress},
        )

    def with_artifact(self, artifact: Artifact) -> GenerationState:
        """Copy-on-write replacement of a single artifact entry."""
        return replace(self, artifacts={**self.artifacts, artifact.id: artifact})

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persistence snapshot (camelCase, JSON-compatible)."""
        return {
            "phase": self.phase.value,
            "unlockLevel": self.unlock_level,
            "totalQuestions": self.total_questions,
            "artifacts": {key: value.to_wire() for key, value in self.artifacts.items()},
            "activeArtifactId": self.active_artifact_id,
            "artifactProgress": {
                key: value.to_wire() for key, value in self.artifact_progress.items()
            },
            "quizHistory": [item.to_wire() for item in self.quiz_history],
            "plan": list(self.plan),
            "hintVisible": self.hint_visible,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GenerationState:
        """Create an instance from a persistence snapshot.

        Invalid artifact or progress entries are skipped (and logged) so that
        one corrupt entry never discards the rest of the snapshot.
        """
        artifacts = {}
        for key, value in (data.get("artifacts") or {}).items():
            try:
                artifacts[key] = Artifact.model_validate(value)
            except ValidationError as e:
                logger.warning(f"Skipping invalid artifact in snapshot: {key} ({e.error_count()} errors)")

        progress = {}
        for key, value in (data.get("artifactProgress") or {}).items():
            try:
                progress[key] = ArtifactProgress.model_validate(value)
            except ValidationError as e:
                logger.warning(f"Skipping invalid progress in snapshot: {key} ({e.error_count()} errors)")

        history = []
        for value in data.get("quizHistory") or []:
            try:
                history.append(QuizHistoryItem.model_validate(value))
            except ValidationError:
                logger.warning("Skipping invalid quiz history item in snapshot")

        phase = data.get("phase") or GenerationPhase.INITIAL.value
        try:
            phase = GenerationPhase(phase)
        except ValueError:
            logger.warning(f"Unknown phase in snapshot: {phase!r}")
            phase = GenerationPhase.INITIAL

        return cls(
            phase=phase,
            active_artifact_id=data.get("activeArtifactId"),
            artifacts=artifacts,
            artifact_progress=progress,
            unlock_level=data.get("unlockLevel") or 0,
            total_questions=data.get("totalQuestions") or 0,
            quiz_history=tuple(history),
            plan=tuple(data.get("plan") or ()),
            hint_visible=bool(data.get("hintVisible", False)),
        )
