"""Generation Session - Feeds a streaming model response through the pipeline.

Typical use, once per model response:

    session.start_response()
    async for chunk in stream:
        text += chunk
        visible = session.on_stream_text(text)
    session.on_stream_complete(text)
"""

from __future__ import annotations

import logging

from .engine.extraction import (
    ExtractionContext,
    ExtractionResult,
    NotFound,
    Parsed,
    QuizPipeline,
)
from .engine.markers import extract_code_blocks, parse_artifacts, render_visible_text
from .engine.state_machine import AnswerOutcome, GenerationStateMachine
from .models.schemas import Artifact, Quiz
from .storage.reconciler import SessionReconciler

logger = logging.getLogger(__name__)


class GenerationSession:
    """Connects streamed text, the quiz pipeline and the state machine.

    When a reconciler is given, artifacts and quizzes go through it so that
    nothing is fabricated before the persisted snapshot is merged.
    """

    def __init__(
        self,
        machine: GenerationStateMachine,
        pipeline: QuizPipeline | None = None,
        reconciler: SessionReconciler | None = None,
    ):
        self.machine = machine
        self.pipeline = pipeline or QuizPipeline()
        self.reconciler = reconciler
        self._seen_artifacts: dict[str, str] = {}
        self._quiz_offered = False

    def start_response(self) -> None:
        """Forget what was seen in the previous response."""
        self._seen_artifacts = {}
        self._quiz_offered = False

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _add_artifact(self, artifact: Artifact) -> None:
        if self._seen_artifacts.get(artifact.id) == artifact.content:
            return
        self._seen_artifacts[artifact.id] = artifact.content
        if self.reconciler is not None:
            self.reconciler.add_artifact(artifact)
        else:
            self.machine.add_or_update_artifact(artifact)

    def _offer(self, quiz: Quiz) -> bool:
        self._quiz_offered = True
        if self.reconciler is not None:
            return self.reconciler.offer_quiz(quiz)
        return self.machine.set_current_quiz(quiz)

    def _context(self) -> ExtractionContext:
        state = self.machine.state
        return ExtractionContext(
            level=state.unlock_level,
            artifact=state.active_artifact,
            total_questions=state.total_questions or None,
        )

    def _needs_quiz(self) -> bool:
        return (
            not self._quiz_offered
            and self.machine.state.active_artifact is not None
            and self.machine.current_quiz is None
            and not self.machine.can_copy_code
        )

    # -------------------------------------------------------------------------
    # Stream events
    # -------------------------------------------------------------------------

    def on_stream_text(self, accumulated: str) -> str:
        """Handle the text streamed so far; returns the text to display."""
        for artifact in parse_artifacts(accumulated).artifacts:
            self._add_artifact(artifact)

        if self._needs_quiz():
            result = self.pipeline.on_stream_chunk(accumulated, self._context())
            if isinstance(result, Parsed):
                self._offer(result.quiz_for_level(self.machine.state.unlock_level))

        return self.display_text(accumulated)

    def on_stream_complete(self, text: str) -> ExtractionResult:
        """Handle the complete response, falling back to heuristics or synthesis."""
        artifacts = parse_artifacts(text).artifacts
        if not artifacts and self.machine.state.active_artifact is None:
            artifacts = extract_code_blocks(text)
        for artifact in artifacts:
            self._add_artifact(artifact)

        if not self._needs_quiz():
            self.start_response()
            return NotFound()

        result = self.pipeline.on_stream_complete(text, self._context())
        if isinstance(result, Parsed):
            logger.info(f"Quiz recovered by '{result.source}' for level {self.machine.state.unlock_level}")
            self._offer(result.quiz_for_level(self.machine.state.unlock_level))
        else:
            logger.debug("No quiz recovered from the response")

        self.start_response()
        return result

    @staticmethod
    def display_text(text: str) -> str:
        """Visible text: markers removed, incomplete markers cut, artifacts as placeholders."""
        return render_visible_text(text)

    def answer(self, answer: str, message_index: int | None = None) -> AnswerOutcome | None:
        return self.machine.answer_quiz(answer, message_index)
