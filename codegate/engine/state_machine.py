"""Progress State Machine - Per-artifact unlock progress.

Phases: initial -> planning -> coding -> unlocking -> unlocked

The transitions are pure functions ``(GenerationState, event) -> GenerationState``.
``GenerationStateMachine`` holds the current snapshot, applies transitions
one at a time and notifies listeners (e.g. the reconciler) of every change.

Guards never raise: setting a quiz on an unlocked artifact or answering
without a pending quiz are expected races between streaming and the user,
and are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from ..config import GateConfig, GatePolicy, get_config, get_gate_policy
from ..models.enums import GenerationPhase, HintMode, QuizStatus
from ..models.schemas import (
    AnswerQuizResponse,
    Artifact,
    ArtifactProgress,
    Quiz,
    QuizHistoryItem,
    QuizListResponse,
    QuizRecord,
    level_from_wire,
    normalize_label,
)
from ..models.state import GenerationState
from .complexity import estimate_question_count
from .markers import merge_artifacts

logger = logging.getLogger(__name__)

StateListener = Callable[[GenerationState], None]


@dataclass(frozen=True)
class AnswerOutcome:
    """Result of answering the pending quiz."""

    is_correct: bool
    correct_label: str
    unlock_level: int
    total_questions: int
    is_unlocked: bool
    explanation: str | None = None


# =============================================================================
# HELPERS
# =============================================================================


def phase_for_progress(progress: ArtifactProgress | None) -> GenerationPhase:
    """Phase implied by an artifact's progress."""
    if progress is None:
        return GenerationPhase.CODING
    if progress.is_unlocked:
        return GenerationPhase.UNLOCKED
    if progress.current_quiz is not None or progress.unlock_level > 0:
        return GenerationPhase.UNLOCKING
    return GenerationPhase.CODING


def sync_mirror(state: GenerationState) -> GenerationState:
    """Copy the active artifact's level and total into the top-level fields."""
    progress = state.active_progress
    if progress is None:
        return replace(state, unlock_level=0, total_questions=0)
    return replace(
        state,
        unlock_level=progress.unlock_level,
        total_questions=progress.total_questions,
    )


def default_progress(artifact: Artifact, total_questions: int | None = None) -> ArtifactProgress:
    """Fresh progress; the total defaults to the complexity estimate."""
    if total_questions is None:
        total_questions = estimate_question_count(artifact.content)
    return ArtifactProgress(unlock_level=0, total_questions=total_questions)


def _convert_record(record: QuizRecord, total_questions: int | None) -> Quiz | None:
    try:
        return record.to_quiz(total_questions)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed quiz record {record.id}: {e}")
        return None


def _history_item(
    record: QuizRecord, total_questions: int | None = None
) -> QuizHistoryItem | None:
    quiz = _convert_record(record, total_questions)
    if quiz is None:
        return None
    return QuizHistoryItem(
        level=quiz.level,
        question=record.question,
        user_answer=normalize_label(record.user_answer or ""),
        is_correct=bool(record.is_correct),
        completed_quiz=quiz if record.is_correct else None,
    )


def _remote_unlock_level(current_level: int, total: int, is_unlocked: bool) -> int:
    # currentLevel is the 1-based level of the next quiz to answer
    if is_unlocked:
        return total
    return max(0, min(level_from_wire(current_level), total))


# =============================================================================
# TRANSITIONS
# =============================================================================


def set_plan(state: GenerationState, steps: Iterable[str]) -> GenerationState:
    state = replace(state, plan=tuple(steps))
    if state.phase is GenerationPhase.INITIAL:
        state = replace(state, phase=GenerationPhase.PLANNING)
    return state


def set_phase(state: GenerationState, phase: GenerationPhase) -> GenerationState:
    progress = state.active_progress
    if progress is not None and progress.is_unlocked and phase is not GenerationPhase.UNLOCKED:
        logger.debug(f"Ignoring phase {phase.value}: active artifact is unlocked")
        return state
    return replace(state, phase=phase)


def add_or_update_artifact(
    state: GenerationState,
    artifact: Artifact,
    total_questions: int | None = None,
    create_progress: bool = True,
) -> GenerationState:
    """Add a new artifact or revise a known one, and make it active.

    Progress is created only when ``create_progress`` is set and the artifact
    has none yet; existing progress is never reset by a revision.
    """
    state = replace(
        state,
        artifacts=merge_artifacts(state.artifacts, [artifact]),
        active_artifact_id=artifact.id,
    )

    if create_progress and artifact.id not in state.artifact_progress:
        state = state.with_progress(artifact.id, default_progress(artifact, total_questions))

    return sync_mirror(replace(state, phase=phase_for_progress(state.active_progress)))


def set_current_quiz(
    state: GenerationState,
    quiz: Quiz,
    gate_disabled: bool = False,
    hint_mode: HintMode = HintMode.AFTER_MISS,
) -> GenerationState:
    """Make ``quiz`` the pending quiz of the active artifact.

    The quiz is stored at the artifact's current level. A question count
    stated by the model replaces the stored total, but never drops below the
    number of quizzes already passed.
    """
    artifact_id = state.active_artifact_id
    progress = state.active_progress
    if artifact_id is None or progress is None:
        logger.debug("Ignoring quiz: no active artifact progress")
        return state
    if gate_disabled or progress.total_questions == 0 or progress.is_unlocked:
        logger.debug(f"Ignoring quiz for artifact {artifact_id}: no gate or already unlocked")
        return state

    total = progress.total_questions
    if quiz.total_questions and quiz.total_questions != total:
        total = max(quiz.total_questions, progress.unlock_level)
        logger.debug(f"Artifact {artifact_id}: adopting {total} questions from the model")

    if progress.unlock_level >= total:
        progress = progress.model_copy(update={"total_questions": total, "current_quiz": None})
        state = state.with_progress(artifact_id, progress)
        return sync_mirror(replace(state, phase=GenerationPhase.UNLOCKED, hint_visible=False))

    quiz = quiz.model_copy(update={"level": progress.unlock_level, "total_questions": total})
    progress = progress.model_copy(update={"total_questions": total, "current_quiz": quiz})
    state = state.with_progress(artifact_id, progress)
    return sync_mirror(
        replace(
            state,
            phase=GenerationPhase.UNLOCKING,
            hint_visible=hint_mode is HintMode.IMMEDIATE,
        )
    )


def answer_quiz(
    state: GenerationState,
    answer: str,
    message_index: int | None = None,
    hint_mode: HintMode = HintMode.AFTER_MISS,
) -> tuple[GenerationState, AnswerOutcome | None]:
    """Score an answer against the pending quiz of the active artifact."""
    artifact_id = state.active_artifact_id
    progress = state.active_progress
    quiz = progress.current_quiz if progress is not None else None
    if artifact_id is None or progress is None or quiz is None:
        logger.debug("Ignoring answer: no pending quiz")
        return state, None

    label = normalize_label(answer)
    is_correct = label == quiz.correct_label
    selected = quiz.option_for(label)

    item = QuizHistoryItem(
        level=quiz.level,
        question=quiz.question,
        user_answer=label,
        is_correct=is_correct,
        message_index=message_index,
        completed_quiz=quiz if is_correct else None,
    )
    history = progress.quiz_history + (item,)

    if is_correct:
        level = min(progress.unlock_level + 1, progress.total_questions)
        progress = progress.model_copy(
            update={"unlock_level": level, "current_quiz": None, "quiz_history": history}
        )
        phase = GenerationPhase.UNLOCKED if progress.is_unlocked else GenerationPhase.UNLOCKING
        hint_visible = False
    else:
        progress = progress.model_copy(update={"quiz_history": history})
        phase = GenerationPhase.UNLOCKING
        hint_visible = hint_mode is not HintMode.NONE

    state = state.with_progress(artifact_id, progress)
    state = sync_mirror(
        replace(
            state,
            phase=phase,
            hint_visible=hint_visible,
            quiz_history=state.quiz_history + (item,),
        )
    )
    outcome = AnswerOutcome(
        is_correct=is_correct,
        correct_label=quiz.correct_label,
        unlock_level=progress.unlock_level,
        total_questions=progress.total_questions,
        is_unlocked=progress.is_unlocked,
        explanation=selected.explanation if selected is not None else None,
    )
    return state, outcome


def skip_to_unlock(state: GenerationState) -> GenerationState:
    artifact_id = state.active_artifact_id
    progress = state.active_progress
    if artifact_id is None or progress is None:
        logger.debug("Ignoring skip: no active artifact progress")
        return state

    progress = progress.model_copy(
        update={"unlock_level": progress.total_questions, "current_quiz": None}
    )
    state = state.with_progress(artifact_id, progress)
    return sync_mirror(replace(state, phase=GenerationPhase.UNLOCKED, hint_visible=False))


def set_active_artifact(state: GenerationState, artifact_id: str) -> GenerationState:
    if artifact_id not in state.artifacts:
        logger.debug(f"Ignoring switch to unknown artifact {artifact_id}")
        return state
    state = replace(state, active_artifact_id=artifact_id, hint_visible=False)
    return sync_mirror(replace(state, phase=phase_for_progress(state.active_progress)))


def ensure_progress(
    state: GenerationState,
    artifact_ids: Iterable[str] | None = None,
    total_questions: int | None = None,
) -> GenerationState:
    """Create default progress for artifacts that have none."""
    ids = list(artifact_ids) if artifact_ids is not None else list(state.artifacts)
    missing = [
        artifact_id
        for artifact_id in ids
        if artifact_id in state.artifacts and artifact_id not in state.artifact_progress
    ]
    if not missing:
        return state

    progress = dict(state.artifact_progress)
    for artifact_id in missing:
        progress[artifact_id] = default_progress(state.artifacts[artifact_id], total_questions)
    logger.debug(f"Created default progress for {len(missing)} artifacts")

    state = replace(state, artifact_progress=progress)
    if state.active_artifact_id in missing:
        state = replace(state, phase=phase_for_progress(state.active_progress))
    return sync_mirror(state)


def apply_remote_quizzes(
    state: GenerationState, artifact_id: str, response: QuizListResponse
) -> GenerationState:
    """Overwrite an artifact's progress from the quiz API's quiz list."""
    if not response.items and not response.is_unlocked:
        logger.debug(f"No remote quizzes for artifact {artifact_id} yet")
        return state

    total = response.total or len(response.items)
    unlock_level = _remote_unlock_level(response.current_level, total, response.is_unlocked)

    current_quiz = None
    if unlock_level < total:
        pending = [item for item in response.items if item.status is QuizStatus.PENDING]
        record = next((item for item in pending if item.id == response.next_quiz_id), None)
        if record is None:
            record = next(
                (item for item in pending if item.level == response.current_level), None
            )
        if record is not None:
            current_quiz = _convert_record(record, total)

    answered = (
        _history_item(item, total)
        for item in sorted(response.items, key=lambda item: item.level)
        if item.status is QuizStatus.ANSWERED
    )
    history = tuple(item for item in answered if item is not None)
    progress = ArtifactProgress(
        unlock_level=unlock_level,
        total_questions=total,
        current_quiz=current_quiz,
        quiz_history=history,
    )
    state = state.with_progress(artifact_id, progress)
    if state.active_artifact_id == artifact_id:
        state = replace(state, phase=phase_for_progress(progress))
    return sync_mirror(state)


def apply_answer_response(
    state: GenerationState, artifact_id: str, response: AnswerQuizResponse
) -> GenerationState:
    """Overwrite an artifact's progress from the quiz API's answer result."""
    total = response.total_questions
    unlock_level = _remote_unlock_level(response.current_level, total, response.is_unlocked)

    current_quiz = None
    if response.next_quiz is not None and unlock_level < total:
        current_quiz = _convert_record(response.next_quiz, total)

    existing = state.artifact_progress.get(artifact_id)
    item = _history_item(response.quiz, total)
    added = (item,) if item is not None else ()
    history = (existing.quiz_history if existing is not None else ()) + added

    progress = ArtifactProgress(
        unlock_level=unlock_level,
        total_questions=total,
        current_quiz=current_quiz,
        quiz_history=history,
    )
    state = state.with_progress(artifact_id, progress)
    state = replace(state, quiz_history=state.quiz_history + added)
    if state.active_artifact_id == artifact_id:
        state = replace(state, phase=phase_for_progress(progress))
    return sync_mirror(state)


def merge_snapshot(local: GenerationState, incoming: Mapping[str, Any]) -> GenerationState:
    """Merge a persisted snapshot into the local state.

    - artifacts and progress: key by key, the incoming entry wins
    - phase, unlockLevel, totalQuestions, quizHistory, plan: incoming when present
    - active artifact: the local one when it exists, else the incoming one
    - the level mirror follows the active artifact's merged progress
    """
    remote = GenerationState.from_dict(incoming)

    artifacts = {**local.artifacts, **remote.artifacts}
    progress = {**local.artifact_progress, **remote.artifact_progress}

    if local.active_artifact_id in artifacts:
        active_id = local.active_artifact_id
    elif remote.active_artifact_id in artifacts:
        active_id = remote.active_artifact_id
    else:
        active_id = None

    merged = replace(
        local,
        artifacts=artifacts,
        artifact_progress=progress,
        active_artifact_id=active_id,
        phase=remote.phase if "phase" in incoming else local.phase,
        unlock_level=remote.unlock_level if "unlockLevel" in incoming else local.unlock_level,
        total_questions=(
            remote.total_questions if "totalQuestions" in incoming else local.total_questions
        ),
        quiz_history=remote.quiz_history if "quizHistory" in incoming else local.quiz_history,
        plan=remote.plan if "plan" in incoming else local.plan,
    )

    if active_id is not None and active_id != remote.active_artifact_id:
        # The incoming phase describes another artifact
        merged = replace(merged, phase=phase_for_progress(merged.active_progress))
    return sync_mirror(merged)


# =============================================================================
# MACHINE
# =============================================================================


class GenerationStateMachine:
    """Owns the current ``GenerationState`` and applies transitions.

    The "no gate required" override is read from ``GatePolicy`` on every
    derived read, so toggling it affects artifacts that already exist.

    Example:
        >>> machine = GenerationStateMachine(policy=GatePolicy())
        >>> machine.add_or_update_artifact(Artifact(id="a", title="a.py", content="x = 1"))
        >>> machine.phase.value, machine.total_questions
        ('coding', 1)
    """

    def __init__(
        self,
        state: GenerationState | None = None,
        policy: GatePolicy | None = None,
        config: GateConfig | None = None,
    ):
        self._state = state or GenerationState()
        self._policy = policy or get_gate_policy()
        self._config = config or get_config()
        self._listeners: list[StateListener] = []

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def policy(self) -> GatePolicy:
        return self._policy

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, new_state: GenerationState, event: str) -> None:
        if new_state == self._state:
            return
        self._state = new_state
        logger.debug(f"State changed by {event}: phase={new_state.phase.value}")
        for listener in list(self._listeners):
            listener(new_state)

    def snapshot(self) -> dict[str, Any]:
        return self._state.to_dict()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def set_plan(self, steps: Iterable[str]) -> None:
        self._commit(set_plan(self._state, steps), "set_plan")

    def set_phase(self, phase: GenerationPhase) -> None:
        self._commit(set_phase(self._state, phase), "set_phase")

    def add_or_update_artifact(
        self,
        artifact: Artifact,
        total_questions: int | None = None,
        create_progress: bool = True,
    ) -> None:
        if total_questions is None:
            total_questions = self._config.default_total_questions
        self._commit(
            add_or_update_artifact(self._state, artifact, total_questions, create_progress),
            "add_or_update_artifact",
        )

    def set_current_quiz(self, quiz: Quiz) -> bool:
        """Offer a quiz; returns True if it became the pending quiz."""
        new_state = set_current_quiz(
            self._state, quiz, self._policy.gate_disabled, self._config.hint_mode
        )
        self._commit(new_state, "set_current_quiz")
        if self._policy.gate_disabled:
            return False
        progress = new_state.active_progress
        return progress is not None and progress.current_quiz is not None

    def answer_quiz(self, answer: str, message_index: int | None = None) -> AnswerOutcome | None:
        if self._policy.gate_disabled:
            logger.debug("Ignoring answer: gate disabled")
            return None
        new_state, outcome = answer_quiz(
            self._state, answer, message_index, self._config.hint_mode
        )
        self._commit(new_state, "answer_quiz")
        return outcome

    def skip_to_unlock(self) -> None:
        self._commit(skip_to_unlock(self._state), "skip_to_unlock")

    def set_active_artifact(self, artifact_id: str) -> None:
        self._commit(set_active_artifact(self._state, artifact_id), "set_active_artifact")

    def ensure_progress(self, artifact_ids: Iterable[str] | None = None) -> None:
        self._commit(
            ensure_progress(self._state, artifact_ids, self._config.default_total_questions),
            "ensure_progress",
        )

    def apply_remote_quizzes(self, artifact_id: str, response: QuizListResponse) -> None:
        self._commit(
            apply_remote_quizzes(self._state, artifact_id, response), "apply_remote_quizzes"
        )

    def apply_answer_response(self, artifact_id: str, response: AnswerQuizResponse) -> None:
        self._commit(
            apply_answer_response(self._state, artifact_id, response), "apply_answer_response"
        )

    def merge_snapshot(self, incoming: Mapping[str, Any]) -> None:
        self._commit(merge_snapshot(self._state, incoming), "merge_snapshot")

    def reveal_hint(self) -> None:
        if self.current_quiz is None or self._config.hint_mode is HintMode.NONE:
            return
        self._commit(replace(self._state, hint_visible=True), "reveal_hint")

    def reset(self) -> None:
        self._commit(GenerationState(), "reset")

    # -------------------------------------------------------------------------
    # Derived reads
    # -------------------------------------------------------------------------

    @property
    def gate_disabled(self) -> bool:
        return self._policy.gate_disabled

    @property
    def total_questions(self) -> int:
        if self._policy.gate_disabled:
            return 0
        return self._state.total_questions

    @property
    def unlock_level(self) -> int:
        if self._policy.gate_disabled:
            return 0
        return self._state.unlock_level

    @property
    def phase(self) -> GenerationPhase:
        if self._policy.gate_disabled and self._state.active_artifact_id is not None:
            return GenerationPhase.UNLOCKED
        return self._state.phase

    @property
    def current_quiz(self) -> Quiz | None:
        if self._policy.gate_disabled:
            return None
        progress = self._state.active_progress
        return progress.current_quiz if progress is not None else None

    @property
    def hint_visible(self) -> bool:
        return self._state.hint_visible and self.current_quiz is not None

    @property
    def can_copy_code(self) -> bool:
        if self._state.active_artifact_id is None:
            return False
        if self._policy.gate_disabled:
            return True
        progress = self._state.active_progress
        return progress is not None and progress.is_unlocked

    @property
    def progress_percentage(self) -> float:
        if self.can_copy_code:
            return 100.0
        total = self.total_questions
        if total == 0:
            return 0.0
        return self.unlock_level / total * 100
