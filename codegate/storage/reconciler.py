"""Session Reconciler - Merge persisted state on entry, then save changes.

Lifecycle of a session:

1. ``start()`` closes the outbound gate and loads the persisted snapshot.
2. The gate opens when the snapshot has been merged, when the store reports
   a brand-new conversation, or after ``merge_timeout`` seconds.
3. While the gate is closed, artifacts are accepted without progress and
   quizzes are held back; nothing is saved.
4. Once open, every state change schedules a debounced save. A save whose
   snapshot hash equals the last saved one is skipped.

Only one snapshot is ever merged. A snapshot arriving after the gate
opened is ignored so that late responses never rewrite local state.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import Any, Mapping

from ..config import get_config
from ..engine.state_machine import GenerationStateMachine
from ..models.schemas import Artifact, Quiz
from ..models.state import GenerationState
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def snapshot_hash(snapshot: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of a snapshot."""
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SessionReconciler:
    """Reconciles a state machine with its persisted snapshot.

    Args:
        machine: State machine of the session
        store: Snapshot store (None = nothing persisted, gate opens at start)
        conversation_id: Conversation the snapshot belongs to
        merge_timeout: Seconds to wait for a snapshot before assuming a new session
        save_debounce: Quiet period before a save is sent

    Example:
        >>> reconciler = SessionReconciler(machine, KVSnapshotStore(kv), "conv-1")
        >>> await reconciler.start()
        >>> reconciler.add_artifact(artifact)
        >>> await reconciler.aclose()
    """

    def __init__(
        self,
        machine: GenerationStateMachine,
        store: SnapshotStore | None,
        conversation_id: str,
        merge_timeout: float | None = None,
        save_debounce: float | None = None,
    ):
        config = get_config()
        self.machine = machine
        self.store = store
        self.conversation_id = conversation_id
        self.merge_timeout = (
            merge_timeout if merge_timeout is not None else config.merge_timeout_seconds
        )
        self.save_debounce = (
            save_debounce if save_debounce is not None else config.save_debounce_seconds
        )

        self._started = False
        self._gate_open = False
        self._merged = False
        self._pending_quiz: Quiz | None = None
        self._last_saved_hash: str | None = None

        self._load_task: asyncio.Task | None = None
        self._timeout_task: asyncio.Task | None = None
        self._debounce_task: asyncio.Task | None = None
        self._save_tasks: set[asyncio.Task] = set()

        self._unsubscribe = machine.subscribe(self._on_state_change)

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    @property
    def gate_open(self) -> bool:
        return self._gate_open

    @property
    def merged(self) -> bool:
        return self._merged

    async def start(self) -> None:
        """Begin the session: load the snapshot and arm the merge timeout."""
        if self._started:
            return
        self._started = True

        if self.store is None:
            logger.info(f"Session {self.conversation_id}: no store, gate open")
            self._open_gate()
            return

        self._timeout_task = asyncio.create_task(self._expire_gate())
        self._load_task = asyncio.create_task(self._load())

    async def _load(self) -> None:
        try:
            data = await self.store.load(self.conversation_id)
        except Exception as e:
            logger.error(f"Failed to load snapshot for {self.conversation_id}: {e}")
            return

        if data is None:
            logger.info(f"Session {self.conversation_id}: no persisted snapshot, new session")
            self._open_gate()
            return

        self.receive_snapshot(data)

    async def _expire_gate(self) -> None:
        await asyncio.sleep(self.merge_timeout)
        if not self._gate_open:
            logger.info(
                f"Session {self.conversation_id}: no snapshot after "
                f"{self.merge_timeout}s, treating as new session"
            )
            self._open_gate()

    def receive_snapshot(self, data: Mapping[str, Any]) -> bool:
        """Merge a persisted snapshot; returns False when it came too late."""
        if self._merged or self._gate_open:
            logger.debug(f"Ignoring late snapshot for {self.conversation_id}")
            return False

        self._merged = True
        self.machine.merge_snapshot(data)
        # The store already holds this snapshot
        self._last_saved_hash = snapshot_hash(dict(data))
        logger.info(
            f"Snapshot merged for {self.conversation_id}: "
            f"{len(self.machine.state.artifacts)} artifacts"
        )
        self._open_gate()
        return True

    def _open_gate(self) -> None:
        if self._gate_open:
            return
        self._gate_open = True
        timeout_task = self._timeout_task
        if timeout_task is not None and not timeout_task.done():
            if timeout_task is not asyncio.current_task():
                timeout_task.cancel()

        self.machine.ensure_progress()

        if self._pending_quiz is not None:
            quiz, self._pending_quiz = self._pending_quiz, None
            self.machine.set_current_quiz(quiz)

        self.schedule_save()

    # -------------------------------------------------------------------------
    # Gated transitions
    # -------------------------------------------------------------------------

    def add_artifact(self, artifact: Artifact, total_questions: int | None = None) -> None:
        """Add or revise an artifact; progress is created only once the gate is open."""
        self.machine.add_or_update_artifact(
            artifact, total_questions=total_questions, create_progress=self._gate_open
        )

    def offer_quiz(self, quiz: Quiz) -> bool:
        """Offer a quiz to the machine, holding it back while the gate is closed."""
        if not self._gate_open:
            logger.debug("Gate closed, holding quiz until the snapshot is merged")
            self._pending_quiz = quiz
            return False
        return self.machine.set_current_quiz(quiz)

    # -------------------------------------------------------------------------
    # Saves
    # -------------------------------------------------------------------------

    def _on_state_change(self, state: GenerationState) -> None:
        if self._gate_open:
            self.schedule_save()

    def schedule_save(self) -> None:
        """(Re)start the debounce timer for the next save."""
        if self.store is None or not self._gate_open:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, save deferred until flush()")
            return

        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounced_save())

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self.save_debounce)
        # The save runs in its own task so a later reschedule never cancels it
        task = asyncio.create_task(self.save_now())
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    async def save_now(self) -> bool:
        """Save the current snapshot unless it is unchanged. Returns True if sent."""
        if self.store is None or not self._gate_open:
            return False

        snapshot = self.machine.snapshot()
        digest = snapshot_hash(snapshot)
        if digest == self._last_saved_hash:
            logger.debug(f"Snapshot unchanged for {self.conversation_id}, save skipped")
            return False

        try:
            await self.store.save(self.conversation_id, snapshot)
        except Exception as e:
            logger.warning(f"Failed to save snapshot for {self.conversation_id}: {e}")
            return False

        self._last_saved_hash = digest
        logger.debug(f"Snapshot saved for {self.conversation_id}")
        return True

    async def flush(self) -> None:
        """Send a pending save immediately and wait for in-flight saves."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

        if self._save_tasks:
            await asyncio.gather(*list(self._save_tasks))
        await self.save_now()

    async def aclose(self) -> None:
        """Stop timers, flush pending changes and detach from the machine."""
        pending = [
            task
            for task in (self._timeout_task, self._load_task)
            if task is not None and not task.done()
        ]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self.flush()
        self._unsubscribe()
