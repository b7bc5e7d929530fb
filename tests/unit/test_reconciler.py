# =============================================================================
# TESTS - Session Reconciler
# =============================================================================
# Merge gate, debounced saves and hash-based skipping
# =============================================================================

import asyncio
from unittest.mock import AsyncMock

import pytest


def _snapshot(unlock_level=1, total_questions=3):
    from codegate.models.schemas import Artifact, ArtifactProgress

    return {
        "phase": "unlocking",
        "activeArtifactId": "main",
        "artifacts": {
            "main": Artifact(
                id="main",
                title="user.ts",
                language="typescript",
                content="const user = await fetchData(id);",
            ).to_wire()
        },
        "artifactProgress": {
            "main": ArtifactProgress(
                unlock_level=unlock_level, total_questions=total_questions
            ).to_wire()
        },
    }


async def _never_returns(conversation_id):
    await asyncio.sleep(60)


def _reconciler(machine, store, **kwargs):
    from codegate.storage.reconciler import SessionReconciler

    kwargs.setdefault("merge_timeout", 1.0)
    kwargs.setdefault("save_debounce", 0.01)
    return SessionReconciler(machine, store, "conv-1", **kwargs)


class TestSnapshotHash:
    """Tests for the canonical snapshot hash."""

    def test_key_order_irrelevant(self):
        """Equal snapshots hash equally regardless of key order."""
        from codegate.storage.reconciler import snapshot_hash

        assert snapshot_hash({"a": 1, "b": [1, 2]}) == snapshot_hash({"b": [1, 2], "a": 1})

    def test_content_matters(self):
        """Different snapshots hash differently."""
        from codegate.storage.reconciler import snapshot_hash

        assert snapshot_hash({"a": 1}) != snapshot_hash({"a": 2})


class TestMergeGate:
    """Tests for the gate that waits for the persisted snapshot."""

    @pytest.mark.asyncio
    async def test_scenario_artifact_before_snapshot(self, machine, memory_store, sample_artifact):
        """Progress from the snapshot is applied, not overwritten by defaults."""
        memory_store.snapshot = _snapshot(unlock_level=1, total_questions=3)
        reconciler = _reconciler(machine, memory_store)

        await reconciler.start()
        reconciler.add_artifact(sample_artifact)
        assert machine.state.artifact_progress == {}

        await reconciler._load_task

        assert reconciler.gate_open is True
        assert reconciler.merged is True
        assert machine.unlock_level == 1
        assert machine.total_questions == 3
        memory_store.load.assert_awaited_once_with("conv-1")

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_no_store_opens_immediately(self, machine, sample_artifact):
        """Without a store the gate is open from the start."""
        reconciler = _reconciler(machine, None)

        await reconciler.start()
        reconciler.add_artifact(sample_artifact, total_questions=2)

        assert reconciler.gate_open is True
        assert machine.total_questions == 2

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_new_conversation_opens_gate(self, machine, memory_store):
        """A store reporting no snapshot opens the gate without merging."""
        reconciler = _reconciler(machine, memory_store)

        await reconciler.start()
        await reconciler._load_task

        assert reconciler.gate_open is True
        assert reconciler.merged is False

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_timeout_opens_gate(self, machine, memory_store, sample_artifact):
        """A snapshot that never arrives is treated as a new session."""
        memory_store.load = AsyncMock(side_effect=_never_returns)
        reconciler = _reconciler(machine, memory_store, merge_timeout=0.02)

        await reconciler.start()
        reconciler.add_artifact(sample_artifact)
        assert reconciler.gate_open is False

        await asyncio.sleep(0.1)

        assert reconciler.gate_open is True
        assert reconciler.merged is False
        assert "main" in machine.state.artifact_progress

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_load_failure_waits_for_timeout(self, machine, memory_store, capture_logs):
        """A failed load is logged and the timeout opens the gate."""
        memory_store.load = AsyncMock(side_effect=RuntimeError("storage down"))
        reconciler = _reconciler(machine, memory_store, merge_timeout=0.05)

        await reconciler.start()
        await reconciler._load_task

        assert reconciler.gate_open is False
        assert "Failed to load snapshot" in capture_logs.text

        await asyncio.sleep(0.15)

        assert reconciler.gate_open is True

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_late_snapshot_ignored(self, machine, memory_store, sample_artifact):
        """A snapshot arriving after the gate opened changes nothing."""
        reconciler = _reconciler(machine, memory_store)
        await reconciler.start()
        await reconciler._load_task
        reconciler.add_artifact(sample_artifact, total_questions=2)
        before = machine.state

        accepted = reconciler.receive_snapshot(_snapshot(unlock_level=2, total_questions=3))

        assert accepted is False
        assert machine.state is before

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_only_one_snapshot_merged(self, machine, memory_store):
        """The second snapshot is rejected."""
        reconciler = _reconciler(machine, memory_store)

        assert reconciler.receive_snapshot(_snapshot(1, 3)) is True
        assert reconciler.receive_snapshot(_snapshot(2, 3)) is False
        assert machine.unlock_level == 1

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_quiz_held_until_gate_opens(self, machine, memory_store, sample_artifact, sample_quiz):
        """A quiz offered while the gate is closed is applied after the merge."""
        reconciler = _reconciler(machine, memory_store)
        reconciler.add_artifact(sample_artifact)

        assert reconciler.offer_quiz(sample_quiz) is False
        assert machine.current_quiz is None

        reconciler.receive_snapshot(_snapshot(unlock_level=1, total_questions=3))

        assert machine.current_quiz is not None
        assert machine.current_quiz.level == 1
        assert machine.current_quiz.correct_option.text == "It resolves later"

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_missing_progress_created_on_open(self, machine, memory_store, sample_artifact):
        """Artifacts without progress in the snapshot get defaults when the gate opens."""
        reconciler = _reconciler(machine, memory_store)
        reconciler.add_artifact(sample_artifact)

        reconciler.receive_snapshot({"plan": ["Load users"]})

        assert "main" in machine.state.artifact_progress
        assert machine.total_questions >= 1
        assert machine.state.plan == ("Load users",)

        await reconciler.aclose()


class TestSaves:
    """Tests for debounced, deduplicated saves."""

    @pytest.mark.asyncio
    async def test_changes_debounced_into_one_save(self, machine, memory_store, sample_artifact):
        """Several quick changes produce a single save."""
        from codegate.models.schemas import Artifact

        reconciler = _reconciler(machine, memory_store, save_debounce=0.02)
        await reconciler.start()
        await reconciler._load_task

        reconciler.add_artifact(sample_artifact, total_questions=2)
        reconciler.add_artifact(Artifact(id="b", title="b.py", content="y = 1"), total_questions=1)
        await asyncio.sleep(0.1)

        assert len(memory_store.saves) == 1
        saved = memory_store.saves[0]
        assert set(saved["artifacts"]) == {"main", "b"}
        assert saved["activeArtifactId"] == "b"

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_skipped(self, machine, memory_store, sample_artifact):
        """Saving the same snapshot twice sends it once."""
        reconciler = _reconciler(machine, memory_store, save_debounce=60)
        await reconciler.start()
        await reconciler._load_task
        reconciler.add_artifact(sample_artifact, total_questions=2)

        assert await reconciler.save_now() is True
        assert await reconciler.save_now() is False
        assert len(memory_store.saves) == 1

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_no_save_while_gate_closed(self, machine, memory_store, sample_artifact):
        """Nothing is persisted before the snapshot is merged."""
        reconciler = _reconciler(machine, memory_store)
        reconciler.add_artifact(sample_artifact)

        assert await reconciler.save_now() is False
        assert memory_store.saves == []

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_aclose_flushes_pending_save(self, machine, memory_store, sample_artifact):
        """Closing sends a save still waiting for its debounce."""
        reconciler = _reconciler(machine, memory_store, save_debounce=60)
        await reconciler.start()
        await reconciler._load_task
        reconciler.add_artifact(sample_artifact, total_questions=2)

        await reconciler.aclose()

        assert len(memory_store.saves) == 1
        assert memory_store.saves[0]["totalQuestions"] == 2

    @pytest.mark.asyncio
    async def test_save_failure_logged(self, machine, memory_store, sample_artifact, capture_logs):
        """A failed save is logged and does not raise."""
        memory_store.save = AsyncMock(side_effect=RuntimeError("disk full"))
        reconciler = _reconciler(machine, memory_store, save_debounce=60)
        await reconciler.start()
        await reconciler._load_task
        reconciler.add_artifact(sample_artifact, total_questions=2)

        assert await reconciler.save_now() is False
        assert "Failed to save snapshot" in capture_logs.text

        await reconciler.aclose()

    @pytest.mark.asyncio
    async def test_detached_after_close(self, machine, memory_store, sample_artifact):
        """Changes after aclose() schedule nothing."""
        reconciler = _reconciler(machine, memory_store)
        await reconciler.start()
        await reconciler._load_task
        await reconciler.aclose()
        saves = len(memory_store.saves)

        machine.add_or_update_artifact(sample_artifact, total_questions=1)
        await asyncio.sleep(0.05)

        assert len(memory_store.saves) == saves
