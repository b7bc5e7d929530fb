# =============================================================================
# CONFTEST - Global pytest fixtures
# =============================================================================
# Mocked collaborators for unit tests without network or storage
# =============================================================================

import json
import os
import random
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Add root to path
sys.path.insert(0, str(Path(__file__).parent))


ASYNC_SOURCE = """export async function loadUser(id: string) {
  const response = await fetchData(`/users/${id}`);
  return response.json();
}
"""


# =============================================================================
# ENVIRONMENT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def setup_test_env():
    """Isolated environment and fresh config singletons for every test."""
    from codegate.config import reset_config

    env_vars = {
        "CODEGATE_GATE_DISABLED": "false",
        "LOG_LEVEL": "ERROR",
    }
    with patch.dict(os.environ, env_vars):
        for name in (
            "CODEGATE_DEFAULT_TOTAL_QUESTIONS",
            "CODEGATE_HINT_MODE",
            "CODEGATE_API_URL",
        ):
            os.environ.pop(name, None)
        reset_config()
        yield
        reset_config()


@pytest.fixture
def clean_env():
    """Clears environment variables for isolated config tests."""
    with patch.dict(os.environ, {}, clear=True):
        yield


# =============================================================================
# ENGINE FIXTURES
# =============================================================================


@pytest.fixture
def gate_policy():
    from codegate.config import GatePolicy

    return GatePolicy(gate_disabled=False)


@pytest.fixture
def gate_config():
    from codegate.config import GateConfig

    return GateConfig()


@pytest.fixture
def machine(gate_policy, gate_config):
    """State machine with its own gate policy."""
    from codegate.engine.state_machine import GenerationStateMachine

    return GenerationStateMachine(policy=gate_policy, config=gate_config)


@pytest.fixture
def seeded_rng():
    """Deterministic random source for the shuffler."""
    return random.Random(1234)


@pytest.fixture
def sample_artifact():
    """Artifact with an awaited call."""
    from codegate.models.schemas import Artifact

    return Artifact(
        id="main",
        title="user.ts",
        language="typescript",
        content=ASYNC_SOURCE,
    )


@pytest.fixture
def sample_quiz():
    """Three-option quiz whose correct answer is B."""
    from codegate.models.schemas import Quiz, QuizOption

    return Quiz(
        level=0,
        question="Why is fetchData awaited?",
        options=(
            QuizOption(label="A", text="To sort the data", explanation="Not related"),
            QuizOption(label="B", text="It resolves later", explanation="Correct"),
            QuizOption(label="C", text="To run faster", explanation="Not faster"),
        ),
        correct_label="B",
        hint="Think about timing.",
    )


@pytest.fixture
def make_marker():
    """Builds a quiz marker from keyword fields (camelCase keys)."""

    def _make(**fields):
        payload = {
            "level": 1,
            "question": "Why await?",
            "options": [
                {"label": "A", "text": "x"},
                {"label": "B", "text": "y"},
            ],
            "correctLabel": "B",
        }
        payload.update(fields)
        return f"<!--QUIZ:{json.dumps(payload)}-->"

    return _make


# =============================================================================
# STORAGE FIXTURES
# =============================================================================


@pytest.fixture
def mock_kv():
    """Async key-value client with nothing stored."""
    mock = MagicMock()
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock()
    return mock


@pytest.fixture
def mock_kv_with_data():
    """Async key-value client backed by a dict."""
    mock = MagicMock()
    _storage = {}

    async def mock_get(key):
        return _storage.get(key)

    async def mock_set(key, value):
        _storage[key] = value

    mock.get = mock_get
    mock.set = mock_set
    mock._storage = _storage

    return mock


@pytest.fixture
def memory_store():
    """Snapshot store recording every save."""

    class MemoryStore:
        def __init__(self):
            self.snapshot = None
            self.saves = []
            self.load = AsyncMock(side_effect=self._load)

        async def _load(self, conversation_id):
            return self.snapshot

        async def save(self, conversation_id, snapshot):
            self.saves.append(json.loads(json.dumps(snapshot)))

    return MemoryStore()


# =============================================================================
# UTILITY FIXTURES
# =============================================================================


@pytest.fixture
def capture_logs(caplog):
    """Captures logs during tests."""
    import logging

    caplog.set_level(logging.DEBUG)
    return caplog
