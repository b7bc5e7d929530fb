# =============================================================================
# CONFIGURATION - codegate
# =============================================================================
# Process-scoped settings read from the environment, plus the live gate policy
# =============================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from .models.enums import HintMode

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    return int(value) if value else default


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------


@dataclass
class GateConfig:
    """Settings of the unlock gate and its persistence.

    Attributes:
        gate_disabled: Initial value of the "no gate required" override
        default_total_questions: Fixed question count for new artifacts
            (None = use the complexity estimate)
        save_debounce_seconds: Quiet period before a snapshot is saved
        merge_timeout_seconds: How long to wait for a persisted snapshot
        api_url: Base URL of the quiz / conversation API
        api_timeout_seconds: HTTP timeout for the API
        hint_mode: When quiz hints become visible
        log_level: Logging level name
    """

    gate_disabled: bool = False
    default_total_questions: int | None = None
    save_debounce_seconds: float = 0.5
    merge_timeout_seconds: float = 5.0
    api_url: str = "http://localhost:3000/api"
    api_timeout_seconds: float = 30.0
    hint_mode: HintMode = HintMode.AFTER_MISS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> GateConfig:
        """Build the config from ``CODEGATE_*`` environment variables."""
        hint_mode = os.getenv("CODEGATE_HINT_MODE", HintMode.AFTER_MISS.value)
        return cls(
            gate_disabled=_env_bool("CODEGATE_GATE_DISABLED", False),
            default_total_questions=_env_int("CODEGATE_DEFAULT_TOTAL_QUESTIONS", None),
            save_debounce_seconds=_env_float("CODEGATE_SAVE_DEBOUNCE_SECONDS", 0.5),
            merge_timeout_seconds=_env_float("CODEGATE_MERGE_TIMEOUT_SECONDS", 5.0),
            api_url=os.getenv("CODEGATE_API_URL", "http://localhost:3000/api"),
            api_timeout_seconds=_env_float("CODEGATE_API_TIMEOUT", 30.0),
            hint_mode=HintMode(hint_mode),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "gate": {
                "disabled": self.gate_disabled,
                "default_total_questions": self.default_total_questions,
                "hint_mode": self.hint_mode.value,
            },
            "persistence": {
                "save_debounce_seconds": self.save_debounce_seconds,
                "merge_timeout_seconds": self.merge_timeout_seconds,
            },
            "api": {
                "url": self.api_url,
                "timeout_seconds": self.api_timeout_seconds,
            },
            "log_level": self.log_level,
        }


_config: GateConfig | None = None


def get_config() -> GateConfig:
    """Return the process-wide config (created on first use)."""
    global _config
    if _config is None:
        _config = GateConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config and gate policy (tests, env changes)."""
    global _config, _policy
    _config = None
    _policy = None


# -----------------------------------------------------------------------------
# Gate policy
# -----------------------------------------------------------------------------


class GatePolicy:
    """Live "no gate required" override shared by every artifact.

    The flag can change mid-session (e.g. after an authorization change), so
    consumers read ``gate_disabled`` on every access instead of caching it.
    """

    def __init__(self, gate_disabled: bool = False):
        self._gate_disabled = gate_disabled

    @property
    def gate_disabled(self) -> bool:
        return self._gate_disabled

    def set_gate_disabled(self, value: bool) -> None:
        if value != self._gate_disabled:
            logger.info(f"Gate override changed: disabled={value}")
        self._gate_disabled = value


_policy: GatePolicy | None = None


def get_gate_policy() -> GatePolicy:
    """Return the process-wide gate policy, seeded from the config."""
    global _policy
    if _policy is None:
        _policy = GatePolicy(get_config().gate_disabled)
    return _policy


def configure_logging(level: str | None = None) -> None:
    """Basic logging setup for applications embedding the package."""
    logging.basicConfig(
        level=(level or get_config().log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
