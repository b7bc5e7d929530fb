"""Snapshot Stores - Where the generation state of a conversation is persisted.

The reconciler only needs ``load`` and ``save``; two adapters are provided:

- ``KVSnapshotStore``: async key-value client (``get`` / ``set``)
- ``HttpSnapshotStore``: the conversation API (``metadata.generationState``)
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ..config import get_config
from .quiz_api import QuizApiError, unwrap_envelope

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    async def load(self, conversation_id: str) -> dict[str, Any] | None:
        """Persisted snapshot, or None for a conversation never saved."""
        ...

    async def save(self, conversation_id: str, snapshot: dict[str, Any]) -> None:
        ...


class AsyncKV(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class KVSnapshotStore:
    """Snapshot store over an async key-value client.

    Key layout:
        - generation:{conversation_id}:state -> snapshot (GenerationState.to_dict)
    """

    KEY_PREFIX = "generation"

    def __init__(self, kv: AsyncKV):
        self.kv = kv

    def _state_key(self, conversation_id: str) -> str:
        return f"{self.KEY_PREFIX}:{conversation_id}:state"

    async def load(self, conversation_id: str) -> dict[str, Any] | None:
        data = await self.kv.get(self._state_key(conversation_id))
        if not data:
            logger.debug(f"No snapshot stored for conversation {conversation_id}")
            return None
        return dict(data)

    async def save(self, conversation_id: str, snapshot: dict[str, Any]) -> None:
        await self.kv.set(self._state_key(conversation_id), snapshot)
        logger.debug(f"Snapshot saved: {conversation_id}")


class HttpSnapshotStore:
    """Snapshot store backed by the conversation API.

    Reads ``GET /conversations/{id}`` (``data.metadata.generationState``) and
    writes ``PATCH /conversations/{id}`` with
    ``{"metadata": {"generationState": snapshot}}``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        config = get_config()
        self.base_url = (base_url or config.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.api_timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _url(self, conversation_id: str) -> str:
        return f"{self.base_url}/conversations/{conversation_id}"

    async def load(self, conversation_id: str) -> dict[str, Any] | None:
        try:
            response = await self.client.get(self._url(conversation_id))
        except httpx.HTTPError as e:
            raise QuizApiError("NETWORK_ERROR", f"Failed to load conversation: {e}") from e

        if response.status_code == 404:
            logger.debug(f"Conversation not found: {conversation_id}")
            return None

        data = unwrap_envelope(response, "Failed to load conversation") or {}
        metadata = data.get("metadata") or {}
        snapshot = metadata.get("generationState")
        return dict(snapshot) if snapshot else None

    async def save(self, conversation_id: str, snapshot: dict[str, Any]) -> None:
        try:
            response = await self.client.patch(
                self._url(conversation_id),
                json={"metadata": {"generationState": snapshot}},
            )
        except httpx.HTTPError as e:
            raise QuizApiError("NETWORK_ERROR", f"Failed to save conversation: {e}") from e

        unwrap_envelope(response, "Failed to save conversation")
        logger.debug(f"Snapshot saved: {conversation_id}")
