"""Quiz API Client - Per-artifact quiz endpoints over HTTP.

Every endpoint answers with the same envelope:

    {"success": true, "data": {...}}
    {"success": false, "error": {"code": "...", "message": "...", "details": ...}}

Responses carry 1-based levels; they are converted only when the state
machine applies them (``apply_remote_quizzes`` / ``apply_answer_response``).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import get_config
from ..models.schemas import AnswerQuizResponse, GenerateQuizzesResponse, QuizListResponse

logger = logging.getLogger(__name__)


class QuizApiError(Exception):
    """Failure reported by (or while talking to) the quiz API."""

    def __init__(self, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"QuizApiError(code={self.code!r}, message={self.message!r})"


def unwrap_envelope(response: httpx.Response, failure_message: str) -> Any:
    """Return the ``data`` member of an API envelope.

    Raises:
        QuizApiError: ``success`` is false or the body is not an envelope
    """
    try:
        body = response.json()
    except ValueError:
        raise QuizApiError(
            "INVALID_RESPONSE", f"{failure_message} (HTTP {response.status_code})"
        ) from None

    if not isinstance(body, dict) or not body.get("success"):
        error = body.get("error") if isinstance(body, dict) else None
        error = error or {}
        raise QuizApiError(
            error.get("code") or "UNKNOWN_ERROR",
            error.get("message") or failure_message,
            error.get("details"),
        )

    return body.get("data")


class QuizApiClient:
    """Async client for the per-artifact quiz API.

    Example:
        >>> async with QuizApiClient("http://localhost:3000/api") as api:
        ...     quizzes = await api.fetch_quizzes("artifact-1")
        ...     result = await api.answer_quiz("artifact-1", quizzes.next_quiz_id, "B")
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
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

    async def __aenter__(self) -> QuizApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _quizzes_url(self, artifact_id: str) -> str:
        return f"{self.base_url}/artifacts/{artifact_id}/quizzes"

    async def _request(
        self, method: str, url: str, failure_message: str, **kwargs: Any
    ) -> Any:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"Quiz API request failed: {method} {url} ({e})")
            raise QuizApiError("NETWORK_ERROR", f"{failure_message}: {e}") from e
        return unwrap_envelope(response, failure_message)

    @staticmethod
    def _validate(model, data: Any, failure_message: str):
        try:
            return model.model_validate(data or {})
        except ValidationError as e:
            raise QuizApiError("INVALID_RESPONSE", failure_message, e.errors()) from e

    async def fetch_quizzes(self, artifact_id: str) -> QuizListResponse:
        """List the quizzes of an artifact with its current level."""
        message = "Failed to fetch quizzes"
        data = await self._request("GET", self._quizzes_url(artifact_id), message)
        return self._validate(QuizListResponse, data, message)

    async def generate_quizzes(self, artifact_id: str) -> GenerateQuizzesResponse:
        """Generate quizzes (returns the existing ones if already generated)."""
        message = "Failed to generate quizzes"
        data = await self._request("POST", self._quizzes_url(artifact_id), message)
        result = self._validate(GenerateQuizzesResponse, data, message)
        logger.info(
            f"Quizzes for artifact {artifact_id}: {result.total} "
            f"({'generated' if result.generated else 'existing'})"
        )
        return result

    async def answer_quiz(self, artifact_id: str, quiz_id: str, answer: str) -> AnswerQuizResponse:
        """Submit an answer; the response is authoritative for the progress."""
        message = "Failed to submit answer"
        data = await self._request(
            "PATCH",
            f"{self._quizzes_url(artifact_id)}/{quiz_id}",
            message,
            json={"answer": answer},
        )
        return self._validate(AnswerQuizResponse, data, message)

    async def delete_quizzes(self, artifact_id: str) -> None:
        """Delete every quiz of an artifact (before regenerating them)."""
        await self._request("DELETE", self._quizzes_url(artifact_id), "Failed to delete quizzes")
        logger.info(f"Quizzes deleted for artifact {artifact_id}")
