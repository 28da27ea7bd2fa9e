# reverie/backends/hosted.py
"""Hosted chat-completion backend for reverie, using the OpenAI SDK."""

from __future__ import annotations

from typing import Any

from openai import AsyncOpenAI, OpenAIError

from reverie.backends import REVIEW_INSTRUCTION, TEST_INSTRUCTION, build_messages
from reverie.config import API_KEY_ENV, MAX_OUTPUT_TOKENS
from reverie.errors import BackendError, HealthCheckError
from reverie.session import _log_debug


class HostedBackend:
    """Backend that calls a managed chat-completion endpoint.

    The SDK's own retries are disabled; retrying is the orchestrator's job.
    """

    def __init__(self, model: str, api_key: str | None, client: Any = None):
        self.model = model
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, max_retries=0)
        return self._client

    async def _chat(self, messages: list[dict[str, str]]) -> str:
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=MAX_OUTPUT_TOKENS,
            )
        except OpenAIError as e:
            raise BackendError(f"{type(e).__name__}: {e}", getattr(e, "status_code", None)) from e

        if not response.choices:
            _log_debug("[HOSTED] response contained no choices\n")
            return ""
        return response.choices[0].message.content or ""

    async def review(self, prompt: str, code: str, language: str) -> str:
        """Request a review of one chunk."""
        return await self._chat(build_messages(prompt, REVIEW_INSTRUCTION, code, language))

    async def generate_tests(self, prompt: str, code: str, language: str) -> str:
        """Request unit tests for one chunk."""
        return await self._chat(build_messages(prompt, TEST_INSTRUCTION, code, language))

    async def health_check(self) -> None:
        """Succeed iff an API key is configured. No network probe is made.

        Raises:
            HealthCheckError: If no API key is configured.

        """
        if not self._api_key:
            raise HealthCheckError(f"{API_KEY_ENV} is not set")
