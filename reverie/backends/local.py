# reverie/backends/local.py
"""Local model server backend for reverie.

Talks to an OpenAI-compatible server on localhost (LM Studio and similar)
with plain JSON over HTTP.
"""

from __future__ import annotations

import json
from typing import Any

import anyio
import httpx

from reverie.backends import REVIEW_INSTRUCTION, TEST_INSTRUCTION, build_messages
from reverie.config import (
    HEALTH_CHECK_TIMEOUT,
    LOCAL_CHAT_URL,
    LOCAL_MODELS_URL,
    LOCAL_TRANSPORT_RETRIES,
    MAX_OUTPUT_TOKENS,
)
from reverie.errors import BackendError, HealthCheckError
from reverie.retry import Sleep, retry_with_backoff
from reverie.session import _log_debug


class LocalBackend:
    """Backend that posts chat completions to a local HTTP server.

    Args:
        model: Model name the server should load.
        url: Chat-completion endpoint.
        models_url: Models-listing endpoint used by health_check().
        retries: Attempts per request, with exponential backoff between them.
        health_timeout: Deadline in seconds for health_check().
        transport: Optional httpx transport, used by tests.
        sleep: Backoff sleep, injectable for tests.

    """

    def __init__(
        self,
        model: str,
        url: str = LOCAL_CHAT_URL,
        models_url: str = LOCAL_MODELS_URL,
        retries: int = LOCAL_TRANSPORT_RETRIES,
        health_timeout: float = HEALTH_CHECK_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = anyio.sleep,
    ):
        self.model = model
        self.url = url
        self.models_url = models_url
        self.retries = retries
        self.health_timeout = health_timeout
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        # No client-side timeout: the caller's deadline bounds every request.
        return httpx.AsyncClient(transport=self._transport, timeout=None)

    async def _chat(self, messages: list[dict[str, str]]) -> str:
        def log_retry(attempt: int, exc: Exception, delay: float) -> None:
            _log_debug(f"[LOCAL] attempt {attempt} failed: {exc}; retrying in {delay:.1f}s\n")

        return await retry_with_backoff(
            lambda: self._post(messages),
            self.retries,
            sleep=self._sleep,
            on_retry=log_retry,
        )

    async def _post(self, messages: list[dict[str, str]]) -> str:
        body = {
            "model": self.model,
            "messages": messages,
            "max_tokens": MAX_OUTPUT_TOKENS,
        }
        try:
            async with self._client() as client:
                response = await client.post(self.url, json=body)
        except httpx.HTTPError as e:
            raise BackendError(f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise BackendError(f"local server status {response.status_code}", response.status_code)

        try:
            payload: Any = response.json()
        except json.JSONDecodeError as e:
            raise BackendError(f"local server returned invalid JSON: {e}") from e

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not choices:
            _log_debug("[LOCAL] response contained no choices\n")
            return ""
        try:
            return choices[0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise BackendError(f"local server returned malformed choices: {choices!r:.200}") from e

    async def review(self, prompt: str, code: str, language: str) -> str:
        """Request a review of one chunk."""
        return await self._chat(build_messages(prompt, REVIEW_INSTRUCTION, code, language))

    async def generate_tests(self, prompt: str, code: str, language: str) -> str:
        """Request unit tests for one chunk."""
        return await self._chat(build_messages(prompt, TEST_INSTRUCTION, code, language))

    async def health_check(self) -> None:
        """GET the models endpoint and require a 200 within health_timeout.

        Raises:
            HealthCheckError: On transport error, non-200 status, or no
                answer before the deadline.

        """
        try:
            with anyio.fail_after(self.health_timeout):
                async with self._client() as client:
                    response = await client.get(self.models_url)
        except TimeoutError:
            raise HealthCheckError(
                f"local server at {self.models_url} did not respond within {self.health_timeout:g}s"
            ) from None
        except httpx.HTTPError as e:
            raise HealthCheckError(f"local server unreachable at {self.models_url}: {e}") from e
        if response.status_code != 200:
            raise HealthCheckError(f"local server health check failed, status: {response.status_code}")
