# reverie/backends/__init__.py
"""Backend abstraction layer for reverie.

Defines the Backend protocol, the shared chat message builder, and the
factory that selects a concrete backend once at startup. The orchestrator
only ever talks to the protocol, never to a concrete client.
"""

from __future__ import annotations

from typing import Protocol

from reverie.config import API_KEY_ENV, normalize_provider
from reverie.errors import MissingCredentialError

REVIEW_INSTRUCTION = "Here is the {language} code chunk to review:"
TEST_INSTRUCTION = "Generate unit tests for this {language} code chunk:"


class Backend(Protocol):
    """Protocol for model backends.

    Both request kinds return the model's text. An empty string means the
    backend was reachable but returned no choices; transport and protocol
    failures raise BackendError instead.
    """

    model: str

    async def review(self, prompt: str, code: str, language: str) -> str: ...

    async def generate_tests(self, prompt: str, code: str, language: str) -> str: ...

    async def health_check(self) -> None: ...


def build_messages(system_prompt: str, instruction: str, code: str, language: str) -> list[dict[str, str]]:
    """Build the two-message exchange sent for every request.

    Args:
        system_prompt: Instruction text from the config file.
        instruction: Lead-in for the user message; ``{language}`` is filled in.
        code: The chunk body.
        language: Language identifier, also used as the code fence label.

    Returns:
        A system message followed by a user message with the fenced chunk.

    """
    lead = instruction.format(language=language)
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": f"{lead}\n\n```{language}\n{code}\n```"},
    ]


def create_backend(name: str, model: str, api_key: str | None = None) -> Backend:
    """Create a backend by name.

    Args:
        name: Backend name or alias ("hosted"/"openai" or "local"/"lmstudio").
        model: Model to request.
        api_key: Access token, required by the hosted backend.

    Returns:
        A Backend instance.

    Raises:
        ConfigError: If the backend name is unknown.
        MissingCredentialError: If the hosted backend has no API key.

    """
    provider = normalize_provider(name)
    if provider == "hosted":
        if not api_key:
            raise MissingCredentialError(f"{API_KEY_ENV} is not set")
        from reverie.backends.hosted import HostedBackend
        return HostedBackend(model=model, api_key=api_key)
    from reverie.backends.local import LocalBackend
    return LocalBackend(model=model)


__all__ = [
    "Backend",
    "REVIEW_INSTRUCTION",
    "TEST_INSTRUCTION",
    "build_messages",
    "create_backend",
]
