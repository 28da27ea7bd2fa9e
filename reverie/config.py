"""Configuration constants and config file loading for reverie.

Provide centralized configuration values used throughout the reverie package,
and load the per-project TOML file that carries prompt templates and model
settings.

Exports:
    LanguageConfig: Per-language extension and prompt templates.
    Config: Parsed contents of the TOML config file.
    load_config: Read and validate a TOML config file.
    DEFAULT_CONFIG_FILE: str - Default config file path.
    DEFAULT_CHUNK_SIZE: int - Lines per chunk when the file omits it.
    DEFAULT_CHUNK_TIMEOUT: float - Per-call deadline in seconds.
    DEFAULT_MAX_RETRIES: int - Attempts per backend call.
    DEFAULT_FAILED_CHUNKS_FILE: str - Default failure ledger path.
    RETRY_DELAY: float - Fixed pause between orchestrator-level attempts.
    INITIAL_BACKOFF: float - First wait of the exponential backoff controller.
    CONSECUTIVE_TIMEOUT_WARNING: int - Consecutive timeouts before warning.
    MAX_OUTPUT_TOKENS: int - Output token budget per request.
    LOCAL_CHAT_URL: str - Chat-completion endpoint of the local server.
    LOCAL_MODELS_URL: str - Models-listing endpoint used for health checks.
    LOCAL_ALLOWED_MODELS: frozenset[str] - Accepted local models (empty = any).
    LOCAL_TRANSPORT_RETRIES: int - Backoff attempts inside one local request.
    HEALTH_CHECK_TIMEOUT: float - Deadline in seconds for the startup health check.
    API_KEY_ENV: str - Environment variable holding the hosted API key.
"""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from reverie.errors import ConfigError

DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_CHUNK_SIZE = 200
DEFAULT_CHUNK_TIMEOUT = 300.0
DEFAULT_MAX_RETRIES = 1
DEFAULT_FAILED_CHUNKS_FILE = "failed_chunks.json"
DEFAULT_PROVIDER = "hosted"
DEFAULT_HOSTED_MODEL = "gpt-4o"

# Orchestrator waits a fixed interval between attempts; the backoff
# controller doubles from INITIAL_BACKOFF.
RETRY_DELAY = 2.0
INITIAL_BACKOFF = 1.0

CONSECUTIVE_TIMEOUT_WARNING = 3

MAX_OUTPUT_TOKENS = 2048

LOCAL_CHAT_URL = "http://127.0.0.1:1234/v1/chat/completions"
LOCAL_MODELS_URL = LOCAL_CHAT_URL.replace("/v1/chat/completions", "/v1/models")
LOCAL_ALLOWED_MODELS: frozenset[str] = frozenset()
LOCAL_TRANSPORT_RETRIES = 3
HEALTH_CHECK_TIMEOUT = 10.0

API_KEY_ENV = "OPENAI_API_KEY"

# Provider aliases accepted in the config file and on the command line
PROVIDER_ALIASES: dict[str, str] = {
    "hosted": "hosted",
    "openai": "hosted",
    "local": "local",
    "lmstudio": "local",
}


@dataclass(frozen=True)
class LanguageConfig:
    """Per-language settings from the config file.

    Attributes:
        extension: File suffix used to detect the language (e.g. ".go").
        review_prompt: System prompt for review requests.
        test_prompt: System prompt for test-generation requests.

    """

    extension: str
    review_prompt: str
    test_prompt: str


@dataclass
class Config:
    """Parsed config file.

    Attributes:
        model: Default hosted model.
        chunk_size: Lines per chunk.
        llm_provider: Backend name ("hosted" or "local").
        llm_model: Model name for the selected provider, overrides model.
        languages: Language identifier to LanguageConfig mapping.

    """

    model: str = DEFAULT_HOSTED_MODEL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    llm_provider: str = DEFAULT_PROVIDER
    llm_model: str = ""
    languages: dict[str, LanguageConfig] = field(default_factory=dict)

    @property
    def effective_model(self) -> str:
        """Model actually sent to the backend."""
        return self.llm_model or self.model


def normalize_provider(name: str) -> str:
    """Map a provider name or alias to its canonical form.

    Raises:
        ConfigError: If the name is not a known provider.

    """
    try:
        return PROVIDER_ALIASES[name.strip().lower()]
    except KeyError:
        known = ", ".join(sorted(PROVIDER_ALIASES))
        raise ConfigError(f"Unknown llm_provider {name!r}. Expected one of: {known}") from None


def _parse_languages(raw: Any) -> dict[str, LanguageConfig]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("'languages' must be a table of language settings")

    languages: dict[str, LanguageConfig] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"languages.{name} must be a table")
        missing = [key for key in ("extension", "review_prompt", "test_prompt") if key not in entry]
        if missing:
            raise ConfigError(f"languages.{name} is missing: {', '.join(missing)}")
        extension = str(entry["extension"])
        if not extension.startswith("."):
            extension = f".{extension}"
        languages[name] = LanguageConfig(
            extension=extension,
            review_prompt=str(entry["review_prompt"]),
            test_prompt=str(entry["test_prompt"]),
        )
    return languages


def parse_config(data: dict[str, Any]) -> Config:
    """Build a Config from an already-decoded TOML document.

    Args:
        data: Decoded TOML mapping.

    Returns:
        The validated Config.

    Raises:
        ConfigError: If a value has the wrong type or is out of range.

    """
    chunk_size = data.get("chunk_size", DEFAULT_CHUNK_SIZE)
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
        raise ConfigError(f"chunk_size must be a positive integer, got {chunk_size!r}")

    return Config(
        model=str(data.get("model") or DEFAULT_HOSTED_MODEL),
        chunk_size=chunk_size,
        llm_provider=normalize_provider(str(data.get("llm_provider") or DEFAULT_PROVIDER)),
        llm_model=str(data.get("llm_model") or ""),
        languages=_parse_languages(data.get("languages")),
    )


def load_config(path: Path) -> Config:
    """Load the TOML config file at path.

    Args:
        path: Path to the config file.

    Returns:
        The parsed Config.

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid.

    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    return parse_config(data)
