"""Error types for reverie."""


class ReverieError(Exception):
    """Base class for reverie errors."""


class ConfigError(ReverieError):
    """Configuration file is missing, unreadable, or invalid."""


class MissingCredentialError(ReverieError):
    """The selected backend needs an access token that is not set."""


class BackendError(ReverieError):
    """A backend request failed (transport, HTTP status, or payload).

    Args:
        message: Human readable description of the failure.
        status_code: HTTP status code, when the failure came from a response.

    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class HealthCheckError(ReverieError):
    """The backend failed its pre-flight availability probe."""


class SourceError(ReverieError):
    """Input text (files, diffs) could not be obtained."""


class ArtifactError(ReverieError):
    """Generated test artifacts could not be written or run."""


class NoCodeBlocksError(ArtifactError):
    """Model output contained no fenced code blocks."""


class UnsupportedLanguageError(ArtifactError):
    """No test file convention is registered for the language."""


class LedgerError(ReverieError):
    """The failed chunks ledger could not be read or written."""
