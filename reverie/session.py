"""Shared console and debug log state."""

from dataclasses import dataclass
from typing import TextIO

from reverie.ui import create_console, create_error_console


@dataclass
class SessionState:
    """Consolidated state for the session module.

    Attributes:
        debug_log: File handle for debug logging, or None to disable.

    """

    debug_log: TextIO | None = None


# Module-level Singletons
# =======================
# The state and consoles are created on first import and persist for the
# process lifetime. Use the setter/getter functions below rather than
# touching _state directly, and reset_state() between test runs.

_state = SessionState()
console = create_console()
err_console = create_error_console()


def get_state() -> SessionState:
    """Get the global session state singleton."""
    return _state


def reset_state() -> None:
    """Reset the global session state to defaults."""
    global _state
    _state = SessionState()


def set_debug_log(log_file: TextIO | None) -> None:
    """Set the debug log file handle.

    Args:
        log_file: File handle for debug logging, or None to disable.

    """
    _state.debug_log = log_file


def get_debug_log() -> TextIO | None:
    """Get the current debug log file handle."""
    return _state.debug_log


def _log_debug(message: str) -> None:
    """Write a message to the debug log if enabled."""
    if _state.debug_log is not None:
        _state.debug_log.write(message)
        _state.debug_log.flush()
