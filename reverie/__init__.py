"""Reverie - Chunked code review and test generation using language models.

Split source files or diffs into fixed-size line chunks, send each chunk to a
language-model backend for review and unit-test suggestions, and optionally
write the suggested tests to disk, run them, and clean up afterwards. Chunks
that exhaust their retries are written to a failure ledger so a later run can
resume just those chunks.

Exports:
    __version__: str - The current version of the reverie package.

Submodules:
    artifacts: Generated test file parsing, writing, running, and cleanup.
    backends: Backend protocol and the hosted/local model clients.
    chunker: Lazy fixed-size line chunking.
    cli: Command-line interface with entry point and signal handling.
    config: Configuration constants and TOML config loading.
    errors: Exception hierarchy.
    ledger: Failed chunk ledger persistence and resume filtering.
    orchestrator: Per-chunk review state machine.
    retry: Deadline-aware exponential backoff.
    runner: Mode dispatch for a reverie run.
    session: Shared console and debug log state.
    sources: Git diffs, project file discovery, and language detection.
    ui: User interface utilities for terminal output.
"""

__version__ = "0.3.0"
