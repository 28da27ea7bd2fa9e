"""Main orchestration logic: resolve inputs, pick a backend, run the chunk loop."""

import os
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TextIO

from reverie.backends import Backend, create_backend
from reverie.chunker import Chunk, chunk_files, chunk_text
from reverie.config import (
    API_KEY_ENV,
    DEFAULT_CHUNK_TIMEOUT,
    DEFAULT_CONFIG_FILE,
    DEFAULT_FAILED_CHUNKS_FILE,
    DEFAULT_MAX_RETRIES,
    LOCAL_ALLOWED_MODELS,
    Config,
    load_config,
    normalize_provider,
)
from reverie.errors import ConfigError, HealthCheckError, ReverieError, SourceError
from reverie.ledger import FailedChunkRecord, drop_attempted, read_ledger, select_failed
from reverie.orchestrator import CancelToken, OrchestratorOptions, ReviewOrchestrator, RunSummary
from reverie.session import console, err_console, set_debug_log
from reverie.sources import (
    detect_language_from_diff,
    detect_language_from_filename,
    find_project_files,
    get_branch_diff,
    get_uncommitted_diff,
)
from reverie.ui import print_dim, print_error, print_info, print_phase_hero, print_success, print_warning

MODES = ("diff-uncommitted", "diff-branch", "review-project", "review-file")

DIFF_SOURCE = "<diff>"

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


@dataclass
class RunConfig:
    """Configuration for a reverie run.

    Attributes:
        dir: Project directory to diff or walk. Generated tests are written here.
        file: Single file to review (review-file mode only).
        mode: One of MODES.
        base: Base branch for diff-branch mode.
        llm_provider: Backend override; None keeps the config file's value.
        llm_model: Model override; None keeps the config file's value.
        write_tests: Write generated tests to disk and run them.
        keep_tests: Leave generated test files in place after the run.
        chunk_timeout: Per-call deadline in seconds.
        max_retries: Attempts per backend call.
        failed_chunks_file: Failure ledger path, read on resume and written on failure.
        resume_failed: Only process the chunks recorded in failed_chunks_file.
        config: Path to the TOML config file.
        debug: Enable debug logging to a timestamped file in dir.

    """

    dir: str = "."
    file: str | None = None
    mode: str = "diff-uncommitted"
    base: str = "master"
    llm_provider: str | None = None
    llm_model: str | None = None
    write_tests: bool = False
    keep_tests: bool = False
    chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    failed_chunks_file: str = DEFAULT_FAILED_CHUNKS_FILE
    resume_failed: bool = False
    config: str = DEFAULT_CONFIG_FILE
    debug: bool = False


@dataclass
class WorkItem:
    """Chunks of one language, ready for one orchestrator pass."""

    language: str
    chunks: Sequence[Chunk]
    file_count: int = 0


def _apply_overrides(cfg: Config, config: RunConfig) -> None:
    if config.llm_provider:
        cfg.llm_provider = normalize_provider(config.llm_provider)
    if config.llm_model:
        cfg.llm_model = config.llm_model


def _validate_local_model(cfg: Config) -> None:
    if cfg.llm_provider == "local" and LOCAL_ALLOWED_MODELS and cfg.effective_model not in LOCAL_ALLOWED_MODELS:
        allowed = ", ".join(sorted(LOCAL_ALLOWED_MODELS))
        raise ConfigError(f"Invalid local model: {cfg.effective_model}. Allowed: {allowed}")


def _diff_work(diff: str, cfg: Config) -> list[WorkItem]:
    language = detect_language_from_diff(diff, cfg.languages)
    if language is None:
        supported = ", ".join(sorted(cfg.languages)) or "none configured"
        raise SourceError(f"Could not detect language from diff. Supported: {supported}")
    return [WorkItem(language=language, chunks=chunk_text(diff, cfg.chunk_size, source=DIFF_SOURCE))]


def build_work(config: RunConfig, cfg: Config, target_dir: Path) -> list[WorkItem]:
    """Compute the chunks for the selected mode.

    Returns:
        One WorkItem per language, in processing order. Empty if there is
        nothing to review.

    Raises:
        SourceError: If input cannot be read or its language is unknown.
        ReverieError: If the mode is unknown or its arguments are missing.

    """
    if config.mode == "diff-uncommitted":
        diff = get_uncommitted_diff(target_dir)
        return _diff_work(diff, cfg) if diff.strip() else []

    if config.mode == "diff-branch":
        diff = get_branch_diff(target_dir, config.base)
        return _diff_work(diff, cfg) if diff.strip() else []

    if config.mode == "review-project":
        grouped = find_project_files(target_dir, cfg.languages)
        if not grouped:
            raise SourceError(f"No supported files found in {target_dir}")
        return [
            WorkItem(language=language, chunks=chunk_files(paths, cfg.chunk_size), file_count=len(paths))
            for language, paths in sorted(grouped.items())
        ]

    if config.mode == "review-file":
        if not config.file:
            raise ReverieError("--file must be specified for review-file mode")
        path = Path(config.file)
        language = detect_language_from_filename(path, cfg.languages)
        if language is None:
            supported = ", ".join(sorted(cfg.languages)) or "none configured"
            raise SourceError(f"Could not detect language from {path}. Supported: {supported}")
        return [WorkItem(language=language, chunks=chunk_files([path], cfg.chunk_size), file_count=1)]

    raise ReverieError(f"Unknown mode {config.mode!r}. Use one of: {', '.join(MODES)}")


def apply_resume(work: list[WorkItem], records: Sequence[FailedChunkRecord]) -> list[WorkItem]:
    """Restrict each work item to the chunks recorded in the ledger.

    Records that carry a language only apply to that language's pass.
    Items left with no chunks are dropped.
    """
    resumed: list[WorkItem] = []
    for item in work:
        relevant = [r for r in records if r.language is None or r.language == item.language]
        chunks = select_failed(item.chunks, relevant)
        if chunks:
            resumed.append(WorkItem(language=item.language, chunks=chunks, file_count=item.file_count))
    return resumed


def _selected_records(work: list[WorkItem], records: Sequence[FailedChunkRecord]) -> list[FailedChunkRecord]:
    """Records naming a chunk of some resumed pass; the rest can never be retried."""
    selected = {(item.language, chunk.index) for item in work for chunk in item.chunks}
    return [
        record for record in records
        if any(index == record.index and record.language in (None, language) for language, index in selected)
    ]


async def _run_passes(
    work: list[WorkItem],
    backend: Backend,
    cfg: Config,
    options: OrchestratorOptions,
    cancel_token: CancelToken,
    outstanding: Sequence[FailedChunkRecord] = (),
) -> list[RunSummary]:
    summaries: list[RunSummary] = []
    carried: list[FailedChunkRecord] = []
    # Resume records no pass has retried yet; passes that never start keep theirs
    pending = list(outstanding)
    for item in work:
        if cancel_token.cancelled:
            break
        if len(work) > 1:
            files = f" ({item.file_count} files)" if item.file_count else ""
            print_phase_hero(console, item.language.upper(), f"Reviewing {len(item.chunks)} chunk(s){files}")
        language_config = cfg.languages.get(item.language)
        if language_config is None:
            print_warning(console, f"No prompts configured for {item.language}, skipping")
            continue
        orchestrator = ReviewOrchestrator(backend, item.language, language_config, options, cancel_token)
        summary = await orchestrator.run(item.chunks, carried_failures=carried, outstanding=pending)
        carried.extend(summary.failed_chunks)
        pending = drop_attempted(pending, item.language, (outcome.index for outcome in summary.outcomes))
        summaries.append(summary)
    return summaries


async def run(config: RunConfig | None = None, cancel_token: CancelToken | None = None) -> int:
    """Execute a review run.

    Args:
        config: Run configuration. Defaults to RunConfig().
        cancel_token: Flag set by the interrupt handler.

    Returns:
        Exit code: 0 on success (chunk failures included), 1 on a startup
        fault, 130 if the run was interrupted.

    """
    if config is None:
        config = RunConfig()
    if cancel_token is None:
        cancel_token = CancelToken()

    print_phase_hero(console, "REVERIE", "chunked code review")

    target_dir = Path(config.dir).resolve()
    if not target_dir.is_dir():
        print_error(err_console, "Invalid Directory", f"'{target_dir}' is not a directory")
        return EXIT_FATAL

    # Set up debug logging if enabled
    debug_log_path: Path | None = None
    debug_log_file: TextIO | None = None
    if config.debug:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        debug_log_path = target_dir / f".reverie-debug-{timestamp}.log"
        debug_log_file = open(debug_log_path, "w", encoding="utf-8")  # noqa: SIM115
        set_debug_log(debug_log_file)
        print_info(console, f"Debug log: {debug_log_path}")

    try:
        ledger_path = Path(config.failed_chunks_file) if config.failed_chunks_file else None
        try:
            cfg = load_config(Path(config.config))
            _apply_overrides(cfg, config)
            _validate_local_model(cfg)
            backend = create_backend(cfg.llm_provider, cfg.effective_model, os.environ.get(API_KEY_ENV))

            print_info(console, f"Provider: {cfg.llm_provider} | Model: {cfg.effective_model}")
            await backend.health_check()

            work = build_work(config, cfg, target_dir)
            outstanding: list[FailedChunkRecord] = []
            if config.resume_failed:
                if ledger_path is None:
                    raise ConfigError("--resume-failed requires --failed-chunks-file")
                records = read_ledger(ledger_path)
                work = apply_resume(work, records)
                outstanding = _selected_records(work, records)
                print_info(console, f"Resuming {sum(len(item.chunks) for item in work)} failed chunk(s) from {ledger_path}")
        except ReverieError as e:
            print_error(err_console, type(e).__name__, str(e))
            if isinstance(e, HealthCheckError):
                print_dim(err_console, "Ensure the LLM backend is running and accessible.")
            return EXIT_FATAL

        if not work:
            print_success(console, "No changes to review")
            return EXIT_OK

        print_info(console, f"Target directory: {target_dir}")
        print_info(console, f"Mode: {config.mode}")
        console.print()

        options = OrchestratorOptions(
            target_dir=target_dir,
            write_tests=config.write_tests,
            keep_tests=config.keep_tests,
            chunk_timeout=config.chunk_timeout,
            max_retries=config.max_retries,
            failed_chunks_file=ledger_path,
        )
        summaries = await _run_passes(work, backend, cfg, options, cancel_token, outstanding)

        if cancel_token.cancelled or any(summary.interrupted for summary in summaries):
            return EXIT_INTERRUPTED
        return EXIT_OK

    finally:
        if debug_log_file is not None:
            debug_log_file.close()
            set_debug_log(None)
            if debug_log_path:
                print_info(console, f"Debug log saved: {debug_log_path}")
