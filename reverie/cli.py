"""CLI entry point for reverie."""

import argparse
import math
import re
import signal
import sys
from functools import partial

import anyio

from reverie.config import (
    DEFAULT_CHUNK_TIMEOUT,
    DEFAULT_CONFIG_FILE,
    DEFAULT_FAILED_CHUNKS_FILE,
    DEFAULT_MAX_RETRIES,
    PROVIDER_ALIASES,
)
from reverie.orchestrator import CancelToken
from reverie.runner import EXIT_FATAL, EXIT_INTERRUPTED, MODES, RunConfig, run
from reverie.session import console, err_console
from reverie.ui import (
    ShutdownPanel,
    get_shutdown_panel,
    print_error,
    set_shutdown_panel,
)

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """Parse a duration such as "30s", "2m", "1h" or "1m30s" into seconds.

    A bare number is taken as seconds.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive duration.

    """
    text = value.strip().lower()
    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART_RE.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
            pos = match.end()
        if pos != len(text) or not text:
            raise argparse.ArgumentTypeError(f"invalid duration: {value!r} (e.g. 30s, 2m, 1m30s)") from None
    if not math.isfinite(seconds) or seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive: {value!r}")
    return seconds


def _signal_handler(cancel_token: CancelToken, signum: int, frame: object) -> None:
    """Request a graceful stop; a second signal aborts immediately."""
    signal_name = signal.Signals(signum).name

    if cancel_token.cancelled:
        panel = get_shutdown_panel()
        if panel is not None:
            panel.add_step(f"Received {signal_name} again, aborting", status="completed")
        raise KeyboardInterrupt

    cancel_token.cancel()

    panel = ShutdownPanel(console)
    set_shutdown_panel(panel)
    panel.start(f"Received {signal_name}, finishing current chunk")
    panel.add_step("Waiting for in-flight chunk (press Ctrl-C again to abort)")


def _install_signal_handlers(cancel_token: CancelToken) -> None:
    """Install signal handlers for graceful shutdown."""
    handler = partial(_signal_handler, cancel_token)
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reverie",
        description="Chunked LLM code review with optional generated tests",
    )

    parser.add_argument(
        "--dir",
        default=".",
        help="Project directory for diff or review (default: .)",
    )
    parser.add_argument(
        "--file",
        default=None,
        help="Single file to review (review-file mode)",
    )
    parser.add_argument(
        "--mode",
        choices=MODES,
        default="diff-uncommitted",
        help="What to review (default: diff-uncommitted)",
    )
    parser.add_argument(
        "--base",
        default="master",
        help="Base branch for diff-branch mode (default: master)",
    )

    parser.add_argument(
        "--llm-provider",
        choices=sorted(PROVIDER_ALIASES),
        default=None,
        dest="llm_provider",
        help="LLM provider, overrides the config file",
    )
    parser.add_argument(
        "--llm-model",
        default=None,
        dest="llm_model",
        help="LLM model name, overrides the config file",
    )

    parser.add_argument(
        "--write-tests",
        action="store_true",
        default=False,
        dest="write_tests",
        help="Write generated tests to disk and run them",
    )
    parser.add_argument(
        "--keep-tests",
        action="store_true",
        default=False,
        dest="keep_tests",
        help="Keep generated test files after the run",
    )

    parser.add_argument(
        "--chunk-timeout",
        type=parse_duration,
        default=DEFAULT_CHUNK_TIMEOUT,
        dest="chunk_timeout",
        metavar="DURATION",
        help="Deadline for each backend call, e.g. 30s, 2m (default: 5m)",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=DEFAULT_MAX_RETRIES,
        dest="max_retries",
        metavar="N",
        help=f"Attempts per backend call (default: {DEFAULT_MAX_RETRIES})",
    )
    parser.add_argument(
        "--failed-chunks-file",
        default=DEFAULT_FAILED_CHUNKS_FILE,
        dest="failed_chunks_file",
        help=f"File to save/read failed chunk indices (default: {DEFAULT_FAILED_CHUNKS_FILE})",
    )
    parser.add_argument(
        "--resume-failed",
        action="store_true",
        default=False,
        dest="resume_failed",
        help="Only process chunks recorded in the failed chunks file",
    )

    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to the TOML config file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Save debug log",
    )

    return parser


def _parse_args(argv: list[str] | None = None) -> RunConfig:
    """Parse command line arguments and return a RunConfig.

    Returns:
        RunConfig: Configuration object populated from command line arguments.

    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.max_retries < 1:
        parser.error("--max-retries must be at least 1")
    if args.mode == "review-file" and not args.file:
        parser.error("--file must be specified for review-file mode")
    if args.keep_tests and not args.write_tests:
        console.print("[dim]--keep-tests has no effect without --write-tests[/dim]")

    return RunConfig(
        dir=args.dir,
        file=args.file,
        mode=args.mode,
        base=args.base,
        llm_provider=args.llm_provider,
        llm_model=args.llm_model,
        write_tests=args.write_tests,
        keep_tests=args.keep_tests,
        chunk_timeout=args.chunk_timeout,
        max_retries=args.max_retries,
        failed_chunks_file=args.failed_chunks_file,
        resume_failed=args.resume_failed,
        config=args.config,
        debug=args.debug,
    )


def _finish_shutdown_panel(final_step: str | None = None) -> None:
    panel = get_shutdown_panel()
    if panel is not None:
        panel.complete_last_step()
        if final_step:
            panel.add_step(final_step, status="completed")
        panel.finish()
        set_shutdown_panel(None)


def main() -> None:
    """Run the CLI entry point.

    Raises:
        SystemExit: Always raised with exit code 0 on success, 130 on keyboard
            interrupt, or 1 on fatal error.

    """
    config = _parse_args()
    cancel_token = CancelToken()
    _install_signal_handlers(cancel_token)
    try:
        exit_code = anyio.run(run, config, cancel_token)
        _finish_shutdown_panel("Stopped after current chunk" if exit_code == EXIT_INTERRUPTED else None)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        _finish_shutdown_panel("Aborted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        _finish_shutdown_panel()
        err_console.print()
        print_error(err_console, "Fatal Error", str(e))
        sys.exit(EXIT_FATAL)


if __name__ == "__main__":
    main()
