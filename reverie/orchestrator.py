"""Per-chunk review state machine.

Chunks are processed strictly one at a time, in the order given::

    Pending -> Reviewing -> {Reviewed | ReviewFailed}
            -> TestGenerating -> {TestGenerated | TestGenFailed}
            -> [WritingArtifacts -> Running -> {Passed | Failed}] -> Done

Every fault inside a chunk is absorbed at the chunk boundary. Only a
cancellation request stops the loop early, and even then the summary,
artifact cleanup and failure ledger still happen.
"""

import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TypeVar

import anyio

from reverie.artifacts import cleanup, parse_and_write, run_tests
from reverie.backends import Backend
from reverie.chunker import Chunk
from reverie.config import (
    CONSECUTIVE_TIMEOUT_WARNING,
    DEFAULT_CHUNK_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    RETRY_DELAY,
    LanguageConfig,
)
from reverie.errors import ArtifactError, LedgerError
from reverie.ledger import (
    STAGE_REVIEW,
    STAGE_TEST_GENERATION,
    FailedChunkRecord,
    drop_attempted,
    write_ledger,
)
from reverie.retry import Sleep, retry_with_backoff
from reverie.session import _log_debug, console
from reverie.ui import (
    print_chunk_complete,
    print_chunk_progress,
    print_dim,
    print_error,
    print_info,
    print_model_output,
    print_success,
    print_summary,
    print_warning,
)

T = TypeVar("T")

TestRunner = Callable[[str, Path], Awaitable[bool]]


class ChunkState(Enum):
    """States a chunk moves through."""

    PENDING = "pending"
    REVIEWING = "reviewing"
    REVIEWED = "reviewed"
    REVIEW_FAILED = "review_failed"
    TEST_GENERATING = "test_generating"
    TEST_GENERATED = "test_generated"
    TEST_GEN_FAILED = "test_gen_failed"
    WRITING_ARTIFACTS = "writing_artifacts"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    DONE = "done"


class CancelToken:
    """Cooperative cancellation flag shared with a signal handler.

    Safe to set from one thread and read from another. The orchestrator
    only samples it between chunks.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request that no further chunks be started."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class OrchestratorOptions:
    """Per-run settings for ReviewOrchestrator.

    Attributes:
        target_dir: Directory generated tests are written to and run in.
        write_tests: Write generated tests to disk and run them.
        keep_tests: Leave generated test files in place after the run.
        chunk_timeout: Deadline in seconds for each backend attempt.
        max_retries: Attempts per backend call, at least 1.
        failed_chunks_file: Where to write the failure ledger, or None.
        retry_delay: Fixed pause in seconds between attempts.

    """

    target_dir: Path
    write_tests: bool = False
    keep_tests: bool = False
    chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    failed_chunks_file: Path | None = None
    retry_delay: float = RETRY_DELAY


@dataclass
class ReviewOutcome:
    """What happened to one chunk.

    Attributes:
        index: Chunk index.
        review: Review text, or None if the review failed.
        tests: Test-generation text, or None if it failed or never ran.
        error: Error text of the failing stage, if any.
        artifacts: Test files written for this chunk.

    """

    index: int
    review: str | None = None
    tests: str | None = None
    error: str | None = None
    artifacts: list[Path] = field(default_factory=list)

    @property
    def empty_review(self) -> bool:
        return self.review is not None and not self.review.strip()


@dataclass
class RunSummary:
    """Aggregate counters for one orchestrator run."""

    language: str
    chunks_total: int = 0
    chunks_attempted: int = 0
    artifacts_written: int = 0
    tests_passed: int = 0
    tests_failed: int = 0
    failed_chunks: list[FailedChunkRecord] = field(default_factory=list)
    outcomes: list[ReviewOutcome] = field(default_factory=list)
    interrupted: bool = False

    @property
    def chunks_failed(self) -> int:
        return len({record.index for record in self.failed_chunks})


class _StageError(Exception):
    """A review or test-generation stage exhausted its attempts."""

    def __init__(self, cause: Exception, attempts: int):
        self.cause = cause
        self.attempts = attempts
        super().__init__(str(cause))


def describe_error(exc: BaseException, timeout: float | None = None) -> str:
    """Human readable error text, naming deadline expiry explicitly."""
    if isinstance(exc, TimeoutError):
        if timeout is not None:
            return f"deadline exceeded after {timeout:g}s"
        return "deadline exceeded"
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class ReviewOrchestrator:
    """Walk a chunk sequence through review, test generation and test runs.

    Args:
        backend: Backend used for both request kinds.
        language: Language identifier of every chunk in this run.
        language_config: Prompts for the language.
        options: Per-run settings.
        cancel_token: Flag checked before each chunk starts.
        sleep: Awaitable sleep for retry delays, injectable for tests.
        test_runner: Coroutine running the project's tests.
        clock: Nanosecond clock used in artifact file names.
        on_transition: Called as (chunk_index, state) on every transition.

    """

    def __init__(
        self,
        backend: Backend,
        language: str,
        language_config: LanguageConfig,
        options: OrchestratorOptions,
        cancel_token: CancelToken | None = None,
        *,
        sleep: Sleep = anyio.sleep,
        test_runner: TestRunner = run_tests,
        clock: Callable[[], int] = time.time_ns,
        on_transition: Callable[[int, ChunkState], None] | None = None,
    ) -> None:
        if options.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {options.max_retries}")
        self.backend = backend
        self.language = language
        self.language_config = language_config
        self.options = options
        self.cancel_token = cancel_token or CancelToken()
        self._sleep = sleep
        self._test_runner = test_runner
        self._clock = clock
        self._on_transition = on_transition
        self._timeout_streak = 0
        self._written: list[Path] = []

    @property
    def written_files(self) -> list[Path]:
        """Test files written so far in the current run."""
        return list(self._written)

    async def run(
        self,
        chunks: Sequence[Chunk],
        carried_failures: Sequence[FailedChunkRecord] = (),
        outstanding: Sequence[FailedChunkRecord] = (),
    ) -> RunSummary:
        """Process every chunk, then summarize, clean up and write the ledger.

        Args:
            chunks: Chunks to process, in order.
            carried_failures: Failures from earlier passes of the same
                invocation, written to the ledger alongside this run's.
            outstanding: Ledger records a resume has yet to retry. Those this
                run does not attempt (an interrupt, or another language's
                pass) are written back unchanged.

        Returns:
            The run's summary.

        """
        summary = RunSummary(language=self.language, chunks_total=len(chunks))
        self._written = []
        self._timeout_streak = 0

        try:
            for position, chunk in enumerate(chunks, 1):
                if self.cancel_token.cancelled:
                    summary.interrupted = True
                    print_warning(console, f"Interrupted, skipping {len(chunks) - position + 1} remaining chunk(s)")
                    break
                outcome = await self._process(chunk, position, len(chunks), summary)
                summary.outcomes.append(outcome)
        finally:
            self._finish(summary, carried_failures, outstanding)
        return summary

    def _transition(self, chunk: Chunk, state: ChunkState) -> None:
        _log_debug(f"[STATE] chunk={chunk.index} {state.value}\n")
        if self._on_transition is not None:
            self._on_transition(chunk.index, state)

    async def _process(self, chunk: Chunk, position: int, total: int, summary: RunSummary) -> ReviewOutcome:
        outcome = ReviewOutcome(index=chunk.index)
        summary.chunks_attempted += 1
        self._transition(chunk, ChunkState.PENDING)
        print_chunk_progress(console, position, total, self.language, chunk.source)

        # Review
        self._transition(chunk, ChunkState.REVIEWING)
        try:
            review = await self._call_stage(
                "Review",
                chunk,
                lambda: self.backend.review(self.language_config.review_prompt, chunk.text, self.language),
            )
        except _StageError as e:
            self._record_failure(summary, outcome, chunk, STAGE_REVIEW, e)
            self._transition(chunk, ChunkState.REVIEW_FAILED)
            self._transition(chunk, ChunkState.DONE)
            print_chunk_complete(console, position, total, ok=False)
            return outcome

        outcome.review = review
        self._transition(chunk, ChunkState.REVIEWED)
        if outcome.empty_review:
            print_warning(console, f"Backend returned an empty review for chunk {chunk.index}")
        else:
            print_model_output(console, f"Review · chunk {chunk.index}", review)

        # Test generation
        self._transition(chunk, ChunkState.TEST_GENERATING)
        try:
            tests = await self._call_stage(
                "Test generation",
                chunk,
                lambda: self.backend.generate_tests(self.language_config.test_prompt, chunk.text, self.language),
            )
        except _StageError as e:
            self._record_failure(summary, outcome, chunk, STAGE_TEST_GENERATION, e)
            self._transition(chunk, ChunkState.TEST_GEN_FAILED)
            self._transition(chunk, ChunkState.DONE)
            print_chunk_complete(console, position, total, ok=False)
            return outcome

        outcome.tests = tests
        self._transition(chunk, ChunkState.TEST_GENERATED)
        if not tests.strip():
            print_warning(console, f"Backend returned no test suggestions for chunk {chunk.index}")
        else:
            print_model_output(console, f"Test suggestions · chunk {chunk.index}", tests)

        if self.options.write_tests:
            await self._write_and_run(chunk, tests, outcome, summary)

        self._transition(chunk, ChunkState.DONE)
        print_chunk_complete(console, position, total)
        return outcome

    async def _call_stage(self, label: str, chunk: Chunk, call: Callable[[], Awaitable[T]]) -> T:
        """Run one backend call with a fresh deadline per attempt and a fixed delay between attempts."""
        timeout = self.options.chunk_timeout
        max_retries = self.options.max_retries

        async def attempt() -> T:
            with anyio.fail_after(timeout):
                return await call()

        def on_retry(attempt_num: int, exc: Exception, delay: float) -> None:
            print_warning(
                console,
                f"{label} error in chunk {chunk.index} [{self.language}] "
                f"(attempt {attempt_num}/{max_retries}): {describe_error(exc, timeout)}. "
                f"Retrying in {delay:g}s",
            )

        try:
            result = await retry_with_backoff(
                attempt,
                max_retries,
                initial_backoff=self.options.retry_delay,
                multiplier=1.0,
                sleep=self._sleep,
                on_retry=on_retry,
            )
        except Exception as exc:
            raise _StageError(exc, max_retries) from exc

        self._timeout_streak = 0
        return result

    def _record_failure(
        self,
        summary: RunSummary,
        outcome: ReviewOutcome,
        chunk: Chunk,
        stage: str,
        error: _StageError,
    ) -> None:
        message = describe_error(error.cause, self.options.chunk_timeout)
        label = "Review" if stage == STAGE_REVIEW else "Test generation"
        print_error(
            console,
            f"{label} Failed",
            f"Chunk {chunk.index} [{self.language}] (attempt {error.attempts}/{error.attempts}): {message}",
        )
        outcome.error = message
        summary.failed_chunks.append(
            FailedChunkRecord(index=chunk.index, error=message, stage=stage, language=self.language)
        )

        if isinstance(error.cause, TimeoutError):
            self._timeout_streak += 1
            if self._timeout_streak >= CONSECUTIVE_TIMEOUT_WARNING:
                print_warning(
                    console,
                    f"{self._timeout_streak} consecutive chunk timeouts. Check your LLM backend "
                    "or consider increasing --chunk-timeout.",
                )
        else:
            self._timeout_streak = 0

    async def _write_and_run(self, chunk: Chunk, tests: str, outcome: ReviewOutcome, summary: RunSummary) -> None:
        self._transition(chunk, ChunkState.WRITING_ARTIFACTS)
        try:
            files = parse_and_write(tests, self.language, self.options.target_dir, chunk.index, clock=self._clock)
        except ArtifactError as e:
            print_warning(console, f"Failed to write tests for chunk {chunk.index} [{self.language}]: {e}")
            return

        self._written.extend(files)
        outcome.artifacts = files
        summary.artifacts_written += len(files)
        print_success(console, f"Wrote generated tests: {', '.join(path.name for path in files)}")

        self._transition(chunk, ChunkState.RUNNING)
        try:
            passed = await self._test_runner(self.language, self.options.target_dir)
        except ArtifactError as e:
            print_warning(console, f"Test run for chunk {chunk.index} could not start: {e}")
            passed = False

        if passed:
            summary.tests_passed += len(files)
            self._transition(chunk, ChunkState.PASSED)
            print_success(console, "Tests passed")
        else:
            summary.tests_failed += len(files)
            self._transition(chunk, ChunkState.FAILED)
            print_warning(console, f"Test run failed for chunk {chunk.index} [{self.language}]")

    def _finish(
        self,
        summary: RunSummary,
        carried_failures: Sequence[FailedChunkRecord],
        outstanding: Sequence[FailedChunkRecord],
    ) -> None:
        print_summary(console, summary)

        if self._written:
            if self.options.keep_tests:
                print_info(console, f"Kept {len(self._written)} generated test file(s)")
            else:
                errors = cleanup(self._written)
                for path, err in errors:
                    print_warning(console, f"Could not remove {path}: {err}")
                print_success(console, f"Cleaned up {len(self._written) - len(errors)} generated test file(s)")

        remaining = drop_attempted(outstanding, self.language, (outcome.index for outcome in summary.outcomes))
        failures = [*carried_failures, *summary.failed_chunks, *remaining]
        path = self.options.failed_chunks_file
        # A resume always rewrites the ledger, even to an empty array
        if path is not None and (failures or outstanding):
            try:
                write_ledger(path, failures)
            except LedgerError as e:
                print_error(console, "Ledger Not Written", str(e))
            else:
                if failures:
                    print_warning(
                        console,
                        f"Wrote {len(failures)} failed chunk(s) to {path}. "
                        "Use --resume-failed to retry only failed chunks.",
                    )
                else:
                    print_success(console, f"All resumed chunks succeeded; cleared {path}")
        elif summary.failed_chunks:
            print_dim(console, "No failed chunks file configured; failures were not saved")
