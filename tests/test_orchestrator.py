"""Tests for the per-chunk review state machine."""

import json
import re
from io import StringIO
from pathlib import Path

import anyio
import pytest

from reverie.chunker import chunk_text
from reverie.errors import BackendError
from reverie.ledger import (
    STAGE_REVIEW,
    STAGE_TEST_GENERATION,
    FailedChunkRecord,
    read_ledger,
    select_failed,
    write_ledger,
)
from reverie.orchestrator import (
    CancelToken,
    ChunkState,
    OrchestratorOptions,
    ReviewOrchestrator,
    describe_error,
)

# ANSI escape code pattern for stripping terminal colors
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Strip ANSI escape codes from text for assertion comparisons."""
    return _ANSI_ESCAPE.sub("", text)


GO_TEST_OUTPUT = "```go\nfunc TestX(t *testing.T) {}\n```"


# =============================================================================
# Fake Backends
# =============================================================================


class ScriptedBackend:
    """Backend whose answers are scripted per chunk text.

    Each script entry is a list of outcomes consumed in order; an outcome is
    either a string to return or an exception to raise. Chunks without a
    script succeed with a fixed answer.
    """

    model = "fake"

    def __init__(self, reviews=None, tests=None, hang: set[str] | None = None):
        self.reviews: dict[str, list] = reviews or {}
        self.tests: dict[str, list] = tests or {}
        self.hang = hang or set()
        self.review_calls: list[str] = []
        self.test_calls: list[str] = []

    async def _answer(self, script: dict[str, list], code: str, default: str) -> str:
        if code in self.hang:
            await anyio.sleep(60)
        outcomes = script.get(code)
        if not outcomes:
            return default
        outcome = outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def review(self, prompt: str, code: str, language: str) -> str:
        self.review_calls.append(code)
        return await self._answer(self.reviews, code, "Looks good.")

    async def generate_tests(self, prompt: str, code: str, language: str) -> str:
        self.test_calls.append(code)
        return await self._answer(self.tests, code, GO_TEST_OUTPUT)

    async def health_check(self) -> None:
        return None


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingTestRunner:
    def __init__(self, results: list[bool] | None = None):
        self.results = results or []
        self.calls: list[tuple[str, Path]] = []

    async def __call__(self, language: str, directory: Path) -> bool:
        self.calls.append((language, directory))
        return self.results.pop(0) if self.results else True


def _orchestrator(backend, go_config, tmp_path: Path, **overrides):
    sleep = overrides.pop("sleep", RecordingSleep())
    test_runner = overrides.pop("test_runner", RecordingTestRunner())
    cancel_token = overrides.pop("cancel_token", None)
    on_transition = overrides.pop("on_transition", None)
    options = OrchestratorOptions(target_dir=tmp_path, **overrides)
    return ReviewOrchestrator(
        backend,
        "go",
        go_config,
        options,
        cancel_token,
        sleep=sleep,
        test_runner=test_runner,
        on_transition=on_transition,
    )


# =============================================================================
# Retry behavior
# =============================================================================


@pytest.mark.asyncio
async def test_fail_twice_then_succeed_logs_two_retries(output: StringIO, go_config, tmp_path: Path):
    chunks = chunk_text("a\n", 10)
    backend = ScriptedBackend(reviews={"a\n": [BackendError("status 503", 503), BackendError("status 503", 503), "Fine."]})
    sleep = RecordingSleep()

    summary = await _orchestrator(backend, go_config, tmp_path, max_retries=3, sleep=sleep).run(chunks)

    assert summary.chunks_failed == 0
    assert summary.outcomes[0].review == "Fine."
    assert len(backend.review_calls) == 3
    assert sleep.delays == [2.0, 2.0]
    plain = strip_ansi(output.getvalue())
    assert "attempt 1/3" in plain
    assert "attempt 2/3" in plain
    assert "attempt 3/3" not in plain


@pytest.mark.asyncio
async def test_two_chunks_second_exhausts_retries(output: StringIO, go_config, tmp_path: Path):
    ledger = tmp_path / "failed_chunks.json"
    chunks = chunk_text("ok\nbad\n", 1)
    backend = ScriptedBackend(reviews={"bad\n": [ConnectionError("reset")] * 2})

    summary = await _orchestrator(
        backend, go_config, tmp_path, max_retries=2, failed_chunks_file=ledger
    ).run(chunks)

    assert summary.chunks_attempted == 2
    assert summary.chunks_failed == 1
    assert [record.index for record in summary.failed_chunks] == [1]
    data = json.loads(ledger.read_text())
    assert len(data) == 1
    assert data[0]["index"] == 1
    assert data[0]["stage"] == STAGE_REVIEW
    assert "ConnectionError: reset" in data[0]["error"]
    # Review failure skips test generation for that chunk
    assert backend.test_calls == ["ok\n"]
    assert "--resume-failed" in strip_ansi(output.getvalue())


@pytest.mark.asyncio
async def test_test_generation_failure_is_recorded(output, go_config, tmp_path: Path):
    chunks = chunk_text("a\n", 10)
    backend = ScriptedBackend(tests={"a\n": [BackendError("status 500", 500)]})

    summary = await _orchestrator(backend, go_config, tmp_path).run(chunks)

    assert summary.failed_chunks == [
        FailedChunkRecord(index=0, error="BackendError: status 500", stage=STAGE_TEST_GENERATION, language="go")
    ]
    assert summary.outcomes[0].review == "Looks good."
    assert summary.outcomes[0].tests is None


@pytest.mark.asyncio
async def test_each_attempt_gets_its_own_deadline(output, go_config, tmp_path: Path):
    chunks = chunk_text("slow\n", 10)
    backend = ScriptedBackend(hang={"slow\n"})

    summary = await _orchestrator(backend, go_config, tmp_path, chunk_timeout=0.05, max_retries=2).run(chunks)

    assert len(backend.review_calls) == 2
    assert summary.failed_chunks[0].error == "deadline exceeded after 0.05s"


@pytest.mark.asyncio
async def test_consecutive_timeouts_warn(output: StringIO, go_config, tmp_path: Path):
    chunks = chunk_text("1\n2\n3\n", 1)
    backend = ScriptedBackend(hang={"1\n", "2\n", "3\n"})

    summary = await _orchestrator(backend, go_config, tmp_path, chunk_timeout=0.02).run(chunks)

    assert summary.chunks_failed == 3
    assert "3 consecutive chunk timeouts" in strip_ansi(output.getvalue())


@pytest.mark.asyncio
async def test_timeout_streak_resets_on_success(output: StringIO, go_config, tmp_path: Path):
    chunks = chunk_text("1\n2\nok\n3\n", 1)
    backend = ScriptedBackend(hang={"1\n", "2\n", "3\n"})

    await _orchestrator(backend, go_config, tmp_path, chunk_timeout=0.02).run(chunks)

    assert "consecutive chunk timeouts" not in strip_ansi(output.getvalue())


# =============================================================================
# State transitions and empty responses
# =============================================================================


@pytest.mark.asyncio
async def test_transitions_without_test_writing(output, go_config, tmp_path: Path):
    transitions: list[tuple[int, ChunkState]] = []
    chunks = chunk_text("a\n", 10)

    await _orchestrator(
        ScriptedBackend(), go_config, tmp_path, on_transition=lambda i, s: transitions.append((i, s))
    ).run(chunks)

    assert [state for _, state in transitions] == [
        ChunkState.PENDING,
        ChunkState.REVIEWING,
        ChunkState.REVIEWED,
        ChunkState.TEST_GENERATING,
        ChunkState.TEST_GENERATED,
        ChunkState.DONE,
    ]


@pytest.mark.asyncio
async def test_review_failure_transitions(output, go_config, tmp_path: Path):
    transitions: list[ChunkState] = []
    chunks = chunk_text("a\n", 10)
    backend = ScriptedBackend(reviews={"a\n": [BackendError("down")]})

    await _orchestrator(backend, go_config, tmp_path, on_transition=lambda i, s: transitions.append(s)).run(chunks)

    assert transitions[-2:] == [ChunkState.REVIEW_FAILED, ChunkState.DONE]
    assert ChunkState.TEST_GENERATING not in transitions


@pytest.mark.asyncio
async def test_empty_review_warns_and_continues(output: StringIO, go_config, tmp_path: Path):
    chunks = chunk_text("a\n", 10)
    backend = ScriptedBackend(reviews={"a\n": [""]})

    summary = await _orchestrator(backend, go_config, tmp_path).run(chunks)

    assert summary.outcomes[0].empty_review
    assert summary.chunks_failed == 0
    assert backend.test_calls == ["a\n"]
    assert "empty review" in strip_ansi(output.getvalue())


# =============================================================================
# Test artifacts
# =============================================================================


@pytest.mark.asyncio
async def test_write_tests_runs_and_cleans_up(output, go_config, tmp_path: Path):
    runner = RecordingTestRunner(results=[True, False])
    chunks = chunk_text("a\nb\n", 1)
    transitions: list[ChunkState] = []
    orchestrator = _orchestrator(
        ScriptedBackend(),
        go_config,
        tmp_path,
        write_tests=True,
        test_runner=runner,
        on_transition=lambda i, s: transitions.append(s),
    )

    summary = await orchestrator.run(chunks)

    assert summary.artifacts_written == 2
    assert summary.tests_passed == 1
    assert summary.tests_failed == 1
    assert runner.calls == [("go", tmp_path), ("go", tmp_path)]
    assert ChunkState.PASSED in transitions
    assert ChunkState.FAILED in transitions
    assert list(tmp_path.glob("*_test.go")) == []


@pytest.mark.asyncio
async def test_keep_tests_leaves_files(output, go_config, tmp_path: Path):
    chunks = chunk_text("a\n", 10)
    orchestrator = _orchestrator(ScriptedBackend(), go_config, tmp_path, write_tests=True, keep_tests=True)

    await orchestrator.run(chunks)

    kept = list(tmp_path.glob("llm_generated_test_0_0_*_test.go"))
    assert len(kept) == 1
    assert orchestrator.written_files == kept


@pytest.mark.asyncio
async def test_no_code_blocks_skips_test_run(output: StringIO, go_config, tmp_path: Path):
    runner = RecordingTestRunner()
    chunks = chunk_text("a\n", 10)
    backend = ScriptedBackend(tests={"a\n": ["I would test the happy path."]})

    summary = await _orchestrator(backend, go_config, tmp_path, write_tests=True, test_runner=runner).run(chunks)

    assert runner.calls == []
    assert summary.artifacts_written == 0
    assert summary.chunks_failed == 0
    assert "no code blocks found" in strip_ansi(output.getvalue())


@pytest.mark.asyncio
async def test_tests_not_written_without_flag(output, go_config, tmp_path: Path):
    runner = RecordingTestRunner()
    await _orchestrator(ScriptedBackend(), go_config, tmp_path, test_runner=runner).run(chunk_text("a\n", 10))

    assert runner.calls == []
    assert list(tmp_path.iterdir()) == []


# =============================================================================
# Cancellation and ledger
# =============================================================================


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_chunk(output, go_config, tmp_path: Path):
    token = CancelToken()
    chunks = chunk_text("1\n2\n3\n", 1)

    def cancel_after_first(index: int, state: ChunkState) -> None:
        if index == 0 and state is ChunkState.DONE:
            token.cancel()

    backend = ScriptedBackend()
    summary = await _orchestrator(
        backend, go_config, tmp_path, write_tests=True, cancel_token=token, on_transition=cancel_after_first
    ).run(chunks)

    assert summary.interrupted
    assert summary.chunks_attempted == 1
    assert backend.review_calls == ["1\n"]
    # Cleanup still ran for the chunk that finished
    assert list(tmp_path.glob("*_test.go")) == []


@pytest.mark.asyncio
async def test_cancelled_before_start_processes_nothing(output, go_config, tmp_path: Path):
    token = CancelToken()
    token.cancel()
    backend = ScriptedBackend()

    summary = await _orchestrator(backend, go_config, tmp_path, cancel_token=token).run(chunk_text("a\n", 10))

    assert summary.interrupted
    assert summary.chunks_attempted == 0
    assert backend.review_calls == []


@pytest.mark.asyncio
async def test_no_ledger_without_failures(output, go_config, tmp_path: Path):
    ledger = tmp_path / "failed_chunks.json"
    await _orchestrator(ScriptedBackend(), go_config, tmp_path, failed_chunks_file=ledger).run(chunk_text("a\n", 10))
    assert not ledger.exists()


@pytest.mark.asyncio
async def test_carried_failures_are_kept_in_ledger(output, go_config, tmp_path: Path):
    ledger = tmp_path / "failed_chunks.json"
    carried = [FailedChunkRecord(index=5, error="earlier", language="php")]
    backend = ScriptedBackend(reviews={"a\n": [BackendError("down")]})

    await _orchestrator(backend, go_config, tmp_path, failed_chunks_file=ledger).run(
        chunk_text("a\n", 10), carried_failures=carried
    )

    data = json.loads(ledger.read_text())
    assert [(entry["index"], entry["language"]) for entry in data] == [(5, "php"), (0, "go")]


# =============================================================================
# Resume runs
# =============================================================================


@pytest.mark.asyncio
async def test_interrupted_resume_keeps_unreached_records(output, go_config, tmp_path: Path):
    ledger = tmp_path / "failed_chunks.json"
    records = [FailedChunkRecord(index=i, error="old", language="go") for i in range(3)]
    write_ledger(ledger, records)
    chunks = select_failed(chunk_text("0\n1\n2\n", 1), read_ledger(ledger))
    token = CancelToken()

    def cancel_after_first(index: int, state: ChunkState) -> None:
        if index == 0 and state is ChunkState.DONE:
            token.cancel()

    backend = ScriptedBackend(reviews={"0\n": [BackendError("down")]})
    summary = await _orchestrator(
        backend, go_config, tmp_path, failed_chunks_file=ledger, cancel_token=token, on_transition=cancel_after_first
    ).run(chunks, outstanding=records)

    assert summary.interrupted
    data = json.loads(ledger.read_text())
    assert [entry["index"] for entry in data] == [0, 1, 2]
    assert [entry["error"] for entry in data] == ["BackendError: down", "old", "old"]


@pytest.mark.asyncio
async def test_successful_resume_clears_ledger(output: StringIO, go_config, tmp_path: Path):
    ledger = tmp_path / "failed_chunks.json"
    records = [FailedChunkRecord(index=1, error="old", language="go")]
    write_ledger(ledger, records)
    chunks = select_failed(chunk_text("0\n1\n", 1), records)

    await _orchestrator(ScriptedBackend(), go_config, tmp_path, failed_chunks_file=ledger).run(
        chunks, outstanding=records
    )

    assert json.loads(ledger.read_text()) == []
    assert "cleared" in strip_ansi(output.getvalue())


@pytest.mark.asyncio
async def test_resume_keeps_records_of_other_languages(output, go_config, tmp_path: Path):
    ledger = tmp_path / "failed_chunks.json"
    records = [
        FailedChunkRecord(index=0, error="old", language="go"),
        FailedChunkRecord(index=0, error="old", language="php"),
    ]
    chunks = select_failed(chunk_text("a\n", 1), records[:1])

    await _orchestrator(ScriptedBackend(), go_config, tmp_path, failed_chunks_file=ledger).run(
        chunks, outstanding=records
    )

    data = json.loads(ledger.read_text())
    assert [(entry["index"], entry["language"]) for entry in data] == [(0, "php")]


def test_invalid_max_retries(go_config, tmp_path: Path):
    with pytest.raises(ValueError, match="max_retries"):
        _orchestrator(ScriptedBackend(), go_config, tmp_path, max_retries=0)


def test_describe_error():
    assert describe_error(TimeoutError(), 30) == "deadline exceeded after 30s"
    assert describe_error(BackendError("status 502", 502)) == "BackendError: status 502"
    assert describe_error(ConnectionError()) == "ConnectionError"


def test_cancel_token():
    token = CancelToken()
    assert not token.cancelled
    token.cancel()
    assert token.cancelled
