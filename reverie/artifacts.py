"""Generated test artifacts: parse, write, run, clean up.

Model test suggestions come back as Markdown. Every fenced code block is
written to its own file, named after the chunk index, the block's position
and a nanosecond timestamp so repeated runs in one directory never collide.
"""

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import anyio

from reverie.errors import ArtifactError, NoCodeBlocksError, UnsupportedLanguageError
from reverie.session import _log_debug

# Opening fence with optional info string, body, closing fence
_CODE_BLOCK_RE = re.compile(r"```[^\n`]*\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ArtifactConvention:
    """How one language names its test files and runs its tests.

    Attributes:
        filename_template: Format string with chunk, block and ns fields.
        command: Test command, run from the target directory.

    """

    filename_template: str
    command: tuple[str, ...]


CONVENTIONS: dict[str, ArtifactConvention] = {
    "go": ArtifactConvention(
        filename_template="llm_generated_test_{chunk}_{block}_{ns}_test.go",
        command=("go", "test", "./..."),
    ),
    "php": ArtifactConvention(
        filename_template="LLMGeneratedTest_{chunk}_{block}_{ns}Test.php",
        command=("phpunit",),
    ),
    "python": ArtifactConvention(
        filename_template="test_llm_generated_{chunk}_{block}_{ns}.py",
        command=("python", "-m", "pytest", "-q"),
    ),
}


def get_convention(language: str) -> ArtifactConvention:
    """Look up the convention for a language.

    Raises:
        UnsupportedLanguageError: If no convention is registered.

    """
    try:
        return CONVENTIONS[language]
    except KeyError:
        raise UnsupportedLanguageError(f"test writing not supported for language: {language}") from None


def extract_code_blocks(text: str) -> list[str]:
    """Return the bodies of all fenced code blocks, in order.

    The info string after the opening fence (the language label) is not
    part of the body. Blocks that contain only whitespace are skipped.
    """
    return [m.group(1) for m in _CODE_BLOCK_RE.finditer(text) if m.group(1).strip()]


def artifact_filename(language: str, chunk_index: int, block: int, timestamp_ns: int) -> str:
    """Build the file name for one generated test block."""
    convention = get_convention(language)
    return convention.filename_template.format(chunk=chunk_index, block=block, ns=timestamp_ns)


def parse_and_write(
    model_output: str,
    language: str,
    destination: Path,
    chunk_index: int,
    clock: Callable[[], int] = time.time_ns,
) -> list[Path]:
    """Write every code block in model_output as a separate test file.

    Args:
        model_output: Text returned by the test-generation request.
        language: Language identifier selecting the naming convention.
        destination: Directory to write into.
        chunk_index: Index of the chunk the tests were generated for.
        clock: Nanosecond clock used in file names.

    Returns:
        Paths of the written files, in block order.

    Raises:
        UnsupportedLanguageError: If the language has no convention.
        NoCodeBlocksError: If the output has no fenced code blocks.
        ArtifactError: If a file cannot be written. Files written before
            the failure are removed again.

    """
    get_convention(language)
    blocks = extract_code_blocks(model_output)
    if not blocks:
        raise NoCodeBlocksError("no code blocks found in LLM test output")

    written: list[Path] = []
    for block_num, code in enumerate(blocks):
        path = destination / artifact_filename(language, chunk_index, block_num, clock())
        try:
            path.write_text(code, encoding="utf-8")
        except OSError as e:
            cleanup(written)
            raise ArtifactError(f"failed to write {path}: {e}") from e
        _log_debug(f"[ARTIFACT] wrote {path} ({len(code)} chars)\n")
        written.append(path)
    return written


async def run_tests(language: str, directory: Path) -> bool:
    """Run the project's test command for language in directory.

    Output goes straight to the terminal. The exit status alone decides
    the result.

    Returns:
        True if the command exited with status 0.

    Raises:
        UnsupportedLanguageError: If the language has no convention.
        ArtifactError: If the command could not be started.

    """
    convention = get_convention(language)
    _log_debug(f"[TEST_RUN] {' '.join(convention.command)} cwd={directory}\n")
    try:
        result = await anyio.run_process(
            list(convention.command),
            cwd=directory,
            input=b"",
            check=False,
            stdout=None,
            stderr=None,
        )
    except OSError as e:
        raise ArtifactError(f"could not run {convention.command[0]}: {e}") from e
    _log_debug(f"[TEST_RUN] exit={result.returncode}\n")
    return result.returncode == 0


def cleanup(paths: list[Path]) -> list[tuple[Path, OSError]]:
    """Remove generated files, best effort.

    Files that are already gone are ignored.

    Returns:
        (path, error) for every file that could not be removed.

    """
    errors: list[tuple[Path, OSError]] = []
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            errors.append((path, e))
    return errors
