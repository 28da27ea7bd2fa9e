"""Where chunks come from: git diffs, project walks, single files."""

import os
import re
import subprocess
from collections import Counter
from pathlib import Path

from reverie.config import LanguageConfig
from reverie.errors import SourceError

GIT_TIMEOUT = 60

# Directories never descended into when walking a project
SKIP_DIRS = frozenset({"vendor", "node_modules", "__pycache__", "venv"})

# "+++ b/path/to/file.go" and "--- a/path/to/file.go" headers
_DIFF_FILE_RE = re.compile(r"^(?:\+\+\+|---) (?:[ab]/)?(.+?)\s*$", re.MULTILINE)


def _git_diff(args: list[str], cwd: Path) -> str:
    try:
        result = subprocess.run(  # noqa: S603 - arguments are not user-controlled
            ["git", "diff", *args],
            capture_output=True,
            text=True,
            cwd=cwd,
            timeout=GIT_TIMEOUT,
        )
    except FileNotFoundError:
        raise SourceError("git is not installed or not on PATH") from None
    except subprocess.TimeoutExpired:
        raise SourceError(f"git diff timed out after {GIT_TIMEOUT}s") from None
    except OSError as e:
        raise SourceError(f"Could not run git diff in {cwd}: {e}") from e

    if result.returncode != 0:
        raise SourceError(f"git diff failed: {result.stderr.strip() or f'exit status {result.returncode}'}")
    return result.stdout


def get_uncommitted_diff(directory: Path) -> str:
    """Return `git diff --unified=3` for uncommitted changes under directory.

    Raises:
        SourceError: If git cannot be run or exits non-zero.

    """
    return _git_diff(["--unified=3", "."], directory)


def get_branch_diff(directory: Path, base: str) -> str:
    """Return the diff between base and HEAD under directory.

    Uses the three-dot form, so only changes made on the current branch
    since it forked from base are included.

    Raises:
        SourceError: If git cannot be run or exits non-zero.

    """
    return _git_diff([f"{base}...HEAD", "--unified=3", "."], directory)


def diff_files(diff: str) -> list[str]:
    """File paths named in diff headers, deduplicated, in first-seen order."""
    seen: dict[str, None] = {}
    for match in _DIFF_FILE_RE.finditer(diff):
        name = match.group(1)
        if name != "/dev/null":
            seen.setdefault(name, None)
    return list(seen)


def detect_language_from_filename(filename: str | Path, languages: dict[str, LanguageConfig]) -> str | None:
    """Return the configured language whose extension filename ends with."""
    name = str(filename)
    for language in sorted(languages):
        if name.endswith(languages[language].extension):
            return language
    return None


def detect_language_from_diff(diff: str, languages: dict[str, LanguageConfig]) -> str | None:
    """Guess the language of a diff.

    The language with the most changed files wins; ties go to the language
    that sorts first. A diff without recognizable file headers falls back to
    the first language whose extension appears anywhere in the text.

    Returns:
        The language identifier, or None if nothing matches.

    """
    counts: Counter[str] = Counter()
    for name in diff_files(diff):
        language = detect_language_from_filename(name, languages)
        if language is not None:
            counts[language] += 1
    if counts:
        best = max(counts.values())
        return min(language for language, count in counts.items() if count == best)

    for language in sorted(languages):
        if languages[language].extension in diff:
            return language
    return None


def find_project_files(directory: Path, languages: dict[str, LanguageConfig]) -> dict[str, list[Path]]:
    """Group source files under directory by configured language.

    Hidden directories and common dependency directories are skipped.
    Files within each group are sorted so chunk indices are stable
    between runs.

    Raises:
        SourceError: If directory does not exist or cannot be walked.

    """
    if not directory.is_dir():
        raise SourceError(f"Not a directory: {directory}")

    def on_error(err: OSError) -> None:
        raise SourceError(f"Failed to scan project files: {err}") from err

    grouped: dict[str, list[Path]] = {language: [] for language in languages}
    for root, dirs, files in os.walk(directory, onerror=on_error):
        dirs[:] = [d for d in dirs if not d.startswith(".") and d not in SKIP_DIRS]
        for name in files:
            language = detect_language_from_filename(name, languages)
            if language is not None:
                grouped[language].append(Path(root) / name)

    return {language: sorted(paths) for language, paths in grouped.items() if paths}
