"""Shared fixtures for reverie tests."""

from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from reverie.config import LanguageConfig
from reverie.session import reset_state
from reverie.ui import NEON_THEME


@pytest.fixture(autouse=True)
def _reset_session():
    reset_state()
    yield
    reset_state()


@pytest.fixture
def output(monkeypatch) -> StringIO:
    """Route every module-level console into one buffer."""
    buffer = StringIO()
    test_console = Console(file=buffer, force_terminal=True, width=160, theme=NEON_THEME)
    for target in (
        "reverie.orchestrator.console",
        "reverie.runner.console",
        "reverie.runner.err_console",
    ):
        monkeypatch.setattr(target, test_console)
    return buffer


@pytest.fixture
def go_config() -> LanguageConfig:
    return LanguageConfig(extension=".go", review_prompt="Review this Go code.", test_prompt="Write Go tests.")


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a minimal two-language config file."""
    path = tmp_path / "config.toml"
    path.write_text(
        'model = "gpt-4o"\n'
        "chunk_size = 4\n"
        'llm_provider = "local"\n'
        'llm_model = "test-model"\n'
        "\n"
        "[languages.go]\n"
        'extension = ".go"\n'
        'review_prompt = "Review this Go code."\n'
        'test_prompt = "Write Go tests."\n'
        "\n"
        "[languages.php]\n"
        'extension = ".php"\n'
        'review_prompt = "Review this PHP code."\n'
        'test_prompt = "Write PHPUnit tests."\n',
        encoding="utf-8",
    )
    return path
