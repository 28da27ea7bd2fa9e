"""Tests for config constants and TOML loading."""

from pathlib import Path

import pytest

from reverie.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HOSTED_MODEL,
    LOCAL_CHAT_URL,
    LOCAL_MODELS_URL,
    Config,
    LanguageConfig,
    load_config,
    normalize_provider,
    parse_config,
)
from reverie.errors import ConfigError


def test_load_config(config_file: Path):
    cfg = load_config(config_file)

    assert cfg.chunk_size == 4
    assert cfg.llm_provider == "local"
    assert cfg.effective_model == "test-model"
    assert sorted(cfg.languages) == ["go", "php"]
    assert cfg.languages["go"] == LanguageConfig(
        extension=".go", review_prompt="Review this Go code.", test_prompt="Write Go tests."
    )


def test_defaults_for_empty_document():
    cfg = parse_config({})
    assert cfg == Config()
    assert cfg.chunk_size == DEFAULT_CHUNK_SIZE
    assert cfg.effective_model == DEFAULT_HOSTED_MODEL


def test_llm_model_overrides_model():
    assert parse_config({"model": "gpt-4o", "llm_model": "gpt-4o-mini"}).effective_model == "gpt-4o-mini"
    assert parse_config({"model": "gpt-4o"}).effective_model == "gpt-4o"


def test_extension_without_dot_is_normalized():
    cfg = parse_config({"languages": {"python": {"extension": "py", "review_prompt": "r", "test_prompt": "t"}}})
    assert cfg.languages["python"].extension == ".py"


@pytest.mark.parametrize("chunk_size", [0, -5, "200", True, 1.5])
def test_invalid_chunk_size(chunk_size):
    with pytest.raises(ConfigError, match="chunk_size"):
        parse_config({"chunk_size": chunk_size})


def test_language_missing_prompt():
    with pytest.raises(ConfigError, match="test_prompt"):
        parse_config({"languages": {"go": {"extension": ".go", "review_prompt": "r"}}})


def test_languages_must_be_table():
    with pytest.raises(ConfigError, match="languages"):
        parse_config({"languages": ["go"]})


@pytest.mark.parametrize("name,expected", [
    ("hosted", "hosted"),
    ("openai", "hosted"),
    ("OpenAI", "hosted"),
    ("local", "local"),
    ("lmstudio", "local"),
])
def test_normalize_provider(name, expected):
    assert normalize_provider(name) == expected


def test_unknown_provider_in_file():
    with pytest.raises(ConfigError, match="Unknown llm_provider"):
        parse_config({"llm_provider": "anthropic"})


def test_missing_file(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "config.toml")


def test_invalid_toml(tmp_path: Path):
    path = tmp_path / "config.toml"
    path.write_text("chunk_size = = 3\n")
    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(path)


def test_models_url_is_sibling_of_chat_url():
    assert LOCAL_MODELS_URL.endswith("/v1/models")
    assert LOCAL_CHAT_URL.rsplit("/v1/", 1)[0] == LOCAL_MODELS_URL.rsplit("/v1/", 1)[0]


def test_example_config_loads():
    cfg = load_config(Path(__file__).resolve().parent.parent / "config.example.toml")

    assert sorted(cfg.languages) == ["go", "php", "python"]
    assert cfg.llm_provider == "hosted"
    assert cfg.effective_model == "gpt-4o"
