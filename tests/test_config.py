"""Tests for configuration loading."""

from pathlib import Path

import pytest

from billsleuth.config import Config
from billsleuth.constants import DEFAULT_MAX_ITERATIONS, DEFAULT_MODEL
from billsleuth.errors import ConfigError

ENV_VARS = [
    "ANTHROPIC_API_KEY",
    "BILLSLEUTH_MODEL",
    "BILLSLEUTH_DATA_DIR",
    "BILLSLEUTH_SANDBOX_DIR",
    "BILLSLEUTH_MAX_ITERATIONS",
    "BILLSLEUTH_STREAM_BUFFER",
    "BILLSLEUTH_TEMPERATURE",
    "BILLSLEUTH_LOG_LEVEL",
    "BILLSLEUTH_TRANSCRIPTS",
]


@pytest.fixture
def clean_env(monkeypatch, temp_dir):
    """Isolate config loading from the developer's environment and .env."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(temp_dir)
    return monkeypatch


def test_load_defaults(clean_env, temp_dir):
    """Test loading with nothing set."""
    config = Config.load(temp_dir)

    assert config.anthropic_api_key is None
    assert config.default_model == DEFAULT_MODEL
    assert config.max_iterations == DEFAULT_MAX_ITERATIONS
    assert config.data_dir == temp_dir / "data"
    assert config.sandbox_dir == temp_dir / "sandbox"
    assert config.transcripts is True


def test_load_from_environment(clean_env, temp_dir):
    """Test that environment variables override defaults."""
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-test")
    clean_env.setenv("BILLSLEUTH_MAX_ITERATIONS", "3")
    clean_env.setenv("BILLSLEUTH_STREAM_BUFFER", "8")
    clean_env.setenv("BILLSLEUTH_TEMPERATURE", "0.5")
    clean_env.setenv("BILLSLEUTH_LOG_LEVEL", "debug")
    clean_env.setenv("BILLSLEUTH_TRANSCRIPTS", "false")
    clean_env.setenv("BILLSLEUTH_DATA_DIR", "corpus")

    config = Config.load(temp_dir)

    assert config.anthropic_api_key == "sk-test"
    assert config.max_iterations == 3
    assert config.stream_buffer == 8
    assert config.temperature == 0.5
    assert config.log_level == "DEBUG"
    assert config.transcripts is False
    assert config.data_dir == temp_dir / "corpus"


def test_load_rejects_bad_numbers(clean_env, temp_dir):
    """Test that an unparsable number raises ConfigError."""
    clean_env.setenv("BILLSLEUTH_MAX_ITERATIONS", "many")

    with pytest.raises(ConfigError):
        Config.load(temp_dir)


def test_validate(temp_dir):
    """Test configuration validation."""
    config = Config(anthropic_api_key="sk-test", data_dir=temp_dir)
    assert config.validate() == []

    config = Config(data_dir=temp_dir)
    assert any("ANTHROPIC_API_KEY" in e for e in config.validate())
    assert config.validate(require_model=False) == []

    config = Config(
        anthropic_api_key="sk-test",
        default_model="openai:gpt-4o",
        data_dir=Path(temp_dir / "missing"),
        max_iterations=0,
        log_level="LOUD",
    )
    errors = config.validate()
    assert len(errors) == 4


def test_to_dict_hides_key():
    """Test that the display form never contains the API key."""
    config = Config(anthropic_api_key="sk-secret")

    shown = config.to_dict()

    assert shown["has_anthropic_key"] is True
    assert "sk-secret" not in str(shown)
