"""Configuration loading and management."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from billsleuth.constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MODEL,
    DEFAULT_SANDBOX_DIR,
    DEFAULT_STREAM_BUFFER,
    DEFAULT_TEMPERATURE,
    SUPPORTED_MODELS,
)
from billsleuth.errors import ConfigError

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class Config:
    """BillSleuth configuration.

    Loads from .env and the process environment.
    """

    # API Keys
    anthropic_api_key: Optional[str] = None

    # Model settings
    default_model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE

    # Locations
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    sandbox_dir: Path = Path(DEFAULT_SANDBOX_DIR)

    # Orchestration
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    stream_buffer: int = DEFAULT_STREAM_BUFFER

    # Logging
    log_level: str = DEFAULT_LOG_LEVEL
    transcripts: bool = True

    @classmethod
    def load(cls, base_dir: Optional[Path] = None) -> "Config":
        """Load configuration from environment.

        Args:
            base_dir: Directory that relative data/sandbox paths resolve against

        Returns:
            Config instance

        Raises:
            ConfigError: If a numeric setting cannot be parsed
        """
        load_dotenv()
        base = base_dir or Path.cwd()

        try:
            config = cls(
                anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
                default_model=os.getenv("BILLSLEUTH_MODEL", DEFAULT_MODEL),
                temperature=float(os.getenv("BILLSLEUTH_TEMPERATURE", DEFAULT_TEMPERATURE)),
                data_dir=base / os.getenv("BILLSLEUTH_DATA_DIR", DEFAULT_DATA_DIR),
                sandbox_dir=base / os.getenv("BILLSLEUTH_SANDBOX_DIR", DEFAULT_SANDBOX_DIR),
                max_iterations=int(os.getenv("BILLSLEUTH_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS)),
                stream_buffer=int(os.getenv("BILLSLEUTH_STREAM_BUFFER", DEFAULT_STREAM_BUFFER)),
                log_level=os.getenv("BILLSLEUTH_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
                transcripts=os.getenv("BILLSLEUTH_TRANSCRIPTS", "true").lower() != "false",
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        return config

    def validate(self, require_model: bool = True) -> list[str]:
        """Validate configuration and return list of errors.

        Args:
            require_model: Whether an API key is needed (chat commands)

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if require_model and not self.anthropic_api_key:
            errors.append("No API key found. Set ANTHROPIC_API_KEY")

        if self.default_model not in SUPPORTED_MODELS:
            errors.append(f"Unsupported model: {self.default_model}")

        if self.max_iterations <= 0:
            errors.append("max_iterations must be positive")

        if self.stream_buffer <= 0:
            errors.append("stream_buffer must be positive")

        if self.log_level not in _LOG_LEVELS:
            errors.append(f"Unknown log level: {self.log_level}")

        if not self.data_dir.is_dir():
            errors.append(f"Data directory not found: {self.data_dir}")

        return errors

    def to_dict(self) -> dict:
        """Convert config to dictionary (for logging/display)."""
        return {
            "default_model": self.default_model,
            "temperature": self.temperature,
            "data_dir": str(self.data_dir),
            "sandbox_dir": str(self.sandbox_dir),
            "max_iterations": self.max_iterations,
            "stream_buffer": self.stream_buffer,
            "log_level": self.log_level,
            "transcripts": self.transcripts,
            "has_anthropic_key": bool(self.anthropic_api_key),
        }
