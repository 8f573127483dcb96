"""Logging utilities: run transcripts and console log configuration."""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.logging import RichHandler


def configure_logging(level: str = "WARNING", force: bool = False) -> None:
    """Initialise the root logger once with a rich console handler.

    Args:
        level: Log level name
        force: Reconfigure even if handlers are already installed
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=force,
    )


class SessionLogger:
    """Writes an NDJSON transcript for one investigation run."""

    def __init__(self, sandbox_dir: Path, run_id: Optional[str] = None):
        """Initialize session logger.

        Args:
            sandbox_dir: Sandbox directory
            run_id: Optional run ID (generated if not provided)
        """
        self.sandbox_dir = sandbox_dir
        self.run_id = run_id or datetime.now().strftime("%Y%m%d_%H%M%S_%f")

        # Create logs directory
        self.log_dir = sandbox_dir / "runs" / self.run_id
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.transcript_path = self.log_dir / "transcript.ndjson"
        self._lock = threading.Lock()

    def log_message(
        self, role: str, content: Any, tool_calls: Optional[list] = None
    ) -> None:
        """Log a conversation message.

        Args:
            role: Message role (system, user, assistant, tool)
            content: Message content
            tool_calls: Optional tool calls
        """
        entry = {
            "ts": datetime.now().isoformat(),
            "role": role,
            "content": content,
        }

        if tool_calls:
            entry["tool_calls"] = tool_calls

        self._write(entry)

    def log_outcome(self, status: str, rounds: int, error: Optional[str] = None) -> None:
        """Log how the run ended.

        Args:
            status: answered, incomplete, cancelled or failed
            rounds: Number of reasoning-model calls made
            error: Error message for failed runs
        """
        entry = {
            "ts": datetime.now().isoformat(),
            "event": "outcome",
            "status": status,
            "rounds": rounds,
        }
        if error:
            entry["error"] = error

        self._write(entry)

    def get_log_path(self) -> str:
        """Get the path to the log directory.

        Returns:
            Absolute path to log directory
        """
        return str(self.log_dir.absolute())

    def _write(self, entry: dict) -> None:
        with self._lock:
            with open(self.transcript_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
