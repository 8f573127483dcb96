"""Error types shared across BillSleuth."""

from typing import Any, Optional


class BillSleuthError(Exception):
    """Base class for all BillSleuth errors."""


class ConfigError(BillSleuthError):
    """Configuration is missing or invalid."""


class ValidationError(BillSleuthError):
    """Malformed tool arguments or request payload.

    Args:
        message: Human-readable description
        details: Optional list of individual issues (field, message)
    """

    def __init__(self, message: str, details: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []


class NotFoundError(BillSleuthError):
    """A referenced record does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvalidStateError(BillSleuthError):
    """A lifecycle transition was attempted from a disallowed state."""

    def __init__(self, identifier: str, current: str, attempted: str):
        super().__init__(
            f"Cannot {attempted} {identifier}: current status is '{current}'"
        )
        self.identifier = identifier
        self.current = current
        self.attempted = attempted


class ExecutionError(BillSleuthError):
    """The reasoning-model call or an internal step failed; the run is aborted."""
