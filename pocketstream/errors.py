"""
Error types for pocketstream.

This module defines the exception hierarchy shared by every component:
- PocketstreamError: Base exception
- ConfigError: Invalid or missing configuration
- CommandError: A collaborator command failed or could not be launched
- BootstrapError: A fatal cluster bootstrap transition
- ReplicationError: Replication could not be started

Invariants:
    - All errors inherit from PocketstreamError
    - Degraded conditions are logged, never raised
    - Secrets never appear in error messages
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class PocketstreamError(Exception):
    """Base exception for all pocketstream errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "POCKETSTREAM_ERROR"
        self.details = details or {}


class ConfigError(PocketstreamError, ValueError):
    """Configuration is invalid or incomplete.

    Raised when:
    - A required environment variable is missing
    - A value has the wrong shape (e.g. a malformed encryption key)
    - An enumerated setting has an unsupported value
    """

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message, code="CONFIG_ERROR", details={"setting": setting})
        self.setting = setting


class CommandError(PocketstreamError):
    """A collaborator command exited non-zero, timed out or failed to launch.

    Attributes:
        command: Full argument vector that was executed
        returncode: Exit status (None if the process never produced one)
        stdout: Captured standard output
        stderr: Captured standard error
    """

    def __init__(
        self,
        command: Sequence[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        reason: str | None = None,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"command failed ({returncode}): {' '.join(self.command)}"
        if reason:
            message = f"{message}: {reason}"
        elif stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(
            message,
            code="COMMAND_ERROR",
            details={"command": list(self.command), "returncode": returncode},
        )


class BootstrapError(PocketstreamError):
    """A fatal bootstrap transition.

    The background server has already been stopped by the time this error
    reaches the caller.
    """

    def __init__(self, message: str, step: str | None = None) -> None:
        super().__init__(message, code="BOOTSTRAP_ERROR", details={"step": step})
        self.step = step


class ReplicationError(PocketstreamError):
    """Replication could not be started."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="REPLICATION_ERROR")
