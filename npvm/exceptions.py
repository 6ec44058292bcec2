"""Custom exceptions for npvm."""

from __future__ import annotations


class NpvmError(Exception):
    """Base exception for all npvm errors."""


class ValidationError(NpvmError):
    """Bad package name, URL, branch or path. Raised before any external call."""


class NotFoundError(NpvmError):
    """A required remote resource (manifest, registry package) does not exist."""


class ExecutionError(NpvmError):
    """A subprocess exited non-zero, could not be spawned, or timed out."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class ParseError(NpvmError, ValueError):
    """Malformed JSON output from a package-manager CLI."""


class RemoteError(NpvmError):
    """A registry or code host could not be reached, or sent an unreadable reply."""
