"""Error taxonomy shared by pgdev components.

Every failure that should terminate a command derives from :class:`PgdevError`
and carries the exit code the CLI reports. Conditions that are merely
informational ("already running", "already stopped") are not errors and are
returned as results instead.
"""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode


class PgdevError(RuntimeError):
    """Base class for fatal pgdev errors."""

    exit_code: ExitCode = ExitCode.VALIDATION


class UsageError(PgdevError):
    """Raised when a command receives the wrong arguments."""


class NoInstanceSpecified(UsageError):
    """Raised when no explicit or active instance name is available."""

    def __init__(self) -> None:
        """Initialise with the standard message."""
        super().__init__("No instance specified and no environment is active.")


class UnsupportedCommand(UsageError):
    """Raised by commands that are declared but handled elsewhere."""

    def __init__(self, message: str, *, guidance: Sequence[str] = ()) -> None:
        """Store *guidance* lines alongside the message."""
        super().__init__(message)
        self.guidance = tuple(guidance)


class NotFoundError(PgdevError):
    """Raised when an instance, template, script, or config key is absent."""


class InstanceNotFound(NotFoundError):
    """Raised when the named instance directory does not exist."""

    def __init__(self, name: str) -> None:
        """Record the missing instance *name*."""
        super().__init__(f"Instance '{name}' not found.")
        self.name = name


class TemplateNotFound(NotFoundError):
    """Raised when a template cannot be resolved."""


class ScriptNotFound(NotFoundError):
    """Raised when a blueprint script path does not exist."""


class NoComponentsError(NotFoundError):
    """Raised when an instance contains no configure steps."""


class NotInitializedError(NotFoundError):
    """Raised when an instance has no Config Record yet."""


class ConfigKeyNotFound(NotFoundError):
    """Raised when a Config Record lacks the requested key."""


class AlreadyExistsError(PgdevError):
    """Raised when scaffolding onto an existing instance directory."""


class IncompleteComponentError(PgdevError):
    """Raised when a configure step has no matching build step."""


class PortAllocationError(PgdevError):
    """Raised when no free port remains in the configured range."""

    exit_code = ExitCode.ENVIRONMENT


class FilesystemError(PgdevError):
    """Raised when pgdev cannot read or write its own files."""

    exit_code = ExitCode.ENVIRONMENT

    @classmethod
    def from_os_error(cls, exc: OSError) -> FilesystemError:
        """Describe *exc* without the errno prefix."""
        reason = exc.strerror or str(exc)
        if exc.filename is not None:
            return cls(f"{reason}: {exc.filename}")
        return cls(reason)


class ExternalProcessError(PgdevError):
    """Raised when a child process exits with a non-zero status."""

    exit_code = ExitCode.PROVIDER

    def __init__(self, args: Sequence[str], returncode: int, detail: str = "") -> None:
        """Record the failing command line and its exit status."""
        command = " ".join(str(arg) for arg in args)
        message = f"{command} failed (exit {returncode})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.command = [str(arg) for arg in args]
        self.returncode = returncode
        self.detail = detail


__all__ = [
    "AlreadyExistsError",
    "ConfigKeyNotFound",
    "ExternalProcessError",
    "FilesystemError",
    "IncompleteComponentError",
    "InstanceNotFound",
    "NoComponentsError",
    "NoInstanceSpecified",
    "NotFoundError",
    "NotInitializedError",
    "PgdevError",
    "PortAllocationError",
    "ScriptNotFound",
    "TemplateNotFound",
    "UnsupportedCommand",
    "UsageError",
]
