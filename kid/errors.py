"""Errors raised by the kid cluster lifecycle tooling.

Every failure the command dispatcher knows how to report derives from
``KidError``. Anything else propagates as an ordinary traceback.
"""

from __future__ import annotations

import typing as typ


class KidError(Exception):
    """Base exception for all kid errors."""


class ConfigError(KidError):
    """Raised when an environment variable holds an unusable value."""

    @classmethod
    def invalid(cls, variable: str, value: str, expected: str) -> ConfigError:
        """Return an error for an environment value that failed validation."""
        return cls(f"Invalid {variable} value: {value!r} (expected {expected})")


class ExecutableNotFoundError(KidError):
    """Required CLI tool is not installed."""


class EngineUnreachableError(KidError):
    """The local Docker engine did not answer ``docker info``."""


class ExternalToolError(KidError):
    """An external command exited non-zero or could not be started."""

    def __init__(
        self,
        message: str,
        *,
        command: typ.Sequence[str] = (),
        returncode: int | None = None,
    ) -> None:
        """Initialise with the failing command and its exit status."""
        self.command = tuple(command)
        self.returncode = returncode
        super().__init__(message)


class ReadinessTimeoutError(KidError):
    """A readiness wait exhausted its time or attempt budget."""

    def __init__(self, message: str, *, attempts: int) -> None:
        """Initialise with the number of probes issued before giving up."""
        self.attempts = attempts
        super().__init__(message)


class UsageError(KidError):
    """The command line named a verb kid does not know."""

    @classmethod
    def unknown_verb(cls, verb: str) -> UsageError:
        """Return an error for an unrecognised verb."""
        return cls(f"Unknown command: {verb!r}")


__all__ = [
    "ConfigError",
    "EngineUnreachableError",
    "ExecutableNotFoundError",
    "ExternalToolError",
    "KidError",
    "ReadinessTimeoutError",
    "UsageError",
]
