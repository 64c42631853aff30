"""
Result types and error hierarchy for toolgate.

This module provides:
1. Result[T, E] type for explicit error handling
2. The error taxonomy used by validation, execution and discovery

Usage:
    from toolgate.core.result import Ok, Err, Result, PolicyRejection

    def check(command: str) -> Result[str, PolicyRejection]:
        if ";" in command:
            return Err(PolicyRejection("command contains disallowed pattern: ;"))
        return Ok(command)

    result = check("ls -la")
    if result.is_ok():
        print(result.value)
    else:
        print(result.error)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from toolgate.core.security.command import CommandVerdict

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Ok[T]:
        """No-op for Ok - returns self unchanged."""
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain operations that may fail."""
        return fn(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Any:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        """Apply a function to the contained error."""
        return Err(fn(self.error))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Err[E]:
        """Short-circuit for Err - returns self unchanged."""
        return self


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class ToolgateError(Exception):
    """Base exception for all toolgate errors.

    Carries a human-readable message plus an optional context mapping that
    is rendered after the message for logs and tool output.
    """

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class PolicyRejection(ToolgateError):
    """The validator blocked a command.

    Never retried and never executed; the message is shown to the caller
    verbatim.
    """

    def __init__(self, message: str, *, verdict: CommandVerdict | None = None) -> None:
        super().__init__(message)
        self.verdict = verdict

    def __str__(self) -> str:
        return self.message


class ExecutionTimeout(ToolgateError):
    """A command outlived its deadline.

    ``output`` holds whatever the process wrote before it was terminated.
    """

    def __init__(self, message: str, *, output: str = "", timeout: float | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.timeout = timeout

    def __str__(self) -> str:
        return self.message


class ExecutionFailure(ToolgateError):
    """A command exited nonzero or could not be started.

    ``exit_code`` is None when the process never started.
    """

    def __init__(self, message: str, *, output: str = "", exit_code: int | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.exit_code = exit_code

    def __str__(self) -> str:
        return self.message


class OracleFailure(ToolgateError):
    """The reasoning oracle errored or answered with an unusable record."""


class ProtocolViolation(ToolgateError):
    """The oracle proposed a command outside the tool under discovery."""


class ConfigurationError(ToolgateError):
    """Raised for configuration issues.

    Examples:
    - Tool definition file parse errors
    - Tool entries that fail schema validation
    """


class ToolValidationError(ToolgateError):
    """Raised for invalid tool invocations.

    Examples:
    - Missing ``command`` argument
    - ``command`` argument that is not a string
    - Unknown tool name
    """


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "ToolgateError",
    "PolicyRejection",
    "ExecutionTimeout",
    "ExecutionFailure",
    "OracleFailure",
    "ProtocolViolation",
    "ConfigurationError",
    "ToolValidationError",
]
