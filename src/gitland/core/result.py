"""
Result types and error hierarchy for gitland.

This module provides:
1. Result[T, E] type for explicit error handling
2. Domain-specific exception hierarchy

Usage:
    from gitland.core.result import Ok, Err, Result, GitError

    async def checkout(branch: str) -> Result[None, GitError]:
        if failed:
            return Err(GitError("checkout failed", context={"branch": branch}))
        return Ok(None)

    match await checkout("main"):
        case Ok(_):
            ...
        case Err(err):
            print(err.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class GitLandError(Exception):
    """Base exception for all gitland errors.

    Carries a human-readable message plus a context mapping that is
    rendered after the message when the error is printed.
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class GitError(GitLandError):
    """Raised when a git invocation fails.

    Examples:
    - Merge or rebase conflict
    - Fast-forward impossible
    - git executable missing
    """


class PreconditionError(GitLandError):
    """Raised when the working tree is not clean enough to land.

    The offending paths are available under ``context["paths"]``.
    """

    @property
    def paths(self) -> list[str]:
        return list(self.context.get("paths", []))


class StepDeclinedError(GitLandError):
    """Raised when the operator declines a confirmation prompt."""


class LockHeldError(GitLandError):
    """Raised when another land appears to be running in the same repository."""


class ConfigurationError(GitLandError):
    """Raised for configuration issues.

    Examples:
    - Config file parse errors
    - Invalid config values
    """


class ValidationError(GitLandError):
    """Raised for malformed invocations.

    Examples:
    - Too many positional arguments
    - Detached HEAD with no branch given
    """


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "GitLandError",
    "GitError",
    "PreconditionError",
    "StepDeclinedError",
    "LockHeldError",
    "ConfigurationError",
    "ValidationError",
]
