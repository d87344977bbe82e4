"""Error taxonomy for context handover.

Every failure that aborts a handover derives from :class:`HandoverError`.
A child process that runs to completion with a nonzero exit code is not an
error; it is reported as a ``TaskResult`` with ``status="failed"``.

Classes
-------
- HandoverError          — base class, optionally carries a preserved context path
- SecurityViolation      — unsafe context content, raised before persistence
- ContextEncodingError   — binary and textual encoding both failed
- ContextDecodeError     — malformed payload or unknown extension tag
- ChecksumMismatchError  — payload digest differs from the stored digest
- ProcessSpawnError      — child process could not be started
- HandoverTimeoutError   — child exceeded its wall-clock budget
"""
from __future__ import annotations

from pathlib import Path


class HandoverError(Exception):
    """Base class for all handover failures.

    Parameters
    ----------
    message:
        Human-readable description of the failure.
    context_path:
        Location of a context file left on disk for postmortem inspection,
        if any.
    """

    def __init__(self, message: str, *, context_path: Path | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context_path = context_path

    def preserve(self, context_path: Path) -> "HandoverError":
        """Attach the preserved context file location and return ``self``."""
        self.context_path = context_path
        return self

    def __str__(self) -> str:
        if self.context_path is not None:
            return f"{self.message} (context preserved at {self.context_path})"
        return self.message


class SecurityViolation(HandoverError):
    """Raised when a context fails security validation.

    Parameters
    ----------
    message:
        Description of the violated rule.
    offending_value:
        The path or name that triggered the violation.
    """

    def __init__(self, message: str, *, offending_value: str = "") -> None:
        super().__init__(message)
        self.offending_value = offending_value


class ContextEncodingError(HandoverError):
    """Raised when neither the binary nor the JSON encoding succeeds."""


class ContextDecodeError(HandoverError):
    """Raised when a payload cannot be decoded into a context."""


class ChecksumMismatchError(HandoverError):
    """Raised when a binary payload fails integrity verification.

    Parameters
    ----------
    path:
        The payload file that failed verification.
    expected:
        Digest read from the checksum file (empty if the file was missing).
    actual:
        Digest computed from the payload bytes.
    """

    def __init__(self, path: Path, *, expected: str, actual: str) -> None:
        if expected:
            message = (
                f"Checksum mismatch for {path}: stored={expected!r} computed={actual!r}"
            )
        else:
            message = f"Missing checksum for {path}; payload is untrusted"
        super().__init__(message)
        self.path = path
        self.expected = expected
        self.actual = actual


class ProcessSpawnError(HandoverError):
    """Raised when the child process cannot be started at all."""


class HandoverTimeoutError(HandoverError, TimeoutError):
    """Raised when the child process exceeds its timeout and is killed.

    Parameters
    ----------
    timeout_ms:
        The budget that was exceeded, in milliseconds.
    """

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Persona handover timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms
