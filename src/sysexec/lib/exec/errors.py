"""Execution error types and retry classification."""

from __future__ import annotations

from collections.abc import Iterator
from enum import StrEnum


class ExecError(RuntimeError):
    """Unchecked failure raised while supervising a running process."""


class ProcessInterruptedError(ExecError):
    """Raised when waiting on a child process (or feeding its stdin) is interrupted."""


class NonZeroExitError(ExecError):
    """Raised by callers that choose to treat a non-zero exit as a failure."""

    def __init__(self, exit_code: int, command: str, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.command = command
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"Command exited with status {exit_code}: {command}{detail}")


class SystemCommandError(Exception):
    """Checked failure: the command could not be spawned or talked to."""


class CommandConfigError(SystemCommandError, ValueError):
    """The command line is unusable (empty command, unbalanced quotes)."""


class CommandAlreadyRunningError(RuntimeError):
    """Raised when `execute()` is called on a command that is still running."""


class ErrorCategory(StrEnum):
    RETRYABLE = "retryable"
    UNRECOVERABLE = "unrecoverable"


# Wording of transient OS errors (EAGAIN, ETIMEDOUT, ECONNRESET, EPIPE, EBUSY...)
# as strerror and common command-line tools print them.
_RETRYABLE_MARKERS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "temporary failure",
    "try again",
    "connection reset",
    "connection refused",
    "broken pipe",
    "resource busy",
    "text file busy",
    "too many open files",
)

_UNRECOVERABLE_MARKERS: tuple[str, ...] = (
    "permission denied",
    "access is denied",
    "operation not permitted",
    "no such file or directory",
    "command not found",
    "not found",
    "is a directory",
    "not a directory",
    "exec format error",
    "invalid argument",
)

_UNRECOVERABLE_TYPES: tuple[type[BaseException], ...] = (
    CommandConfigError,
    CommandAlreadyRunningError,
    ProcessInterruptedError,
    FileNotFoundError,
    PermissionError,
    NotADirectoryError,
)


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def iter_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield `exc` followed by its causes/contexts, stopping on cycles."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _marker_text(item: BaseException) -> str:
    if isinstance(item, NonZeroExitError):
        # The message embeds the command line; only what the command said counts.
        return item.stderr.lower()
    cause = item.__cause__
    if cause is not None and str(item) == str(cause):
        # Wrapper repeating its cause's message; the cause is matched on its own.
        return ""
    return str(item).lower()


def classify_exception(exc: BaseException) -> ErrorCategory:
    """Classify one failed attempt into a retry category.

    Types are checked across the whole chain first so that a wrapped
    configuration error stays unrecoverable; message markers come second.
    A non-zero exit is judged by its stderr, never by its command line.
    """

    chain = tuple(iter_exception_chain(exc))
    if any(isinstance(item, _UNRECOVERABLE_TYPES) for item in chain):
        return ErrorCategory.UNRECOVERABLE

    for item in chain:
        normalized = _marker_text(item)
        # Transient markers win: "connection refused" must not fall through to "not found".
        if _contains_any(normalized, _RETRYABLE_MARKERS):
            return ErrorCategory.RETRYABLE
        if _contains_any(normalized, _UNRECOVERABLE_MARKERS):
            return ErrorCategory.UNRECOVERABLE

    return ErrorCategory.RETRYABLE


def default_exception_filter(exc: BaseException) -> bool:
    """Exception filter allowing a retry only for retryable failures."""

    return classify_exception(exc) == ErrorCategory.RETRYABLE
