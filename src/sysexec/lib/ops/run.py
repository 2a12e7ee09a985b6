"""Run a system command under a retry policy."""

from __future__ import annotations

import io
import threading

import structlog

from sysexec.lib.exec.command import SystemCommand
from sysexec.lib.exec.errors import NonZeroExitError
from sysexec.lib.exec.watcher import STDERR, StdinPayload
from sysexec.lib.retry.policy import RetryPolicy
from sysexec.lib.retry.retrier import Retrier

logger = structlog.get_logger(__name__)


def _rewind(stdin: StdinPayload | None, start: int | None) -> None:
    if start is None or isinstance(stdin, bytes | str) or stdin is None:
        return
    stdin.seek(start)


def _stream_start(stdin: StdinPayload | None) -> int | None:
    if stdin is None or isinstance(stdin, bytes | str):
        return None
    try:
        if stdin.seekable():
            return stdin.tell()
    except (OSError, ValueError):
        return None
    return None


def run_with_retry(
    command: SystemCommand,
    *,
    policy: RetryPolicy | None = None,
    stdin: StdinPayload | None = None,
    fail_on_nonzero: bool = True,
    interrupt: threading.Event | None = None,
) -> int:
    """Execute `command` until it succeeds or `policy` stops retrying.

    With `fail_on_nonzero`, a non-zero exit counts as a failed attempt
    (raised as `NonZeroExitError` inside the attempt); otherwise only
    spawn and supervision errors are retried and the exit code is returned
    as is. Seekable stdin streams are rewound before each attempt; other
    streams can only be fed once.

    Raises:
        RetriableError: retrying stopped without a successful attempt.
    """

    start = _stream_start(stdin)
    attempts = 0
    stderr_lines: list[str] = []

    def _capture_stderr(stream: str, line: str) -> None:
        _ = stream
        stderr_lines.append(line)

    def _attempt() -> int:
        nonlocal attempts
        attempts += 1
        if attempts > 1:
            _rewind(stdin, start)
            if stdin is not None and start is None and not isinstance(stdin, bytes | str):
                logger.warning("Retrying with a non-seekable stdin stream.", command=str(command))
        stderr_lines.clear()
        exit_code = command.execute(stdin)
        if fail_on_nonzero and exit_code != 0:
            raise NonZeroExitError(exit_code, str(command), "\n".join(stderr_lines))
        return exit_code

    command.add_error_listener(_capture_stderr)
    try:
        return Retrier(policy).execute(_attempt, interrupt=interrupt)
    finally:
        command.remove_error_listener(_capture_stderr)


def run_text(command: SystemCommand, stdin: StdinPayload | None = None) -> tuple[int, str, str]:
    """Execute `command` once and return `(exit_code, stdout, stderr)` as text."""

    stdout = io.StringIO()
    stderr = io.StringIO()

    def _collect(stream: str, line: str) -> None:
        target = stderr if stream == STDERR else stdout
        target.write(line)
        target.write("\n")

    command.add_listener(_collect)
    try:
        exit_code = command.execute(stdin)
    finally:
        command.remove_output_listener(_collect)
        command.remove_error_listener(_collect)
    return exit_code, stdout.getvalue(), stderr.getvalue()
