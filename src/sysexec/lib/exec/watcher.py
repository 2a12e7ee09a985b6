"""Supervise a running child process: drain its output, feed its input."""

from __future__ import annotations

import io
import shutil
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import IO, Final

import structlog

from sysexec.lib.config.settings import ExecConfig
from sysexec.lib.exec.errors import ExecError, ProcessInterruptedError
from sysexec.lib.exec.stream import LineListener, StreamConsumer

STDOUT: Final[str] = "STDOUT"
STDERR: Final[str] = "STDERR"

StdinPayload = bytes | str | IO[bytes]

logger = structlog.get_logger(__name__)
_DEFAULT_CONFIG = ExecConfig()


@dataclass(slots=True)
class WatchHandle:
    """Threads started for one watched process."""

    process: subprocess.Popen[bytes]
    stdout_consumer: StreamConsumer
    stderr_consumer: StreamConsumer
    stdin_feeder: threading.Thread | None = None
    _stdin_errors: list[BaseException] = field(default_factory=list)

    def poll(self) -> int | None:
        return self.process.poll()

    def wait(self, timeout: float | None = None) -> int:
        return self.process.wait(timeout=timeout)

    def join_consumers(self, timeout: float | None = None) -> bool:
        """Wait for both stream consumers; return False if either is still draining."""

        self.stdout_consumer.join(timeout)
        self.stderr_consumer.join(timeout)
        return not (self.stdout_consumer.is_alive() or self.stderr_consumer.is_alive())


def _as_binary_stream(payload: StdinPayload, encoding: str) -> IO[bytes]:
    if isinstance(payload, str):
        return io.BytesIO(payload.encode(encoding))
    if isinstance(payload, bytes | bytearray):
        return io.BytesIO(bytes(payload))
    return payload


def _start_stdin_feeder(
    process: subprocess.Popen[bytes],
    payload: IO[bytes],
    errors: list[BaseException],
) -> threading.Thread:
    stdin = process.stdin
    if stdin is None:
        raise ExecError("Process was not started with a stdin pipe.")

    def _feed() -> None:
        try:
            with stdin:
                shutil.copyfileobj(payload, stdin)
        except BrokenPipeError:
            # The child stopped reading; what it consumed is its business.
            logger.debug("Process closed stdin before all input was sent.", pid=process.pid)
        except (OSError, ValueError) as exc:
            errors.append(exc)

    feeder = threading.Thread(target=_feed, name="StdinFeeder", daemon=True)
    feeder.start()
    return feeder


def _join_stdin_feeder(handle: WatchHandle) -> None:
    if handle.stdin_feeder is None:
        return
    try:
        handle.stdin_feeder.join()
    except KeyboardInterrupt as exc:
        raise ProcessInterruptedError("Process interrupted while sending input stream.") from exc
    if handle._stdin_errors:
        raise ExecError("Error sending input stream to process.") from handle._stdin_errors[0]


def watch_process_async(
    process: subprocess.Popen[bytes],
    stdin: StdinPayload | None = None,
    output_listeners: Sequence[LineListener] = (),
    error_listeners: Sequence[LineListener] = (),
    *,
    config: ExecConfig | None = None,
) -> WatchHandle:
    """Start draining `process` output (and feeding its input) without waiting for exit.

    The stdin copy, when requested, is still joined before returning.

    Raises:
        ExecError: the process has no stdout/stderr pipes, or sending input failed.
        ProcessInterruptedError: interrupted while sending input.
    """

    resolved = config or _DEFAULT_CONFIG
    if process.stdout is None or process.stderr is None:
        raise ExecError("Process did not expose stdout/stderr pipes.")

    stdout_consumer = StreamConsumer(
        process.stdout,
        STDOUT,
        output_listeners,
        chunk_size=resolved.stream_chunk_size,
        encoding=resolved.encoding,
    )
    stderr_consumer = StreamConsumer(
        process.stderr,
        STDERR,
        error_listeners,
        chunk_size=resolved.stream_chunk_size,
        encoding=resolved.encoding,
    )
    stdout_consumer.start()
    stderr_consumer.start()

    handle = WatchHandle(
        process=process,
        stdout_consumer=stdout_consumer,
        stderr_consumer=stderr_consumer,
    )
    if stdin is not None:
        handle.stdin_feeder = _start_stdin_feeder(
            process,
            _as_binary_stream(stdin, resolved.encoding),
            handle._stdin_errors,
        )
        _join_stdin_feeder(handle)
    return handle


def watch_process(
    process: subprocess.Popen[bytes],
    stdin: StdinPayload | None = None,
    output_listeners: Sequence[LineListener] = (),
    error_listeners: Sequence[LineListener] = (),
    *,
    config: ExecConfig | None = None,
) -> int:
    """Drain `process` output, optionally feed its input, and return its exit code.

    Listeners have been notified of every line once this returns, unless a
    grandchild process keeps the pipes open past `stream_join_timeout_seconds`.

    Raises:
        ExecError: sending input failed.
        ProcessInterruptedError: interrupted while sending input or waiting for exit.
    """

    resolved = config or _DEFAULT_CONFIG
    handle = watch_process_async(
        process,
        stdin,
        output_listeners,
        error_listeners,
        config=resolved,
    )
    try:
        exit_code = process.wait()
    except KeyboardInterrupt as exc:
        raise ProcessInterruptedError("Process was interrupted.") from exc

    if not handle.join_consumers(resolved.stream_join_timeout_seconds):
        logger.warning(
            "Process output streams still open after exit.",
            pid=process.pid,
            join_timeout_seconds=resolved.stream_join_timeout_seconds,
        )
    return exit_code
