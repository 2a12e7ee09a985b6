"""System command: one external program invocation and its lifecycle."""

from __future__ import annotations

import os
import subprocess
import threading
from collections.abc import Mapping
from pathlib import Path

import structlog

from sysexec.lib.config.settings import ExecConfig
from sysexec.lib.exec.errors import CommandAlreadyRunningError, SystemCommandError
from sysexec.lib.exec.shell import build_command_line, is_windows, unescaped_argv
from sysexec.lib.exec.stream import LineListener
from sysexec.lib.exec.timeout import terminate_process
from sysexec.lib.exec.watcher import StdinPayload, watch_process, watch_process_async

logger = structlog.get_logger(__name__)


class _ErrorTracker:
    """Stderr listener accumulating text for the non-zero exit diagnostic."""

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, stream: str, line: str) -> None:
        _ = stream
        with self._lock:
            self._lines.append(line)

    @property
    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)


class SystemCommand:
    """A program to run on the host, with its arguments, workdir and environment.

    Passing a single string treats it as a full command line (tokenized with
    quote handling); passing several strings treats the first as the program
    and the rest as arguments. On Windows the command is wrapped with the
    command interpreter (`cmd.exe /C`) so built-in commands work too.

    One instance owns at most one live process at a time. Listeners can be
    added or removed at any time, including while the command runs; a
    running execution keeps the listeners it started with.
    """

    def __init__(
        self,
        *command: str,
        workdir: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        config: ExecConfig | None = None,
    ) -> None:
        self._command: tuple[str, ...] = tuple(command)
        self._workdir = Path(workdir) if workdir is not None else None
        self._env: dict[str, str] | None = dict(env) if env is not None else None
        self._config = config or ExecConfig()
        self._listener_lock = threading.Lock()
        self._output_listeners: tuple[LineListener, ...] = ()
        self._error_listeners: tuple[LineListener, ...] = ()
        self._state_lock = threading.Lock()
        self._process: subprocess.Popen[bytes] | None = None

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    @property
    def workdir(self) -> Path | None:
        return self._workdir

    @property
    def env(self) -> Mapping[str, str] | None:
        """Environment for the child; None means inherit the current process's."""

        return dict(self._env) if self._env is not None else None

    @property
    def output_listeners(self) -> tuple[LineListener, ...]:
        return self._output_listeners

    @property
    def error_listeners(self) -> tuple[LineListener, ...]:
        return self._error_listeners

    def add_output_listener(self, listener: LineListener) -> None:
        with self._listener_lock:
            self._output_listeners = (*self._output_listeners, listener)

    def remove_output_listener(self, listener: LineListener) -> None:
        with self._listener_lock:
            self._output_listeners = _without(self._output_listeners, listener)

    def add_error_listener(self, listener: LineListener) -> None:
        with self._listener_lock:
            self._error_listeners = (*self._error_listeners, listener)

    def remove_error_listener(self, listener: LineListener) -> None:
        with self._listener_lock:
            self._error_listeners = _without(self._error_listeners, listener)

    def add_listener(self, listener: LineListener) -> None:
        """Register one listener for both stdout and stderr lines."""

        self.add_output_listener(listener)
        self.add_error_listener(listener)

    def is_running(self) -> bool:
        process = self._process
        return process is not None and process.poll() is None

    def abort(self) -> None:
        """Terminate the running process, if any."""

        process = self._process
        if process is None:
            return
        exit_code = terminate_process(process, grace_seconds=self._config.kill_grace_seconds)
        logger.info("Command aborted.", command=str(self), pid=process.pid, exit_code=exit_code)
        self._release(process)

    def _release(self, process: subprocess.Popen[bytes]) -> None:
        with self._state_lock:
            if self._process is process:
                self._process = None

    def clean_command(self) -> list[str]:
        """Return the escaped, OS-wrapped command line.

        Raises:
            CommandConfigError: no command specified, or unbalanced quotes.
        """

        return build_command_line(self._command)

    def execute(self, stdin: StdinPayload | None = None, *, background: bool = False) -> int:
        """Run the command and return its exit code.

        A non-zero exit code is logged but not raised; callers decide what it
        means. In background mode this returns right after the output
        consumers are started: the returned code is the exit status only if
        the process already ended, 0 otherwise. Poll `is_running()` after.

        Raises:
            CommandAlreadyRunningError: this instance's process is still running.
            CommandConfigError: no command specified, or unbalanced quotes.
            SystemCommandError: the process could not be started.
            ExecError: feeding stdin failed or waiting was interrupted; the
                child is terminated before this propagates.
        """

        with self._state_lock:
            if self.is_running():
                raise CommandAlreadyRunningError(f"Command is already running: {self}")
            clean_command = self.clean_command()
            command_line = " ".join(clean_command)
            logger.debug("Executing command.", command=command_line)
            process = self._spawn(clean_command, has_stdin=stdin is not None)
            self._process = process

        error_tracker = _ErrorTracker()
        output_listeners = self._output_listeners
        error_listeners = (*self._error_listeners, error_tracker)

        try:
            if background:
                watch_process_async(
                    process, stdin, output_listeners, error_listeners, config=self._config
                )
                polled = process.poll()
                exit_code = 0 if polled is None else polled
            else:
                exit_code = watch_process(
                    process, stdin, output_listeners, error_listeners, config=self._config
                )
        except BaseException:
            # A failed execute() never leaves its child running untracked.
            terminated_code = terminate_process(
                process, grace_seconds=self._config.kill_grace_seconds
            )
            logger.warning(
                "Command terminated after supervision failure.",
                command=command_line,
                pid=process.pid,
                exit_code=terminated_code,
            )
            self._release(process)
            raise
        finally:
            if not background:
                self._release(process)

        if exit_code != 0:
            logger.error(
                "Command returned with non-zero exit value (command properly escaped?).",
                exit_code=exit_code,
                command=command_line,
                stderr=error_tracker.text,
            )
        return exit_code

    def _spawn(self, clean_command: list[str], *, has_stdin: bool) -> subprocess.Popen[bytes]:
        # POSIX exec does no re-splitting, so the shell-style quotes added by
        # escaping must not reach argv; Windows takes the full wrapped line.
        args: str | list[str] = (
            " ".join(clean_command) if is_windows() else unescaped_argv(self._command)
        )
        try:
            return subprocess.Popen(
                args,
                cwd=str(self._workdir) if self._workdir is not None else None,
                env=self._child_env(),
                stdin=subprocess.PIPE if has_stdin else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise SystemCommandError(f"Could not execute command: {self}") from exc

    def _child_env(self) -> dict[str, str] | None:
        if self._env is None:
            return None
        if is_windows():
            # Windows cannot start cmd.exe without SYSTEMROOT.
            merged = {key: value for key, value in os.environ.items() if key.upper() == "SYSTEMROOT"}
            merged.update(self._env)
            return merged
        return dict(self._env)

    def __str__(self) -> str:
        return " ".join(self._command)

    def __repr__(self) -> str:
        return f"SystemCommand({self._command!r}, workdir={self._workdir!r})"


def _without(
    listeners: tuple[LineListener, ...], listener: LineListener
) -> tuple[LineListener, ...]:
    remaining = list(listeners)
    if listener in remaining:
        remaining.remove(listener)
    return tuple(remaining)
