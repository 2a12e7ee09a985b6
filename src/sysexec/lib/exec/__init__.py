"""Process execution primitives."""

from sysexec.lib.exec.command import SystemCommand
from sysexec.lib.exec.errors import (
    CommandAlreadyRunningError,
    CommandConfigError,
    ErrorCategory,
    ExecError,
    NonZeroExitError,
    ProcessInterruptedError,
    SystemCommandError,
    classify_exception,
    default_exception_filter,
)
from sysexec.lib.exec.shell import build_command_line, escape, interpreter_prefix, tokenize
from sysexec.lib.exec.stream import LineListener, LineSplitter, StreamConsumer, consume
from sysexec.lib.exec.timeout import DEFAULT_KILL_GRACE_SECONDS, terminate_process
from sysexec.lib.exec.watcher import (
    STDERR,
    STDOUT,
    WatchHandle,
    watch_process,
    watch_process_async,
)

__all__ = [
    "DEFAULT_KILL_GRACE_SECONDS",
    "STDERR",
    "STDOUT",
    "CommandAlreadyRunningError",
    "CommandConfigError",
    "ErrorCategory",
    "ExecError",
    "LineListener",
    "LineSplitter",
    "NonZeroExitError",
    "ProcessInterruptedError",
    "StreamConsumer",
    "SystemCommand",
    "SystemCommandError",
    "WatchHandle",
    "build_command_line",
    "classify_exception",
    "consume",
    "default_exception_filter",
    "escape",
    "interpreter_prefix",
    "terminate_process",
    "tokenize",
    "watch_process",
    "watch_process_async",
]
