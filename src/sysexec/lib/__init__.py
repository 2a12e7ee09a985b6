"""Core sysexec library exports."""

from sysexec.lib.config.settings import ExecConfig, load_config
from sysexec.lib.exec.command import SystemCommand
from sysexec.lib.exec.errors import (
    CommandAlreadyRunningError,
    CommandConfigError,
    ExecError,
    SystemCommandError,
)
from sysexec.lib.ops.run import run_with_retry
from sysexec.lib.retry.policy import RetryPolicy
from sysexec.lib.retry.retrier import RetriableError, Retrier

__all__ = [
    "CommandAlreadyRunningError",
    "CommandConfigError",
    "ExecConfig",
    "ExecError",
    "RetriableError",
    "Retrier",
    "RetryPolicy",
    "SystemCommand",
    "SystemCommandError",
    "load_config",
    "run_with_retry",
]
