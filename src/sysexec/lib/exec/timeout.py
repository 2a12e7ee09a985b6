"""Termination helpers for child processes."""

from __future__ import annotations

import subprocess

import structlog

from sysexec.lib.config.settings import ExecConfig

DEFAULT_KILL_GRACE_SECONDS = ExecConfig().kill_grace_seconds
logger = structlog.get_logger(__name__)


def terminate_process(
    process: subprocess.Popen[bytes],
    *,
    grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> int | None:
    """Terminate a process, force-killing it if it outlives the grace period.

    Returns the exit status, or None if the process could not be reaped.
    """

    if process.poll() is not None:
        return process.returncode

    try:
        process.terminate()
    except ProcessLookupError:
        return process.poll()
    try:
        return process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning(
            "Process ignored termination request, killing.",
            pid=process.pid,
            grace_seconds=grace_seconds,
        )
        try:
            process.kill()
        except ProcessLookupError:
            return process.poll()
        return process.wait()
