"""Composite operations over commands and retries."""

from sysexec.lib.ops.run import run_text, run_with_retry

__all__ = ["run_text", "run_with_retry"]
