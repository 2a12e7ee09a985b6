"""Retry execution primitives."""

from sysexec.lib.retry.policy import (
    DEFAULT_MAX_CAUSES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    ExceptionFilter,
    RetryPolicy,
    RetryPolicyBuilder,
)
from sysexec.lib.retry.retrier import (
    Retriable,
    RetriableError,
    Retrier,
    format_exception_chain,
)

__all__ = [
    "DEFAULT_MAX_CAUSES",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_DELAY_SECONDS",
    "ExceptionFilter",
    "Retriable",
    "RetriableError",
    "Retrier",
    "RetryPolicy",
    "RetryPolicyBuilder",
    "format_exception_chain",
]
