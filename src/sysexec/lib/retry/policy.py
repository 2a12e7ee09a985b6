"""Immutable retry policy and its builder."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Protocol

from sysexec.lib.config.settings import ExecConfig
from sysexec.lib.exec.errors import ExecError, SystemCommandError

_DEFAULT_CONFIG = ExecConfig()
DEFAULT_MAX_RETRIES = _DEFAULT_CONFIG.max_retries
DEFAULT_RETRY_DELAY_SECONDS = _DEFAULT_CONFIG.retry_delay_seconds
DEFAULT_MAX_CAUSES = _DEFAULT_CONFIG.max_causes

# Failures from the outside world (I/O, process supervision) are shown to
# exception filters wrapped in `RetriableError`; anything else as raised.
DEFAULT_WRAPPED_TYPES: tuple[type[BaseException], ...] = (
    OSError,
    ExecError,
    SystemCommandError,
)


class ExceptionFilter(Protocol):
    def __call__(self, exc: BaseException, /) -> bool:
        """Return True if another attempt may follow this failure."""
        ...


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times, how often, and for which failures to retry.

    `max_retries` counts attempts *after* the first one, so the default
    policy allows 11 attempts in total.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    max_causes: int = DEFAULT_MAX_CAUSES
    exception_filter: ExceptionFilter | None = None
    wrapped_types: tuple[type[BaseException], ...] = DEFAULT_WRAPPED_TYPES

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}.")
        if self.retry_delay_seconds < 0:
            raise ValueError(
                f"retry_delay_seconds must be >= 0, got {self.retry_delay_seconds}."
            )
        if self.max_causes < 1:
            raise ValueError(f"max_causes must be >= 1, got {self.max_causes}.")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_config(
        cls,
        config: ExecConfig,
        *,
        exception_filter: ExceptionFilter | None = None,
    ) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            retry_delay_seconds=config.retry_delay_seconds,
            max_causes=config.max_causes,
            exception_filter=exception_filter,
        )

    @classmethod
    def builder(cls, base: RetryPolicy | None = None) -> RetryPolicyBuilder:
        return RetryPolicyBuilder(base or cls())


class RetryPolicyBuilder:
    """Fluent assembly of a `RetryPolicy`; only `build()` validates."""

    def __init__(self, base: RetryPolicy) -> None:
        self._values: dict[str, object] = {
            "max_retries": base.max_retries,
            "retry_delay_seconds": base.retry_delay_seconds,
            "max_causes": base.max_causes,
            "exception_filter": base.exception_filter,
            "wrapped_types": base.wrapped_types,
        }

    def max_retries(self, value: int) -> RetryPolicyBuilder:
        self._values["max_retries"] = value
        return self

    def retry_delay(self, seconds: float) -> RetryPolicyBuilder:
        self._values["retry_delay_seconds"] = seconds
        return self

    def max_causes(self, value: int) -> RetryPolicyBuilder:
        self._values["max_causes"] = value
        return self

    def exception_filter(self, value: ExceptionFilter | None) -> RetryPolicyBuilder:
        self._values["exception_filter"] = value
        return self

    def wrapped_types(self, *types: type[BaseException]) -> RetryPolicyBuilder:
        self._values["wrapped_types"] = tuple(types)
        return self

    def build(self) -> RetryPolicy:
        return replace(RetryPolicy(), **self._values)  # type: ignore[arg-type]
