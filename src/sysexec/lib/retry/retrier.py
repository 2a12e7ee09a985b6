"""Bounded retry execution with exception filtering and causal history."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Iterable
from typing import Protocol, TypeVar

import structlog

from sysexec.lib.exec.errors import ProcessInterruptedError, iter_exception_chain
from sysexec.lib.retry.policy import RetryPolicy

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

logger = structlog.get_logger(__name__)


class Retriable(Protocol[T_co]):
    def __call__(self) -> T_co:
        """Run one attempt of the unit of work."""
        ...


class RetriableError(Exception):
    """Failure of a retried unit of work.

    Used both as the stable wrapper exception filters see for I/O-type
    failures, and as the terminal error once retrying stops. `causes` holds
    the captured failures oldest first; `__cause__` is the most recent one.
    """

    def __init__(self, message: str, causes: Iterable[BaseException] = ()) -> None:
        super().__init__(message)
        self.causes: tuple[BaseException, ...] = tuple(causes)
        if self.causes:
            self.__cause__ = self.causes[-1]

    @classmethod
    def wrap(cls, exc: BaseException) -> RetriableError:
        return cls(str(exc) or type(exc).__name__, (exc,))

    @property
    def last_cause(self) -> BaseException | None:
        return self.causes[-1] if self.causes else None


def format_exception_chain(exc: BaseException) -> str:
    """Render an exception and its causes as indented `→` lines."""

    lines: list[str] = []
    for depth, item in enumerate(iter_exception_chain(exc)):
        message = f"{type(item).__name__}: {item}" if str(item) else type(item).__name__
        if depth == 0:
            lines.append(message)
        else:
            lines.append(f"{'  ' * depth}→ {message}")
    return "\n".join(lines)


class Retrier:
    """Run a unit of work until it succeeds or the retry policy gives up.

    A retrier holds no state across calls, so one instance may serve
    several threads as long as nobody swaps its policy mid-flight.
    """

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self._policy = policy or RetryPolicy()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def execute(
        self,
        retriable: Retriable[T],
        *,
        interrupt: threading.Event | None = None,
    ) -> T:
        """Return the first successful result of `retriable`.

        Raises:
            RetriableError: the exception filter rejected a failure, the
                attempt budget ran out, or the retry delay was interrupted.
        """

        policy = self._policy
        causes: deque[BaseException] = deque(maxlen=policy.max_causes)
        attempt = 0
        while True:
            try:
                value = retriable()
            except Exception as exc:
                causes.append(exc)
                if isinstance(exc, ProcessInterruptedError):
                    raise RetriableError(
                        "Execution interrupted; not retrying.", causes
                    ) from exc
                if not self._allows_retry(exc):
                    raise RetriableError(
                        "Encountered an exception preventing execution retry.", causes
                    ) from exc
            else:
                if attempt > 0:
                    logger.info("Execution successfully recovered.", attempt=attempt + 1)
                return value

            if attempt >= policy.max_retries:
                raise RetriableError(
                    "Execution failed, maximum number of retries reached.", causes
                ) from causes[-1]

            attempt += 1
            logger.warning(
                "Execution failed, retrying.",
                retry=attempt,
                max_retries=policy.max_retries,
                cause=format_exception_chain(causes[-1]),
            )
            self._sleep(causes, interrupt)

    def _allows_retry(self, exc: Exception) -> bool:
        exception_filter = self._policy.exception_filter
        if exception_filter is None:
            return True
        shown: BaseException = exc
        if isinstance(exc, self._policy.wrapped_types) and not isinstance(exc, RetriableError):
            shown = RetriableError.wrap(exc)
        return exception_filter(shown)

    def _sleep(
        self,
        causes: deque[BaseException],
        interrupt: threading.Event | None,
    ) -> None:
        delay = self._policy.retry_delay_seconds
        try:
            if interrupt is not None:
                if interrupt.wait(delay):
                    raise RetriableError("Retry delay interrupted.", causes)
            elif delay > 0:
                time.sleep(delay)
        except KeyboardInterrupt:
            # The interrupt stays reachable as __context__; __cause__ is the last failure.
            raise RetriableError("Retry delay interrupted.", causes)  # noqa: B904
